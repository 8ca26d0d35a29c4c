from __future__ import annotations

import math
from dataclasses import dataclass, field, fields, is_dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Iterable, Literal

from appraisal.errors import InvalidArgument


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Condition(str, Enum):
    """Vehicle condition, declared worst to best."""

    SALVAGE = "Salvage"
    POOR = "Poor"
    FAIR = "Fair"
    GOOD = "Good"
    EXCELLENT = "Excellent"

    @property
    def rank(self) -> int:
        return list(Condition).index(self)

    @classmethod
    def parse(cls, value: Any) -> Condition:
        if isinstance(value, Condition):
            return value
        label = str(value or "").strip().lower()
        for member in cls:
            if member.value.lower() == label:
                return member
        raise InvalidArgument(f"Unrecognized condition {value!r}; expected one of {[c.value for c in cls]}")


class ReportType(str, Enum):
    CCC_ONE = "CCC_ONE"
    MITCHELL = "MITCHELL"
    UNKNOWN = "UNKNOWN"

    @classmethod
    def parse(cls, value: Any) -> ReportType:
        if isinstance(value, ReportType):
            return value
        label = str(value or "").strip().upper().replace(" ", "_")
        for member in cls:
            if member.value == label:
                return member
        return cls.UNKNOWN


EquipmentAdjustmentType = Literal["missing", "extra"]


@dataclass(frozen=True)
class LossVehicle:
    year: int
    make: str
    model: str
    mileage: int
    location: str = ""
    condition: Condition = Condition.GOOD
    equipment: tuple[str, ...] = ()
    vin: str = ""
    trim: str | None = None
    report_type: ReportType = ReportType.UNKNOWN
    extraction_confidence: float = 0.0
    settlement_value: float | None = None
    market_value: float | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "condition", Condition.parse(self.condition))
        object.__setattr__(self, "equipment", tuple(self.equipment))
        object.__setattr__(self, "report_type", ReportType.parse(self.report_type))


@dataclass(frozen=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(frozen=True)
class ScoreExplanations:
    distance: str = ""
    age: str = ""
    mileage: str = ""
    equipment: str = ""


@dataclass(frozen=True)
class QualityScoreBreakdown:
    base_score: float
    distance_penalty: float
    age_penalty: float
    age_bonus: float
    mileage_penalty: float
    mileage_bonus: float
    equipment_penalty: float
    equipment_bonus: float
    final_score: float
    explanations: ScoreExplanations


@dataclass(frozen=True)
class MileageAdjustment:
    mileage_difference: int
    depreciation_rate: float
    adjustment_amount: float
    explanation: str


@dataclass(frozen=True)
class EquipmentAdjustment:
    feature: str
    type: EquipmentAdjustmentType
    value: float
    explanation: str


@dataclass(frozen=True)
class ConditionAdjustment:
    comparable_condition: Condition
    loss_vehicle_condition: Condition
    multiplier: float
    adjustment_amount: float
    explanation: str


@dataclass(frozen=True)
class PriceAdjustments:
    mileage_adjustment: MileageAdjustment
    equipment_adjustments: tuple[EquipmentAdjustment, ...]
    condition_adjustment: ConditionAdjustment
    total_adjustment: float
    adjusted_price: float
    floor_adjustment: float = 0.0

    @property
    def equipment_total(self) -> float:
        return sum(adj.value for adj in self.equipment_adjustments)


@dataclass
class ComparableVehicle:
    id: str
    appraisal_id: str
    source: str
    year: int
    make: str
    model: str
    mileage: int
    location: str
    list_price: float
    condition: Condition
    distance_from_loss: float = 0.0
    equipment: tuple[str, ...] = ()
    trim: str | None = None
    vin: str | None = None
    source_url: str | None = None
    coordinates: Coordinates | None = None
    notes: str | None = None
    quality_score: float | None = None
    quality_score_breakdown: QualityScoreBreakdown | None = None
    adjustments: PriceAdjustments | None = None
    adjusted_price: float | None = None
    date_added: datetime = field(default_factory=utcnow)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    def __post_init__(self) -> None:
        self.condition = Condition.parse(self.condition)
        self.equipment = tuple(self.equipment)


class ValidationErrorCode(str, Enum):
    INVALID_YEAR = "invalid_year"
    INVALID_MILEAGE = "invalid_mileage"
    INVALID_PRICE = "invalid_price"
    INVALID_LOCATION = "invalid_location"
    INVALID_CONDITION = "invalid_condition"
    MISSING_REQUIRED_FIELD = "missing_required_field"


@dataclass(frozen=True)
class ValidationIssue:
    field: str
    error: ValidationErrorCode
    message: str
    suggested_action: str


@dataclass(frozen=True)
class ValidationWarning:
    field: str
    message: str
    suggested_action: str | None = None


@dataclass(frozen=True)
class ValidationResult:
    is_valid: bool
    errors: tuple[ValidationIssue, ...] = ()
    warnings: tuple[ValidationWarning, ...] = ()

    def errors_for(self, field_name: str) -> list[ValidationIssue]:
        return [e for e in self.errors if e.field == field_name]

    def warnings_for(self, field_name: str) -> list[ValidationWarning]:
        return [w for w in self.warnings if w.field == field_name]


@dataclass(frozen=True)
class ValidationSummary:
    total_comparables: int
    valid_comparables: int
    total_errors: int
    total_warnings: int
    critical_issues: tuple[str, ...]


@dataclass(frozen=True)
class ComparableContribution:
    id: str
    list_price: float
    adjusted_price: float
    quality_score: float
    weighted_value: float


@dataclass(frozen=True)
class CalculationStep:
    step: int
    description: str
    calculation: str
    result: float


@dataclass(frozen=True)
class CalculationBreakdown:
    comparables: tuple[ComparableContribution, ...]
    total_weighted_value: float
    total_weights: float
    final_market_value: float
    steps: tuple[CalculationStep, ...]


@dataclass(frozen=True)
class ConfidenceFactors:
    comparable_count: int
    quality_score_variance: float
    price_variance: float


@dataclass(frozen=True)
class MarketAnalysis:
    appraisal_id: str
    loss_vehicle: LossVehicle
    comparables: tuple[ComparableVehicle, ...]
    comparables_count: int
    calculated_market_value: float
    confidence_level: float
    confidence_factors: ConfidenceFactors
    insurance_value: float | None
    value_difference: float | None
    value_difference_percentage: float | None
    is_undervalued: bool
    calculation_breakdown: CalculationBreakdown
    calculated_at: datetime
    last_updated: datetime
    input_hash: str = ""
    calculation_method: str = "quality-weighted-average"


def to_payload(obj: Any) -> Any:
    """Convert engine records into plain JSON-compatible structures."""
    if is_dataclass(obj) and not isinstance(obj, type):
        return {f.name: to_payload(getattr(obj, f.name)) for f in fields(obj)}
    if isinstance(obj, Enum):
        return obj.value
    if isinstance(obj, datetime):
        return obj.isoformat()
    if isinstance(obj, dict):
        return {str(k): to_payload(v) for k, v in obj.items()}
    if isinstance(obj, (list, tuple)):
        return [to_payload(v) for v in obj]
    return obj


def json_safe(payload: Any) -> Any:
    """Replace non-finite floats, which strict JSON encoders reject, with None."""
    if isinstance(payload, float) and not math.isfinite(payload):
        return None
    if isinstance(payload, dict):
        return {k: json_safe(v) for k, v in payload.items()}
    if isinstance(payload, list):
        return [json_safe(v) for v in payload]
    return payload


def normalize_equipment(items: Iterable[str] | None) -> tuple[str, ...]:
    return tuple(str(item).strip() for item in (items or ()) if str(item).strip())
