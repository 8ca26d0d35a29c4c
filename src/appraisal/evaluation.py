from __future__ import annotations

import hashlib
import json
from dataclasses import replace
from typing import Any, Mapping, Sequence

from appraisal.adjustments import AdjustmentCalculator
from appraisal.config import AdjustmentConfig, ScoringConfig
from appraisal.data_models import ComparableVehicle, LossVehicle, to_payload, utcnow
from appraisal.equipment import EquipmentCatalog
from appraisal.quality_score import QualityScoreCalculator

# Fields that only record results or lifecycle; they never change a calculation.
_DERIVED_FIELDS = frozenset(
    {
        "quality_score",
        "quality_score_breakdown",
        "adjustments",
        "adjusted_price",
        "date_added",
        "created_at",
        "updated_at",
        "notes",
        "source_url",
    }
)


def evaluate_comparable(
    comparable: ComparableVehicle,
    loss_vehicle: LossVehicle,
    catalog: EquipmentCatalog | None = None,
    *,
    scoring_config: ScoringConfig | None = None,
    adjustment_config: AdjustmentConfig | None = None,
    reference_year: int | None = None,
) -> ComparableVehicle:
    """Return a copy of the comparable with score and adjustments filled in."""
    breakdown = QualityScoreCalculator(scoring_config).calculate(comparable, loss_vehicle)
    adjustments = AdjustmentCalculator(catalog, adjustment_config, reference_year).calculate(comparable, loss_vehicle)
    return replace(
        comparable,
        quality_score=breakdown.final_score,
        quality_score_breakdown=breakdown,
        adjustments=adjustments,
        adjusted_price=adjustments.adjusted_price,
        updated_at=utcnow(),
    )


def evaluate_comparables(
    comparables: Sequence[ComparableVehicle],
    loss_vehicle: LossVehicle,
    catalog: EquipmentCatalog | None = None,
    **kwargs: Any,
) -> list[ComparableVehicle]:
    return [evaluate_comparable(c, loss_vehicle, catalog, **kwargs) for c in comparables]


def input_hash(
    loss_vehicle: LossVehicle,
    comparables: Sequence[ComparableVehicle],
    insurance_value: float | None = None,
    custom_equipment_values: Mapping[str, float] | None = None,
) -> str:
    """
    Stable digest of everything that can change a market analysis. Used as a
    cache key and to recognize results computed from an outdated set.
    """
    document = {
        "loss_vehicle": to_payload(loss_vehicle),
        "comparables": [
            {k: v for k, v in to_payload(c).items() if k not in _DERIVED_FIELDS} for c in comparables
        ],
        "insurance_value": insurance_value,
        "custom_equipment_values": dict(sorted((custom_equipment_values or {}).items())),
    }
    canonical = json.dumps(document, sort_keys=True, separators=(",", ":"), default=str)
    return hashlib.sha256(canonical.encode()).hexdigest()
