from __future__ import annotations

import math
import re
from datetime import date
from typing import Any, Mapping, Sequence

import numpy as np
import pandas as pd

from appraisal.config import ValidationConfig
from appraisal.data_models import (
    Condition,
    LossVehicle,
    ValidationErrorCode,
    ValidationIssue,
    ValidationResult,
    ValidationSummary,
    ValidationWarning,
)
from appraisal.errors import InvalidArgument

_STATE_RE = re.compile(r"^[A-Za-z]{2}$")
_DIGIT_RE = re.compile(r"\d")

_REQUIRED_FIELDS: tuple[tuple[str, str, str], ...] = (
    ("source", "Source", "Select where you found this comparable (e.g., AutoTrader, Cars.com)"),
    ("year", "Year", "Enter the model year (e.g., 2020)"),
    ("make", "Make", "Enter the manufacturer (e.g., Toyota, Honda)"),
    ("model", "Model", "Enter the model name (e.g., Camry, Accord)"),
    ("mileage", "Mileage", "Enter the odometer reading in miles"),
    ("list_price", "Price", "Enter the asking price in dollars"),
    ("location", "Location", 'Enter location as "City, ST" (e.g., Los Angeles, CA)'),
    ("condition", "Condition", "Select vehicle condition (Excellent, Good, Fair, Poor or Salvage)"),
)


def _get(candidate: Any, name: str) -> Any:
    if isinstance(candidate, Mapping):
        return candidate.get(name)
    return getattr(candidate, name, None)


def _is_blank(value: Any) -> bool:
    return value is None or (isinstance(value, str) and not value.strip())


def _as_number(value: Any) -> float | None:
    if isinstance(value, bool) or value is None:
        return None
    if isinstance(value, (int, float)):
        return float(value)
    try:
        return float(str(value).replace(",", "").strip())
    except ValueError:
        return None


class _Collector:
    def __init__(self) -> None:
        self.errors: list[ValidationIssue] = []
        self.warnings: list[ValidationWarning] = []

    def error(self, field: str, code: ValidationErrorCode, message: str, suggested_action: str) -> None:
        self.errors.append(ValidationIssue(field, code, message, suggested_action))

    def warn(self, field: str, message: str, suggested_action: str | None = None) -> None:
        self.warnings.append(ValidationWarning(field, message, suggested_action))

    def result(self) -> ValidationResult:
        return ValidationResult(is_valid=not self.errors, errors=tuple(self.errors), warnings=tuple(self.warnings))


class ComparableValidator:
    """
    Field-level and cross-field checks for a comparable listing.

    Errors block saving the comparable; warnings are advisory. Candidates may
    be ComparableVehicle instances or plain mappings (form drafts) with the
    same field names, since drafts can be missing required fields.
    """

    def __init__(self, config: ValidationConfig | None = None, reference_year: int | None = None) -> None:
        self.config = config or ValidationConfig()
        self.reference_year = reference_year or date.today().year

    @property
    def max_year(self) -> int:
        return self.reference_year + self.config.max_years_ahead

    def validate(
        self,
        candidate: Any,
        all_comparables: Sequence[Any] | None = None,
        loss_vehicle: LossVehicle | None = None,
    ) -> ValidationResult:
        out = _Collector()
        self._check_required(candidate, out)

        source = _get(candidate, "source")
        if not _is_blank(source):
            self._check_source(str(source), out)

        year = self._numeric_field(candidate, "year", ValidationErrorCode.INVALID_YEAR, "Year", out)
        if year is not None:
            self._check_year(int(year), out)

        make = _get(candidate, "make")
        model = _get(candidate, "model")
        if not _is_blank(make):
            self._check_make(str(make), out)
        if not _is_blank(make) and not _is_blank(model):
            self._check_model(str(make), str(model), out)

        mileage = self._numeric_field(candidate, "mileage", ValidationErrorCode.INVALID_MILEAGE, "Mileage", out)
        if mileage is not None and self._check_mileage(mileage, out) and year is not None:
            self._check_mileage_for_age(int(year), mileage, out)

        price = self._numeric_field(candidate, "list_price", ValidationErrorCode.INVALID_PRICE, "Price", out)
        if price is not None:
            self._check_price(price, out)

        location = _get(candidate, "location")
        if not _is_blank(location):
            self._check_location(str(location), out)

        condition = _get(candidate, "condition")
        if not _is_blank(condition):
            self._check_condition(condition, out)

        self._check_equipment(_get(candidate, "equipment"), out)

        distance = _as_number(_get(candidate, "distance_from_loss"))
        if distance is not None and math.isfinite(distance):
            self._check_distance(distance, out)

        if loss_vehicle is not None:
            self._check_against_loss_vehicle(year, make, model, mileage, loss_vehicle, out)

        if all_comparables and price is not None:
            self._check_price_outlier(candidate, price, all_comparables, out)

        return out.result()

    def validate_multiple(
        self, comparables: Sequence[Any], loss_vehicle: LossVehicle | None = None
    ) -> list[ValidationResult]:
        return [self.validate(comparable, comparables, loss_vehicle) for comparable in comparables]

    def validation_summary(
        self, comparables: Sequence[Any], loss_vehicle: LossVehicle | None = None
    ) -> ValidationSummary:
        results = self.validate_multiple(comparables, loss_vehicle)
        critical = tuple(
            f"Comparable {index}: " + ", ".join(e.message for e in result.errors)
            for index, result in enumerate(results, start=1)
            if not result.is_valid
        )
        return ValidationSummary(
            total_comparables=len(comparables),
            valid_comparables=sum(1 for r in results if r.is_valid),
            total_errors=sum(len(r.errors) for r in results),
            total_warnings=sum(len(r.warnings) for r in results),
            critical_issues=critical,
        )

    # ── field checks ────────────────────────────────────────────────

    def _check_required(self, candidate: Any, out: _Collector) -> None:
        for name, label, suggestion in _REQUIRED_FIELDS:
            if _is_blank(_get(candidate, name)):
                out.error(name, ValidationErrorCode.MISSING_REQUIRED_FIELD, f"{label} is required", suggestion)

    def _numeric_field(
        self, candidate: Any, name: str, code: ValidationErrorCode, label: str, out: _Collector
    ) -> float | None:
        raw = _get(candidate, name)
        if _is_blank(raw):
            return None
        value = _as_number(raw)
        if value is None or not math.isfinite(value):
            out.error(name, code, f"{label} must be a number", f"Enter {label.lower()} using digits only")
            return None
        return value

    def _check_source(self, source: str, out: _Collector) -> None:
        if source not in self.config.standard_sources:
            out.warn(
                "source",
                f'Source "{source}" is not in the standard list',
                'Consider using a standard source or select "Other"',
            )

    def _check_year(self, year: int, out: _Collector) -> None:
        cfg = self.config
        if year < cfg.min_year:
            out.error(
                "year",
                ValidationErrorCode.INVALID_YEAR,
                f"Year must be {cfg.min_year} or later",
                f"Enter a year between {cfg.min_year} and {self.max_year}",
            )
        elif year > self.max_year:
            out.error(
                "year",
                ValidationErrorCode.INVALID_YEAR,
                f"Year cannot be later than {self.max_year}",
                "Verify the model year is correct",
            )
        elif year < cfg.old_vehicle_year:
            out.warn(
                "year",
                f"Vehicle is {self.reference_year - year} years old. Consider if this is truly comparable.",
                "Older vehicles may not be good comparables due to market differences",
            )

    def _check_make(self, make: str, out: _Collector) -> None:
        name = make.strip()
        if len(name) < 2:
            out.warn("make", "Make seems too short", "Verify the manufacturer name is complete")
            return
        known = {m.lower() for m in self.config.known_makes}
        if name.lower() not in known:
            out.warn(
                "make",
                f'"{name}" is not in the known manufacturers list',
                "Verify spelling or check if this is a valid manufacturer",
            )
        if _DIGIT_RE.search(name):
            out.warn(
                "make",
                "Make contains numbers, which is unusual",
                "Manufacturer names typically don't contain numbers",
            )

    def _check_model(self, make: str, model: str, out: _Collector) -> None:
        if len(model.strip()) < 2:
            out.warn("model", "Model name seems too short", "Verify the model name is complete")
        if make.strip().lower() == model.strip().lower():
            out.warn("model", "Make and model appear to be the same", "Verify you entered the model name, not the make")

    def _check_mileage(self, mileage: float, out: _Collector) -> bool:
        cfg = self.config
        if mileage < 0:
            out.error(
                "mileage",
                ValidationErrorCode.INVALID_MILEAGE,
                "Mileage cannot be negative",
                "Enter a positive mileage value",
            )
            return False
        if mileage > cfg.max_mileage:
            out.error(
                "mileage",
                ValidationErrorCode.INVALID_MILEAGE,
                f"Mileage cannot exceed {cfg.max_mileage:,} miles",
                "Verify the mileage is correct - this seems unrealistically high",
            )
            return False
        if mileage > cfg.high_mileage_warning:
            out.warn(
                "mileage",
                f"High mileage ({mileage:,.0f} miles). Ensure this is truly comparable to the loss vehicle.",
                "High-mileage vehicles may not be good comparables unless the loss vehicle also has high mileage",
            )
        return True

    def _check_mileage_for_age(self, year: int, mileage: float, out: _Collector) -> None:
        cfg = self.config
        age = self.reference_year - year
        if age <= 0:
            if mileage > cfg.new_vehicle_mileage_limit:
                out.warn(
                    "mileage",
                    f"High mileage ({mileage:,.0f}) for a {year} vehicle. Verify this is correct.",
                    "New or current model year vehicles typically have very low mileage",
                )
            return

        per_year = mileage / age
        expected_max = age * cfg.max_mileage_per_year
        if mileage > expected_max:
            out.warn(
                "mileage",
                f"Mileage ({mileage:,.0f}) seems high for a {age}-year-old vehicle "
                f"({per_year:,.0f} miles/year). Expected max: ~{expected_max:,} miles.",
                "Verify the mileage is correct",
            )
        if age > cfg.low_mileage_min_age and mileage < cfg.suspicious_low_mileage:
            out.warn(
                "mileage",
                f"Very low mileage ({mileage:,.0f}) for a {age}-year-old vehicle ({per_year:,.0f} miles/year).",
                "Unusually low mileage may indicate a data entry error",
            )

    def _check_price(self, price: float, out: _Collector) -> None:
        cfg = self.config
        if price < cfg.min_price:
            out.error(
                "list_price",
                ValidationErrorCode.INVALID_PRICE,
                f"Price must be at least ${cfg.min_price:,.0f}",
                "Enter a realistic market price for the vehicle",
            )
        elif price > cfg.max_price:
            out.error(
                "list_price",
                ValidationErrorCode.INVALID_PRICE,
                f"Price cannot exceed ${cfg.max_price:,.0f}",
                "Verify the price is correct - this seems unrealistically high",
            )
        elif price < cfg.low_price_warning:
            out.warn(
                "list_price",
                f"Very low price (${price:,.0f}). Ensure this is a legitimate comparable and not salvage/parts.",
                "Verify this is a clean title vehicle with accurate pricing",
            )
        elif price > cfg.high_price_warning:
            out.warn(
                "list_price",
                f"High-value vehicle (${price:,.0f}). Ensure this is truly comparable to the loss vehicle.",
                "High-value vehicles may not be good comparables unless the loss vehicle is also high-value",
            )

    def _check_location(self, location: str, out: _Collector) -> None:
        if "," not in location:
            out.error(
                "location",
                ValidationErrorCode.INVALID_LOCATION,
                'Location should be in "City, ST" format',
                'Enter location as "City, ST" (e.g., Los Angeles, CA)',
            )
            return
        city, _, state = location.rpartition(",")
        if not city.strip().strip(","):
            out.error(
                "location",
                ValidationErrorCode.INVALID_LOCATION,
                "Location appears incomplete",
                "Provide both city and state abbreviation",
            )
        elif not _STATE_RE.match(state.strip()):
            out.error(
                "location",
                ValidationErrorCode.INVALID_LOCATION,
                "State should be a 2-letter abbreviation",
                "Use standard state abbreviations (e.g., CA, NY, TX)",
            )

    def _check_condition(self, condition: Any, out: _Collector) -> None:
        try:
            Condition.parse(condition)
        except InvalidArgument:
            out.error(
                "condition",
                ValidationErrorCode.INVALID_CONDITION,
                f'Condition "{condition}" is not recognized',
                "Select Excellent, Good, Fair, Poor or Salvage",
            )

    def _check_equipment(self, equipment: Any, out: _Collector) -> None:
        items = [str(item).strip().lower() for item in (equipment or ())]
        if not items:
            out.warn(
                "equipment",
                "No equipment features selected",
                "Consider adding equipment features for more accurate adjustments",
            )
        elif len(set(items)) < len(items):
            out.warn("equipment", "Duplicate equipment features detected", "Remove duplicate features from the list")

    def _check_distance(self, distance: float, out: _Collector) -> None:
        if distance > self.config.far_distance_miles:
            out.warn(
                "distance_from_loss",
                f"Distance ({distance:.0f} miles) is very far from loss vehicle location",
                "Consider finding closer comparables for better market representation",
            )
        elif distance > self.config.moderate_distance_miles:
            out.warn(
                "distance_from_loss",
                f"Distance ({distance:.0f} miles) is somewhat far from loss vehicle location",
                "Closer comparables may provide better market data",
            )

    def _check_against_loss_vehicle(
        self,
        year: float | None,
        make: Any,
        model: Any,
        mileage: float | None,
        loss_vehicle: LossVehicle,
        out: _Collector,
    ) -> None:
        cfg = self.config
        if year is not None and loss_vehicle.year:
            gap = abs(int(year) - loss_vehicle.year)
            if gap > cfg.loss_year_tolerance:
                out.warn(
                    "year",
                    f"Year differs by {gap} years from loss vehicle ({loss_vehicle.year})",
                    "Comparables within 2-3 years typically provide better market data",
                )
        if not _is_blank(make) and loss_vehicle.make and str(make).strip().lower() != loss_vehicle.make.strip().lower():
            out.warn(
                "make",
                f"Make ({make}) differs from loss vehicle ({loss_vehicle.make})",
                "Same make comparables are typically more accurate",
            )
        if (
            not _is_blank(model)
            and loss_vehicle.model
            and str(model).strip().lower() != loss_vehicle.model.strip().lower()
        ):
            out.warn(
                "model",
                f"Model ({model}) differs from loss vehicle ({loss_vehicle.model})",
                "Same model comparables provide the most accurate market data",
            )
        if mileage is not None and loss_vehicle.mileage > 0:
            relative = abs(mileage - loss_vehicle.mileage) / loss_vehicle.mileage
            if relative > cfg.loss_mileage_tolerance:
                out.warn(
                    "mileage",
                    f"Mileage differs significantly from loss vehicle ({relative:.0%} difference)",
                    "Large mileage differences may reduce comparable quality",
                )

    def _check_price_outlier(
        self, candidate: Any, price: float, all_comparables: Sequence[Any], out: _Collector
    ) -> None:
        """
        Compares the candidate's price with the rest of the set (the candidate
        itself excluded). Needs at least outlier_min_comparables vehicles in
        total, counting the candidate.
        """
        candidate_id = _get(candidate, "id")
        others = [
            c for c in all_comparables
            if c is not candidate and (candidate_id is None or _get(c, "id") != candidate_id)
        ]
        if len(others) + 1 < self.config.outlier_min_comparables:
            return

        prices = pd.Series([_as_number(_get(c, "list_price")) for c in others], dtype=float)
        prices = prices[np.isfinite(prices)]
        if prices.empty:
            return
        mean = float(prices.mean())
        std = float(prices.std(ddof=0))
        if mean <= 0:
            return
        relative = (price - mean) / mean
        if std > 0:
            is_outlier = abs(price - mean) / std > self.config.outlier_std_threshold
        else:
            is_outlier = abs(relative) > self.config.outlier_relative_threshold
        if is_outlier:
            direction = "higher" if price > mean else "lower"
            out.warn(
                "list_price",
                f"Price (${price:,.0f}) is significantly {direction} than other comparables "
                f"(average: ${mean:,.0f}, {abs(relative):.0%} difference).",
                "Verify this is truly comparable or consider finding alternatives closer to the average",
            )


def validate_comparable(
    comparable: Any,
    all_comparables: Sequence[Any] | None = None,
    loss_vehicle: LossVehicle | None = None,
    *,
    config: ValidationConfig | None = None,
    reference_year: int | None = None,
) -> ValidationResult:
    return ComparableValidator(config, reference_year).validate(comparable, all_comparables, loss_vehicle)
