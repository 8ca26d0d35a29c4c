from __future__ import annotations

from typing import NamedTuple

from appraisal.config import ScoringConfig
from appraisal.data_models import ComparableVehicle, LossVehicle, QualityScoreBreakdown, ScoreExplanations
from appraisal.equipment import equipment_difference


class _Factor(NamedTuple):
    penalty: float
    bonus: float
    explanation: str


class QualityScoreCalculator:
    """
    Scores how representative a comparable is of the loss vehicle.

    Starts from a base score and subtracts penalties / adds bonuses for
    distance, age, mileage and equipment. The result is floored at 0 and has
    no upper bound: scores above the base mark better-than-baseline matches.
    """

    def __init__(self, config: ScoringConfig | None = None) -> None:
        self.config = config or ScoringConfig()

    def calculate(self, comparable: ComparableVehicle, loss_vehicle: LossVehicle) -> QualityScoreBreakdown:
        distance = self._distance_factor(comparable.distance_from_loss or 0.0)
        age = self._age_factor(comparable.year, loss_vehicle.year)
        mileage = self._mileage_factor(comparable.mileage, loss_vehicle.mileage)
        equipment = self._equipment_factor(comparable.equipment, loss_vehicle.equipment)

        base = self.config.base_score
        raw = (
            base
            - distance.penalty
            - age.penalty
            + age.bonus
            - mileage.penalty
            + mileage.bonus
            - equipment.penalty
            + equipment.bonus
        )
        return QualityScoreBreakdown(
            base_score=base,
            distance_penalty=distance.penalty,
            age_penalty=age.penalty,
            age_bonus=age.bonus,
            mileage_penalty=mileage.penalty,
            mileage_bonus=mileage.bonus,
            equipment_penalty=equipment.penalty,
            equipment_bonus=equipment.bonus,
            final_score=max(0.0, round(raw, 2)),
            explanations=ScoreExplanations(
                distance=distance.explanation,
                age=age.explanation,
                mileage=mileage.explanation,
                equipment=equipment.explanation,
            ),
        )

    def _distance_factor(self, distance: float) -> _Factor:
        threshold = self.config.distance_threshold_miles
        if distance <= threshold:
            return _Factor(
                0.0, 0.0, f"Distance: {distance:.0f} miles (within {threshold:.0f} mile threshold, no penalty)"
            )
        excess = distance - threshold
        penalty = min(round(excess * self.config.distance_penalty_per_mile, 2), self.config.max_distance_penalty)
        return _Factor(
            penalty, 0.0, f"Distance: {distance:.0f} miles ({excess:.0f} miles over threshold, -{penalty:.1f} points)"
        )

    def _age_factor(self, comparable_year: int, loss_year: int) -> _Factor:
        gap = abs(comparable_year - loss_year)
        if gap == 0:
            bonus = self.config.exact_year_bonus
            return _Factor(0.0, bonus, f"Age: Exact match ({comparable_year}, +{bonus:.1f} points)")

        direction = "newer" if comparable_year > loss_year else "older"
        plural = "s" if gap > 1 else ""
        if gap <= self.config.age_tolerance_years:
            return _Factor(
                0.0, 0.0, f"Age: {gap} year{plural} {direction} ({comparable_year} vs {loss_year}, no adjustment)"
            )
        penalty = min(gap * self.config.age_penalty_per_year, self.config.max_age_penalty)
        return _Factor(
            penalty,
            0.0,
            f"Age: {gap} year{plural} {direction} ({comparable_year} vs {loss_year}, -{penalty:.1f} points)",
        )

    def _mileage_factor(self, comparable_mileage: int, loss_mileage: int) -> _Factor:
        if loss_mileage <= 0:
            return _Factor(0.0, 0.0, "Mileage: Loss vehicle has 0 miles, no adjustment")

        deviation = abs(comparable_mileage - loss_mileage) / loss_mileage
        band = self.config.mileage_match_band
        if deviation <= band:
            bonus = self.config.mileage_match_bonus
            return _Factor(
                0.0,
                bonus,
                f"Mileage: {comparable_mileage:,} vs {loss_mileage:,} "
                f"({deviation:.0%} difference, within {band:.0%}, +{bonus:.1f} points)",
            )

        steps = 1 + sum(1 for edge in self.config.mileage_penalty_bands if deviation > edge)
        penalty = self.config.mileage_penalty_step * steps
        direction = "higher" if comparable_mileage > loss_mileage else "lower"
        return _Factor(
            penalty,
            0.0,
            f"Mileage: {comparable_mileage:,} vs {loss_mileage:,} "
            f"({deviation:.0%} {direction}, -{penalty:.1f} points)",
        )

    def _equipment_factor(self, comparable_equipment: tuple[str, ...], loss_equipment: tuple[str, ...]) -> _Factor:
        missing, extra = equipment_difference(comparable_equipment, loss_equipment)
        if not missing and not extra:
            bonus = self.config.equipment_match_bonus
            matched = len({item.strip().lower() for item in loss_equipment})
            return _Factor(0.0, bonus, f"Equipment: Perfect match (all {matched} features, +{bonus:.1f} points)")

        penalty = len(missing) * self.config.equipment_missing_penalty
        bonus = len(extra) * self.config.equipment_extra_bonus
        parts = []
        if missing:
            parts.append(f"{len(missing)} missing: {', '.join(missing)} (-{penalty:.1f} points)")
        if extra:
            parts.append(f"{len(extra)} extra: {', '.join(extra)} (+{bonus:.1f} points)")
        return _Factor(penalty, bonus, "Equipment: " + "; ".join(parts))


def score_comparable(
    comparable: ComparableVehicle,
    loss_vehicle: LossVehicle,
    config: ScoringConfig | None = None,
) -> QualityScoreBreakdown:
    return QualityScoreCalculator(config).calculate(comparable, loss_vehicle)
