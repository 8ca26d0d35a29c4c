"""
Price adjustments for comparable vehicles.

Sign convention: an adjusted price approximates what the comparable would
sell for if it matched the loss vehicle exactly. Every category follows it:
a comparable that is better than the loss vehicle (fewer miles, extra
equipment, better condition) is adjusted down, a worse one is adjusted up.
"""
from __future__ import annotations

import logging
from datetime import date

from appraisal.config import AdjustmentConfig
from appraisal.data_models import (
    ComparableVehicle,
    Condition,
    ConditionAdjustment,
    EquipmentAdjustment,
    LossVehicle,
    MileageAdjustment,
    PriceAdjustments,
)
from appraisal.equipment import EquipmentCatalog, equipment_difference

logger = logging.getLogger(__name__)


def _signed_dollars(amount: float) -> str:
    sign = "+" if amount >= 0 else "-"
    return f"{sign}${abs(amount):,.2f}"


class AdjustmentCalculator:
    def __init__(
        self,
        catalog: EquipmentCatalog | None = None,
        config: AdjustmentConfig | None = None,
        reference_year: int | None = None,
    ) -> None:
        self.catalog = catalog or EquipmentCatalog()
        self.config = config or AdjustmentConfig()
        self.reference_year = reference_year or date.today().year

    def depreciation_rate(self, vehicle_age: int) -> float:
        for max_age, rate in self.config.depreciation_tiers:
            if vehicle_age <= max_age:
                return rate
        return self.config.old_vehicle_rate

    def mileage_adjustment(self, comparable: ComparableVehicle, loss_vehicle: LossVehicle) -> MileageAdjustment:
        difference = comparable.mileage - loss_vehicle.mileage
        if abs(difference) < self.config.min_mileage_difference:
            return MileageAdjustment(
                mileage_difference=difference,
                depreciation_rate=0.0,
                adjustment_amount=0.0,
                explanation=(
                    f"Mileage difference ({abs(difference):,} miles) is below the "
                    f"{self.config.min_mileage_difference:,} mile threshold, no adjustment applied"
                ),
            )

        vehicle_age = max(self.reference_year - comparable.year, 0)
        rate = self.depreciation_rate(vehicle_age)
        amount = round(difference * rate, 2) + 0.0
        direction = "more" if difference > 0 else "fewer"
        shift = "up" if amount > 0 else "down"
        return MileageAdjustment(
            mileage_difference=difference,
            depreciation_rate=rate,
            adjustment_amount=amount,
            explanation=(
                f"Comparable has {abs(difference):,} {direction} miles than the loss vehicle. "
                f"Using ${rate:.2f}/mile for a {vehicle_age}-year-old vehicle, adjusted {shift}: {_signed_dollars(amount)}"
            ),
        )

    def equipment_adjustments(
        self, comparable: ComparableVehicle, loss_vehicle: LossVehicle
    ) -> tuple[EquipmentAdjustment, ...]:
        missing, extra = equipment_difference(comparable.equipment, loss_vehicle.equipment)
        adjustments = []
        for feature in missing:
            value = self.catalog.get_value(feature)
            adjustments.append(
                EquipmentAdjustment(
                    feature=feature,
                    type="missing",
                    value=value,
                    explanation=f"Comparable missing {feature} (loss vehicle has it): {_signed_dollars(value)}",
                )
            )
        for feature in extra:
            value = -self.catalog.get_value(feature) + 0.0
            adjustments.append(
                EquipmentAdjustment(
                    feature=feature,
                    type="extra",
                    value=value,
                    explanation=f"Comparable has extra {feature} (loss vehicle doesn't): {_signed_dollars(value)}",
                )
            )
        return tuple(adjustments)

    def condition_adjustment(
        self, comparable: ComparableVehicle, loss_condition: Condition | None
    ) -> ConditionAdjustment:
        """
        multiplier is comparable factor / loss factor, so it is above 1 when
        the comparable is in better condition. The price is scaled by its
        inverse to bring the comparable down (or up) to the loss vehicle.
        """
        comparable_condition = comparable.condition
        loss_condition = loss_condition or Condition.GOOD
        factors = self.config.condition_multipliers
        comparable_factor = factors.get(comparable_condition, 1.0)
        loss_factor = factors.get(loss_condition, 1.0)

        if comparable_factor == loss_factor:
            return ConditionAdjustment(
                comparable_condition=comparable_condition,
                loss_vehicle_condition=loss_condition,
                multiplier=1.0,
                adjustment_amount=0.0,
                explanation=(
                    f"Both vehicles in {comparable_condition.value} condition, no adjustment needed"
                    if comparable_condition == loss_condition
                    else f"{comparable_condition.value} and {loss_condition.value} carry the same factor, no adjustment"
                ),
            )

        multiplier = round(comparable_factor / loss_factor, 4)
        amount = round(comparable.list_price * (loss_factor / comparable_factor - 1.0), 2)
        return ConditionAdjustment(
            comparable_condition=comparable_condition,
            loss_vehicle_condition=loss_condition,
            multiplier=multiplier,
            adjustment_amount=amount,
            explanation=(
                f"Adjusting from {comparable_condition.value} ({comparable_factor:.2f}x) to "
                f"{loss_condition.value} ({loss_factor:.2f}x): {_signed_dollars(amount)}"
            ),
        )

    def calculate(self, comparable: ComparableVehicle, loss_vehicle: LossVehicle) -> PriceAdjustments:
        mileage = self.mileage_adjustment(comparable, loss_vehicle)
        equipment = self.equipment_adjustments(comparable, loss_vehicle)
        condition = self.condition_adjustment(comparable, loss_vehicle.condition)

        categories = round(
            mileage.adjustment_amount + sum(adj.value for adj in equipment) + condition.adjustment_amount, 2
        )
        floor = round(comparable.list_price * self.config.min_adjusted_price_ratio, 2)
        floor_adjustment = 0.0
        if comparable.list_price + categories < floor:
            floor_adjustment = round(floor - (comparable.list_price + categories), 2)
            logger.warning(
                "Adjusted price for comparable %s fell below %.0f%% of list price; raised by %.2f",
                comparable.id,
                self.config.min_adjusted_price_ratio * 100,
                floor_adjustment,
                extra={
                    "extra_data": {
                        "comparable_id": comparable.id,
                        "list_price": comparable.list_price,
                        "categories_total": categories,
                    }
                },
            )
        total = round(categories + floor_adjustment, 2) + 0.0
        return PriceAdjustments(
            mileage_adjustment=mileage,
            equipment_adjustments=equipment,
            condition_adjustment=condition,
            total_adjustment=total,
            adjusted_price=comparable.list_price + total,
            floor_adjustment=floor_adjustment,
        )


def compute_adjustments(
    comparable: ComparableVehicle,
    loss_vehicle: LossVehicle,
    equipment_table: EquipmentCatalog | None = None,
    *,
    config: AdjustmentConfig | None = None,
    reference_year: int | None = None,
) -> PriceAdjustments:
    return AdjustmentCalculator(equipment_table, config, reference_year).calculate(comparable, loss_vehicle)
