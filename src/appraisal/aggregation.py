from __future__ import annotations

import logging
import math
from datetime import datetime
from typing import NamedTuple, Sequence

import numpy as np
import pandas as pd

from appraisal.config import AggregationConfig
from appraisal.data_models import (
    CalculationBreakdown,
    CalculationStep,
    ComparableContribution,
    ComparableVehicle,
    ConfidenceFactors,
    LossVehicle,
    MarketAnalysis,
    utcnow,
)
from appraisal.errors import IncompleteComparable, NoValidComparables

logger = logging.getLogger(__name__)


class InsuranceComparison(NamedTuple):
    insurance_value: float | None
    value_difference: float | None
    value_difference_percentage: float | None
    is_undervalued: bool


def _adjusted_price(comparable: ComparableVehicle) -> float | None:
    if comparable.adjustments is not None:
        return comparable.adjustments.adjusted_price
    return comparable.adjusted_price


def _contribution(index: int, comparable: ComparableVehicle) -> ComparableContribution:
    score = comparable.quality_score
    price = _adjusted_price(comparable)
    if score is None:
        raise IncompleteComparable(index, "quality_score", "quality score has not been calculated")
    if not math.isfinite(score) or score < 0:
        raise IncompleteComparable(index, "quality_score", f"quality score must be a non-negative number, got {score}")
    if price is None:
        raise IncompleteComparable(index, "adjusted_price", "adjustments have not been calculated")
    if not math.isfinite(price):
        raise IncompleteComparable(index, "adjusted_price", f"adjusted price must be finite, got {price}")
    return ComparableContribution(
        id=comparable.id,
        list_price=comparable.list_price,
        adjusted_price=price,
        quality_score=score,
        weighted_value=price * score,
    )


class MarketValueCalculator:
    """
    Quality-weighted average of adjusted comparable prices.

    Every run records the per-comparable contributions and an ordered list of
    steps, so the final number can be reproduced by hand.
    """

    def __init__(self, config: AggregationConfig | None = None) -> None:
        self.config = config or AggregationConfig()

    def breakdown(self, comparables: Sequence[ComparableVehicle]) -> CalculationBreakdown:
        if not comparables:
            raise NoValidComparables("No comparable vehicles were provided")

        rows = [_contribution(index, comp) for index, comp in enumerate(comparables, start=1)]
        total_weighted = math.fsum(r.weighted_value for r in rows)
        total_weights = math.fsum(r.quality_score for r in rows)
        if total_weights == 0:
            raise NoValidComparables("Every comparable has a quality score of 0")

        # Rounding to cents must not push the average outside the observed range.
        prices = [r.adjusted_price for r in rows]
        final = float(np.clip(round(total_weighted / total_weights, 2), min(prices), max(prices)))

        steps = (
            CalculationStep(
                step=1,
                description=(
                    f"Calculate weighted values (Adjusted Price × Quality Score) for {len(rows)} comparables; "
                    "result is the count"
                ),
                calculation="\n".join(
                    f"Comparable {i}: ${r.adjusted_price:,.2f} × {r.quality_score:.2f} = {r.weighted_value:,.2f}"
                    for i, r in enumerate(rows, start=1)
                ),
                result=float(len(rows)),
            ),
            CalculationStep(
                step=2,
                description="Sum all weighted values",
                calculation=" + ".join(f"{r.weighted_value:,.2f}" for r in rows) + f" = {total_weighted:,.2f}",
                result=total_weighted,
            ),
            CalculationStep(
                step=3,
                description="Sum all quality scores (weights)",
                calculation=" + ".join(f"{r.quality_score:.2f}" for r in rows) + f" = {total_weights:.2f}",
                result=total_weights,
            ),
            CalculationStep(
                step=4,
                description="Calculate quality-weighted average (Market Value)",
                calculation=f"{total_weighted:,.2f} ÷ {total_weights:.2f} = ${final:,.2f}",
                result=final,
            ),
        )
        return CalculationBreakdown(
            comparables=tuple(rows),
            total_weighted_value=total_weighted,
            total_weights=total_weights,
            final_market_value=final,
            steps=steps,
        )

    def confidence(self, contributions: Sequence[ComparableContribution]) -> tuple[float, ConfidenceFactors]:
        if not contributions:
            return 0.0, ConfidenceFactors(comparable_count=0, quality_score_variance=0.0, price_variance=0.0)

        cfg = self.config
        frame = pd.DataFrame(
            {
                "quality_score": [c.quality_score for c in contributions],
                "adjusted_price": [c.adjusted_price for c in contributions],
            }
        )
        level = min(len(frame) * cfg.confidence_per_comparable, cfg.max_count_confidence)

        quality_std = float(frame["quality_score"].std(ddof=0))
        for ceiling, bonus in cfg.quality_consistency_bonuses:
            if quality_std < ceiling:
                level += bonus
                break

        price_mean = float(frame["adjusted_price"].mean())
        price_cv = float(frame["adjusted_price"].std(ddof=0)) / price_mean if price_mean > 0 else 0.0
        for ceiling, bonus in cfg.price_consistency_bonuses:
            if price_cv < ceiling:
                level += bonus
                break

        level = float(np.clip(round(min(level, cfg.max_confidence)), 0, 100))
        return level, ConfidenceFactors(
            comparable_count=len(frame),
            quality_score_variance=round(quality_std, 4),
            price_variance=round(price_cv, 4),
        )

    def compare_to_insurance(self, market_value: float, insurance_value: float | None) -> InsuranceComparison:
        if insurance_value is None:
            return InsuranceComparison(None, None, None, False)

        difference = round(market_value - insurance_value, 2)
        if insurance_value == 0:
            percentage = None if difference == 0 else math.copysign(math.inf, difference)
        else:
            percentage = round(difference / insurance_value * 100, 2)
        undervalued = (
            difference > 0
            and percentage is not None
            and percentage > self.config.undervalued_threshold_percent
        )
        return InsuranceComparison(insurance_value, difference, percentage, undervalued)

    def analyze(
        self,
        appraisal_id: str,
        loss_vehicle: LossVehicle,
        comparables: Sequence[ComparableVehicle],
        insurance_value: float | None = None,
        *,
        input_hash: str = "",
        now: datetime | None = None,
    ) -> MarketAnalysis:
        try:
            breakdown = self.breakdown(comparables)
        except (NoValidComparables, IncompleteComparable) as exc:
            logger.warning(
                "Market value calculation for %s rejected: %s",
                appraisal_id,
                exc,
                extra={"extra_data": {"appraisal_id": appraisal_id, "comparables_count": len(comparables)}},
            )
            raise

        level, factors = self.confidence(breakdown.comparables)
        if insurance_value is None:
            insurance_value = (
                loss_vehicle.settlement_value
                if loss_vehicle.settlement_value is not None
                else loss_vehicle.market_value
            )
        comparison = self.compare_to_insurance(breakdown.final_market_value, insurance_value)
        calculated_at = now or utcnow()

        logger.info(
            "Calculated market value %.2f for %s from %d comparables (confidence %.0f)",
            breakdown.final_market_value,
            appraisal_id,
            len(comparables),
            level,
        )
        return MarketAnalysis(
            appraisal_id=appraisal_id,
            loss_vehicle=loss_vehicle,
            comparables=tuple(comparables),
            comparables_count=len(comparables),
            calculated_market_value=breakdown.final_market_value,
            confidence_level=level,
            confidence_factors=factors,
            insurance_value=comparison.insurance_value,
            value_difference=comparison.value_difference,
            value_difference_percentage=comparison.value_difference_percentage,
            is_undervalued=comparison.is_undervalued,
            calculation_breakdown=breakdown,
            calculated_at=calculated_at,
            last_updated=calculated_at,
            input_hash=input_hash,
        )


def calculate_market_value(
    appraisal_id: str,
    loss_vehicle: LossVehicle,
    comparables: Sequence[ComparableVehicle],
    insurance_value: float | None = None,
    *,
    config: AggregationConfig | None = None,
    input_hash: str = "",
    now: datetime | None = None,
) -> MarketAnalysis:
    return MarketValueCalculator(config).analyze(
        appraisal_id, loss_vehicle, comparables, insurance_value, input_hash=input_hash, now=now
    )
