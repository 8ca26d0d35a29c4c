from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Any, Sequence

from appraisal.aggregation import MarketValueCalculator
from appraisal.config import AdjustmentConfig, ScoringConfig
from appraisal.data_models import ComparableVehicle, LossVehicle, MarketAnalysis, to_payload
from appraisal.equipment import EquipmentCatalog
from appraisal.errors import NoValidComparables
from appraisal.evaluation import evaluate_comparables, input_hash
from appraisal.validation import ComparableValidator
from service.storage import AnalysisCache

logger = logging.getLogger(__name__)


@dataclass
class RejectedComparable:
    index: int
    comparable_id: str
    errors: list[dict[str, Any]]


@dataclass
class AnalysisOutcome:
    appraisal_id: str
    input_hash: str
    payload: dict[str, Any]
    cached: bool = False
    stale: bool = False
    analysis: MarketAnalysis | None = None
    rejected: list[RejectedComparable] = field(default_factory=list)


class MarketAnalysisService:
    """
    Runs validate -> score/adjust -> aggregate for one appraisal.

    Results are memoized by (appraisal id, input hash) for a short TTL. The
    latest hash requested per appraisal is tracked; an outcome whose hash was
    superseded while it was being produced is flagged stale so the caller can
    drop it.
    """

    def __init__(
        self,
        cache: AnalysisCache,
        catalog: EquipmentCatalog,
        *,
        ttl_seconds: int = 300,
        validator: ComparableValidator | None = None,
        calculator: MarketValueCalculator | None = None,
        scoring_config: ScoringConfig | None = None,
        adjustment_config: AdjustmentConfig | None = None,
        reference_year: int | None = None,
    ) -> None:
        self.cache = cache
        self.catalog = catalog
        self.ttl_seconds = ttl_seconds
        self.validator = validator or ComparableValidator(reference_year=reference_year)
        self.calculator = calculator or MarketValueCalculator()
        self.scoring_config = scoring_config
        self.adjustment_config = adjustment_config
        self.reference_year = reference_year
        self._latest: dict[str, str] = {}

    @staticmethod
    def _cache_key(appraisal_id: str, digest: str) -> str:
        return f"{appraisal_id}:{digest}"

    def is_current(self, appraisal_id: str, digest: str) -> bool:
        return self._latest.get(appraisal_id) == digest

    async def invalidate(self, appraisal_id: str) -> int:
        self._latest.pop(appraisal_id, None)
        return await self.cache.delete_prefix(f"{appraisal_id}:")

    def split_valid(
        self, loss_vehicle: LossVehicle, comparables: Sequence[ComparableVehicle]
    ) -> tuple[list[ComparableVehicle], list[RejectedComparable]]:
        results = self.validator.validate_multiple(comparables, loss_vehicle)
        valid: list[ComparableVehicle] = []
        rejected: list[RejectedComparable] = []
        for index, (comparable, result) in enumerate(zip(comparables, results), start=1):
            if result.is_valid:
                valid.append(comparable)
            else:
                rejected.append(RejectedComparable(index, comparable.id, [to_payload(e) for e in result.errors]))
        return valid, rejected

    async def recalculate(
        self,
        appraisal_id: str,
        loss_vehicle: LossVehicle,
        comparables: Sequence[ComparableVehicle],
        insurance_value: float | None = None,
    ) -> AnalysisOutcome:
        digest = input_hash(loss_vehicle, comparables, insurance_value, self.catalog.custom_values())
        self._latest[appraisal_id] = digest
        key = self._cache_key(appraisal_id, digest)

        cached = await self.cache.get_json(key)
        if cached is not None:
            logger.info("Serving cached market analysis for %s", appraisal_id)
            return AnalysisOutcome(
                appraisal_id=appraisal_id,
                input_hash=digest,
                payload=cached["analysis"],
                cached=True,
                stale=not self.is_current(appraisal_id, digest),
                rejected=[RejectedComparable(**r) for r in cached.get("rejected", [])],
            )

        valid, rejected = self.split_valid(loss_vehicle, comparables)
        if rejected:
            logger.info(
                "Excluded %d invalid comparables from %s",
                len(rejected),
                appraisal_id,
                extra={"extra_data": {"rejected": [r.index for r in rejected]}},
            )
        if not valid:
            raise NoValidComparables("No comparable passed validation" if comparables else "")

        evaluated = evaluate_comparables(
            valid,
            loss_vehicle,
            self.catalog,
            scoring_config=self.scoring_config,
            adjustment_config=self.adjustment_config,
            reference_year=self.reference_year,
        )
        analysis = self.calculator.analyze(
            appraisal_id, loss_vehicle, evaluated, insurance_value, input_hash=digest
        )
        payload = to_payload(analysis)
        await self.cache.set_json(
            key,
            {"analysis": payload, "rejected": [to_payload(r) for r in rejected]},
            ttl_seconds=self.ttl_seconds,
        )

        stale = not self.is_current(appraisal_id, digest)
        if stale:
            logger.info("Market analysis for %s superseded by newer input; marking stale", appraisal_id)
        return AnalysisOutcome(
            appraisal_id=appraisal_id,
            input_hash=digest,
            payload=payload,
            stale=stale,
            analysis=analysis,
            rejected=rejected,
        )
