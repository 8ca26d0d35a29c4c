from __future__ import annotations

import time
import uuid
from collections import defaultdict, deque
from contextlib import asynccontextmanager
from typing import Any

from fastapi import FastAPI, HTTPException, Request, Response, status
from pydantic import BaseModel, Field

from appraisal.adjustments import AdjustmentCalculator
from appraisal.aggregation import MarketValueCalculator
from appraisal.data_models import ComparableVehicle, LossVehicle, json_safe, normalize_equipment, to_payload
from appraisal.equipment import EquipmentCatalog
from appraisal.errors import AppraisalError, IncompleteComparable, InvalidArgument, NoValidComparables
from appraisal.quality_score import QualityScoreCalculator
from appraisal.validation import ComparableValidator
from service.logging_config import configure_logging, correlation_id, get_correlation_id
from service.market_analysis import MarketAnalysisService
from service.settings import ServiceSettings
from service.storage import AnalysisCache


# ── Request / Response Models ───────────────────────────────────────

class LossVehicleModel(BaseModel):
    year: int = Field(ge=1900, le=2100)
    make: str
    model: str
    mileage: int = Field(ge=0)
    location: str = ""
    condition: str = "Good"
    equipment: list[str] = Field(default_factory=list)
    vin: str = ""
    trim: str | None = None
    report_type: str = "UNKNOWN"
    extraction_confidence: float = 0.0
    settlement_value: float | None = None
    market_value: float | None = None

    def to_domain(self) -> LossVehicle:
        data = self.model_dump()
        data["equipment"] = normalize_equipment(self.equipment)
        return LossVehicle(**data)


class ComparableModel(BaseModel):
    id: str | None = None
    appraisal_id: str = ""
    source: str = "Manual Entry"
    year: int
    make: str
    model: str
    mileage: int
    location: str
    list_price: float
    condition: str
    distance_from_loss: float = Field(default=0.0, ge=0)
    equipment: list[str] = Field(default_factory=list)
    trim: str | None = None
    vin: str | None = None
    source_url: str | None = None
    notes: str | None = None

    def to_domain(self, appraisal_id: str = "", fallback_id: str | None = None) -> ComparableVehicle:
        data = self.model_dump()
        # listings without an id get a positional one so identical requests hash alike
        data["id"] = self.id or fallback_id or uuid.uuid4().hex
        data["equipment"] = normalize_equipment(self.equipment)
        if appraisal_id:
            data["appraisal_id"] = appraisal_id
        return ComparableVehicle(**data)


class ComparableRequest(BaseModel):
    comparable: ComparableModel
    loss_vehicle: LossVehicleModel


class ValidateRequest(BaseModel):
    comparable: dict[str, Any]
    all_comparables: list[dict[str, Any]] | None = None
    loss_vehicle: LossVehicleModel | None = None


class ValidationSummaryRequest(BaseModel):
    comparables: list[dict[str, Any]]
    loss_vehicle: LossVehicleModel | None = None


class MarketValueRequest(BaseModel):
    loss_vehicle: LossVehicleModel
    comparables: list[ComparableModel]
    insurance_value: float | None = Field(default=None, ge=0)


class EquipmentValueRequest(BaseModel):
    value: float


class EquipmentImportRequest(BaseModel):
    custom: dict[str, Any]


class HealthResponse(BaseModel):
    status: str


class ReadinessResponse(BaseModel):
    status: str
    checks: dict[str, bool]


# ── Metrics ─────────────────────────────────────────────────────────

_LATENCY_SAMPLES = 1000

_counters: dict[str, int] = defaultdict(int)
_latencies: dict[str, deque[float]] = defaultdict(lambda: deque(maxlen=_LATENCY_SAMPLES))


def _record_latency(name: str, seconds: float) -> None:
    _latencies[name].append(seconds)
    _counters[f"{name}_count"] += 1


def _unprocessable(message: str) -> HTTPException:
    return HTTPException(status_code=status.HTTP_422_UNPROCESSABLE_ENTITY, detail=message)


# ── App Factory ─────────────────────────────────────────────────────

def create_app() -> FastAPI:
    settings = ServiceSettings()
    configure_logging(level=settings.log_level, fmt=settings.log_format)

    cache = AnalysisCache(redis_url=settings.redis_url)
    catalog = EquipmentCatalog()
    validator = ComparableValidator(config=settings.validation_config())
    service = MarketAnalysisService(
        cache,
        catalog,
        ttl_seconds=settings.analysis_cache_ttl_seconds,
        validator=validator,
        calculator=MarketValueCalculator(settings.aggregation_config()),
    )

    @asynccontextmanager
    async def lifespan(_: FastAPI):
        await cache.connect()
        try:
            yield
        finally:
            await cache.close()

    app = FastAPI(title="Comparable Market Value API", version="0.1.0", lifespan=lifespan)
    app.state.catalog = catalog
    app.state.analysis_service = service

    @app.middleware("http")
    async def correlation_id_middleware(request: Request, call_next: Any) -> Response:
        correlation_id.set(request.headers.get("X-Correlation-ID", ""))
        cid = get_correlation_id()
        response = await call_next(request)
        response.headers["X-Correlation-ID"] = cid
        return response

    def _domain(body: ComparableRequest) -> tuple[ComparableVehicle, LossVehicle]:
        try:
            return body.comparable.to_domain(), body.loss_vehicle.to_domain()
        except InvalidArgument as exc:
            raise _unprocessable(str(exc)) from exc

    # ── Per-comparable operations ───────────────────────────────────

    @app.post("/comparables/score")
    async def score(body: ComparableRequest) -> dict[str, Any]:
        comparable, loss_vehicle = _domain(body)
        breakdown = QualityScoreCalculator().calculate(comparable, loss_vehicle)
        return to_payload(breakdown)

    @app.post("/comparables/adjustments")
    async def adjustments(body: ComparableRequest) -> dict[str, Any]:
        comparable, loss_vehicle = _domain(body)
        return to_payload(AdjustmentCalculator(catalog).calculate(comparable, loss_vehicle))

    @app.post("/comparables/validate")
    async def validate(body: ValidateRequest) -> dict[str, Any]:
        try:
            loss_vehicle = body.loss_vehicle.to_domain() if body.loss_vehicle else None
        except InvalidArgument as exc:
            raise _unprocessable(str(exc)) from exc
        result = validator.validate(body.comparable, body.all_comparables, loss_vehicle)
        return to_payload(result)

    @app.post("/comparables/validation-summary")
    async def validation_summary(body: ValidationSummaryRequest) -> dict[str, Any]:
        try:
            loss_vehicle = body.loss_vehicle.to_domain() if body.loss_vehicle else None
        except InvalidArgument as exc:
            raise _unprocessable(str(exc)) from exc
        return to_payload(validator.validation_summary(body.comparables, loss_vehicle))

    # ── Market value ────────────────────────────────────────────────

    @app.post("/appraisals/{appraisal_id}/market-value")
    async def market_value(appraisal_id: str, body: MarketValueRequest) -> dict[str, Any]:
        t0 = time.monotonic()
        try:
            loss_vehicle = body.loss_vehicle.to_domain()
            comparables = [
                c.to_domain(appraisal_id, fallback_id=f"{appraisal_id}-{index}")
                for index, c in enumerate(body.comparables, start=1)
            ]
            outcome = await service.recalculate(appraisal_id, loss_vehicle, comparables, body.insurance_value)
        except NoValidComparables as exc:
            _counters["market_value_rejected"] += 1
            raise _unprocessable(str(exc)) from exc
        except (InvalidArgument, IncompleteComparable) as exc:
            raise _unprocessable(str(exc)) from exc
        except AppraisalError as exc:
            raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc

        _record_latency("market_value", time.monotonic() - t0)
        if outcome.cached:
            _counters["market_value_cache_hit"] += 1
        return {
            "appraisal_id": appraisal_id,
            "input_hash": outcome.input_hash,
            "cached": outcome.cached,
            "stale": outcome.stale,
            "rejected": [to_payload(r) for r in outcome.rejected],
            "analysis": json_safe(outcome.payload),
        }

    @app.delete("/appraisals/{appraisal_id}/market-value")
    async def invalidate_market_value(appraisal_id: str) -> dict[str, Any]:
        removed = await service.invalidate(appraisal_id)
        return {"appraisal_id": appraisal_id, "invalidated": removed}

    # ── Equipment catalog ───────────────────────────────────────────

    @app.get("/equipment")
    async def list_equipment(category: str | None = None) -> dict[str, Any]:
        features = catalog.features_by_category(category) if category else catalog.all_features()
        return {
            "categories": catalog.categories(),
            "features": [to_payload(f) for f in features],
            "custom": catalog.custom_values(),
        }

    @app.get("/equipment/search")
    async def search_equipment(q: str = "") -> dict[str, Any]:
        return {"query": q, "matches": catalog.search(q)}

    @app.get("/equipment/export")
    async def export_equipment() -> Response:
        return Response(content=catalog.export_values(), media_type="application/json")

    @app.post("/equipment/import")
    async def import_equipment(body: EquipmentImportRequest) -> dict[str, Any]:
        imported = catalog.import_custom_values(body.custom)
        return {"imported": imported, "custom": catalog.custom_values()}

    @app.get("/equipment/{name}")
    async def equipment_value(name: str) -> dict[str, Any]:
        feature = catalog.get_feature(name)
        return {
            "name": catalog.canonical_name(name),
            "value": catalog.get_value(name),
            "known": catalog.is_known(name),
            "category": feature.category if feature else None,
        }

    @app.put("/equipment/{name}/value")
    async def set_equipment_value(name: str, body: EquipmentValueRequest) -> dict[str, Any]:
        try:
            catalog.set_custom_value(name, body.value)
        except InvalidArgument as exc:
            raise _unprocessable(str(exc)) from exc
        return {"name": catalog.canonical_name(name), "value": catalog.get_value(name)}

    @app.delete("/equipment/custom")
    async def clear_equipment_values() -> dict[str, Any]:
        catalog.clear_custom_values()
        return {"custom": catalog.custom_values()}

    @app.delete("/equipment/{name}/value")
    async def remove_equipment_value(name: str) -> dict[str, Any]:
        if not catalog.remove_custom_value(name):
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=f"No custom value set for {name!r}")
        return {"name": catalog.canonical_name(name), "value": catalog.get_value(name)}

    # ── Health / Metrics ────────────────────────────────────────────

    @app.get("/health", response_model=HealthResponse)
    async def health() -> HealthResponse:
        return HealthResponse(status="ok")

    @app.get("/ready", response_model=ReadinessResponse)
    async def ready() -> ReadinessResponse:
        checks = {"redis": await cache.ping()}
        if not all(checks.values()):
            raise HTTPException(
                status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
                detail=ReadinessResponse(status="degraded", checks=checks).model_dump(),
            )
        return ReadinessResponse(status="ready", checks=checks)

    @app.get("/metrics")
    async def get_metrics() -> dict[str, Any]:
        latencies = sorted(_latencies.get("market_value", []))
        return {
            "counters": dict(_counters),
            "cache_backend": cache.backend,
            "market_value_latency": {
                "count": len(latencies),
                "p50_ms": round(latencies[len(latencies) // 2] * 1000, 1) if latencies else 0,
                "p95_ms": round(latencies[int(len(latencies) * 0.95)] * 1000, 1) if latencies else 0,
            },
        }

    return app


app = create_app()
