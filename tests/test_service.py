import asyncio
import json
import logging

import pytest

from appraisal.data_models import ComparableVehicle, LossVehicle
from appraisal.equipment import EquipmentCatalog
from appraisal.errors import NoValidComparables
from service.logging_config import JSONFormatter, TextFormatter, configure_logging, correlation_id
from service.market_analysis import MarketAnalysisService
from service.settings import ServiceSettings
from service.storage import AnalysisCache

LOSS = LossVehicle(
    year=2020,
    make="Toyota",
    model="Camry",
    mileage=50000,
    location="Los Angeles, CA",
    equipment=("Navigation", "Sunroof"),
)


def _comparable(comp_id: str, list_price: float = 25000.0, **overrides) -> ComparableVehicle:
    data = dict(
        id=comp_id,
        appraisal_id="apr-1",
        source="AutoTrader",
        year=2020,
        make="Toyota",
        model="Camry",
        mileage=48000,
        location="Pasadena, CA",
        list_price=list_price,
        condition="Good",
        distance_from_loss=10,
        equipment=("Navigation", "Sunroof"),
    )
    data.update(overrides)
    return ComparableVehicle(**data)


@pytest.fixture
def cache():
    # never connected: exercises the in-memory backend
    return AnalysisCache("redis://127.0.0.1:1/0")


@pytest.fixture
def service(cache):
    return MarketAnalysisService(cache, EquipmentCatalog(), reference_year=2026)


# ── Cache Tests ──────────────────────────────────────────────────────


@pytest.mark.asyncio
async def test_cache_connect_falls_back_to_memory(cache):
    await cache.connect()
    assert cache.backend == "memory"
    assert await cache.ping() is False
    await cache.close()


@pytest.mark.asyncio
async def test_memory_cache_round_trip(cache):
    await cache.set_json("apr-1:abc", {"value": 1}, ttl_seconds=60)
    assert await cache.get_json("apr-1:abc") == {"value": 1}
    assert await cache.get_json("apr-1:missing") is None


@pytest.mark.asyncio
async def test_memory_cache_expiry(cache):
    await cache.set_json("apr-1:abc", {"value": 1}, ttl_seconds=0)
    await asyncio.sleep(0.01)
    assert await cache.get_json("apr-1:abc") is None


@pytest.mark.asyncio
async def test_delete_prefix(cache):
    await cache.set_json("apr-1:a", {}, ttl_seconds=60)
    await cache.set_json("apr-1:b", {}, ttl_seconds=60)
    await cache.set_json("apr-2:a", {}, ttl_seconds=60)
    assert await cache.delete_prefix("apr-1:") == 2
    assert await cache.get_json("apr-2:a") == {}


# ── Market Analysis Service Tests ────────────────────────────────────


@pytest.mark.asyncio
async def test_recalculate_and_cache(service):
    comps = [_comparable("a"), _comparable("b", 26000.0)]
    first = await service.recalculate("apr-1", LOSS, comps, insurance_value=24000.0)
    assert first.cached is False
    assert first.stale is False
    assert first.analysis.comparables_count == 2
    assert first.payload["input_hash"] == first.input_hash

    second = await service.recalculate("apr-1", LOSS, comps, insurance_value=24000.0)
    assert second.cached is True
    assert second.analysis is None
    assert second.payload["calculated_market_value"] == first.analysis.calculated_market_value


@pytest.mark.asyncio
async def test_invalid_comparables_are_excluded(service):
    comps = [_comparable("a"), _comparable("bad", mileage=-1)]
    outcome = await service.recalculate("apr-1", LOSS, comps)
    assert outcome.analysis.comparables_count == 1
    assert [r.comparable_id for r in outcome.rejected] == ["bad"]
    assert outcome.rejected[0].index == 2
    assert outcome.rejected[0].errors[0]["field"] == "mileage"


@pytest.mark.asyncio
async def test_no_valid_comparables(service):
    with pytest.raises(NoValidComparables):
        await service.recalculate("apr-1", LOSS, [_comparable("bad", list_price=0)])
    with pytest.raises(NoValidComparables):
        await service.recalculate("apr-1", LOSS, [])


@pytest.mark.asyncio
async def test_superseded_result_is_stale(service):
    old = [_comparable("a")]
    new = [_comparable("a"), _comparable("b", 26000.0)]
    await service.recalculate("apr-1", LOSS, old)
    await service.recalculate("apr-1", LOSS, new)

    replay = await service.recalculate("apr-1", LOSS, old)
    assert replay.cached is True
    assert service.is_current("apr-1", replay.input_hash)


class _YieldingCache(AnalysisCache):
    async def get_json(self, key):
        await asyncio.sleep(0)
        return await super().get_json(key)


@pytest.mark.asyncio
async def test_concurrent_recalculations_flag_stale():
    service = MarketAnalysisService(_YieldingCache("redis://127.0.0.1:1/0"), EquipmentCatalog(), reference_year=2026)
    old = [_comparable("a")]
    new = [_comparable("a"), _comparable("b", 26000.0)]
    first, second = await asyncio.gather(
        service.recalculate("apr-1", LOSS, old),
        service.recalculate("apr-1", LOSS, new),
    )
    assert first.stale is True
    assert second.stale is False


@pytest.mark.asyncio
async def test_custom_equipment_value_changes_hash(service):
    comps = [_comparable("a", equipment=("Navigation",))]
    before = await service.recalculate("apr-1", LOSS, comps)
    service.catalog.set_custom_value("Sunroof", 2000)
    after = await service.recalculate("apr-1", LOSS, comps)
    assert after.cached is False
    assert after.input_hash != before.input_hash
    assert after.analysis.calculated_market_value > before.payload["calculated_market_value"]


@pytest.mark.asyncio
async def test_invalidate(service):
    await service.recalculate("apr-1", LOSS, [_comparable("a")])
    assert await service.invalidate("apr-1") == 1
    outcome = await service.recalculate("apr-1", LOSS, [_comparable("a")])
    assert outcome.cached is False


# ── Settings Tests ───────────────────────────────────────────────────


def test_settings_from_env(monkeypatch):
    monkeypatch.setenv("ANALYSIS_CACHE_TTL_SECONDS", "60")
    monkeypatch.setenv("UNDERVALUED_THRESHOLD_PERCENT", "7.5")
    monkeypatch.setenv("OUTLIER_STD_THRESHOLD", "3")
    settings = ServiceSettings()
    assert settings.analysis_cache_ttl_seconds == 60
    assert settings.aggregation_config().undervalued_threshold_percent == 7.5
    assert settings.validation_config().outlier_std_threshold == 3.0


# ── Logging Tests ────────────────────────────────────────────────────


def test_json_formatter():
    formatter = JSONFormatter()
    record = logging.LogRecord("test", logging.INFO, "", 0, "hello world", (), None)
    record.extra_data = {"appraisal_id": "apr-1"}
    parsed = json.loads(formatter.format(record))
    assert parsed["message"] == "hello world"
    assert parsed["level"] == "INFO"
    assert parsed["data"] == {"appraisal_id": "apr-1"}
    assert parsed["appraisal_id"] == "apr-1"
    assert "timestamp" in parsed


def test_text_formatter_appends_correlation_id():
    token = correlation_id.set("cid-42")
    try:
        record = logging.LogRecord("test", logging.INFO, "", 0, "hello", (), None)
        assert TextFormatter().format(record).endswith("cid=cid-42")
    finally:
        correlation_id.reset(token)


def test_configure_logging():
    configure_logging(level="DEBUG", fmt="text")
    root = logging.getLogger()
    assert root.level == logging.DEBUG
    assert any(isinstance(h.formatter, TextFormatter) for h in root.handlers)
