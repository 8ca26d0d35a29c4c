import logging

import pytest

from appraisal.adjustments import AdjustmentCalculator, compute_adjustments
from appraisal.data_models import ComparableVehicle, Condition, LossVehicle
from appraisal.equipment import EquipmentCatalog

REFERENCE_YEAR = 2026


def _loss(**overrides) -> LossVehicle:
    data = dict(
        year=2020,
        make="Honda",
        model="Accord",
        mileage=50000,
        location="Austin, TX",
        condition="Good",
        equipment=("Navigation", "Sunroof"),
    )
    data.update(overrides)
    return LossVehicle(**data)


def _comparable(**overrides) -> ComparableVehicle:
    data = dict(
        id="comp-1",
        appraisal_id="apr-1",
        source="Cars.com",
        year=2020,
        make="Honda",
        model="Accord",
        mileage=50000,
        location="Round Rock, TX",
        list_price=20000.0,
        condition="Good",
        equipment=("Navigation", "Sunroof"),
    )
    data.update(overrides)
    return ComparableVehicle(**data)


def _adjust(comp, loss, catalog=None):
    return compute_adjustments(comp, loss, catalog, reference_year=REFERENCE_YEAR)


def test_identical_vehicle_has_no_adjustments():
    result = _adjust(_comparable(), _loss())
    assert result.mileage_adjustment.adjustment_amount == 0
    assert result.equipment_adjustments == ()
    assert result.condition_adjustment.adjustment_amount == 0
    assert result.condition_adjustment.multiplier == 1.0
    assert result.total_adjustment == 0
    assert result.adjusted_price == 20000.0


@pytest.mark.parametrize("age, rate", [(0, 0.25), (3, 0.25), (4, 0.15), (7, 0.15), (8, 0.05), (20, 0.05)])
def test_depreciation_tiers(age, rate):
    calc = AdjustmentCalculator(reference_year=REFERENCE_YEAR)
    assert calc.depreciation_rate(age) == rate


def test_more_miles_adjusts_price_up():
    # 6-year-old comparable with 10,000 more miles than the loss vehicle
    result = _adjust(_comparable(mileage=60000), _loss())
    assert result.mileage_adjustment.mileage_difference == 10000
    assert result.mileage_adjustment.depreciation_rate == 0.15
    assert result.mileage_adjustment.adjustment_amount == 1500.0
    assert result.adjusted_price == 21500.0


def test_fewer_miles_adjusts_price_down():
    result = _adjust(_comparable(year=2024, mileage=40000), _loss())
    assert result.mileage_adjustment.depreciation_rate == 0.25
    assert result.mileage_adjustment.adjustment_amount == -2500.0
    assert "adjusted down" in result.mileage_adjustment.explanation


def test_better_comparable_is_adjusted_down_in_every_category():
    better = _adjust(
        _comparable(mileage=40000, equipment=("Navigation", "Sunroof", "Leather Seats"), condition="Excellent"),
        _loss(),
    )
    assert better.mileage_adjustment.adjustment_amount < 0
    assert better.equipment_total < 0
    assert better.condition_adjustment.adjustment_amount < 0

    worse = _adjust(_comparable(mileage=60000, equipment=("Navigation",), condition="Fair"), _loss())
    assert worse.mileage_adjustment.adjustment_amount > 0
    assert worse.equipment_total > 0
    assert worse.condition_adjustment.adjustment_amount > 0


def test_mileage_dead_band():
    result = _adjust(_comparable(mileage=50999), _loss())
    assert result.mileage_adjustment.adjustment_amount == 0
    assert result.mileage_adjustment.depreciation_rate == 0
    assert "threshold" in result.mileage_adjustment.explanation


def test_missing_equipment_adds_value():
    result = _adjust(_comparable(equipment=("Navigation",)), _loss())
    (adj,) = result.equipment_adjustments
    assert adj.feature == "Sunroof"
    assert adj.type == "missing"
    assert adj.value == 1200
    assert result.adjusted_price == 21200.0


def test_extra_equipment_subtracts_value():
    result = _adjust(_comparable(equipment=("Navigation", "Sunroof", "Leather Seats")), _loss())
    (adj,) = result.equipment_adjustments
    assert adj.type == "extra"
    assert adj.value == -1000
    assert result.equipment_total == -1000
    assert result.adjusted_price == 19000.0


def test_unknown_equipment_has_no_value():
    result = _adjust(_comparable(equipment=("Navigation", "Sunroof", "Flux Capacitor")), _loss())
    (adj,) = result.equipment_adjustments
    assert adj.value == 0
    assert result.total_adjustment == 0


def test_custom_equipment_values_are_used():
    catalog = EquipmentCatalog({"Sunroof": 800})
    result = _adjust(_comparable(equipment=("Navigation",)), _loss(), catalog)
    assert result.equipment_adjustments[0].value == 800


def test_better_condition_adjusts_down():
    result = _adjust(_comparable(condition=Condition.EXCELLENT), _loss())
    cond = result.condition_adjustment
    assert cond.multiplier == 1.05
    assert cond.adjustment_amount == -952.38


def test_worse_condition_adjusts_up():
    result = _adjust(_comparable(condition="Fair"), _loss())
    cond = result.condition_adjustment
    assert cond.multiplier == 0.95
    assert cond.adjustment_amount == 1052.63


def test_adjusted_price_identity():
    comp = _comparable(
        year=2023,
        mileage=38000,
        condition="Excellent",
        equipment=("Navigation", "Leather Seats", "All-Wheel Drive"),
    )
    result = _adjust(comp, _loss(condition="Fair"))
    assert result.adjusted_price == comp.list_price + result.total_adjustment
    expected_total = (
        result.mileage_adjustment.adjustment_amount
        + result.equipment_total
        + result.condition_adjustment.adjustment_amount
    )
    assert result.total_adjustment == pytest.approx(expected_total)


def test_adjusted_price_floor(caplog):
    comp = _comparable(
        list_price=5000.0,
        condition="Excellent",
        equipment=("Navigation", "Sunroof", "All-Wheel Drive", "Sport Package", "Panoramic Sunroof"),
    )
    with caplog.at_level(logging.WARNING):
        result = _adjust(comp, _loss(condition=Condition.SALVAGE))
    assert result.floor_adjustment == pytest.approx(2738.10)
    assert result.adjusted_price == pytest.approx(500.0)
    assert result.adjusted_price == comp.list_price + result.total_adjustment
    assert "fell below" in caplog.text
