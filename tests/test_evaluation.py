from dataclasses import replace

from appraisal.data_models import ComparableVehicle, LossVehicle, json_safe, to_payload
from appraisal.equipment import EquipmentCatalog
from appraisal.evaluation import evaluate_comparable, evaluate_comparables, input_hash

LOSS = LossVehicle(year=2019, make="Subaru", model="Outback", mileage=60000, equipment=("All-Wheel Drive",))


def _comparable(comp_id: str = "c1", **overrides) -> ComparableVehicle:
    data = dict(
        id=comp_id,
        appraisal_id="apr-9",
        source="CarGurus",
        year=2019,
        make="Subaru",
        model="Outback",
        mileage=58000,
        location="Denver, CO",
        list_price=21000.0,
        condition="Good",
        distance_from_loss=40,
        equipment=("All-Wheel Drive",),
    )
    data.update(overrides)
    return ComparableVehicle(**data)


def test_evaluate_fills_derived_fields():
    comp = _comparable()
    evaluated = evaluate_comparable(comp, LOSS, reference_year=2026)
    assert comp.quality_score is None
    assert evaluated.quality_score == evaluated.quality_score_breakdown.final_score
    assert evaluated.adjusted_price == evaluated.adjustments.adjusted_price
    assert evaluated.id == comp.id


def test_evaluate_uses_catalog():
    catalog = EquipmentCatalog({"All-Wheel Drive": 3000})
    [evaluated] = evaluate_comparables([_comparable(equipment=())], LOSS, catalog, reference_year=2026)
    assert evaluated.adjustments.equipment_adjustments[0].value == 3000


def test_input_hash_is_stable():
    comps = [_comparable("c1"), _comparable("c2", list_price=22000.0)]
    first = input_hash(LOSS, comps, 20000.0)
    assert first == input_hash(LOSS, [_comparable("c1"), _comparable("c2", list_price=22000.0)], 20000.0)


def test_input_hash_ignores_derived_fields():
    comp = _comparable()
    evaluated = evaluate_comparable(comp, LOSS, reference_year=2026)
    assert input_hash(LOSS, [comp]) == input_hash(LOSS, [evaluated])


def test_input_hash_tracks_inputs():
    comp = _comparable()
    base = input_hash(LOSS, [comp])
    assert input_hash(LOSS, [replace(comp, mileage=70000)]) != base
    assert input_hash(LOSS, [comp], insurance_value=19000.0) != base
    assert input_hash(LOSS, [comp], custom_equipment_values={"All-Wheel Drive": 2500}) != base
    assert input_hash(replace(LOSS, condition="Fair"), [comp]) != base


def test_payload_helpers():
    payload = to_payload(_comparable())
    assert payload["condition"] == "Good"
    assert payload["equipment"] == ["All-Wheel Drive"]
    assert isinstance(payload["created_at"], str)
    assert json_safe({"pct": float("inf"), "rows": [1.5, float("nan")]}) == {"pct": None, "rows": [1.5, None]}
