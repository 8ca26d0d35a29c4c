import json

import pytest

from appraisal.equipment import STANDARD_EQUIPMENT, EquipmentCatalog, equipment_difference
from appraisal.errors import InvalidArgument


def test_standard_values():
    catalog = EquipmentCatalog()
    assert catalog.get_value("Navigation") == 1200
    assert catalog.get_value("All-Wheel Drive") == 2000
    assert catalog.get_value("Flux Capacitor") == 0.0


def test_lookup_is_case_insensitive():
    catalog = EquipmentCatalog()
    assert catalog.get_value("  leather seats ") == 1000
    assert catalog.canonical_name("leather seats") == "Leather Seats"
    assert catalog.get_feature("BACKUP CAMERA").category == "safety"


def test_custom_value_overrides_standard():
    catalog = EquipmentCatalog()
    catalog.set_custom_value("navigation", 1500)
    assert catalog.get_value("Navigation") == 1500
    assert catalog.custom_values() == {"Navigation": 1500.0}

    assert catalog.remove_custom_value("Navigation") is True
    assert catalog.get_value("Navigation") == 1200
    assert catalog.remove_custom_value("Navigation") is False


def test_custom_value_for_unknown_feature():
    catalog = EquipmentCatalog()
    assert catalog.is_known("Roof Rack") is False
    catalog.set_custom_value("Roof Rack", 250)
    assert catalog.is_known("roof rack") is True
    assert catalog.get_value("Roof Rack") == 250


@pytest.mark.parametrize("value", [-1, float("nan"), "500", None])
def test_rejects_invalid_custom_value(value):
    catalog = EquipmentCatalog()
    with pytest.raises(InvalidArgument):
        catalog.set_custom_value("Sunroof", value)
    assert catalog.get_value("Sunroof") == 1200


def test_catalogs_do_not_share_overrides():
    a = EquipmentCatalog()
    b = EquipmentCatalog()
    a.set_custom_value("Sunroof", 2000)
    assert b.get_value("Sunroof") == 1200


def test_categories_and_search():
    catalog = EquipmentCatalog()
    assert set(catalog.categories()) == {"comfort", "technology", "safety", "performance", "appearance"}
    safety = catalog.features_by_category("safety")
    assert safety and all(f.category == "safety" for f in safety)
    assert catalog.search("sun") == ["Sunroof", "Panoramic Sunroof"]
    assert len(catalog.search("")) == len(STANDARD_EQUIPMENT)


def test_total_value():
    catalog = EquipmentCatalog()
    assert catalog.calculate_total_value(["Navigation", "Sunroof", "Unknown"]) == 2400


def test_export_import_custom_values():
    source = EquipmentCatalog({"Sunroof": 900})
    exported = source.export_values()
    assert json.loads(exported)["standard"]["Navigation"]["standard_value"] == 1200

    target = EquipmentCatalog({"Navigation": 10})
    assert target.import_custom_values(exported) == 1
    assert target.custom_values() == {"Sunroof": 900.0}


def test_import_skips_malformed_entries():
    catalog = EquipmentCatalog()
    imported = catalog.import_custom_values({"Sunroof": 900, "Navigation": -5, "Heated Seats": "cheap"})
    assert imported == 1
    assert catalog.get_value("Navigation") == 1200


def test_import_rejects_bad_json():
    catalog = EquipmentCatalog()
    with pytest.raises(InvalidArgument):
        catalog.import_custom_values("{not json")
    with pytest.raises(InvalidArgument):
        catalog.import_custom_values("[1, 2]")


def test_equipment_difference():
    missing, extra = equipment_difference(["navigation", "Sunroof", "Sunroof"], ["Navigation", "Leather Seats"])
    assert missing == ["Leather Seats"]
    assert extra == ["Sunroof"]
