from __future__ import annotations

import json
import logging
import math
from dataclasses import asdict, dataclass
from typing import Any, Iterable, Literal, Mapping

from appraisal.errors import InvalidArgument

logger = logging.getLogger(__name__)

EquipmentCategory = Literal["comfort", "technology", "safety", "performance", "appearance"]

CATEGORIES: tuple[EquipmentCategory, ...] = ("comfort", "technology", "performance", "safety", "appearance")


@dataclass(frozen=True)
class EquipmentFeature:
    name: str
    category: EquipmentCategory
    standard_value: float
    description: str


_STANDARD_FEATURES = (
    EquipmentFeature("Navigation", "technology", 1200, "Built-in GPS navigation system"),
    EquipmentFeature("Sunroof", "comfort", 1200, "Power sunroof or moonroof"),
    EquipmentFeature("Premium Audio", "technology", 800, "Upgraded sound system"),
    EquipmentFeature("Sport Package", "performance", 1500, "Sport suspension, wheels, and styling"),
    EquipmentFeature("Leather Seats", "comfort", 1000, "Leather upholstery"),
    EquipmentFeature("Heated Seats", "comfort", 500, "Front heated seats"),
    EquipmentFeature("Backup Camera", "safety", 400, "Rear-view camera system"),
    EquipmentFeature("Blind Spot Monitoring", "safety", 600, "Blind spot detection system"),
    EquipmentFeature("Adaptive Cruise Control", "safety", 800, "Radar-based adaptive cruise control"),
    EquipmentFeature("Parking Sensors", "safety", 400, "Front and/or rear parking sensors"),
    EquipmentFeature("Keyless Entry", "comfort", 300, "Keyless entry and push-button start"),
    EquipmentFeature("Remote Start", "comfort", 300, "Remote engine start system"),
    EquipmentFeature("Tow Package", "performance", 700, "Trailer hitch and towing equipment"),
    EquipmentFeature("All-Wheel Drive", "performance", 2000, "All-wheel drive system (AWD/4WD)"),
    EquipmentFeature("Premium Wheels", "appearance", 800, "Upgraded alloy wheels"),
    EquipmentFeature("Panoramic Sunroof", "comfort", 1500, "Large panoramic glass roof"),
    EquipmentFeature("Ventilated Seats", "comfort", 600, "Cooled/ventilated front seats"),
    EquipmentFeature("Power Liftgate", "comfort", 500, "Power-operated rear liftgate"),
    EquipmentFeature("Lane Departure Warning", "safety", 500, "Lane departure warning system"),
    EquipmentFeature("Automatic Emergency Braking", "safety", 700, "Automatic emergency braking system"),
    EquipmentFeature("Head-Up Display", "technology", 900, "Windshield head-up display"),
    EquipmentFeature("Wireless Charging", "technology", 200, "Wireless phone charging pad"),
    EquipmentFeature("Apple CarPlay", "technology", 300, "Apple CarPlay integration"),
    EquipmentFeature("Android Auto", "technology", 300, "Android Auto integration"),
    EquipmentFeature("Memory Seats", "comfort", 400, "Driver seat memory settings"),
    EquipmentFeature("Rain-Sensing Wipers", "comfort", 200, "Automatic rain-sensing wipers"),
    EquipmentFeature("Dual-Zone Climate", "comfort", 400, "Dual-zone automatic climate control"),
    EquipmentFeature("Tri-Zone Climate", "comfort", 600, "Tri-zone automatic climate control"),
    EquipmentFeature("Heated Steering Wheel", "comfort", 200, "Heated steering wheel"),
    EquipmentFeature("Power Seats", "comfort", 500, "Power-adjustable front seats"),
    EquipmentFeature("Tinted Windows", "appearance", 300, "Factory privacy glass"),
    EquipmentFeature("Chrome Package", "appearance", 400, "Chrome exterior trim"),
)

STANDARD_EQUIPMENT: dict[str, EquipmentFeature] = {f.name: f for f in _STANDARD_FEATURES}


def equipment_key(name: str) -> str:
    return str(name).strip().lower()


_STANDARD_BY_KEY: dict[str, EquipmentFeature] = {equipment_key(f.name): f for f in _STANDARD_FEATURES}


def equipment_difference(
    comparable_equipment: Iterable[str], loss_equipment: Iterable[str]
) -> tuple[list[str], list[str]]:
    """
    Returns (missing, extra): features the loss vehicle has that the comparable
    lacks, and features only the comparable has. Matching is case-insensitive;
    the first spelling seen is reported and duplicates collapse.
    """
    loss_keys = _first_spellings(loss_equipment)
    comparable_keys = _first_spellings(comparable_equipment)
    missing = [name for key, name in loss_keys.items() if key not in comparable_keys]
    extra = [name for key, name in comparable_keys.items() if key not in loss_keys]
    return missing, extra


def _first_spellings(items: Iterable[str]) -> dict[str, str]:
    seen: dict[str, str] = {}
    for item in items:
        key = equipment_key(item)
        if key and key not in seen:
            seen[key] = str(item).strip()
    return seen


def _valid_amount(value: Any) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value) and value >= 0


class EquipmentCatalog:
    """
    Standard equipment values plus per-session custom overrides.

    One instance is owned by the caller (typically one per user session) and
    passed into adjustment calculations. Writes are not locked; hosts that
    share an instance across threads must serialize them.
    """

    def __init__(self, custom_values: Mapping[str, float] | None = None) -> None:
        # normalized key -> (display name, value)
        self._custom: dict[str, tuple[str, float]] = {}
        for name, value in (custom_values or {}).items():
            self.set_custom_value(name, value)

    def canonical_name(self, name: str) -> str:
        feature = _STANDARD_BY_KEY.get(equipment_key(name))
        return feature.name if feature else str(name).strip()

    def get_value(self, name: str) -> float:
        key = equipment_key(name)
        if key in self._custom:
            return self._custom[key][1]
        feature = _STANDARD_BY_KEY.get(key)
        return float(feature.standard_value) if feature else 0.0

    def get_feature(self, name: str) -> EquipmentFeature | None:
        return _STANDARD_BY_KEY.get(equipment_key(name))

    def all_features(self) -> list[EquipmentFeature]:
        return list(_STANDARD_FEATURES)

    def features_by_category(self, category: str) -> list[EquipmentFeature]:
        return [f for f in _STANDARD_FEATURES if f.category == category]

    def categories(self) -> list[str]:
        return list(CATEGORIES)

    def is_known(self, name: str) -> bool:
        key = equipment_key(name)
        return key in _STANDARD_BY_KEY or key in self._custom

    def set_custom_value(self, name: str, value: float) -> None:
        if not _valid_amount(value):
            raise InvalidArgument(f"Equipment value for {name!r} must be a non-negative number, got {value!r}")
        key = equipment_key(name)
        if not key:
            raise InvalidArgument("Equipment name cannot be empty")
        self._custom[key] = (self.canonical_name(name), float(value))

    def remove_custom_value(self, name: str) -> bool:
        return self._custom.pop(equipment_key(name), None) is not None

    def clear_custom_values(self) -> None:
        self._custom.clear()

    def custom_values(self) -> dict[str, float]:
        return {display: value for display, value in self._custom.values()}

    def calculate_total_value(self, equipment: Iterable[str]) -> float:
        return sum(self.get_value(item) for item in equipment)

    def search(self, query: str) -> list[str]:
        needle = query.strip().lower()
        names = [f.name for f in _STANDARD_FEATURES]
        if not needle:
            return names
        return [name for name in names if needle in name.lower()]

    def export_values(self) -> str:
        data = {
            "standard": {name: asdict(feature) for name, feature in STANDARD_EQUIPMENT.items()},
            "custom": self.custom_values(),
        }
        return json.dumps(data, indent=2)

    def import_custom_values(self, source: str | Mapping[str, Any]) -> int:
        """
        Replace the custom overrides from an exported document or a flat
        name -> value map. Negative or non-numeric entries are skipped.
        Returns the number of overrides imported.
        """
        if isinstance(source, str):
            try:
                data = json.loads(source)
            except json.JSONDecodeError as exc:
                raise InvalidArgument(f"Invalid JSON format for custom values: {exc}") from exc
        else:
            data = source
        if not isinstance(data, Mapping):
            raise InvalidArgument("Custom values must be a JSON object of name -> value")
        entries = data["custom"] if isinstance(data.get("custom"), Mapping) else data

        self._custom.clear()
        skipped = 0
        for name, value in entries.items():
            if not _valid_amount(value) or not equipment_key(name):
                skipped += 1
                continue
            self.set_custom_value(name, value)
        if skipped:
            logger.info("Skipped %d malformed custom equipment entries", skipped)
        return len(self._custom)
