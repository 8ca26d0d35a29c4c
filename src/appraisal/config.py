from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict

from appraisal.data_models import Condition


@dataclass(frozen=True)
class ScoringConfig:
    base_score: float = 100.0
    distance_threshold_miles: float = 100.0
    distance_penalty_per_mile: float = 0.1
    max_distance_penalty: float = 20.0
    exact_year_bonus: float = 2.0
    age_tolerance_years: int = 1
    age_penalty_per_year: float = 2.0
    max_age_penalty: float = 10.0
    mileage_match_band: float = 0.20
    mileage_match_bonus: float = 10.0
    mileage_penalty_step: float = 5.0
    # Relative deviations past which one more penalty step applies
    mileage_penalty_bands: tuple[float, ...] = (0.40, 0.60)
    equipment_match_bonus: float = 15.0
    equipment_missing_penalty: float = 10.0
    equipment_extra_bonus: float = 5.0


@dataclass(frozen=True)
class AdjustmentConfig:
    # (max vehicle age in years, $/mile); older vehicles use old_vehicle_rate
    depreciation_tiers: tuple[tuple[int, float], ...] = ((3, 0.25), (7, 0.15))
    old_vehicle_rate: float = 0.05
    min_mileage_difference: int = 1_000
    condition_multipliers: Dict[Condition, float] = field(
        default_factory=lambda: {
            Condition.EXCELLENT: 1.05,
            Condition.GOOD: 1.00,
            Condition.FAIR: 0.95,
            Condition.POOR: 0.85,
            Condition.SALVAGE: 0.58,
        }
    )
    min_adjusted_price_ratio: float = 0.10


@dataclass(frozen=True)
class ValidationConfig:
    min_year: int = 1990
    max_years_ahead: int = 2
    old_vehicle_year: int = 2000
    max_mileage: int = 500_000
    high_mileage_warning: int = 200_000
    max_mileage_per_year: int = 25_000
    new_vehicle_mileage_limit: int = 5_000
    low_mileage_min_age: int = 5
    suspicious_low_mileage: int = 1_000
    min_price: float = 500.0
    max_price: float = 500_000.0
    low_price_warning: float = 2_000.0
    high_price_warning: float = 100_000.0
    moderate_distance_miles: float = 150.0
    far_distance_miles: float = 300.0
    loss_year_tolerance: int = 3
    loss_mileage_tolerance: float = 0.50
    outlier_min_comparables: int = 3
    outlier_std_threshold: float = 2.0
    outlier_relative_threshold: float = 0.50
    known_makes: tuple[str, ...] = (
        "Acura", "Alfa Romeo", "Aston Martin", "Audi", "Bentley", "BMW", "Buick",
        "Cadillac", "Chevrolet", "Chrysler", "Dodge", "Ferrari", "Fiat", "Ford",
        "Genesis", "GMC", "Honda", "Hyundai", "Infiniti", "Jaguar", "Jeep", "Kia",
        "Lamborghini", "Land Rover", "Lexus", "Lincoln", "Maserati", "Mazda",
        "McLaren", "Mercedes", "Mercedes-Benz", "Mini", "Mitsubishi", "Nissan",
        "Porsche", "Ram", "Rolls-Royce", "Scion", "Subaru", "Tesla", "Toyota",
        "Volkswagen", "Volvo",
    )
    standard_sources: tuple[str, ...] = (
        "AutoTrader", "Cars.com", "CarMax", "Carvana", "CarGurus", "Manual Entry", "Other",
    )


@dataclass(frozen=True)
class AggregationConfig:
    confidence_per_comparable: float = 20.0
    max_count_confidence: float = 60.0
    # (std-dev ceiling, bonus) pairs, tightest first
    quality_consistency_bonuses: tuple[tuple[float, float], ...] = ((10.0, 20.0), (20.0, 10.0))
    # (coefficient-of-variation ceiling, bonus) pairs, tightest first
    price_consistency_bonuses: tuple[tuple[float, float], ...] = ((0.15, 20.0), (0.25, 10.0))
    max_confidence: float = 95.0
    undervalued_threshold_percent: float = 5.0
