from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

from appraisal.config import AggregationConfig, ValidationConfig


class ServiceSettings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    redis_url: str = Field(default="redis://localhost:6379/0", alias="REDIS_URL")
    analysis_cache_ttl_seconds: int = Field(default=300, alias="ANALYSIS_CACHE_TTL_SECONDS")

    # Engine tuning
    undervalued_threshold_percent: float = Field(default=5.0, alias="UNDERVALUED_THRESHOLD_PERCENT")
    outlier_std_threshold: float = Field(default=2.0, alias="OUTLIER_STD_THRESHOLD")

    # Logging
    log_level: str = Field(default="INFO", alias="LOG_LEVEL")
    log_format: str = Field(default="json", alias="LOG_FORMAT")

    def aggregation_config(self) -> AggregationConfig:
        return AggregationConfig(undervalued_threshold_percent=self.undervalued_threshold_percent)

    def validation_config(self) -> ValidationConfig:
        return ValidationConfig(outlier_std_threshold=self.outlier_std_threshold)
