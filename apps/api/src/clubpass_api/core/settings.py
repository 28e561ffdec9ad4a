from functools import lru_cache
from typing import Literal

from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="allow")

    environment: Literal["development", "staging", "production"] = "development"
    log_level: str = "INFO"
    database_url: str = "sqlite+aiosqlite:///./clubpass.db"
    secret_key: str = "change-me"

    # POS + admin API security
    pos_api_key: str = ""

    # Fraud detection thresholds
    max_distance_km_per_hour: int = 1000
    max_taps_per_hour: int = 10
    max_taps_per_day: int = 50
    fraud_score_low: int = 30
    fraud_score_medium: int = 60
    fraud_score_high: int = 90

    # Engine caches
    country_rule_cache_ttl_seconds: int = 5 * 60
    offer_cache_ttl_seconds: int = 2 * 60
    offer_usage_history_limit: int = 100


@lru_cache
def get_settings() -> Settings:
    return Settings()  # type: ignore[arg-type]


settings = get_settings()
