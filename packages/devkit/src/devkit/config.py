from __future__ import annotations

from pydantic_settings import BaseSettings, SettingsConfigDict


class ServiceSettings(BaseSettings):
    model_config = SettingsConfigDict(extra="ignore")

    SERVICE_NAME: str = "service"
    DATABASE_URL: str | None = None
    REDIS_URL: str | None = None
    LOG_LEVEL: str = "INFO"

    GOOGLE_PLACES_API_KEY: str | None = None
    GOOGLE_PLACES_BASE_URL: str = "https://maps.googleapis.com/maps/api"
    OVERPASS_URL: str = "https://overpass-api.de/api/interpreter"
    RELIEF_FEED_BASE_URL: str | None = None

    FETCH_TIMEOUT_SECONDS: float = 10.0
    FETCH_MAX_RETRIES: int = 3
    FETCH_BASE_DELAY_SECONDS: float = 1.0
    FETCH_MAX_DELAY_SECONDS: float = 5.0
    FETCH_JITTER_SECONDS: float = 1.0

    AGGREGATE_TIMEOUT_SECONDS: float = 9.0
    SEARCH_RESULT_LIMIT: int = 5
    SEARCH_CACHE_TTL_SECONDS: int = 30
    UPSERT_BATCH_SIZE: int = 10


def load_settings(service_name: str) -> ServiceSettings:
    return ServiceSettings(SERVICE_NAME=service_name)
