from pydantic import AnyUrl
from pydantic_settings import BaseSettings, SettingsConfigDict
from functools import lru_cache
from typing import Literal

class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", extra="ignore")

    ENV: str = "dev"
    SERVICE_PORT: int = 8080
    LOG_JSON: bool = True
    # Record store selection: "memory" or "redis"
    STORE_ADAPTER: Literal["memory", "redis"] = "memory"
    REDIS_URL: AnyUrl | None = None
    REDIS_KEY_PREFIX: str = "telemetry"
    # Upper bound on a batch request body, enforced by the validation middleware
    MAX_REQUEST_BYTES: int = 1024 * 1024
    # Ingestion policy
    MAX_DURATION_MS: int = 6 * 60 * 60 * 1000
    FUTURE_TOLERANCE_SECONDS: int = 15 * 60
    UPDATE_MAX_ATTEMPTS: int = 5
    # Stats
    HEALTHY_DEFECT_RATE: float = 2.0  # defects per hour
    TOP_LINES_DEFAULT_LIMIT: int = 10

@lru_cache(maxsize=1)
def get_settings() -> Settings:
    return Settings()
