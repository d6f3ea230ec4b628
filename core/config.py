from typing import Literal

from pydantic import AnyHttpUrl
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    APP_NAME: str = "Swap Desk API"
    APP_VERSION: str = "1.0.0"
    LOG_LEVEL: str = "INFO"

    CORS_ORIGINS: list[str] = ["*"]

    # inbound limit, slowapi syntax
    API_RATE_LIMIT: str = "240/minute"
    API_RATE_LIMIT_ENABLED: bool = True

    PRICE_FEED_BASE_URL: AnyHttpUrl = "https://api.coingecko.com/api/v3"
    PRICE_FEED_API_KEY: str | None = None
    PRICE_FEED_TIMEOUT_SECONDS: float = 10.0

    PRICE_CACHE_TTL_SECONDS: float = 300.0
    RATE_LIMIT_BACKOFF_SECONDS: float = 60.0
    RATE_LIMIT_DRAIN_BATCH_SIZE: int = 3
    RATE_LIMIT_DRAIN_SPACING_SECONDS: float = 1.0

    SETTLEMENT_DELAY_SECONDS: float = 2.0

    LEDGER_BACKEND: Literal["memory", "sql"] = "memory"
    DATABASE_URL: str = "sqlite://"

    TRANSACTION_HISTORY_LIMIT: int = 10
    DEMO_SEED: int | None = None

    model_config = SettingsConfigDict(env_file=".env", extra="ignore")


settings = Settings()
