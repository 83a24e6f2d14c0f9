"""
Application settings

Flat keys for the app itself; grouped settings are nested models read with
a double underscore (DATABASE__URL, CELERY__BROKER_URL). Payment gateway
settings live in core.settings.
"""
import json
from typing import Annotated, Optional

from pydantic import BaseModel, Field, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict


class DatabaseSettings(BaseModel):
    url: str = "sqlite+aiosqlite:///./storefront_payments.db"
    echo: bool = False
    # ignored for sqlite
    pool_size: int = 5
    max_overflow: int = 10


class CelerySettings(BaseModel):
    broker_url: Optional[str] = None
    result_backend: Optional[str] = None


class Settings(BaseSettings):
    PROJECT_NAME: str = "Storefront Payments"
    VERSION: str = "1.0.0"
    DEBUG: bool = True
    ENVIRONMENT: str = "development"

    database: DatabaseSettings = Field(default_factory=DatabaseSettings)
    celery: CelerySettings = Field(default_factory=CelerySettings)

    CORS_ORIGINS: Annotated[list[str], NoDecode] = Field(default=["http://localhost:3000", "http://localhost:8000"])

    LOG_REQUEST_BODY_ENABLE_BY_DEFAULT: bool = True
    LOG_REQUEST_BODY_MAX_BYTES: int = 2048

    REFUND_SYNC_INTERVAL_SECONDS: int = 900
    REFUND_SYNC_BATCH_SIZE: int = 100

    model_config = SettingsConfigDict(
        env_file=".env",
        case_sensitive=False,
        extra="allow",
        env_nested_delimiter="__",
    )

    @property
    def is_production(self) -> bool:
        return (self.ENVIRONMENT or "").lower() in {"production", "prod"}

    @field_validator("CORS_ORIGINS", mode="before")
    @classmethod
    def _split_origins(cls, value):
        """Accept a JSON array or a comma separated list."""
        if not isinstance(value, str):
            return value
        text = value.strip()
        if text.startswith("["):
            return json.loads(text)
        return [origin.strip() for origin in text.split(",") if origin.strip()]


settings = Settings()
