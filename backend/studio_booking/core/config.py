# backend/studio_booking/core/config.py
import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict
import pytz


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


_BACKEND_ROOT = Path(__file__).resolve().parents[2]

logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = _BACKEND_ROOT / ".env"
    logger.debug("[CONFIG] Looking for .env at: %s (exists=%s)", env_path, env_path.exists())
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development",
        description="Deployment environment name",
    )
    database_url: str = Field(
        default=f"sqlite:///{_BACKEND_ROOT / 'studio_booking.db'}",
        description="SQLAlchemy database URL for the session store",
    )
    log_level: str = Field(default="INFO", description="Root log level")
    metrics_enabled: bool = Field(default=True, description="Expose /metrics")

    # Studio policy
    studio_timezone: str = Field(
        default="Europe/Madrid",
        description="Timezone used to resolve 'today' for plan validity and booking windows",
    )
    default_cancellation_window_hours: int = Field(
        default=24,
        ge=0,
        description="Refund window applied when a course does not configure one",
    )
    default_client_name: str = Field(
        default="Angie",
        description="Client name used by kiosk/demo flows when no id or hint is given",
    )

    # Credit allocation
    plan_candidate_limit: int = Field(
        default=10,
        ge=1,
        description="Maximum number of FLEXIBLE plans considered per allocation",
    )
    require_plan_credit: bool = Field(
        default=True,
        description="Reject bookings for which no plan credit could be allocated",
    )

    # QR tokens
    qr_token_ttl_hours: int = Field(
        default=6,
        ge=0,
        description="Hours after session start during which the QR token stays valid",
    )
    qr_token_length: int = Field(default=10, ge=6, le=32)

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("studio_timezone")
    @classmethod
    def _validate_timezone(cls, value: str) -> str:
        try:
            pytz.timezone(value)
        except pytz.UnknownTimeZoneError as exc:
            raise ValueError(f"Unknown studio timezone: {value}") from exc
        return value

    @field_validator("log_level")
    @classmethod
    def _normalize_log_level(cls, value: str) -> str:
        normalized = (value or "INFO").strip().upper()
        if normalized not in logging.getLevelNamesMapping():
            raise ValueError(f"Unknown log level: {value}")
        return normalized

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    def get_database_url(self) -> str:
        """Get the database URL for the current context."""
        return self.database_url


settings = Settings()
