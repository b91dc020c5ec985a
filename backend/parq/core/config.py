# backend/parq/core/config.py
from decimal import Decimal
import logging
import os
from pathlib import Path
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from .constants import BRAND_NAME


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.debug(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    """Runtime configuration for the booking engine."""

    app_name: str = Field(default=f"{BRAND_NAME} Booking Engine")
    environment: Literal["development", "test", "staging", "production"] = Field(
        default="development"
    )
    log_level: str = Field(default="INFO")

    database_url: str = Field(
        default="sqlite:///./parq.db",
        description="SQLAlchemy URL for the bookings database",
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Broker used by Celery for notification delivery",
    )

    # Booking window rules
    booking_start_grace_minutes: int = Field(
        default=5, ge=0, description="How far in the past a new booking may start"
    )
    booking_max_duration_hours: int = Field(default=168, gt=0)
    price_tolerance: Decimal = Field(
        default=Decimal("0.01"), ge=0, description="Accepted drift between client and server price"
    )

    # Extension rules
    extension_window_hours: int = Field(
        default=2, gt=0, description="Extensions open when this little time remains"
    )

    # Waitlist rules
    waitlist_offer_minutes: int = Field(default=15, gt=0)

    # Issue / refund rules
    issue_description_min_length: int = Field(default=10, ge=0)
    issue_full_refund_grace_minutes: int = Field(default=30, ge=0)

    # Cancellation policy
    cancellation_full_refund_hours: int = Field(default=24, ge=0)
    cancellation_partial_refund_hours: int = Field(default=2, ge=0)
    cancellation_partial_refund_ratio: Decimal = Field(default=Decimal("0.5"), ge=0, le=1)

    # Reconciliation
    reconciliation_enabled: bool = Field(default=True)
    reconciliation_interval_seconds: int = Field(default=60, ge=1)
    consistency_check_every_cycles: int = Field(default=10, ge=1)

    # Collaborators
    catalog_base_url: str = Field(default="http://localhost:8100")
    notifier_base_url: str = Field(default="http://localhost:8200")
    integrations_timeout_seconds: float = Field(default=5.0, gt=0)
    use_fake_integrations: bool = Field(
        default=False, description="Serve catalog/notifier from in-memory fakes"
    )

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("log_level", mode="before")
    @classmethod
    def _normalize_log_level(cls, value: object) -> str:
        if value is None:
            return "INFO"
        return str(value).strip().upper() or "INFO"

    @property
    def is_testing(self) -> bool:
        return self.environment == "test" or is_running_tests()


settings = Settings()
