"""Homex application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

Every environment variable maps 1-to-1 to a field in :class:`Settings`.  The
field name is the **lowercase** version of the env-var name (e.g.
``SENDGRID_API_KEY`` → ``sendgrid_api_key``), with one exception:
``HOMEX_ENV`` maps to :attr:`Settings.environment`.

Typical usage::

    from homex.core.settings import Settings

    settings = Settings()                  # loads from env + .env
    print(settings.email_configured)       # True / False
"""

from __future__ import annotations

import logging
from typing import Annotated

from apscheduler.triggers.cron import CronTrigger
from pydantic import AliasChoices, Field, field_validator, model_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

__all__ = ["Settings", "DEFAULT_ALLOWED_ORIGINS"]

logger = logging.getLogger(__name__)

#: Origins allowed by CORS when ``ALLOWED_ORIGINS`` is not set.
DEFAULT_ALLOWED_ORIGINS: tuple[str, ...] = (
    "http://localhost:3000",
    "http://localhost:5000",
    "https://www.wix.com",
    "https://editor.wix.com",
    "https://www.wixsite.com",
)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _csv_to_list(value: str) -> list[str]:
    """Split a comma-separated string into a list of non-empty, stripped items."""
    if not value or not value.strip():
        return []
    return [item.strip() for item in value.split(",") if item.strip()]


# ---------------------------------------------------------------------------
# Settings model
# ---------------------------------------------------------------------------


class Settings(BaseSettings):
    """Central application configuration.

    Values are loaded in priority order:

    1. Actual environment variables (highest priority).
    2. ``.env`` file in the working directory.
    3. Field defaults (lowest priority).

    Email fields may be left empty during development; :attr:`email_configured`
    is then ``False`` and the notification sweep is skipped with a warning.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Runtime environment
    # ------------------------------------------------------------------
    environment: str = Field(
        default="development",
        validation_alias=AliasChoices("homex_env", "environment"),
        description="'development' or 'production'; production hides error detail.",
    )

    # ------------------------------------------------------------------
    # HTTP
    # ------------------------------------------------------------------
    host: str = Field(default="0.0.0.0", description="HTTP bind address.")
    port: int = Field(default=5000, ge=1, le=65535, description="HTTP bind port.")
    allowed_origins: Annotated[list[str], NoDecode] = Field(
        default_factory=lambda: list(DEFAULT_ALLOWED_ORIGINS),
        description="CORS allow-list (comma-separated in env).",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    database_path: str = Field(
        default="data/homex.db",
        description="Path to the SQLite database file.",
    )
    database_timeout: float = Field(
        default=5.0,
        gt=0.0,
        description="Seconds to wait on a locked database before failing.",
    )

    # ------------------------------------------------------------------
    # Email
    # ------------------------------------------------------------------
    sendgrid_api_key: str = Field(default="", description="Transactional email API key.")
    email_from: str = Field(default="", description="Sender address for expiry notices.")
    email_api_base_url: str = Field(
        default="https://api.sendgrid.com",
        description="Base URL of the transactional email API.",
    )
    email_timeout: float = Field(
        default=10.0,
        gt=0.0,
        description="Seconds before an email API call times out.",
    )

    # ------------------------------------------------------------------
    # Listing lifecycle
    # ------------------------------------------------------------------
    listing_ttl_days: int = Field(
        default=60,
        ge=1,
        description="Days a listing stays live after creation or renewal.",
    )
    notice_window_start_days: int = Field(
        default=7,
        ge=0,
        description="Lower bound (inclusive) of the expiry-notice window, in days from now.",
    )
    notice_window_end_days: int = Field(
        default=8,
        ge=1,
        description="Upper bound (exclusive) of the expiry-notice window, in days from now.",
    )

    # ------------------------------------------------------------------
    # Scheduler
    # ------------------------------------------------------------------
    expiry_sweep_cron: str = Field(
        default="0 0 * * *",
        description="Crontab expression for the expired-listing sweep.",
    )
    notify_sweep_cron: str = Field(
        default="0 1 * * *",
        description="Crontab expression for the expiry-notice sweep.",
    )
    scheduler_timezone: str = Field(default="UTC", description="Timezone for cron expressions.")
    run_startup_catchup: bool = Field(
        default=True,
        description="Run the notification sweep once at startup.",
    )

    # ------------------------------------------------------------------
    # Runtime flags
    # ------------------------------------------------------------------
    dry_run: bool = Field(
        default=False,
        description="Log expiry notices without calling the email API.",
    )
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("allowed_origins", mode="before")
    @classmethod
    def _parse_csv_origins(cls, v: str | list[str]) -> list[str]:
        """Accept a comma-separated string **or** an already-parsed list."""
        if isinstance(v, str):
            return _csv_to_list(v)
        return v

    @field_validator("environment")
    @classmethod
    def _validate_environment(cls, v: str) -> str:
        allowed = {"development", "production", "test"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"environment must be one of {allowed}, got {v!r}")
        return v_lower

    @field_validator("expiry_sweep_cron", "notify_sweep_cron")
    @classmethod
    def _validate_cron(cls, v: str) -> str:
        try:
            CronTrigger.from_crontab(v)
        except ValueError as exc:
            raise ValueError(f"invalid crontab expression {v!r}: {exc}") from exc
        return v

    @field_validator("scheduler_timezone")
    @classmethod
    def _validate_timezone(cls, v: str) -> str:
        try:
            CronTrigger.from_crontab("0 0 * * *", timezone=v)
        except (ValueError, LookupError) as exc:
            raise ValueError(f"unknown timezone {v!r}") from exc
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        v_upper = v.upper()
        if v_upper not in allowed:
            raise ValueError(f"log_level must be one of {allowed}, got {v!r}")
        return v_upper

    @field_validator("log_format")
    @classmethod
    def _validate_log_format(cls, v: str) -> str:
        allowed = {"text", "json"}
        v_lower = v.lower()
        if v_lower not in allowed:
            raise ValueError(f"log_format must be one of {allowed}, got {v!r}")
        return v_lower

    # ------------------------------------------------------------------
    # Model validators
    # ------------------------------------------------------------------

    @model_validator(mode="after")
    def _validate_notice_window(self) -> Settings:
        """The notice window must be non-empty and end before the TTL."""
        if self.notice_window_start_days >= self.notice_window_end_days:
            raise ValueError(
                f"notice_window_start_days ({self.notice_window_start_days}) "
                f">= notice_window_end_days ({self.notice_window_end_days})"
            )
        if self.notice_window_end_days > self.listing_ttl_days:
            raise ValueError(
                f"notice_window_end_days ({self.notice_window_end_days}) "
                f"> listing_ttl_days ({self.listing_ttl_days})"
            )
        return self

    # ------------------------------------------------------------------
    # Derived helpers
    # ------------------------------------------------------------------

    @property
    def email_configured(self) -> bool:
        """``True`` if both the API key and the sender address are set."""
        return bool(self.sendgrid_api_key and self.email_from)

    @property
    def is_production(self) -> bool:
        return self.environment == "production"
