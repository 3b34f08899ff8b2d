"""JKK Watch application settings loaded from environment and ``.env`` files.

Uses :mod:`pydantic_settings` to parse environment variables (and optionally
an ``.env`` file) into a validated settings object.

The field name is the **lowercase** version of the env-var name (e.g.
``TELEGRAM_BOT_TOKEN`` → ``telegram_bot_token``).

Typical usage::

    from jkkwatch.core.settings import Settings

    settings = Settings()                          # loads from env + .env
    config = settings.to_schedule_config()         # raises ConfigError if incomplete
    print(settings.telegram_configured)            # True / False
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

from pydantic import Field, ValidationError, field_validator
from pydantic_settings import BaseSettings, NoDecode, SettingsConfigDict

from jkkwatch.core.exceptions import ConfigError
from jkkwatch.core.models import Layout, ScheduleConfig, SearchCriteria

__all__ = ["Settings", "MIN_INTERVAL_SECONDS"]

logger = logging.getLogger(__name__)

#: Lowest polling interval the watcher accepts, in seconds.
MIN_INTERVAL_SECONDS: int = 60

_DB_FILENAME = "jkkwatch.db"
_ARTIFACTS_DIRNAME = "screenshots"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _csv_to_list(value: str) -> list[str]:
    """Split a comma-separated string into a list of non-empty, stripped items.

    Returns an empty list for blank / whitespace-only input.
    """
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

    Search parameters may be left empty while developing; the watcher then
    refuses to start with a :class:`~jkkwatch.core.exceptions.ConfigError`
    instead of probing with an empty form.
    """

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    # ------------------------------------------------------------------
    # Schedule
    # ------------------------------------------------------------------
    interval_seconds: int = Field(
        default=300,
        ge=MIN_INTERVAL_SECONDS,
        description="Seconds between scheduled checks (minimum 60).",
    )
    headless: bool = Field(
        default=True,
        description="Run the browser without a visible window.",
    )

    # ------------------------------------------------------------------
    # Search parameters
    # ------------------------------------------------------------------
    search_kana_name: str = Field(
        default="",
        description="Katakana name of the housing complex (required to start).",
    )
    search_floor_from: str = Field(
        default="",
        description="Lowest acceptable floor; empty for no bound.",
    )
    search_area_from: str = Field(
        default="",
        description="Label of the minimum-area option; empty keeps the form default.",
    )
    search_layouts: Annotated[list[Layout], NoDecode] = Field(
        default_factory=list,
        description="Floor-plan groups to tick (comma-separated in env).",
    )

    # ------------------------------------------------------------------
    # Telegram
    # ------------------------------------------------------------------
    telegram_bot_token: str = Field(
        default="",
        description="Bot token from @BotFather (required for live alerts).",
    )
    telegram_chat_ids: Annotated[list[str], NoDecode] = Field(
        default_factory=list,
        description="Recipient chat IDs (comma-separated in env).",
    )

    # ------------------------------------------------------------------
    # Storage
    # ------------------------------------------------------------------
    data_dir: str = Field(
        default="data",
        description="Directory holding the SQLite database and screenshots.",
    )
    log_retention_hours: int = Field(
        default=24,
        ge=1,
        description="Age after which not-found log entries are discarded.",
    )
    backfill_size: int = Field(
        default=100,
        ge=0,
        description="Recent log entries replayed to every new subscriber.",
    )

    # ------------------------------------------------------------------
    # Timeouts
    # ------------------------------------------------------------------
    probe_timeout_s: float = Field(
        default=120.0,
        gt=0,
        description="Hard ceiling for one probe call.",
    )
    notify_timeout_s: float = Field(
        default=60.0,
        gt=0,
        description="Hard ceiling for one notifier call.",
    )

    # ------------------------------------------------------------------
    # Runtime flags
    # ------------------------------------------------------------------
    dry_run: bool = Field(
        default=False,
        description="Log notifications without sending Telegram messages.",
    )
    log_level: str = Field(default="INFO", description="Logging level.")
    log_format: str = Field(default="text", description="Log format: 'text' or 'json'.")

    # ------------------------------------------------------------------
    # Field validators
    # ------------------------------------------------------------------

    @field_validator("search_layouts", mode="before")
    @classmethod
    def _parse_csv_layouts(cls, v: str | list[str]) -> list[str]:
        """Accept a comma-separated string **or** an already-parsed list."""
        if isinstance(v, str):
            return _csv_to_list(v)
        return v

    @field_validator("telegram_chat_ids", mode="before")
    @classmethod
    def _parse_csv_chat_ids(cls, v: str | list[str]) -> list[str]:
        """Accept a comma-separated string **or** an already-parsed list."""
        if isinstance(v, str):
            return _csv_to_list(v)
        return v

    @field_validator("log_level")
    @classmethod
    def _validate_log_level(cls, v: str) -> str:
        allowed = {"DEBUG", "INFO", "WARNING", "ERROR"}
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
    # Derived helpers
    # ------------------------------------------------------------------

    def to_search_criteria(self) -> SearchCriteria:
        """Build the :class:`SearchCriteria` typed into the search form.

        Raises:
            ConfigError: If ``SEARCH_KANA_NAME`` is missing or blank.
        """
        try:
            return SearchCriteria(
                kana_name=self.search_kana_name,
                floor_from=self.search_floor_from,
                area_from=self.search_area_from,
                layouts=tuple(self.search_layouts),
            )
        except ValidationError as exc:
            raise ConfigError(
                "Search parameters are incomplete: set SEARCH_KANA_NAME in .env "
                f"(or env vars). Details: {exc.errors()[0]['msg']}"
            ) from exc

    def to_schedule_config(self) -> ScheduleConfig:
        """Build the :class:`ScheduleConfig` for one ``start()`` call.

        Raises:
            ConfigError: If the search parameters are incomplete.
        """
        return ScheduleConfig(
            criteria=self.to_search_criteria(),
            interval_seconds=float(self.interval_seconds),
            headless=self.headless,
        )

    @property
    def data_dir_resolved(self) -> Path:
        """Return the data directory as a resolved :class:`~pathlib.Path`."""
        return Path(self.data_dir).resolve()

    @property
    def database_path(self) -> Path:
        """SQLite file holding the log store and status record."""
        return self.data_dir_resolved / _DB_FILENAME

    @property
    def artifacts_dir(self) -> Path:
        """Directory where screenshots of positive results are written."""
        return self.data_dir_resolved / _ARTIFACTS_DIRNAME

    @property
    def telegram_configured(self) -> bool:
        """``True`` if a bot token and at least one recipient are set."""
        return bool(self.telegram_bot_token and self.telegram_chat_ids)
