"""JKK Watch core domain models.

Defines the records shared by the scheduler, check pipeline, log store and
event broadcaster:

* :class:`WatchStatus`: the single mutable status record of the watcher.
* :class:`LogEntry`: an immutable, persisted check or delivery outcome.
* :class:`SearchCriteria` / :class:`ScheduleConfig`: what to search for and
  how often.
* :class:`ProbeResult` / :class:`DeliveryResult`: collaborator outcomes.
* The :data:`Event` tagged union delivered to subscribers.

Every event serialises to a self-describing JSON object via
``model_dump_json()``; the ``type`` field is the discriminator::

    {"type": "progress", "step": "searching", "message": "Searching…"}
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import UTC, datetime
from enum import StrEnum
from typing import Annotated, Literal

from pydantic import BaseModel, Field, TypeAdapter, field_validator, model_validator

__all__ = [
    # Enumerations
    "Layout",
    "ProbeOutcome",
    "ProgressStep",
    "NotificationLevel",
    # Records
    "WatchStatus",
    "LogEntry",
    "SearchCriteria",
    "ScheduleConfig",
    "ProbeResult",
    "DeliveryResult",
    # Events
    "StatusUpdateEvent",
    "ProgressEvent",
    "LogAddedEvent",
    "NotificationEvent",
    "Event",
    "parse_event",
    "utc_now",
    "JKK_SEARCH_URL",
]

logger = logging.getLogger(__name__)

#: Entry point of the JKK vacancy search, linked from alerts.
JKK_SEARCH_URL: str = "https://jhomes.to-kousya.or.jp/search/jkknet/service/akiyaJyoukenStartInit"


def utc_now() -> datetime:
    """Return the current time as a timezone-aware UTC datetime."""
    return datetime.now(UTC)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class Layout(StrEnum):
    """Floor-plan groups offered by the JKK search form, in checkbox order."""

    R1_LDK1 = "1R-1LDK"
    K2_LDK2 = "2K-2LDK"
    K3_LDK3 = "3K-3LDK"
    K4_UP = "4K+"


class ProbeOutcome(StrEnum):
    FOUND = "found"
    NOT_FOUND = "not_found"
    FAILED = "failed"


class ProgressStep(StrEnum):
    START = "start"
    SEARCHING = "searching"
    FOUND = "found"
    COMPLETE = "complete"
    ERROR = "error"


class NotificationLevel(StrEnum):
    SUCCESS = "success"
    ERROR = "error"


# ---------------------------------------------------------------------------
# Persisted records
# ---------------------------------------------------------------------------


class WatchStatus(BaseModel):
    """Point-in-time view of the watcher.

    Attributes:
        running: ``True`` while the repeating timer is armed.
        last_check_time: When the most recent check cycle started.
        last_result: Human-readable summary of the most recent cycle.
        total_checks: Number of completed probe attempts.  Never decreases
            while the process lives.
    """

    running: bool = False
    last_check_time: datetime | None = None
    last_result: str | None = None
    total_checks: int = Field(default=0, ge=0)


class LogEntry(BaseModel):
    """One persisted check or delivery outcome.

    Entries with ``found=True`` are exempt from age-based retention.

    Attributes:
        timestamp: UTC instant the outcome was recorded.
        message: Human-readable outcome.
        found: ``True`` when the entry relates to an available vacancy.
        artifact_ref: Path of the screenshot captured for a positive result.
    """

    model_config = {"frozen": True}

    timestamp: datetime = Field(default_factory=utc_now)
    message: str
    found: bool = False
    artifact_ref: str | None = None

    @field_validator("timestamp")
    @classmethod
    def _assume_utc(cls, v: datetime) -> datetime:
        """Treat naive timestamps as UTC so retention comparisons are sound."""
        if v.tzinfo is None:
            return v.replace(tzinfo=UTC)
        return v.astimezone(UTC)


# ---------------------------------------------------------------------------
# Search configuration
# ---------------------------------------------------------------------------


class SearchCriteria(BaseModel):
    """Parameters typed into the JKK vacancy search form.

    Attributes:
        kana_name: Katakana name (or prefix) of the housing complex.
        floor_from: Lowest acceptable floor, as typed into the form.
            Empty means no lower bound.
        area_from: Visible label of the minimum-area ``<select>`` option.
            Empty leaves the form default.
        layouts: Floor-plan groups to tick.  Unlisted groups are unticked.
    """

    model_config = {"frozen": True}

    kana_name: str = Field(..., min_length=1)
    floor_from: str = ""
    area_from: str = ""
    layouts: tuple[Layout, ...] = ()

    @field_validator("kana_name")
    @classmethod
    def _kana_name_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("kana_name must not be blank")
        return v.strip()


@dataclass(frozen=True)
class ScheduleConfig:
    """Everything one check cycle, and the timer, need.

    ``interval_seconds`` is validated by the settings layer (``>= 60``);
    the scheduler uses it as given.
    """

    criteria: SearchCriteria
    interval_seconds: float = 300.0
    headless: bool = True


# ---------------------------------------------------------------------------
# Collaborator outcomes
# ---------------------------------------------------------------------------


class ProbeResult(BaseModel):
    """Outcome of one search attempt.

    Use the :meth:`found`, :meth:`not_found` and :meth:`failed` constructors
    rather than building instances by hand.
    """

    model_config = {"frozen": True}

    outcome: ProbeOutcome
    message: str
    artifact_ref: str | None = None
    error: str | None = None

    @model_validator(mode="after")
    def _check_payload(self) -> ProbeResult:
        if self.outcome is ProbeOutcome.FOUND and not self.artifact_ref:
            raise ValueError("a found result requires an artifact_ref")
        if self.outcome is ProbeOutcome.FAILED and not self.error:
            raise ValueError("a failed result requires an error")
        return self

    @classmethod
    def found(
        cls,
        artifact_ref: str,
        message: str = "Vacancy found. Sending notification and stopping.",
    ) -> ProbeResult:
        return cls(outcome=ProbeOutcome.FOUND, message=message, artifact_ref=artifact_ref)

    @classmethod
    def not_found(cls, message: str = "Searching (no hits)...") -> ProbeResult:
        return cls(outcome=ProbeOutcome.NOT_FOUND, message=message)

    @classmethod
    def failed(cls, error: str) -> ProbeResult:
        return cls(outcome=ProbeOutcome.FAILED, message=f"Error: {error}", error=error)

    @property
    def is_found(self) -> bool:
        return self.outcome is ProbeOutcome.FOUND

    @property
    def is_failed(self) -> bool:
        return self.outcome is ProbeOutcome.FAILED


class DeliveryResult(BaseModel):
    """Outcome of one notifier call.

    Attributes:
        ok: ``True`` when at least one recipient received the notification.
        error: Failure description when ``ok`` is ``False`` (or the partial
            failures when some recipients were missed).
        delivered_to: Recipients that acknowledged the delivery.
    """

    model_config = {"frozen": True}

    ok: bool
    error: str | None = None
    delivered_to: tuple[str, ...] = ()

    @classmethod
    def success(cls, delivered_to: tuple[str, ...] = (), error: str | None = None) -> DeliveryResult:
        return cls(ok=True, delivered_to=delivered_to, error=error)

    @classmethod
    def failure(cls, error: str) -> DeliveryResult:
        return cls(ok=False, error=error)


# ---------------------------------------------------------------------------
# Events
# ---------------------------------------------------------------------------


class StatusUpdateEvent(BaseModel):
    model_config = {"frozen": True}

    type: Literal["status_update"] = "status_update"
    status: WatchStatus


class ProgressEvent(BaseModel):
    model_config = {"frozen": True}

    type: Literal["progress"] = "progress"
    step: ProgressStep
    message: str


class LogAddedEvent(BaseModel):
    model_config = {"frozen": True}

    type: Literal["log_added"] = "log_added"
    entry: LogEntry


class NotificationEvent(BaseModel):
    model_config = {"frozen": True}

    type: Literal["notification"] = "notification"
    level: NotificationLevel
    message: str


#: Tagged union of everything the broadcaster delivers.
Event = Annotated[
    StatusUpdateEvent | ProgressEvent | LogAddedEvent | NotificationEvent,
    Field(discriminator="type"),
]

_EVENT_ADAPTER: TypeAdapter[Event] = TypeAdapter(Event)


def parse_event(raw: str | bytes) -> Event:
    """Rebuild an :data:`Event` from its JSON form (e.g. on a client)."""
    return _EVENT_ADAPTER.validate_json(raw)
