"""JKK Watch exception taxonomy.

Every custom exception inherits from :class:`JkkWatchError`.  Exceptions are
organised by architectural layer so callers can catch at the right granularity:

    Layer hierarchy
    ---------------
    JkkWatchError
    ├── ConfigError
    ├── StorageError
    ├── ProbeError
    │   └── BrowserProbeError
    ├── NotificationError
    │   └── TelegramError
    │       └── TelegramRateLimitError
    └── OrchestratorError
        └── CheckInProgressError

Probe and notification errors never cross the check pipeline boundary: the
pipeline converts them into log entries and broadcast events.  Only
:class:`ConfigError` (from ``start``) and :class:`CheckInProgressError` (from
manual checks) reach external callers.

Usage:

    from jkkwatch.core.exceptions import BrowserProbeError

    raise BrowserProbeError("jkk", "Search button not found") from exc
"""

from __future__ import annotations

import logging

__all__ = [
    "JkkWatchError",
    # Config
    "ConfigError",
    # Storage
    "StorageError",
    # Probe
    "ProbeError",
    "BrowserProbeError",
    # Notification
    "NotificationError",
    "TelegramError",
    "TelegramRateLimitError",
    # Orchestrator
    "OrchestratorError",
    "CheckInProgressError",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Base
# ---------------------------------------------------------------------------


class JkkWatchError(Exception):
    """Root exception for all JKK Watch errors."""


# ---------------------------------------------------------------------------
# Config layer
# ---------------------------------------------------------------------------


class ConfigError(JkkWatchError):
    """Raised when the watch cannot obtain a valid configuration.

    Fatal to the ``start()`` / ``run_once()`` call only; the scheduler stays
    idle and the process keeps running.
    """


# ---------------------------------------------------------------------------
# Storage layer
# ---------------------------------------------------------------------------


class StorageError(JkkWatchError):
    """Raised when the log store or status record cannot be read or written.

    The in-memory :class:`~jkkwatch.core.models.WatchStatus` stays
    authoritative when this happens.
    """


# ---------------------------------------------------------------------------
# Probe layer
# ---------------------------------------------------------------------------


class ProbeError(JkkWatchError):
    """Base class for failures while probing the vacancy search.

    Treated as transient: the scheduler keeps running.

    Args:
        probe: Short name of the probe (e.g. ``"jkk"``).
        message: Human-readable error description.
    """

    def __init__(self, probe: str, message: str) -> None:
        self.probe = probe
        super().__init__(f"[{probe}] {message}")


class BrowserProbeError(ProbeError):
    """Raised for failures specific to the Playwright-driven probe.

    Examples:
        - Browser launch failure.
        - Page navigation timeout.
        - Form field not found after waiting.
    """


# ---------------------------------------------------------------------------
# Notification layer
# ---------------------------------------------------------------------------


class NotificationError(JkkWatchError):
    """Base class for notification delivery errors."""


class TelegramError(NotificationError):
    """Raised when the Telegram Bot API returns an error or is unreachable.

    Args:
        message: Human-readable error description.
        status_code: HTTP status code from the Telegram API, if available.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        detail = f" (HTTP {status_code})" if status_code is not None else ""
        super().__init__(f"Telegram error{detail}: {message}")


class TelegramRateLimitError(TelegramError):
    """Raised when the Telegram Bot API returns HTTP 429 (Too Many Requests).

    Args:
        retry_after: Seconds to wait before retrying, as reported by Telegram.
    """

    def __init__(self, retry_after: float) -> None:
        self.retry_after = retry_after
        super().__init__(
            f"Rate limited, retry after {retry_after}s",
            status_code=429,
        )


# ---------------------------------------------------------------------------
# Orchestrator layer
# ---------------------------------------------------------------------------


class OrchestratorError(JkkWatchError):
    """Raised for errors originating in the scheduling layer."""


class CheckInProgressError(OrchestratorError):
    """Raised when a manual check is requested while another cycle runs.

    This is the "busy" signal of the single-flight policy: manual checks are
    rejected rather than queued.
    """

    def __init__(self) -> None:
        super().__init__("A check is already in progress; try again shortly.")
