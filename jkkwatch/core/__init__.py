"""Core domain models, settings, logging configuration, and shared utilities."""

from jkkwatch.core.exceptions import (
    BrowserProbeError,
    CheckInProgressError,
    ConfigError,
    JkkWatchError,
    NotificationError,
    OrchestratorError,
    ProbeError,
    StorageError,
    TelegramError,
    TelegramRateLimitError,
)
from jkkwatch.core.logging_config import JsonFormatter, configure_logging
from jkkwatch.core.models import (
    DeliveryResult,
    Event,
    Layout,
    LogEntry,
    ProbeResult,
    ScheduleConfig,
    SearchCriteria,
    WatchStatus,
)
from jkkwatch.core.settings import Settings

__all__ = [
    # Logging
    "configure_logging",
    "JsonFormatter",
    # Domain models
    "WatchStatus",
    "LogEntry",
    "Layout",
    "SearchCriteria",
    "ScheduleConfig",
    "ProbeResult",
    "DeliveryResult",
    "Event",
    # Settings
    "Settings",
    # Exceptions: base
    "JkkWatchError",
    # Exceptions: config
    "ConfigError",
    # Exceptions: storage
    "StorageError",
    # Exceptions: probe
    "ProbeError",
    "BrowserProbeError",
    # Exceptions: notification
    "NotificationError",
    "TelegramError",
    "TelegramRateLimitError",
    # Exceptions: orchestrator
    "OrchestratorError",
    "CheckInProgressError",
]
