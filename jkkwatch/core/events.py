"""Structured log event name constants for the watcher.

Every key transition emits a log record with an ``event`` field (passed via
``extra={"event": events.X}``).  In ``LOG_FORMAT=json`` mode the value
surfaces as ``extra.event``, which makes the watch history easy to query in
any log aggregator.  In text mode the message text is self-describing and the
constant is not printed.

These names are for the operational log only; the typed events delivered to
subscribers live in :mod:`jkkwatch.core.models`.

Usage example::

    import logging
    from jkkwatch.core import events

    logger = logging.getLogger(__name__)

    logger.info("Watch started", extra={"event": events.WATCH_START})
"""

from __future__ import annotations

__all__ = [
    # Watch lifecycle
    "WATCH_START",
    "WATCH_ALREADY_RUNNING",
    "WATCH_STOP",
    "WATCH_CONFIG_ERROR",
    # Check cycle
    "CHECK_START",
    "CHECK_SKIPPED",
    "CHECK_REJECTED",
    "CHECK_COMPLETE",
    "CHECK_ERROR",
    # Probe
    "PROBE_FOUND",
    "PROBE_NOT_FOUND",
    "PROBE_FAILED",
    "PROBE_TIMEOUT",
    # Delivery
    "DELIVERY_OK",
    "DELIVERY_FAILED",
    # Storage
    "STORAGE_ERROR",
    # Subscribers
    "SUBSCRIBER_ADDED",
    "SUBSCRIBER_REMOVED",
    "SUBSCRIBER_LAGGING",
]

# ---------------------------------------------------------------------------
# Watch lifecycle
# ---------------------------------------------------------------------------

#: The scheduler moved from Idle to Running.
WATCH_START: str = "WATCH_START"

#: ``start()`` was called while already running; nothing changed.
WATCH_ALREADY_RUNNING: str = "WATCH_ALREADY_RUNNING"

#: The scheduler moved to Idle (manual stop or auto-stop after delivery).
WATCH_STOP: str = "WATCH_STOP"

#: ``start()`` or ``run_once()`` could not obtain a valid configuration.
WATCH_CONFIG_ERROR: str = "WATCH_CONFIG_ERROR"

# ---------------------------------------------------------------------------
# Check cycle
# ---------------------------------------------------------------------------

#: A check cycle acquired the single-flight lock.
CHECK_START: str = "CHECK_START"

#: A timer tick found a cycle in flight and was dropped.
CHECK_SKIPPED: str = "CHECK_SKIPPED"

#: A manual check found a cycle in flight and was rejected as busy.
CHECK_REJECTED: str = "CHECK_REJECTED"

#: A check cycle released the lock after publishing its final events.
CHECK_COMPLETE: str = "CHECK_COMPLETE"

#: An unexpected exception was absorbed at the pipeline boundary.
CHECK_ERROR: str = "CHECK_ERROR"

# ---------------------------------------------------------------------------
# Probe
# ---------------------------------------------------------------------------

PROBE_FOUND: str = "PROBE_FOUND"
PROBE_NOT_FOUND: str = "PROBE_NOT_FOUND"
PROBE_FAILED: str = "PROBE_FAILED"

#: The probe exceeded its hard timeout and was force-failed.
PROBE_TIMEOUT: str = "PROBE_TIMEOUT"

# ---------------------------------------------------------------------------
# Delivery
# ---------------------------------------------------------------------------

DELIVERY_OK: str = "DELIVERY_OK"
DELIVERY_FAILED: str = "DELIVERY_FAILED"

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

#: A log-store or status write failed; in-memory state stays authoritative.
STORAGE_ERROR: str = "STORAGE_ERROR"

# ---------------------------------------------------------------------------
# Subscribers
# ---------------------------------------------------------------------------

SUBSCRIBER_ADDED: str = "SUBSCRIBER_ADDED"
SUBSCRIBER_REMOVED: str = "SUBSCRIBER_REMOVED"

#: A subscriber queue was full and an event was dropped for it.
SUBSCRIBER_LAGGING: str = "SUBSCRIBER_LAGGING"
