"""Process-wide logging for the watcher.

``configure_logging()`` runs once, from ``__main__``, before the service is
opened.  Modules log through their own module-scope logger and tag lifecycle
records with ``extra={"event": events.X}``.

Every record also carries the id of the check cycle that emitted it
(``record.check_id``), so the probe, notifier and storage lines of a single
cycle can be grepped together.

Environment fallbacks, consulted only when an argument is omitted:
    LOG_LEVEL   DEBUG | INFO | WARNING | ERROR | CRITICAL   (default: INFO)
    LOG_FORMAT  text | json                                 (default: text)
"""

from __future__ import annotations

import json
import logging
import os
import sys
from contextvars import ContextVar
from datetime import UTC, datetime
from typing import Any

__all__ = ["configure_logging", "JsonFormatter", "CHECK_ID_CTX", "CheckContextFilter"]

#: Id of the check cycle running in the current task; ``"-"`` outside a cycle.
CHECK_ID_CTX: ContextVar[str] = ContextVar("check_id", default="-")

_LEVELS: tuple[str, ...] = ("DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL")
_FORMATS: tuple[str, ...] = ("text", "json")

_TEXT_LAYOUT = "%(asctime)s %(levelname)-8s [%(check_id)s] %(name)s: %(message)s"
_TEXT_DATEFMT = "%Y-%m-%d %H:%M:%S"

# Libraries whose INFO output drowns the cycle log (Telegram uploads, SQLite).
_QUIET_BELOW_DEBUG = ("httpx", "httpcore", "aiosqlite", "asyncio")


class CheckContextFilter(logging.Filter):
    """Stamp ``record.check_id`` from :data:`CHECK_ID_CTX`."""

    def filter(self, record: logging.LogRecord) -> bool:  # noqa: A003
        record.check_id = CHECK_ID_CTX.get()
        return True


def _pick(value: str | None, env_var: str, default: str, allowed: tuple[str, ...]) -> str:
    raw = value or os.environ.get(env_var) or default
    choice = raw.lower() if env_var == "LOG_FORMAT" else raw.upper()
    if choice not in allowed:
        raise ValueError(f"Unknown {env_var} {choice!r}; expected one of {', '.join(allowed)}")
    return choice


def _build_handler(level: str, fmt: str) -> logging.Handler:
    handler = logging.StreamHandler(sys.stderr)
    handler.setLevel(level)
    handler.addFilter(CheckContextFilter())
    if fmt == "json":
        handler.setFormatter(JsonFormatter())
    else:
        handler.setFormatter(logging.Formatter(_TEXT_LAYOUT, datefmt=_TEXT_DATEFMT))
    return handler


def configure_logging(
    level: str | None = None,
    fmt: str | None = None,
    *,
    force: bool = False,
) -> None:
    """Install a single stderr handler on the root logger.

    Args:
        level: Level name; falls back to ``$LOG_LEVEL``, then ``INFO``.
        fmt: ``"text"`` or ``"json"``; falls back to ``$LOG_FORMAT``, then ``text``.
        force: Replace existing root handlers instead of only adjusting the level.

    Raises:
        ValueError: On an unrecognised level or format.
    """
    chosen_level = _pick(level, "LOG_LEVEL", "INFO", _LEVELS)
    chosen_fmt = _pick(fmt, "LOG_FORMAT", "text", _FORMATS)

    root = logging.getLogger()
    root.setLevel(chosen_level)

    # Someone (pytest's log capture, an embedding app) already owns the handlers.
    if root.handlers and not force:
        return

    for existing in list(root.handlers):
        root.removeHandler(existing)
    root.addHandler(_build_handler(chosen_level, chosen_fmt))

    quiet_level = logging.DEBUG if chosen_level == "DEBUG" else logging.WARNING
    for name in _QUIET_BELOW_DEBUG:
        logging.getLogger(name).setLevel(quiet_level)


# Attribute names every LogRecord has; anything else arrived via ``extra=``.
_STANDARD_ATTRS: frozenset[str] = frozenset(vars(logging.makeLogRecord({}))) | {
    "message",
    "asctime",
}


class JsonFormatter(logging.Formatter):
    """One JSON object per line, suitable for log shippers.

    Example::

        {"ts": "2026-10-16T03:00:00.123Z", "level": "INFO",
         "logger": "jkkwatch.orchestrator.pipeline",
         "message": "Check finished: not found",
         "extra": {"event": "CHECK_COMPLETE", "check_id": "a3f2b1c0"}}

    Non-ASCII text (katakana property names) is written as-is.
    """

    def format(self, record: logging.LogRecord) -> str:  # noqa: A003
        created = datetime.fromtimestamp(record.created, tz=UTC)
        payload: dict[str, Any] = {
            "ts": created.isoformat(timespec="milliseconds").replace("+00:00", "Z"),
            "level": record.levelname,
            "logger": record.name,
            "message": record.getMessage(),
            "extra": {
                key: value
                for key, value in vars(record).items()
                if key not in _STANDARD_ATTRS
            },
        }
        if record.exc_info:
            payload["exc_info"] = self.formatException(record.exc_info)
        if record.stack_info:
            payload["stack_info"] = self.formatStack(record.stack_info)
        return json.dumps(payload, default=str, ensure_ascii=False)
