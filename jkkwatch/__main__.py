"""JKK Watch process entry-point.

Usage:
    python -m jkkwatch [--once] [--dry-run] [--log-level LEVEL] [--log-format FORMAT]

The orchestration logic lives in ``jkkwatch.orchestrator``.  This module
calls ``configure_logging()`` first so every later import gets a working
logger, then hands off to the orchestrator.

Default behaviour (no ``--once``) is continuous: the watcher checks on its
interval until a vacancy notification is delivered, then stops and the
process exits.  Pass ``--once`` to run a single check and exit.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from jkkwatch.core import configure_logging
from jkkwatch.core.exceptions import ConfigError
from jkkwatch.core.run_context import RunContext
from jkkwatch.core.settings import Settings


def main() -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    parser = argparse.ArgumentParser(
        prog="jkkwatch",
        description="Watch the JKK Tokyo public-housing search for vacancies.",
    )
    parser.add_argument(
        "--once",
        action="store_true",
        help="Run a single check and exit instead of watching continuously.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log the alert instead of sending it to Telegram.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )

    args = parser.parse_args()

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"jkkwatch: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)
    logger.info("JKK Watch starting up")

    try:
        settings = Settings()
    except ValidationError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    ctx = RunContext(dry_run=args.dry_run or settings.dry_run)
    logger.info("Run context: %s", ctx)

    # Lazy import keeps --help fast and free of browser imports.
    from jkkwatch.orchestrator.runner import run_once, run_watch  # noqa: PLC0415

    try:
        if args.once:
            logger.info("Running a single check (--once).")
            report = asyncio.run(run_once(ctx=ctx, settings=settings))
            sys.exit(1 if report.errored else 0)
        logger.info("Watching continuously (Ctrl+C to stop).")
        final = asyncio.run(run_watch(ctx=ctx, settings=settings))
        logger.info("Exiting after %d check(s): %s", final.total_checks, final.last_result)
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted; exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
