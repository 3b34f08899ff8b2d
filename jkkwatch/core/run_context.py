"""Runtime context for a single JKK Watch process.

Encapsulates the user-selected operating modes that alter pipeline behaviour
without changing any configuration values.  A single :class:`RunContext`
instance is created once in :mod:`jkkwatch.__main__` and handed to the
notifier, which is the only layer whose behaviour depends on it.

Current flags
-------------
dry_run
    Run the full check cycle including the caption formatter, but **log the
    notification** instead of uploading the screenshot to Telegram.  The
    delivery counts as successful, so a dry-run watch still auto-stops on the
    first vacancy exactly as a live one would.

:attr:`should_notify` is the property every layer should read:

    >>> RunContext().should_notify
    True

    >>> RunContext(dry_run=True).should_notify
    False
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

__all__ = ["RunContext"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Immutable container for per-process operating-mode flags.

    Attributes:
        dry_run: When ``True``, notifications are logged, not sent.
    """

    dry_run: bool = field(default=False)

    @property
    def should_notify(self) -> bool:
        """Return ``True`` if the notifier should actually send messages."""
        return not self.dry_run

    @property
    def mode_label(self) -> str:
        """Human-readable label for the current mode, used in log lines.

        Returns:
            ``"dry-run"`` or ``"live"``.
        """
        return "dry-run" if self.dry_run else "live"

    def __str__(self) -> str:
        return f"RunContext(mode={self.mode_label}, should_notify={self.should_notify})"
