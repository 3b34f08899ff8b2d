"""High-level vacancy alert delivery.

:class:`Notifier` is the object the check pipeline calls when a vacancy is
found.  It decides *whether* to send (from
:class:`~jkkwatch.core.run_context.RunContext`) and fans the screenshot out to
every recipient chat through :class:`~jkkwatch.notifiers.telegram.TelegramClient`.

Delivery semantics
------------------
* The alert counts as delivered when **at least one** recipient received it;
  failures for the other recipients are logged and reported in
  :attr:`~jkkwatch.core.models.DeliveryResult.error`.
* If the screenshot cannot be read, the caption is sent as a plain text
  message so recipients still learn about the vacancy.
* In dry-run mode the caption is logged and the delivery reported as
  successful, so the watcher auto-stops exactly as it would live.

Typical usage::

    async with TelegramClient(token=settings.telegram_bot_token) as client:
        notifier = Notifier(client=client, ctx=RunContext())
        result = await notifier.send(settings.telegram_chat_ids, "shot.png")
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Sequence
from pathlib import Path
from typing import Final

from jkkwatch.core.exceptions import TelegramError
from jkkwatch.core.models import DeliveryResult, SearchCriteria, utc_now
from jkkwatch.core.run_context import RunContext
from jkkwatch.notifiers.formatter import format_vacancy_caption
from jkkwatch.notifiers.telegram import TelegramClient

__all__ = ["Notifier"]

logger = logging.getLogger(__name__)

# Well under Telegram's 30 messages/second limit.
_DEFAULT_MIN_INTERVAL: Final[float] = 0.05


class Notifier:
    """Deliver a vacancy screenshot to a list of Telegram chats.

    Args:
        client: Open :class:`TelegramClient`.  Its lifecycle belongs to the
            caller.
        ctx: Operating mode flags.
        min_interval_s: Pause between consecutive recipients.
    """

    def __init__(
        self,
        client: TelegramClient,
        ctx: RunContext,
        *,
        min_interval_s: float = _DEFAULT_MIN_INTERVAL,
    ) -> None:
        if min_interval_s < 0:
            raise ValueError(f"min_interval_s must be >= 0, got {min_interval_s!r}.")
        self._client = client
        self._ctx = ctx
        self._min_interval_s = min_interval_s

    async def send(
        self,
        recipients: Sequence[str],
        artifact_ref: str,
        *,
        criteria: SearchCriteria | None = None,
    ) -> DeliveryResult:
        """Send the alert for *artifact_ref* to every recipient.

        Never raises for delivery problems; they are reported in the result.

        Args:
            recipients: Telegram chat IDs.
            artifact_ref: Path of the result screenshot.
            criteria: Search that found the vacancy, shown in the caption.

        Returns:
            A :class:`DeliveryResult`; ``ok`` when at least one recipient
            received the alert.
        """
        if not recipients:
            logger.error("No notification recipients configured.")
            return DeliveryResult.failure("no recipients configured")

        caption = format_vacancy_caption(criteria, found_at=utc_now())

        if self._ctx.dry_run:
            logger.info(
                "[dry-run] Would send %s to %d recipient(s)\n%s",
                artifact_ref,
                len(recipients),
                caption,
            )
            return DeliveryResult.success(delivered_to=tuple(recipients))

        try:
            photo: bytes | None = Path(artifact_ref).read_bytes()
        except OSError as exc:
            logger.warning("Screenshot %s unreadable (%s); sending text only.", artifact_ref, exc)
            photo = None

        delivered: list[str] = []
        failures: list[str] = []
        for index, chat_id in enumerate(recipients):
            if index > 0 and self._min_interval_s > 0:
                await asyncio.sleep(self._min_interval_s)
            try:
                if photo is not None:
                    await self._client.send_photo(chat_id, photo, caption=caption)
                else:
                    await self._client.send_message(chat_id, caption)
            except TelegramError as exc:
                logger.error("Alert to chat %s failed after all retries: %s", chat_id, exc)
                failures.append(f"{chat_id}: {exc}")
                continue
            logger.info("Alert sent to chat %s", chat_id)
            delivered.append(chat_id)

        error = "; ".join(failures) or None
        if delivered:
            if failures:
                logger.warning(
                    "Alert reached %d of %d recipient(s).", len(delivered), len(recipients)
                )
            return DeliveryResult.success(delivered_to=tuple(delivered), error=error)
        return DeliveryResult.failure(error or "no recipient accepted the alert")
