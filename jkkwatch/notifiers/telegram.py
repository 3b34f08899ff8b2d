"""Telegram Bot API transport for vacancy alerts.

Only two Bot API methods are used:

* ``sendPhoto`` uploads the results screenshot with a MarkdownV2 caption.
* ``sendMessage`` carries the text-only alert when no screenshot is readable.

The chat ID is a per-call argument, so one :class:`TelegramClient` serves all
recipients.  Rate limits (HTTP 429), gateway errors (HTTP 5xx) and transport
errors are retried with :mod:`tenacity`; a 429 waits exactly as long as
Telegram asks.  Every other failure is a
:class:`~jkkwatch.core.exceptions.TelegramError`.

Example::

    async with TelegramClient(token="123:ABC") as client:
        await client.send_photo("-1001234", Path("shot.png"), caption="Found\\!")
"""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential_jitter,
)

from jkkwatch.core.exceptions import TelegramError, TelegramRateLimitError

__all__ = ["TelegramClient", "CAPTION_LIMIT"]

logger = logging.getLogger(__name__)

_API_ROOT: Final[str] = "https://api.telegram.org"

#: Telegram rejects photo captions longer than this.
CAPTION_LIMIT: Final[int] = 1024

#: A full-page JKK results screenshot can be several megabytes.
_UPLOAD_TIMEOUT_S: Final[float] = 30.0

_GATEWAY_STATUSES: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

_backoff = wait_exponential_jitter(initial=1.0, max=30.0, jitter=5.0)


class _GatewayError(TelegramError):
    """HTTP 5xx from the Bot API; retried, never raised to callers."""


_RETRY_ON = (TelegramRateLimitError, _GatewayError, httpx.TransportError)


def _telegram_wait(retry_state: RetryCallState) -> float:
    """Sleep for Telegram's ``retry_after`` after a 429, else exponential back-off."""
    failure = retry_state.outcome.exception() if retry_state.outcome else None
    if isinstance(failure, TelegramRateLimitError) and failure.retry_after > 0:
        return failure.retry_after
    return _backoff(retry_state)


class TelegramClient:
    """Bot API client holding one :class:`httpx.AsyncClient`.

    Args:
        token: Bot token from @BotFather.
        connect_timeout: Seconds allowed to open a connection.
        read_timeout: Seconds allowed for the API to answer.
        write_timeout: Seconds allowed to upload a request body.
        max_attempts: Attempts per API call, including the first.
        transport: httpx transport override, e.g. :class:`httpx.MockTransport`.

    Raises:
        ValueError: On an empty ``token`` or ``max_attempts`` below 1.
    """

    def __init__(
        self,
        token: str,
        *,
        connect_timeout: float = 5.0,
        read_timeout: float = 15.0,
        write_timeout: float = _UPLOAD_TIMEOUT_S,
        max_attempts: int = 4,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not token:
            raise ValueError("A Telegram bot token is required.")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be at least 1 (got {max_attempts}).")

        self._token = token
        self._attempts = max_attempts
        self._session_kwargs: dict[str, Any] = {
            "base_url": _API_ROOT,
            "timeout": httpx.Timeout(
                connect=connect_timeout, read=read_timeout, write=write_timeout, pool=5.0
            ),
            "headers": {"User-Agent": "jkkwatch/0.1"},
            "transport": transport,
        }
        self._session: httpx.AsyncClient | None = None

    async def __aenter__(self) -> TelegramClient:
        self._open_session()
        return self

    async def __aexit__(self, *_exc: object) -> None:
        await self.close()

    async def send_photo(
        self,
        chat_id: str,
        photo: Path | bytes,
        *,
        caption: str = "",
        parse_mode: str = "MarkdownV2",
        filename: str = "property_screenshot.png",
    ) -> None:
        """Upload a PNG screenshot to *chat_id*.

        *caption* must already be escaped for *parse_mode*; it is cut to
        :data:`CAPTION_LIMIT` characters.

        Raises:
            OSError: *photo* is a path that cannot be read.
            TelegramError: The upload failed for good.
        """
        image = photo.read_bytes() if isinstance(photo, Path) else photo
        form: dict[str, Any] = {"chat_id": chat_id}
        if caption:
            form["caption"] = caption[:CAPTION_LIMIT]
            if parse_mode:
                form["parse_mode"] = parse_mode

        logger.debug("sendPhoto: %d bytes to chat %s", len(image), chat_id)
        await self._call("sendPhoto", data=form, files={"photo": (filename, image, "image/png")})

    async def send_message(self, chat_id: str, text: str, *, parse_mode: str = "MarkdownV2") -> None:
        """Post a text message to *chat_id*.

        Raises:
            TelegramError: The message could not be delivered.
        """
        body: dict[str, Any] = {"chat_id": chat_id, "text": text, "disable_web_page_preview": True}
        if parse_mode:
            body["parse_mode"] = parse_mode
        await self._call("sendMessage", json=body)

    async def close(self) -> None:
        """Release the HTTP session; calling it twice is harmless."""
        session, self._session = self._session, None
        if session is not None and not session.is_closed:
            await session.aclose()

    def _open_session(self) -> httpx.AsyncClient:
        if self._session is None or self._session.is_closed:
            self._session = httpx.AsyncClient(**self._session_kwargs)
        return self._session

    async def _call(self, method: str, **request: Any) -> None:
        def log_retry(state: RetryCallState) -> None:
            failure = state.outcome.exception() if state.outcome else None
            logger.warning(
                "Telegram %s failed on attempt %d of %d (%r); retrying",
                method,
                state.attempt_number,
                self._attempts,
                failure,
            )

        retrying = AsyncRetrying(
            wait=_telegram_wait,
            stop=stop_after_attempt(self._attempts),
            retry=retry_if_exception_type(_RETRY_ON),
            before_sleep=log_retry,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    response = await self._open_session().post(
                        f"/bot{self._token}/{method}", **request
                    )
                    _raise_for_response(method, response)
        except httpx.TransportError as exc:
            raise TelegramError(f"Network error calling {method}: {exc}") from exc


# ---------------------------------------------------------------------------
# Bot API responses
# ---------------------------------------------------------------------------


def _json_body(response: httpx.Response) -> dict[str, Any] | None:
    try:
        body = response.json()
    except ValueError:
        return None
    return body if isinstance(body, dict) else None


def _raise_for_response(method: str, response: httpx.Response) -> None:
    """Map a Bot API reply onto success or the matching exception."""
    status = response.status_code
    body = _json_body(response)
    logger.debug("Telegram %s answered HTTP %d", method, status)

    if status == 200:
        if body is None:
            raise TelegramError(f"Telegram {method} returned a non-JSON body", status_code=200)
        if not body.get("ok"):
            reason = body.get("description", "(no description)")
            raise TelegramError(f"Telegram ok=false: {reason}", status_code=200)
        return

    if status == 429:
        wait_s = _parse_retry_after(response)
        logger.warning("Telegram throttled %s for %.1fs", method, wait_s)
        raise TelegramRateLimitError(retry_after=wait_s)

    if status in _GATEWAY_STATUSES:
        raise _GatewayError(f"Telegram {method} gateway error", status_code=status)

    reason = (body or {}).get("description") or response.text or f"HTTP {status}"
    raise TelegramError(str(reason), status_code=status)


def _parse_retry_after(response: httpx.Response) -> float:
    """Seconds to wait after a 429, from the body or header; never below 1."""
    body = _json_body(response) or {}
    hint = (body.get("parameters") or {}).get("retry_after")
    if hint is None:
        hint = response.headers.get("retry-after")
    try:
        return max(float(hint), 1.0)
    except (TypeError, ValueError):
        return 1.0
