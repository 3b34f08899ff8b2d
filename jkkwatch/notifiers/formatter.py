"""Telegram MarkdownV2 caption for a vacancy alert.

The alert is the result-page screenshot; this module builds the caption that
accompanies it: a bold headline, the search criteria that matched, and a link
back to the JKK search.

MarkdownV2 requires a backslash before each of these characters in ordinary
text::

    _ * [ ] ( ) ~ ` > # + - = | { } . !

Inside the ``(url)`` part of a link only ``)`` and ``\\`` are special.

Reference: https://core.telegram.org/bots/api#markdownv2-style
"""

from __future__ import annotations

import re
from datetime import datetime, timedelta, timezone

from jkkwatch.core.models import JKK_SEARCH_URL, SearchCriteria

__all__ = [
    "escape_mdv2",
    "escape_url",
    "format_vacancy_caption",
]

_MDV2_SPECIAL = re.compile(r"([_*\[\]()~`>#+\-=|{}.!\\])")
_URL_SPECIAL = re.compile(r"([)\\])")

#: Alert timestamps are shown in the housing authority's local time.
_DISPLAY_TZ = timezone(timedelta(hours=9), "JST")


def escape_mdv2(text: str) -> str:
    """Escape *text* for the body of a MarkdownV2 message.

    Examples:
        >>> escape_mdv2("3K-3LDK (2F+)")
        '3K\\\\-3LDK \\\\(2F\\\\+\\\\)'
    """
    return _MDV2_SPECIAL.sub(r"\\\1", text)


def escape_url(url: str) -> str:
    """Escape *url* for the ``(url)`` part of a MarkdownV2 link."""
    return _URL_SPECIAL.sub(r"\\\1", url)


def format_vacancy_caption(
    criteria: SearchCriteria | None = None,
    *,
    found_at: datetime | None = None,
) -> str:
    """Build the MarkdownV2 caption sent with the result screenshot.

    Args:
        criteria: Search that produced the hit.  Omitted lines are skipped
            when it is ``None`` or a field is empty.
        found_at: When the vacancy was detected; shown in Tokyo time.

    Returns:
        Caption safe to send with ``parse_mode="MarkdownV2"``.
    """
    lines = ["*JKK Watch: a vacancy is available\\!*"]

    if criteria is not None:
        lines.append(f"Complex: {escape_mdv2(criteria.kana_name)}")
        if criteria.floor_from:
            lines.append(f"Floor from: {escape_mdv2(criteria.floor_from)}")
        if criteria.area_from:
            lines.append(f"Area from: {escape_mdv2(criteria.area_from)}")
        if criteria.layouts:
            layouts = ", ".join(layout.value for layout in criteria.layouts)
            lines.append(f"Layouts: {escape_mdv2(layouts)}")

    if found_at is not None:
        stamp = found_at.astimezone(_DISPLAY_TZ).strftime("%Y-%m-%d %H:%M JST")
        lines.append(f"_{escape_mdv2(stamp)}_")

    lines.append("")
    lines.append("See the attached screenshot for details\\.")
    lines.append(f"[Open the JKK vacancy search]({escape_url(JKK_SEARCH_URL)})")
    return "\n".join(lines)
