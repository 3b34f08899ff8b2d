"""Telegram alert delivery and caption formatting."""

from jkkwatch.notifiers.formatter import escape_mdv2, escape_url, format_vacancy_caption
from jkkwatch.notifiers.notifier import Notifier
from jkkwatch.notifiers.telegram import TelegramClient

__all__ = [
    "Notifier",
    "TelegramClient",
    "escape_mdv2",
    "escape_url",
    "format_vacancy_caption",
]
