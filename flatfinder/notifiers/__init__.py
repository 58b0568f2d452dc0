"""Telegram transport, HTML message formatting and listing delivery."""

from flatfinder.notifiers.formatter import format_crawl_error, format_listing, format_update_title
from flatfinder.notifiers.notifier import Notifier
from flatfinder.notifiers.telegram import TelegramBot

__all__ = [
    "Notifier",
    "TelegramBot",
    "format_listing",
    "format_update_title",
    "format_crawl_error",
]
