"""Chat bot: update ingestion, command routing and command handlers."""

from flatfinder.bot.commands import CommandHandlers, build_router, is_search_url, register_command_menu
from flatfinder.bot.ingester import UpdateIngester, UpdateOutcome
from flatfinder.bot.router import CommandRouter, Event, InboundContext
from flatfinder.bot.transports import LongPollTransport, UpdateTransport, WebhookTransport

__all__ = [
    "CommandHandlers",
    "CommandRouter",
    "Event",
    "InboundContext",
    "LongPollTransport",
    "UpdateIngester",
    "UpdateOutcome",
    "UpdateTransport",
    "WebhookTransport",
    "build_router",
    "is_search_url",
    "register_command_menu",
]
