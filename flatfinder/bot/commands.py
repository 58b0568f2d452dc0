"""Chat command handlers.

One :class:`CommandHandlers` instance holds the bot's conversational
behaviour.  Every handler receives an
:class:`~flatfinder.bot.router.InboundContext`, reads and writes subscriber
state exclusively through the :class:`~flatfinder.storage.repository.DiffStore`
and answers with exactly one HTML message.

Commands
--------
``/start``
    Help text.
``/auth PASSWORD``
    Registers the chat as a subscriber (paused, no query).
``/search URL``
    Sets the search URL, activates the subscriber and crawls right away.
``/pause`` / ``/continue``
    Flip the running flag; ``/continue`` crawls right away.

Anything that is not a command gets a pointer to ``/start``.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Callable
from html import escape
from typing import Any
from urllib.parse import urlsplit

from flatfinder.bot.router import CommandRouter, Event, InboundContext
from flatfinder.core.exceptions import TelegramError
from flatfinder.notifiers.telegram import TelegramBot
from flatfinder.storage.repository import DiffStore

__all__ = [
    "CommandHandlers",
    "COMMAND_MENU",
    "build_router",
    "is_search_url",
    "register_command_menu",
]

logger = logging.getLogger(__name__)

SEARCH_HOST: str = "www.immobilienscout24.de"

EXAMPLE_SEARCH_URL: str = (
    "https://www.immobilienscout24.de/Suche/de/berlin/berlin/wohnung-mieten"
    "?enteredFrom=one_step_search"
)

#: Published with ``setMyCommands`` at startup.
COMMAND_MENU: list[dict[str, str]] = [
    {"command": "start", "description": "Show help"},
    {
        "command": "auth",
        "description": "Authenticate for bot usage. Use like this: /auth PASSWORD",
    },
    {
        "command": "search",
        "description": (
            "Set a new immoscout search url. Overwrites any existing search. "
            "Use like this: /search URL"
        ),
    },
    {
        "command": "pause",
        "description": "Pauses an existing search. No more messages will be sent.",
    },
    {
        "command": "continue",
        "description": "Continues an existing search. More messages will come.",
    },
]

_HELP_TEXT = """\
Welcome {first_name}!

I am the flatfinder bot. I will send you notifications about new listings on \
<a href="https://www.immobilienscout24.de/">immoscout24</a>.

First authenticate by sending the /auth <code>PASSWORD</code> command.
Then set up a search with /search <code>URL</code>.

Commands
/start - Shows this help.
/auth <code>PASSWORD</code> - Authenticate for bot usage
/search <code>URL</code> - Set a new immoscout search url. Overwrites any existing search.
/pause - Pauses an existing search. No more messages will be sent.
/continue - Continues an existing search. More messages will come.
"""

NOT_AUTHENTICATED = "You are not authenticated. Try /auth <code>PASSWORD</code>."
ALREADY_AUTHENTICATED = "You are already authenticated."
WRONG_PASSWORD = "Wrong password. Try again."
AUTH_OK = "Nice, you can now use the other commands."
INVALID_SEARCH_URL = (
    "Please provide a valid immoscout url (copy the search url from the browser url bar)."
    f' <a href="{escape(EXAMPLE_SEARCH_URL, quote=True)}">Try here.</a>'
)
ALREADY_PAUSED = "Already paused"
PAUSED = "Will pause for now ⏸"
ALREADY_RUNNING = "Already looking for listings for you \U0001f4aa"
RESUMED = "Will continue to look for listings ▶"
UNKNOWN_MESSAGE = "Don't know what you mean. Try /start for help."


def is_search_url(url: str | None) -> bool:
    """Return ``True`` if *url* looks like an immoscout apartment search.

    Requires ``https``, host ``www.immobilienscout24.de``, a path starting
    with ``/Suche`` that contains ``wohnung``, and a non-empty query string.
    """
    if not url:
        return False
    try:
        parts = urlsplit(url.strip())
    except ValueError:
        logger.debug("Unparseable search url %r", url)
        return False
    return (
        parts.scheme == "https"
        and parts.netloc == SEARCH_HOST
        and parts.path.startswith("/Suche")
        and "wohnung" in parts.path
        and bool(parts.query)
    )


def _describe_interval(seconds: int) -> str:
    if seconds % 60 == 0:
        return f"{seconds // 60}min"
    return f"{seconds}s"


class CommandHandlers:
    """Bound handlers for every chat command.

    Args:
        bot: Telegram client used for replies.
        store: Diff store holding subscriber state.
        password: Shared password expected by ``/auth``.
        trigger: Starts an out-of-band crawl for a subscriber id.
        crawl_interval_s: Used in the ``/search`` confirmation text.
    """

    def __init__(
        self,
        bot: TelegramBot,
        store: DiffStore,
        *,
        password: str,
        trigger: Callable[[int], Any],
        crawl_interval_s: int = 900,
    ) -> None:
        if not password:
            raise ValueError("CommandHandlers requires a non-empty password.")
        self._bot = bot
        self._store = store
        self._password = password
        self._trigger = trigger
        self._crawl_interval_s = crawl_interval_s

    async def _reply(self, context: InboundContext, text: str) -> None:
        await self._bot.send_message(context.chat_id, text, parse_mode="HTML")

    def _password_matches(self, candidate: str | None) -> bool:
        return hmac.compare_digest((candidate or "").encode(), self._password.encode())

    # ------------------------------------------------------------------
    # Handlers
    # ------------------------------------------------------------------

    async def start(self, context: InboundContext) -> None:
        await self._reply(context, _HELP_TEXT.format(first_name=escape(context.first_name)))

    async def auth(self, context: InboundContext) -> None:
        if await self._store.is_authenticated(context.chat_id):
            await self._reply(context, ALREADY_AUTHENTICATED)
        elif not self._password_matches(context.command_argument):
            logger.info("Wrong password from chat %s.", context.chat_id)
            await self._reply(context, WRONG_PASSWORD)
        else:
            await self._store.create_subscriber(context.chat_id, context.first_name)
            await self._reply(context, AUTH_OK)

    async def search(self, context: InboundContext) -> None:
        if not await self._store.is_authenticated(context.chat_id):
            await self._reply(context, NOT_AUTHENTICATED)
            return
        url = (context.command_argument or "").strip()
        if not is_search_url(url):
            await self._reply(context, INVALID_SEARCH_URL)
            return

        await self._store.set_query(context.chat_id, url)
        logger.info("Chat %s set a new search url.", context.chat_id)
        try:
            await self._reply(
                context,
                "New search url is set. "
                f"Will query the search every {_describe_interval(self._crawl_interval_s)}.",
            )
        finally:
            self._trigger(context.chat_id)

    async def pause(self, context: InboundContext) -> None:
        subscriber = await self._store.find_subscriber(context.chat_id)
        if subscriber is None:
            await self._reply(context, NOT_AUTHENTICATED)
        elif not subscriber.active:
            await self._reply(context, ALREADY_PAUSED)
        else:
            await self._store.set_active(context.chat_id, False)
            await self._reply(context, PAUSED)

    async def continue_(self, context: InboundContext) -> None:
        subscriber = await self._store.find_subscriber(context.chat_id)
        if subscriber is None:
            await self._reply(context, NOT_AUTHENTICATED)
            return
        if subscriber.active:
            await self._reply(context, ALREADY_RUNNING)
            return

        await self._store.set_active(context.chat_id, True)
        try:
            await self._reply(context, RESUMED)
        finally:
            self._trigger(context.chat_id)

    async def unknown(self, context: InboundContext) -> None:
        await self._reply(context, UNKNOWN_MESSAGE)


def build_router(handlers: CommandHandlers) -> CommandRouter:
    """Register every handler on a fresh :class:`CommandRouter`."""
    router = CommandRouter()
    router.on(Event.START, handlers.start)
    router.on_command("/auth", handlers.auth)
    router.on_command("/search", handlers.search)
    router.on_command("/pause", handlers.pause)
    router.on_command("/continue", handlers.continue_)
    router.on(Event.MESSAGE, handlers.unknown)
    return router


async def register_command_menu(bot: TelegramBot) -> bool:
    """Publish :data:`COMMAND_MENU`.  Best effort: failures are only logged."""
    try:
        await bot.set_my_commands(COMMAND_MENU)
    except TelegramError as exc:
        logger.warning("Could not register the command menu: %s", exc)
        return False
    logger.info("Command menu registered (%d commands).", len(COMMAND_MENU))
    return True
