"""Command router: maps an inbound message to its registered handlers.

A message is classified into exactly one :class:`Event`:

* ``START``: the command ``/start``.
* ``COMMAND``: any other command.
* ``MESSAGE``: no command at all.

Handlers are registered once at startup with :meth:`CommandRouter.on` or
the :meth:`CommandRouter.on_command` short-hand and awaited sequentially
in registration order.  A handler that raises is logged; the remaining
handlers still run.

Typical usage::

    router = CommandRouter()
    router.on(Event.START, handlers.start)
    router.on_command("/auth", handlers.auth)
    router.on(Event.MESSAGE, handlers.unknown)

    await router.dispatch(context)
"""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from enum import StrEnum

from flatfinder.bot.updates import Message, MessageEntity
from flatfinder.core import events

__all__ = [
    "Event",
    "InboundContext",
    "Handler",
    "CommandRouter",
    "build_context",
    "utf16_slice",
]

logger = logging.getLogger(__name__)

START_COMMAND: str = "/start"


class Event(StrEnum):
    START = "START"
    COMMAND = "COMMAND"
    MESSAGE = "MESSAGE"


@dataclass(frozen=True)
class InboundContext:
    """Condensed view of one inbound text message.

    Attributes:
        chat_id: Private chat the message came from; the subscriber id.
        first_name: Sender's first name.
        text: Full message text.
        command_name: Command including the leading ``/``, or ``None``.
        command_argument: Text after the command and one separator, or
            ``None`` when nothing follows.
        message: The parsed message the context was built from.
    """

    chat_id: int
    first_name: str
    text: str
    command_name: str | None
    command_argument: str | None
    message: Message


Handler = Callable[[InboundContext], Awaitable[None]]


# ---------------------------------------------------------------------------
# Context construction
# ---------------------------------------------------------------------------


def utf16_slice(text: str, start: int, end: int | None = None) -> str:
    """Slice *text* by UTF-16 code unit positions, as Telegram counts them."""
    encoded = text.encode("utf-16-le")
    stop = end * 2 if end is not None else None
    return encoded[start * 2 : stop].decode("utf-16-le", errors="replace")


def _first_command(entities: list[MessageEntity]) -> MessageEntity | None:
    for entity in entities:
        if entity.type == "bot_command":
            return entity
        logger.debug("Ignoring %s entity.", entity.type)
    return None


def build_context(message: Message) -> InboundContext | None:
    """Build the :class:`InboundContext` for *message*.

    Returns ``None`` for messages the bot does not handle: no text, no
    sender, no chat, or a chat that is not private.

    When several ``bot_command`` entities are present the first one wins.
    """
    if not message.text or message.from_user is None or message.chat is None:
        return None
    if message.chat.type != "private":
        return None

    command_name: str | None = None
    command_argument: str | None = None
    entity = _first_command(message.entities)
    if entity is not None:
        end = entity.offset + entity.length
        command_name = utf16_slice(message.text, entity.offset, end) or None
        command_argument = utf16_slice(message.text, end + 1) or None

    return InboundContext(
        chat_id=message.chat.id,
        first_name=message.from_user.first_name,
        text=message.text,
        command_name=command_name,
        command_argument=command_argument,
        message=message,
    )


# ---------------------------------------------------------------------------
# Router
# ---------------------------------------------------------------------------


class CommandRouter:
    """Event → ordered handler table.

    The table is filled at startup and only read afterwards.
    """

    def __init__(self) -> None:
        self._handlers: dict[Event, list[Handler]] = {event: [] for event in Event}

    def on(self, event: Event | str, handler: Handler) -> None:
        """Register *handler* for *event*.

        Raises:
            ValueError: *event* is not an :class:`Event` member.
            TypeError: *handler* is not callable.
        """
        try:
            event = Event(event)
        except ValueError:
            raise ValueError(f"Unknown event {event!r}") from None
        if not callable(handler):
            raise TypeError("The handler must be callable.")
        self._handlers[event].append(handler)

    def on_command(self, command_name: str, handler: Handler) -> None:
        """Register *handler* for ``COMMAND`` events named *command_name*.

        Raises:
            ValueError: *command_name* does not start with ``/``.
        """
        if not isinstance(command_name, str) or not command_name.startswith("/"):
            raise ValueError(
                f"Unexpected command name. Should be a string starting with / but is {command_name!r}"
            )

        async def _only_this_command(context: InboundContext) -> None:
            if context.command_name == command_name:
                await handler(context)

        _only_this_command.__qualname__ = f"on_command({command_name})"
        self.on(Event.COMMAND, _only_this_command)

    def handlers(self, event: Event) -> list[Handler]:
        """Registered handlers for *event*, in registration order."""
        return list(self._handlers[event])

    @staticmethod
    def classify(context: InboundContext) -> Event:
        if context.command_name is None:
            return Event.MESSAGE
        if context.command_name == START_COMMAND:
            return Event.START
        return Event.COMMAND

    async def dispatch(self, context: InboundContext) -> Event:
        """Run every handler of the context's event sequentially.

        Returns:
            The event that was dispatched.
        """
        event = self.classify(context)
        for handler in self._handlers[event]:
            try:
                await handler(context)
            except Exception:
                logger.exception(
                    "Handler %s failed for %s in chat %s",
                    getattr(handler, "__qualname__", handler),
                    context.command_name or "message",
                    context.chat_id,
                    extra={"event": events.HANDLER_ERROR},
                )
        return event
