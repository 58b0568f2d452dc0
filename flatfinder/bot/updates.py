"""Typed views of the Telegram ``Update`` envelope.

Only the fields the bot reads are modelled; everything else is ignored so
new Telegram fields never break parsing.  ``Message.chat`` and
``Message.from`` are optional here although Telegram always sends ``chat``:
an update missing them is acknowledged and skipped rather than rejected.

Reference: https://core.telegram.org/bots/api#update
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

__all__ = ["User", "Chat", "MessageEntity", "Message", "Update"]


class _TelegramModel(BaseModel):
    model_config = ConfigDict(extra="ignore", frozen=True, populate_by_name=True)


class User(_TelegramModel):
    id: int
    is_bot: bool = False
    first_name: str = ""


class Chat(_TelegramModel):
    id: int
    type: str


class MessageEntity(_TelegramModel):
    """A special span of a text message.

    ``offset`` and ``length`` count UTF-16 code units, not Python characters.
    """

    type: str
    offset: int = Field(..., ge=0)
    length: int = Field(..., ge=0)


class Message(_TelegramModel):
    message_id: int
    from_user: User | None = Field(default=None, alias="from")
    chat: Chat | None = None
    text: str | None = None
    entities: list[MessageEntity] = Field(default_factory=list)


class Update(_TelegramModel):
    update_id: int
    message: Message | None = None
