"""Flatfinder core domain models.

This module defines the two persisted domain records shared by the source,
storage, bot and notification layers:

* :class:`Subscriber`: one Telegram chat registered for notifications.
* :class:`Listing`: one search result, scoped to the subscriber it was
  crawled for.

Typical usage::

    from flatfinder.core.models import Listing, ListingSource

    listing = Listing(
        subscriber_id=1234,
        id="118532113",
        source=ListingSource.IMMOSCOUT,
        size="64.5",
        rooms=2,
        price=980,
        title="Helle 2-Zimmer-Wohnung",
        url="https://www.immobilienscout24.de/expose/118532113",
        data={"resultlist.realEstate": {...}},
    )
"""

from __future__ import annotations

import logging
import math
from enum import StrEnum
from typing import Any

from pydantic import BaseModel, Field, field_validator

__all__ = [
    "ListingSource",
    "Listing",
    "Subscriber",
]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ListingSource(StrEnum):
    """Canonical names for every supported listing source.

    Serialises as a plain string so DB rows and JSON logs stay readable.
    """

    IMMOSCOUT = "IMMOSCOUT"


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _to_float(value: object) -> float:
    """Parse *value* as a finite float, accepting numeric strings."""
    if isinstance(value, bool):
        raise ValueError(f"expected a number, got {value!r}")
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
    try:
        result = float(value)  # type: ignore[arg-type]
    except (TypeError, ValueError) as exc:
        raise ValueError(f"cannot be parsed to float: {value!r}") from exc
    if not math.isfinite(result):
        raise ValueError(f"must be finite, got {value!r}")
    return result


# ---------------------------------------------------------------------------
# Subscriber
# ---------------------------------------------------------------------------


class Subscriber(BaseModel):
    """A chat registered to receive listing notifications.

    Created by a successful ``/auth`` and never deleted.  ``active`` starts
    out ``False`` and is flipped by ``/search``, ``/pause`` and
    ``/continue``.

    Attributes:
        id: Telegram chat identifier (unique).
        first_name: Display name of the user owning the private chat.
        active: ``True`` if new listings should be delivered.
        query: Search URL to crawl; ``None`` until ``/search`` is used.
    """

    model_config = {"frozen": True}

    id: int = Field(..., description="Telegram chat identifier.")
    first_name: str = Field(default="", description="Display name.")
    active: bool = Field(default=False, description="Deliver notifications?")
    query: str | None = Field(default=None, description="Search URL or None.")

    @field_validator("query", mode="before")
    @classmethod
    def _blank_query_to_none(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            return None
        return v


# ---------------------------------------------------------------------------
# Listing
# ---------------------------------------------------------------------------


class Listing(BaseModel):
    """Normalised representation of one search result for one subscriber.

    The pair ``(subscriber_id, id)`` is the storage key: the same ``id`` may
    be new for two subscribers independently.  Instances are frozen; a
    stored listing is never updated.

    Numeric fields accept numbers or numeric strings.  ``rooms`` and
    ``price`` are truncated towards zero when the source reports fractions
    (immoscout happily returns ``2.5`` rooms).

    Attributes:
        subscriber_id: Chat the listing was crawled for.
        id: Source-local listing identifier.
        source: Which platform the listing came from.
        size: Living space in m².
        rooms: Number of rooms.
        price: Monthly rent in EUR.
        title: Listing headline.
        url: Canonical detail page URL.
        data: Raw source payload, kept for debugging.
    """

    model_config = {"frozen": True}

    subscriber_id: int = Field(..., description="Owning subscriber chat id.")
    id: str = Field(..., min_length=1, description="Source-local listing id.")
    source: ListingSource = Field(..., description="Source platform.")
    size: float = Field(..., ge=0, description="Living space in m².")
    rooms: int = Field(..., ge=0, description="Number of rooms.")
    price: int = Field(..., ge=0, description="Monthly rent in EUR.")
    title: str = Field(..., min_length=1, description="Listing headline.")
    url: str = Field(..., min_length=1, description="Detail page URL.")
    data: dict[str, Any] = Field(..., description="Raw source payload.")

    # ------------------------------------------------------------------
    # Validators
    # ------------------------------------------------------------------

    @field_validator("id", mode="before")
    @classmethod
    def _id_to_str(cls, v: object) -> object:
        """Accept numeric ids; the source mixes ints and strings."""
        if isinstance(v, int) and not isinstance(v, bool):
            return str(v)
        return v

    @field_validator("size", mode="before")
    @classmethod
    def _parse_size(cls, v: object) -> float:
        return _to_float(v)

    @field_validator("rooms", "price", mode="before")
    @classmethod
    def _parse_truncated_int(cls, v: object) -> int:
        return int(_to_float(v))

    @field_validator("title", "url", mode="before")
    @classmethod
    def _reject_blank(cls, v: object) -> object:
        if isinstance(v, str) and not v.strip():
            raise ValueError("must not be blank")
        return v
