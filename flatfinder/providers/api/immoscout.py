"""immobilienscout24.de search source for Flatfinder.

A search URL copied from the browser (``https://www.immobilienscout24.de/Suche/...``)
answers a body-less ``POST`` with the JSON search model instead of HTML.
The part we consume looks like::

    {
      "searchResponseModel": {
        "resultlist.resultlist": {
          "paging": {"next": {"@xlink.href": "/Suche/...?pagenumber=2"}, ...},
          "resultlistEntries": [
            {"resultlistEntry": [ {"resultlist.realEstate": {...}}, ... ]}
          ]
        }
      }
    }

``resultlistEntry`` is a bare object instead of a list when the page holds a
single result.  ``resultlistEntries`` has never been observed with more than
one element and is rejected if it does.

Typical usage::

    async with ImmoscoutSource(max_pages=settings.source_max_pages) as source:
        listings = await source.fetch_listings(chat_id, subscriber.query)
"""

from __future__ import annotations

import logging
from typing import Any
from urllib.parse import urljoin

from pydantic import ValidationError

from flatfinder.core.exceptions import SourceFetchError, SourceSchemaError
from flatfinder.core.models import Listing, ListingSource
from flatfinder.providers.api.http_client import SourceHttpClient
from flatfinder.providers.base import DEFAULT_MAX_PAGES, BaseSource, ResultPage

__all__ = ["ImmoscoutSource", "parse_page", "detail_url"]

logger = logging.getLogger(__name__)

_SOURCE_NAME: str = "immoscout"

_DETAIL_URL: str = "https://www.immobilienscout24.de/expose/{id}"

_REAL_ESTATE_KEY: str = "resultlist.realEstate"


# ---------------------------------------------------------------------------
# Parsing helpers (module-level, stateless)
# ---------------------------------------------------------------------------


def detail_url(listing_id: str | int) -> str:
    """Return the canonical expose URL for *listing_id*."""
    return _DETAIL_URL.format(id=listing_id)


def _as_list(value: Any) -> list[Any]:
    """Wrap a bare object into a one-element list; ``None`` becomes ``[]``."""
    if value is None:
        return []
    if isinstance(value, list):
        return value
    return [value]


def _build_listing(subscriber_id: int, entry: Any) -> Listing:
    """Map one ``resultlistEntry`` element to a :class:`Listing`.

    Raises:
        SourceSchemaError: A required field is missing or fails validation.
    """
    try:
        real_estate = entry[_REAL_ESTATE_KEY]
        listing_id = real_estate["@id"]
        rooms = real_estate["numberOfRooms"]
        price = real_estate["price"]["value"]
        size = real_estate["livingSpace"]
        title = real_estate["title"]
    except (KeyError, TypeError) as exc:
        raise SourceSchemaError(
            _SOURCE_NAME, f"Result entry lacks required field {exc}"
        ) from exc

    try:
        return Listing(
            subscriber_id=subscriber_id,
            id=listing_id,
            source=ListingSource.IMMOSCOUT,
            size=size,
            rooms=rooms,
            price=price,
            title=title,
            url=detail_url(listing_id),
            data=entry,
        )
    except ValidationError as exc:
        raise SourceSchemaError(
            _SOURCE_NAME, f"Result entry {listing_id!r} is invalid: {exc}"
        ) from exc


def parse_page(subscriber_id: int, document: Any, page_url: str) -> ResultPage:
    """Parse one decoded search response into a :class:`ResultPage`.

    Args:
        subscriber_id: Chat the listings are crawled for.
        document: Decoded JSON body.
        page_url: URL the document was fetched from; relative next links are
            resolved against it.

    Returns:
        The page's listings in source order plus the absolute next-page URL.

    Raises:
        SourceSchemaError: The document does not have the expected shape, or
            any entry lacks a required field.  A single bad entry fails the
            whole page.
    """
    try:
        results = document["searchResponseModel"]["resultlist.resultlist"]
    except (KeyError, TypeError):
        results = None
    if not isinstance(results, dict):
        raise SourceSchemaError(
            _SOURCE_NAME,
            "Unknown response format. Expected searchResponseModel['resultlist.resultlist'] key.",
        )

    raw_groups = results.get("resultlistEntries")
    if not isinstance(raw_groups, (list, dict)):
        raise SourceSchemaError(
            _SOURCE_NAME, f"Key 'resultlistEntries' is missing for query {page_url}"
        )
    entry_groups = _as_list(raw_groups)
    if len(entry_groups) != 1:
        raise SourceSchemaError(
            _SOURCE_NAME,
            f"Unexpected resultlistEntries length (expected 1 but is {len(entry_groups)}) "
            f"for query {page_url}",
        )
    if not isinstance(entry_groups[0], dict):
        raise SourceSchemaError(_SOURCE_NAME, f"Malformed resultlistEntries for query {page_url}")
    entries = _as_list(entry_groups[0].get("resultlistEntry"))

    paging = results.get("paging")
    if not isinstance(paging, dict):
        raise SourceSchemaError(_SOURCE_NAME, f"Key 'paging' is missing for query {page_url}")

    next_link = paging.get("next")
    href = next_link.get("@xlink.href") if isinstance(next_link, dict) else None
    next_url = urljoin(page_url, href) if href else None

    listings = [_build_listing(subscriber_id, entry) for entry in entries]
    return ResultPage(listings=listings, next_url=next_url)


# ---------------------------------------------------------------------------
# Source class
# ---------------------------------------------------------------------------


class ImmoscoutSource(BaseSource):
    """Listing source backed by the immobilienscout24.de search endpoint.

    The source lazily creates its :class:`SourceHttpClient` and tears it down
    in :meth:`close` unless the client was injected.

    Args:
        max_pages: Upper bound on pages per crawl.
        http_client: Optional pre-built HTTP client (useful for testing).
    """

    source = ListingSource.IMMOSCOUT

    def __init__(
        self,
        *,
        max_pages: int = DEFAULT_MAX_PAGES,
        http_client: SourceHttpClient | None = None,
    ) -> None:
        super().__init__(max_pages=max_pages)
        self._http = http_client or SourceHttpClient(source=_SOURCE_NAME)
        self._owns_http = http_client is None

    async def fetch_page(self, subscriber_id: int, url: str) -> ResultPage:
        response = await self._http.post(url)
        try:
            document = response.json()
        except ValueError as exc:
            raise SourceFetchError(
                _SOURCE_NAME, f"Response from {url} is not JSON: {response.text[:200]!r}"
            ) from exc
        return parse_page(subscriber_id, document, str(response.url))

    async def close(self) -> None:
        if self._owns_http:
            await self._http.close()
