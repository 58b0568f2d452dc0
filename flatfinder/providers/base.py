"""Source interface contract for all Flatfinder listing sources.

Every source must subclass :class:`BaseSource` and implement
:meth:`~BaseSource.fetch_page`.  Pagination, the page bound, loop detection
and duplicate collapsing live here so each source only has to know how to
turn one page into listings plus an optional next link.

Design decisions
----------------
* **Abstract base class (ABC)** rather than a ``Protocol``: sources share the
  paginating :meth:`~BaseSource.fetch_listings` and lifecycle helpers
  (``close``, ``__aenter__``/``__aexit__``) without duplication.
* **``source`` as a class variable**: the pipeline and tests can inspect the
  :class:`~flatfinder.core.models.ListingSource` without instantiation.
* **No retries**: a page failure aborts the whole crawl.  The next scheduled
  crawl is the retry.

Typical usage::

    class MySource(BaseSource):
        source = ListingSource.IMMOSCOUT

        async def fetch_page(self, subscriber_id: int, url: str) -> ResultPage:
            ...

    async with MySource() as src:
        listings = await src.fetch_listings(chat_id, query_url)
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from types import TracebackType
from typing import ClassVar

from flatfinder.core.exceptions import SourceSchemaError
from flatfinder.core.models import Listing, ListingSource

__all__ = ["BaseSource", "ResultPage", "DEFAULT_MAX_PAGES"]

logger = logging.getLogger(__name__)

#: Upper bound on pages followed per crawl when none is configured.
DEFAULT_MAX_PAGES: int = 50


@dataclass(frozen=True)
class ResultPage:
    """One parsed page of search results.

    Attributes:
        listings: Listings in the order the source returned them.
        next_url: Absolute URL of the following page, or ``None`` on the last page.
    """

    listings: list[Listing] = field(default_factory=list)
    next_url: str | None = None


class BaseSource(ABC):
    """Abstract base for all Flatfinder listing sources.

    Subclasses **must** declare :attr:`source` and implement
    :meth:`fetch_page`.  Override :meth:`close` to release resources.

    Args:
        max_pages: Maximum number of pages followed by :meth:`fetch_listings`.

    Raises:
        ValueError: If ``max_pages`` is less than 1.
    """

    source: ClassVar[ListingSource]

    def __init__(self, *, max_pages: int = DEFAULT_MAX_PAGES) -> None:
        if max_pages < 1:
            raise ValueError(f"max_pages must be ≥ 1, got {max_pages!r}.")
        self._max_pages = max_pages

    @property
    def name(self) -> str:
        """Short lower-case label used in errors and logs."""
        return str(self.source).lower()

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def close(self) -> None:  # noqa: B027
        """Release any resources held by this source.  No-op by default."""

    async def __aenter__(self) -> BaseSource:
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Core contract
    # ------------------------------------------------------------------

    @abstractmethod
    async def fetch_page(self, subscriber_id: int, url: str) -> ResultPage:
        """Fetch and parse exactly one result page.

        Args:
            subscriber_id: Chat the listings are crawled for.
            url: Absolute page URL.

        Returns:
            The page's listings and the resolved link to the next page.

        Raises:
            :class:`~flatfinder.core.exceptions.SourceFetchError`: transport
                failures and non-2xx responses.
            :class:`~flatfinder.core.exceptions.SourceSchemaError`: the page
                does not have the expected shape.
        """

    async def fetch_listings(self, subscriber_id: int, url: str) -> list[Listing]:
        """Fetch every page of the search at *url* and return all listings.

        See :meth:`fetch_all_pages`, which also reports whether pagination
        stopped at ``max_pages``.
        """
        return (await self.fetch_all_pages(subscriber_id, url)).listings

    async def fetch_all_pages(self, subscriber_id: int, url: str) -> ResultPage:
        """Fetch every page of the search at *url*.

        Pages are followed in order until one has no next link or
        ``max_pages`` pages were read.  Listings are appended in page order;
        an id that already appeared on an earlier page is dropped.

        Args:
            subscriber_id: Chat the listings are crawled for.
            url: First page of the search.

        Returns:
            All listings of the search, possibly empty.  ``next_url`` is the
            first page that was not fetched because ``max_pages`` was reached,
            otherwise ``None``.

        Raises:
            :class:`~flatfinder.core.exceptions.SourceSchemaError`: a next link
                points at a page that was already read, or a page is malformed.
            :class:`~flatfinder.core.exceptions.SourceFetchError`: a page
                could not be fetched.
        """
        listings: list[Listing] = []
        seen_ids: set[str] = set()
        visited: set[str] = set()
        next_url: str | None = url

        while next_url is not None:
            if next_url in visited:
                raise SourceSchemaError(
                    self.name, f"Pagination loops back to already visited page {next_url}"
                )
            if len(visited) >= self._max_pages:
                logger.warning(
                    "[%s] Stopping pagination after %d pages; next page %s not fetched.",
                    self.name,
                    self._max_pages,
                    next_url,
                )
                return ResultPage(listings=listings, next_url=next_url)
            visited.add(next_url)

            page = await self.fetch_page(subscriber_id, next_url)
            for listing in page.listings:
                if listing.id in seen_ids:
                    logger.debug("[%s] Duplicate listing %s dropped.", self.name, listing.id)
                    continue
                seen_ids.add(listing.id)
                listings.append(listing)

            logger.debug(
                "[%s] Page %d: %d listings (next=%s)",
                self.name,
                len(visited),
                len(page.listings),
                page.next_url or "none",
            )
            next_url = page.next_url

        logger.info(
            "[%s] Fetched %d listings from %d page(s).", self.name, len(listings), len(visited)
        )
        return ResultPage(listings=listings)
