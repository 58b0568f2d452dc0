"""Live integration tests for the immobilienscout24 source.

These tests POST a real search URL to immobilienscout24.de and check that
the response still parses into valid :class:`~flatfinder.core.models.Listing`
objects.  They catch silent changes of the search JSON before they turn into
failed crawls in production.

Default behaviour
-----------------
Marked ``@pytest.mark.integration`` and excluded from the default run
(``addopts = "-m 'not integration'"`` in ``pyproject.toml``).

Run on demand::

    pytest -m integration tests/integration/test_immoscout_live.py

Skipped when ``IMMOSCOUT_SEARCH_URL`` is absent from the environment or the
local ``.env`` file.
"""

from __future__ import annotations

import logging
import os

import pytest
from dotenv import load_dotenv

from flatfinder.core.models import Listing, ListingSource
from flatfinder.providers.api.immoscout import ImmoscoutSource

logger = logging.getLogger(__name__)

load_dotenv()

_SEARCH_URL: str = os.environ.get("IMMOSCOUT_SEARCH_URL", "")

_skip_if_no_search = pytest.mark.skipif(
    not _SEARCH_URL,
    reason=(
        "IMMOSCOUT_SEARCH_URL is not set; skipping live immoscout tests. "
        "Copy a search URL from the browser into .env."
    ),
)


@pytest.mark.integration
@_skip_if_no_search
class TestImmoscoutSourceLive:
    async def test_first_page_parses(self) -> None:
        """One page is enough to validate the request shape and the mapper."""
        async with ImmoscoutSource(max_pages=1) as source:
            listings = await source.fetch_listings(0, _SEARCH_URL)

        for listing in listings:
            assert isinstance(listing, Listing)
            assert listing.source == ListingSource.IMMOSCOUT
            assert listing.url.startswith("https://www.immobilienscout24.de/expose/")
            assert listing.subscriber_id == 0

        logger.info("immoscout live: %d listing(s) on the first page.", len(listings))

    async def test_ids_unique_across_two_pages(self) -> None:
        async with ImmoscoutSource(max_pages=2) as source:
            listings = await source.fetch_listings(0, _SEARCH_URL)

        ids = [listing.id for listing in listings]
        assert len(ids) == len(set(ids))
