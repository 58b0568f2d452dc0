"""Listing sources: fetch and parse paginated search results."""

from flatfinder.providers.api.immoscout import ImmoscoutSource
from flatfinder.providers.base import BaseSource, ResultPage

__all__ = ["BaseSource", "ResultPage", "ImmoscoutSource"]
