"""JSON-endpoint sources: immobilienscout24.de."""

from flatfinder.providers.api.http_client import SourceHttpClient
from flatfinder.providers.api.immoscout import ImmoscoutSource, parse_page

__all__ = ["SourceHttpClient", "ImmoscoutSource", "parse_page"]
