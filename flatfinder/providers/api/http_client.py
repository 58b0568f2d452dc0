"""Async HTTP client for JSON listing sources.

Wraps :class:`httpx.AsyncClient` with:

* **User-Agent rotation**: a small pool of browser UA strings; one is picked
  per request.
* **Structured error mapping**: network failures, timeouts and every non-2xx
  status raise :class:`~flatfinder.core.exceptions.SourceFetchError`.

Requests are not retried.  A failed page aborts the crawl and the
next scheduled crawl starts over.

Typical usage::

    from flatfinder.providers.api.http_client import SourceHttpClient

    async with SourceHttpClient(source="immoscout") as client:
        response = await client.post(search_url)
        data = response.json()
"""

from __future__ import annotations

import logging
import random
from types import TracebackType
from typing import Final

import httpx

from flatfinder.core.exceptions import SourceFetchError

__all__ = ["SourceHttpClient"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_DEFAULT_CONNECT_TIMEOUT: Final[float] = 10.0
_DEFAULT_READ_TIMEOUT: Final[float] = 30.0
_DEFAULT_WRITE_TIMEOUT: Final[float] = 10.0

_USER_AGENTS: Final[list[str]] = [
    (
        "Mozilla/5.0 (Windows NT 10.0; Win64; x64) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 10_15_7) "
        "AppleWebKit/537.36 (KHTML, like Gecko) "
        "Chrome/124.0.0.0 Safari/537.36"
    ),
    (
        "Mozilla/5.0 (X11; Ubuntu; Linux x86_64; rv:125.0) "
        "Gecko/20100101 Firefox/125.0"
    ),
    (
        "Mozilla/5.0 (Macintosh; Intel Mac OS X 14_4_1) "
        "AppleWebKit/605.1.15 (KHTML, like Gecko) "
        "Version/17.4 Safari/605.1.15"
    ),
]


def _pick_user_agent() -> str:
    return random.choice(_USER_AGENTS)


# ---------------------------------------------------------------------------
# Public client
# ---------------------------------------------------------------------------


class SourceHttpClient:
    """Single-attempt async HTTP client shared by the pages of one crawl.

    Args:
        source: Short source label used in error messages (``"immoscout"``).
        connect_timeout: TCP connection establishment timeout in seconds.
        read_timeout: Timeout for receiving the response.
        write_timeout: Timeout for uploading the request body.
        transport: Optional :class:`httpx.AsyncBaseTransport`; tests pass an
            :class:`httpx.MockTransport` here.
    """

    def __init__(
        self,
        *,
        source: str,
        connect_timeout: float = _DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = _DEFAULT_READ_TIMEOUT,
        write_timeout: float = _DEFAULT_WRITE_TIMEOUT,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._source = source
        self._transport = transport
        self._timeout = httpx.Timeout(
            connect=connect_timeout,
            read=read_timeout,
            write=write_timeout,
            pool=5.0,
        )
        self._http: httpx.AsyncClient | None = None

    # ------------------------------------------------------------------
    # Context manager
    # ------------------------------------------------------------------

    async def __aenter__(self) -> SourceHttpClient:
        await self._ensure_client()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Public request methods
    # ------------------------------------------------------------------

    async def post(self, url: str) -> httpx.Response:
        """Perform one body-less HTTP POST.  See :meth:`request`."""
        return await self.request("POST", url)

    async def request(self, method: str, url: str) -> httpx.Response:
        """Perform exactly one HTTP request.

        The request carries no ``Accept`` and no ``Content-Type`` header; the
        search endpoint answers with JSON for that shape.

        Args:
            method: HTTP verb.
            url: Absolute request URL.

        Returns:
            :class:`httpx.Response` on HTTP 2xx.

        Raises:
            SourceFetchError: On network errors, timeouts and non-2xx statuses.
        """
        client = await self._ensure_client()

        try:
            response = await client.request(
                method, url, headers={"User-Agent": _pick_user_agent()}
            )
        except httpx.HTTPError as exc:
            raise SourceFetchError(
                self._source, f"{method} {url} failed: {type(exc).__name__}: {exc}"
            ) from exc

        logger.debug(
            "HTTP %s %s → %d (%d bytes)",
            method,
            url,
            response.status_code,
            len(response.content),
        )

        if not response.is_success:
            raise SourceFetchError(
                self._source,
                f"HTTP {response.status_code} from {method} {url}: {response.text[:200]}",
            )
        return response

    async def close(self) -> None:
        """Close the underlying HTTP client.  Safe to call more than once."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("SourceHttpClient session closed (%s).", self._source)
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                timeout=self._timeout,
                follow_redirects=True,
                transport=self._transport,
            )
            self._http.headers.pop("Accept", None)
        return self._http
