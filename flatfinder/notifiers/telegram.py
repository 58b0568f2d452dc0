"""Telegram Bot API client for Flatfinder.

Provides :class:`TelegramBot`, a lightweight async wrapper around the Bot API
methods the service speaks: ``sendMessage``, ``getUpdates``,
``setMyCommands``, ``setWebhook`` and ``deleteWebhook``.  It handles:

* A keep-alive :class:`httpx.AsyncClient` with an explicit timeout budget.
* Automatic retries with capped exponential back-off via :mod:`tenacity`
  (on by default; ``getUpdates`` opts out because the poll loop is its own
  retry).
* ``retry_after`` honouring on HTTP 429 responses.
* Structured exception mapping to
  :class:`~flatfinder.core.exceptions.TelegramError` and
  :class:`~flatfinder.core.exceptions.TelegramRateLimitError`.

This module owns *transport* concerns only.  Message formatting lives in
:mod:`flatfinder.notifiers.formatter`; delivery policy in
:mod:`flatfinder.notifiers.notifier`.

Typical usage::

    async with TelegramBot(token="123:ABC") as bot:
        await bot.send_message(1234, "<b>Hello</b>")
        updates = await bot.get_updates(offset=0, timeout=30)
"""

from __future__ import annotations

import logging
import random
from typing import Any, Final

import httpx
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
)

from flatfinder.core.exceptions import TelegramError, TelegramRateLimitError

__all__ = ["TelegramBot"]

logger = logging.getLogger(__name__)

# ---------------------------------------------------------------------------
# Constants
# ---------------------------------------------------------------------------

_TELEGRAM_BASE_URL: Final[str] = "https://api.telegram.org"

#: HTTP status codes that indicate a transient server error and are safe to retry.
_RETRYABLE_STATUS: Final[frozenset[int]] = frozenset({500, 502, 503, 504})

_DEFAULT_CONNECT_TIMEOUT: Final[float] = 5.0

#: Read timeout for ordinary calls (Telegram usually responds within 2 s).
_DEFAULT_READ_TIMEOUT: Final[float] = 10.0

_DEFAULT_WRITE_TIMEOUT: Final[float] = 10.0

#: Default total attempts (1 initial + 3 retries).
_DEFAULT_MAX_ATTEMPTS: Final[int] = 4

#: Extra read time granted on top of the long-poll timeout.
_POLL_READ_MARGIN: Final[float] = 10.0

_MAX_BACKOFF_JITTER: Final[float] = 5.0
_MAX_BACKOFF_BASE: Final[float] = 30.0


# ---------------------------------------------------------------------------
# Internal sentinel exception
# ---------------------------------------------------------------------------


class _RetryableServerError(TelegramError):
    """Internal sentinel raised on 5xx to trigger a tenacity retry.

    Escapes :meth:`TelegramBot.call` only when retries are disabled or exhausted,
    and then still is a :class:`TelegramError`.
    """


# ---------------------------------------------------------------------------
# Wait strategy
# ---------------------------------------------------------------------------


def _telegram_wait(retry_state: RetryCallState) -> float:
    """Seconds to sleep before the next attempt.

    Honours ``retry_after`` from a :class:`TelegramRateLimitError`; otherwise
    exponential back-off with jitter, capped at :data:`_MAX_BACKOFF_BASE`.
    """
    if retry_state.outcome is not None:
        exc = retry_state.outcome.exception()
        if isinstance(exc, TelegramRateLimitError) and exc.retry_after > 0:
            logger.debug("Honouring Telegram retry_after of %.1f s", exc.retry_after)
            return exc.retry_after

    attempt = max(retry_state.attempt_number, 1)
    base = min(2.0 ** (attempt - 1), _MAX_BACKOFF_BASE)
    jitter = random.uniform(0.0, min(base, _MAX_BACKOFF_JITTER))
    return base + jitter


# ---------------------------------------------------------------------------
# Client
# ---------------------------------------------------------------------------


class TelegramBot:
    """Async Telegram Bot API client with timeout budget and automatic retries.

    Manages a single :class:`httpx.AsyncClient` for the object lifetime.
    Use as an ``async with`` context manager, or call :meth:`close`
    explicitly when done.

    Args:
        token: Bot token as provided by @BotFather (non-empty).
        connect_timeout: Seconds to wait for a TCP connection.
        read_timeout: Seconds to wait for a response to an ordinary call.
        write_timeout: Seconds to wait while uploading the request body.
        max_attempts: Total attempts for retried calls.  Must be ≥ 1.
        transport: Optional :class:`httpx.AsyncBaseTransport`; tests pass an
            :class:`httpx.MockTransport` here.

    Raises:
        ValueError: If ``token`` or ``max_attempts`` are invalid.
    """

    def __init__(
        self,
        token: str,
        *,
        connect_timeout: float = _DEFAULT_CONNECT_TIMEOUT,
        read_timeout: float = _DEFAULT_READ_TIMEOUT,
        write_timeout: float = _DEFAULT_WRITE_TIMEOUT,
        max_attempts: int = _DEFAULT_MAX_ATTEMPTS,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        if not token:
            raise ValueError("TelegramBot requires a non-empty token.")
        if max_attempts < 1:
            raise ValueError(f"max_attempts must be ≥ 1, got {max_attempts!r}.")

        self._token = token
        self._max_attempts = max_attempts
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

    async def __aenter__(self) -> TelegramBot:
        await self._ensure_http_client()
        return self

    async def __aexit__(self, *_args: object) -> None:
        await self.close()

    # ------------------------------------------------------------------
    # Bot API methods
    # ------------------------------------------------------------------

    async def send_message(
        self,
        chat_id: int | str,
        text: str,
        *,
        parse_mode: str = "HTML",
        disable_web_page_preview: bool = False,
    ) -> dict[str, Any]:
        """Send a text message to *chat_id* and return the sent ``Message``.

        Args:
            chat_id: Destination chat.
            text: Ready-to-send text, already escaped for ``parse_mode``.
            parse_mode: ``"HTML"`` (default), ``"MarkdownV2"`` or ``""`` for
                plain text.
            disable_web_page_preview: Suppress the link preview card.

        Raises:
            TelegramRateLimitError: After exhausting retries on HTTP 429.
            TelegramError: Any other non-recoverable error.
        """
        params: dict[str, Any] = {"chat_id": chat_id, "text": text}
        if parse_mode:
            params["parse_mode"] = parse_mode
        if disable_web_page_preview:
            params["disable_web_page_preview"] = True
        return await self.call("sendMessage", params)

    async def get_updates(self, *, offset: int, timeout: int) -> list[dict[str, Any]]:
        """Long-poll for updates with ``update_id >= offset``.

        Not retried: the caller's poll loop decides how to back off.

        Args:
            offset: First update id to return.
            timeout: Long-poll timeout in seconds passed to Telegram.

        Returns:
            Raw update envelopes in arrival order.
        """
        result = await self.call(
            "getUpdates",
            {"offset": offset, "timeout": timeout, "allowed_updates": ["message"]},
            read_timeout=timeout + _POLL_READ_MARGIN,
            retry=False,
        )
        if not isinstance(result, list):
            raise TelegramError(f"getUpdates returned {type(result).__name__}, expected list")
        return result

    async def set_my_commands(self, commands: list[dict[str, str]]) -> None:
        """Publish the command menu shown by Telegram clients."""
        await self.call("setMyCommands", {"commands": commands})

    async def set_webhook(self, url: str, *, secret_token: str = "") -> None:
        """Register *url* as the push endpoint for updates."""
        params: dict[str, Any] = {"url": url, "allowed_updates": ["message"]}
        if secret_token:
            params["secret_token"] = secret_token
        await self.call("setWebhook", params)

    async def delete_webhook(self) -> None:
        """Remove any registered webhook so ``getUpdates`` is accepted."""
        await self.call("deleteWebhook", {})

    # ------------------------------------------------------------------
    # Generic call
    # ------------------------------------------------------------------

    async def call(
        self,
        method: str,
        params: dict[str, Any],
        *,
        read_timeout: float | None = None,
        retry: bool = True,
    ) -> Any:
        """Invoke Bot API *method* and return the ``result`` field.

        Retries automatically (when ``retry`` is true) on network failures,
        HTTP 429 and HTTP 5xx.  Other 4xx responses and ``ok=false`` bodies
        raise immediately.

        Args:
            method: Bot API method name, e.g. ``"sendMessage"``.
            params: JSON-serialisable parameters.
            read_timeout: Override for the read timeout of this call.
            retry: Set ``False`` for a single attempt.

        Returns:
            The decoded ``result`` value of the response.

        Raises:
            TelegramRateLimitError: HTTP 429 after the last attempt.
            TelegramError: Any other failure, including network errors.
        """
        attempts = self._max_attempts if retry else 1
        retry_types = (
            TelegramRateLimitError,
            _RetryableServerError,
            httpx.TransportError,
        )

        def _before_sleep(rs: RetryCallState) -> None:
            exc = rs.outcome.exception() if rs.outcome else None
            logger.warning(
                "Telegram %s attempt %d/%d failed (%s), retrying in %.1f s",
                method,
                rs.attempt_number,
                attempts,
                type(exc).__name__ if exc else "?",
                _telegram_wait(rs),
            )

        try:
            async for attempt in AsyncRetrying(
                wait=_telegram_wait,
                stop=stop_after_attempt(attempts),
                retry=retry_if_exception_type(retry_types),
                reraise=True,
                before_sleep=_before_sleep,
            ):
                with attempt:
                    return await self._single_attempt(method, params, read_timeout)
        except httpx.TransportError as exc:
            raise TelegramError(f"{method} transport failure: {type(exc).__name__}: {exc}") from exc
        raise AssertionError("unreachable: tenacity exited without result or exception")

    async def close(self) -> None:
        """Close the HTTP session.  Safe to call multiple times."""
        if self._http is not None and not self._http.is_closed:
            await self._http.aclose()
            logger.debug("TelegramBot HTTP session closed.")
        self._http = None

    # ------------------------------------------------------------------
    # Internal helpers
    # ------------------------------------------------------------------

    async def _ensure_http_client(self) -> httpx.AsyncClient:
        if self._http is None or self._http.is_closed:
            self._http = httpx.AsyncClient(
                base_url=_TELEGRAM_BASE_URL,
                timeout=self._timeout,
                headers={"User-Agent": "Flatfinder/0.1"},
                transport=self._transport,
            )
            logger.debug("TelegramBot HTTP session opened.")
        return self._http

    async def _single_attempt(
        self, method: str, params: dict[str, Any], read_timeout: float | None
    ) -> Any:
        """Perform exactly one POST to ``/bot<token>/<method>``.

        Raises:
            TelegramRateLimitError: HTTP 429.
            _RetryableServerError: HTTP 5xx.
            TelegramError: Non-retryable HTTP error or ``ok=false``.
            httpx.TransportError: Network-level error, propagated for retry.
        """
        client = await self._ensure_http_client()
        endpoint = f"/bot{self._token}/{method}"
        timeout = self._timeout
        if read_timeout is not None:
            timeout = httpx.Timeout(
                connect=self._timeout.connect,
                read=read_timeout,
                write=self._timeout.write,
                pool=self._timeout.pool,
            )

        logger.debug("Telegram POST %s (params=%s)", method, sorted(params))

        try:
            response = await client.post(endpoint, json=params, timeout=timeout)
        except httpx.TransportError:
            logger.debug("Transport error on Telegram %s.", method, exc_info=True)
            raise

        logger.debug("Telegram %s response: HTTP %d", method, response.status_code)

        if response.status_code == 200:
            return _extract_result(response)

        if response.status_code == 429:
            retry_after = _parse_retry_after(response)
            logger.warning("Telegram rate limit (HTTP 429) retry_after=%.1f s", retry_after)
            raise TelegramRateLimitError(retry_after=retry_after)

        if response.status_code in _RETRYABLE_STATUS:
            raise _RetryableServerError(
                f"Transient server error on {method}: HTTP {response.status_code}",
                status_code=response.status_code,
            )

        description = _extract_description(response)
        raise TelegramError(f"{method}: {description}", status_code=response.status_code)


# ---------------------------------------------------------------------------
# Response parsing helpers
# ---------------------------------------------------------------------------


def _extract_result(response: httpx.Response) -> Any:
    """Return ``result`` from an HTTP-200 body, or raise if ``ok`` is false.

    Telegram occasionally answers HTTP 200 with ``"ok": false`` for
    application-layer errors; those surface as :class:`TelegramError`.
    """
    try:
        body = response.json()
    except ValueError as exc:
        raise TelegramError(
            f"Could not parse Telegram 200 response: {exc}",
            status_code=200,
        ) from exc

    if not isinstance(body, dict) or not body.get("ok"):
        description = body.get("description", "(no description)") if isinstance(body, dict) else body
        raise TelegramError(f"Telegram ok=false: {description}", status_code=200)
    return body.get("result")


def _parse_retry_after(response: httpx.Response) -> float:
    """Extract the back-off delay from a Telegram HTTP 429 response.

    Prefers ``parameters.retry_after`` in the JSON body, then the
    ``Retry-After`` header, then ``1.0``.  Never returns less than one second.
    """
    try:
        body = response.json()
        ra = body.get("parameters", {}).get("retry_after")
        if ra is not None:
            return max(float(ra), 1.0)
    except (ValueError, AttributeError, TypeError):
        pass

    header = response.headers.get("retry-after", "")
    if header:
        try:
            return max(float(header), 1.0)
        except ValueError:
            pass

    return 1.0


def _extract_description(response: httpx.Response) -> str:
    """Human-readable error text from a non-2xx response (never empty)."""
    try:
        body = response.json()
        return str(body.get("description") or response.text or f"HTTP {response.status_code}")
    except (ValueError, AttributeError):
        return response.text or f"HTTP {response.status_code}"
