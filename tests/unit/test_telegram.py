"""Unit tests for the Telegram Bot API client.

Covers:
- :class:`~flatfinder.notifiers.telegram.TelegramBot` request shape, result
  extraction, retry behaviour and error mapping.
- ``retry_after`` parsing for HTTP 429 responses.

All HTTP traffic goes through :class:`httpx.MockTransport`; the retry wait is
patched to zero so no test sleeps.
"""

from __future__ import annotations

import json
from collections.abc import Callable

import httpx
import pytest

from flatfinder.core.exceptions import TelegramError, TelegramRateLimitError
from flatfinder.notifiers import telegram as telegram_module
from flatfinder.notifiers.telegram import TelegramBot, _parse_retry_after

TOKEN = "123456:TEST-TOKEN"


@pytest.fixture(autouse=True)
def _no_backoff(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setattr(telegram_module, "_telegram_wait", lambda retry_state: 0.0)


def _bot(handler: Callable[[httpx.Request], httpx.Response], **kwargs: object) -> TelegramBot:
    return TelegramBot(TOKEN, transport=httpx.MockTransport(handler), **kwargs)


def _ok(result: object) -> httpx.Response:
    return httpx.Response(200, json={"ok": True, "result": result})


class TestCalls:
    async def test_send_message_request_shape(self) -> None:
        requests: list[httpx.Request] = []

        def handler(request: httpx.Request) -> httpx.Response:
            requests.append(request)
            return _ok({"message_id": 1})

        async with _bot(handler) as bot:
            result = await bot.send_message(42, "<b>hi</b>")

        assert result == {"message_id": 1}
        [request] = requests
        assert request.url.path == f"/bot{TOKEN}/sendMessage"
        assert json.loads(request.content) == {
            "chat_id": 42,
            "text": "<b>hi</b>",
            "parse_mode": "HTML",
        }

    async def test_plain_text_omits_parse_mode(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return _ok({"message_id": 1})

        async with _bot(handler) as bot:
            await bot.send_message(42, "plain", parse_mode="", disable_web_page_preview=True)

        assert "parse_mode" not in bodies[0]
        assert bodies[0]["disable_web_page_preview"] is True

    async def test_get_updates_returns_list(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return _ok([{"update_id": 5}, {"update_id": 6}])

        async with _bot(handler) as bot:
            updates = await bot.get_updates(offset=5, timeout=0)

        assert [u["update_id"] for u in updates] == [5, 6]
        assert bodies[0] == {"offset": 5, "timeout": 0, "allowed_updates": ["message"]}

    async def test_set_webhook_sends_secret(self) -> None:
        bodies: list[dict] = []

        def handler(request: httpx.Request) -> httpx.Response:
            bodies.append(json.loads(request.content))
            return _ok(True)

        async with _bot(handler) as bot:
            await bot.set_webhook("https://bot.example.com/hook", secret_token="s3cret")

        assert bodies[0]["url"] == "https://bot.example.com/hook"
        assert bodies[0]["secret_token"] == "s3cret"

    def test_empty_token_rejected(self) -> None:
        with pytest.raises(ValueError, match="token"):
            TelegramBot("")


class TestErrors:
    async def test_client_error_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(
                400, json={"ok": False, "description": "Bad Request: chat not found"}
            )

        async with _bot(handler) as bot:
            with pytest.raises(TelegramError, match="chat not found") as exc_info:
                await bot.send_message(42, "x")

        assert calls == 1
        assert exc_info.value.status_code == 400

    async def test_ok_false_raises(self) -> None:
        async with _bot(lambda request: httpx.Response(200, json={"ok": False})) as bot:
            with pytest.raises(TelegramError, match="ok=false"):
                await bot.send_message(42, "x")

    async def test_rate_limit_retried_then_succeeds(self) -> None:
        responses = [
            httpx.Response(429, json={"ok": False, "parameters": {"retry_after": 3}}),
            _ok({"message_id": 9}),
        ]

        async with _bot(lambda request: responses.pop(0)) as bot:
            result = await bot.send_message(42, "x")

        assert result == {"message_id": 9}
        assert responses == []

    async def test_rate_limit_exhausted(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(429, json={"ok": False, "parameters": {"retry_after": 7}})

        async with _bot(handler, max_attempts=2) as bot:
            with pytest.raises(TelegramRateLimitError) as exc_info:
                await bot.send_message(42, "x")

        assert calls == 2
        assert exc_info.value.retry_after == 7.0

    async def test_server_error_retried(self) -> None:
        responses = [httpx.Response(502), httpx.Response(503), _ok(True)]

        async with _bot(lambda request: responses.pop(0)) as bot:
            await bot.set_my_commands([{"command": "help", "description": "Help"}])

        assert responses == []

    async def test_get_updates_not_retried(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            return httpx.Response(502)

        async with _bot(handler) as bot:
            with pytest.raises(TelegramError):
                await bot.get_updates(offset=0, timeout=0)

        assert calls == 1

    async def test_transport_error_wrapped(self) -> None:
        calls = 0

        def handler(request: httpx.Request) -> httpx.Response:
            nonlocal calls
            calls += 1
            raise httpx.ConnectError("no route", request=request)

        async with _bot(handler, max_attempts=3) as bot:
            with pytest.raises(TelegramError, match="transport failure"):
                await bot.delete_webhook()

        assert calls == 3


class TestRetryAfter:
    def test_body_parameter_preferred(self) -> None:
        response = httpx.Response(
            429, json={"parameters": {"retry_after": 12}}, headers={"Retry-After": "3"}
        )
        assert _parse_retry_after(response) == 12.0

    def test_header_fallback(self) -> None:
        assert _parse_retry_after(httpx.Response(429, headers={"Retry-After": "4"})) == 4.0

    def test_floor_of_one_second(self) -> None:
        response = httpx.Response(429, json={"parameters": {"retry_after": 0}})
        assert _parse_retry_after(response) == 1.0
