"""FastAPI application receiving pushed Telegram updates.

The app exposes a single ``POST`` route at the path of the registered
webhook URL plus a ``GET /health`` probe.  Each envelope is processed before
the response is returned, so Telegram only sees ``200`` for updates that
were handled or acknowledged without dispatch.

When a secret token is configured, requests whose
``X-Telegram-Bot-Api-Secret-Token`` header does not match get ``403`` and
are not processed.
"""

from __future__ import annotations

import hmac
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from fastapi import FastAPI, Header, HTTPException, Request

__all__ = ["create_app", "SECRET_HEADER"]

logger = logging.getLogger(__name__)

SECRET_HEADER: str = "X-Telegram-Bot-Api-Secret-Token"

HandleUpdate = Callable[[dict[str, Any]], Awaitable[Any]]


def create_app(handle: HandleUpdate, *, path: str = "/webhook", secret_token: str = "") -> FastAPI:
    """Build the webhook app.

    Args:
        handle: Coroutine processing one raw update envelope.
        path: Route the updates are POSTed to.
        secret_token: Expected secret header value; empty disables the check.
    """
    app = FastAPI(title="flatfinder webhook", docs_url=None, redoc_url=None, openapi_url=None)

    @app.get("/health")
    async def health() -> dict[str, str]:
        return {"status": "ok"}

    @app.post(path)
    async def receive_update(
        request: Request,
        x_telegram_bot_api_secret_token: str | None = Header(default=None),
    ) -> dict[str, Any]:
        if secret_token and not hmac.compare_digest(
            (x_telegram_bot_api_secret_token or "").encode(), secret_token.encode()
        ):
            logger.warning("Rejected webhook call with a wrong secret token.")
            raise HTTPException(status_code=403, detail="Forbidden")

        try:
            payload = await request.json()
        except ValueError:
            raise HTTPException(status_code=400, detail="Body is not JSON") from None
        if not isinstance(payload, dict):
            raise HTTPException(status_code=400, detail="Body is not a JSON object")

        outcome = await handle(payload)
        return {"ok": True, "outcome": str(outcome)}

    return app
