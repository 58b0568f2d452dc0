"""Service runner: wire every component together and run the drivers.

:func:`run_service` is the top-level coroutine invoked by
:mod:`flatfinder.__main__`.  It

1. validates the runtime configuration;
2. opens the SQLite database, the Telegram client and the listing source
   inside one :class:`contextlib.AsyncExitStack`;
3. builds the notifier, scheduler, command handlers, router and ingester;
4. publishes the command menu (best effort);
5. runs two drivers concurrently until one of them stops or ``SIGTERM``
   arrives:

   * the periodic crawl loop (:meth:`CrawlScheduler.run_forever`);
   * the update transport selected by ``UPDATE_MODE``.

Out-of-band crawls started by ``/search`` and ``/continue`` are a third
driver owned by the scheduler; they are cancelled during teardown.

Typical usage::

    asyncio.run(run_service(RunContext(), Settings()))
"""

from __future__ import annotations

import asyncio
import contextlib
import logging
import signal
from collections.abc import Coroutine
from contextlib import AsyncExitStack
from typing import Any

from flatfinder.bot.commands import CommandHandlers, build_router, register_command_menu
from flatfinder.bot.ingester import UpdateIngester
from flatfinder.bot.transports import LongPollTransport, UpdateTransport, WebhookTransport
from flatfinder.core.exceptions import OrchestratorError
from flatfinder.core.run_context import RunContext
from flatfinder.core.settings import Settings
from flatfinder.notifiers.notifier import Notifier
from flatfinder.notifiers.telegram import TelegramBot
from flatfinder.orchestrator.scheduler import CrawlScheduler
from flatfinder.providers.api.immoscout import ImmoscoutSource
from flatfinder.storage.database import open_db
from flatfinder.storage.repository import DiffStore

__all__ = ["run_service", "build_transport", "run_drivers"]

logger = logging.getLogger(__name__)


def build_transport(settings: Settings, bot: TelegramBot, store: DiffStore) -> UpdateTransport:
    """Select the update transport configured by ``UPDATE_MODE``."""
    if settings.update_mode == "webhook":
        return WebhookTransport(
            bot,
            url=settings.webhook_url,
            secret_token=settings.webhook_secret,
            host=settings.webhook_host,
            port=settings.webhook_port,
        )
    return LongPollTransport(bot, store, timeout=settings.poll_timeout)


async def run_drivers(drivers: dict[str, Coroutine[Any, Any, Any]]) -> None:
    """Run *drivers* concurrently until one finishes or ``SIGTERM`` arrives.

    The remaining drivers are cancelled and awaited.  A driver that stops
    with an exception is surfaced as :class:`OrchestratorError`; a driver
    that simply returns (for example the webhook server after its own signal
    handling) ends the service cleanly.

    Raises:
        OrchestratorError: A driver crashed.
    """
    tasks = [asyncio.create_task(coro, name=f"flatfinder-{name}") for name, coro in drivers.items()]

    loop = asyncio.get_running_loop()
    shutdown_signal: list[str] = []

    def _request_graceful_shutdown(signame: str) -> None:
        if not shutdown_signal:
            shutdown_signal.append(signame)
            logger.info("Received %s; graceful shutdown requested.", signame)
        for task in tasks:
            task.cancel()

    with contextlib.suppress(NotImplementedError):
        loop.add_signal_handler(signal.SIGTERM, lambda: _request_graceful_shutdown("SIGTERM"))

    try:
        done, pending = await asyncio.wait(tasks, return_when=asyncio.FIRST_COMPLETED)
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
    except asyncio.CancelledError:
        logger.info("Service cancelled; stopping drivers.")
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        raise
    finally:
        with contextlib.suppress(Exception):
            loop.remove_signal_handler(signal.SIGTERM)

    if shutdown_signal:
        logger.info("Graceful shutdown complete (signal: %s).", shutdown_signal[0])
        return

    for task in done:
        if task.cancelled():
            continue
        exc = task.exception()
        if exc is not None:
            raise OrchestratorError(f"Driver {task.get_name()} crashed: {exc}") from exc
        logger.info("Driver %s stopped; shutting down.", task.get_name())


async def run_service(ctx: RunContext, settings: Settings | None = None) -> None:
    """Run the bot and the crawl loop until shutdown.

    Args:
        ctx: Runtime operating-mode flags.
        settings: Application settings.  Loaded from environment if ``None``.

    Raises:
        ConfigError: Required configuration is missing.
        OrchestratorError: A driver crashed.
    """
    if settings is None:
        settings = Settings()
    settings.require_runtime_config()

    logger.info(
        "Flatfinder starting [%s]: update_mode=%s crawl_interval=%ds db=%s",
        ctx.mode_label,
        settings.update_mode,
        settings.crawl_interval,
        settings.database_path_resolved,
    )
    if not settings.admin_configured:
        logger.warning("TELEGRAM_ADMIN_CHAT_ID is not set; crawl failures are only logged.")

    async with AsyncExitStack() as stack:
        conn = await open_db(settings.database_path_resolved)
        stack.push_async_callback(conn.close)
        store = DiffStore(conn)

        bot: TelegramBot = await stack.enter_async_context(TelegramBot(settings.telegram_bot_token))
        source: ImmoscoutSource = await stack.enter_async_context(
            ImmoscoutSource(max_pages=settings.source_max_pages)
        )

        notifier = Notifier(
            bot,
            ctx,
            admin_chat_id=settings.telegram_admin_chat_id,
            min_interval_s=settings.telegram_send_delay,
        )
        scheduler = CrawlScheduler(
            store, source, notifier, ctx, interval_s=settings.crawl_interval
        )
        stack.push_async_callback(scheduler.aclose)

        handlers = CommandHandlers(
            bot,
            store,
            password=settings.bot_password,
            trigger=scheduler.trigger,
            crawl_interval_s=settings.crawl_interval,
        )
        ingester = UpdateIngester(store, build_router(handlers))
        transport = build_transport(settings, bot, store)

        await register_command_menu(bot)

        await run_drivers(
            {
                "crawl-loop": scheduler.run_forever(),
                "updates": transport.run(ingester.handle_update),
            }
        )

    logger.info("Flatfinder stopped.")
