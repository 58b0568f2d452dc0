"""Flatfinder process entry-point.

Usage:
    python -m flatfinder [--dry-run] [--log-level LEVEL] [--log-format FORMAT]

All configuration comes from the environment (or ``.env``); the flags only
override logging and the dry-run switch.  The orchestration logic lives in
:mod:`flatfinder.orchestrator`.  Logging is configured before anything else
so every module logs through the same handlers from the start.
"""

from __future__ import annotations

import argparse
import asyncio
import logging
import sys

from pydantic import ValidationError

from flatfinder.core import configure_logging
from flatfinder.core.exceptions import ConfigError, OrchestratorError
from flatfinder.core.run_context import RunContext
from flatfinder.core.settings import Settings


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="flatfinder",
        description="Telegram bot notifying subscribers about new immoscout24 listings.",
    )
    parser.add_argument(
        "--dry-run",
        action="store_true",
        help="Log listing messages instead of sending them and record nothing as seen.",
    )
    parser.add_argument(
        "--log-level",
        default=None,
        metavar="LEVEL",
        help="Override LOG_LEVEL env var (DEBUG|INFO|WARNING|ERROR).",
    )
    parser.add_argument(
        "--log-format",
        default=None,
        metavar="FORMAT",
        help="Override LOG_FORMAT env var (text|json).",
    )
    return parser


def main(argv: list[str] | None = None) -> None:
    """CLI entry-point registered in ``pyproject.toml``."""
    args = _build_parser().parse_args(argv)

    try:
        configure_logging(level=args.log_level, fmt=args.log_format)
    except ValueError as exc:
        print(f"flatfinder: configuration error: {exc}", file=sys.stderr)  # noqa: T201
        sys.exit(1)

    logger = logging.getLogger(__name__)

    try:
        settings = Settings()
    except ValidationError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)

    ctx = RunContext(dry_run=args.dry_run or settings.dry_run)
    logger.info("Run context: %s", ctx)

    # Lazy import keeps `--help` fast.
    from flatfinder.orchestrator.runner import run_service  # noqa: PLC0415

    try:
        asyncio.run(run_service(ctx, settings))
    except ConfigError as exc:
        logger.critical("Configuration error: %s", exc)
        sys.exit(1)
    except OrchestratorError as exc:
        logger.critical("Service stopped: %s", exc, exc_info=exc.__cause__ is not None)
        sys.exit(1)
    except KeyboardInterrupt:
        logger.info("Interrupted, exiting.")
        sys.exit(0)


if __name__ == "__main__":
    main()
