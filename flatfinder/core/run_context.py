"""Runtime context for a single Flatfinder process.

Encapsulates the user-selected operating mode that alters pipeline behaviour
without changing any configuration values.  A single :class:`RunContext`
instance is created once in :mod:`flatfinder.__main__` and threaded through
the orchestrator and the notifier.

Current flags
-------------
dry_run
    Run the full crawl pipeline including the formatter, but **log the
    listing message** instead of sending it to Telegram, and **persist
    nothing** so the next real run still sees every listing as new.  Bot
    command replies are unaffected: the bot stays interactive.

:attr:`should_notify` is the single property the notification layer reads:

    >>> RunContext().should_notify
    True

    >>> RunContext(dry_run=True).should_notify
    False
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field

__all__ = ["RunContext"]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RunContext:
    """Immutable container for per-process operating-mode flags.

    Attributes:
        dry_run: When ``True``, crawl results are logged instead of sent and
            never recorded as seen.
    """

    dry_run: bool = field(default=False)

    @property
    def should_notify(self) -> bool:
        """``True`` for a live run, ``False`` in dry-run mode."""
        return not self.dry_run

    @property
    def should_persist(self) -> bool:
        """``True`` if delivered listings should be recorded as seen."""
        return not self.dry_run

    @property
    def mode_label(self) -> str:
        """Human-readable label for the current mode, used in log lines."""
        return "dry-run" if self.dry_run else "live"

    def __str__(self) -> str:
        return f"RunContext(mode={self.mode_label}, should_notify={self.should_notify})"
