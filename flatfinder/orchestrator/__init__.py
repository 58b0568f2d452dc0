"""Crawl pipeline, scheduling and service wiring.

Public API
----------
* :func:`~flatfinder.orchestrator.runner.run_service`: process entry-point;
  runs the crawl loop and the update transport until shutdown.
* :class:`~flatfinder.orchestrator.scheduler.CrawlScheduler`: periodic ticks
  and on-demand crawls with per-subscriber locking.
* :func:`~flatfinder.orchestrator.pipeline.crawl` /
  :func:`~flatfinder.orchestrator.pipeline.crawl_and_notify`: the per-subscriber
  fetch → diff → notify → record pipeline.
"""

from flatfinder.orchestrator.pipeline import CrawlStats, TickStats, crawl, crawl_and_notify
from flatfinder.orchestrator.runner import build_transport, run_drivers, run_service
from flatfinder.orchestrator.scheduler import CrawlScheduler

__all__ = [
    "run_service",
    "run_drivers",
    "build_transport",
    "CrawlScheduler",
    "CrawlStats",
    "TickStats",
    "crawl",
    "crawl_and_notify",
]
