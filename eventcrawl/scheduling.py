"""
eventcrawl.scheduling

APScheduler wiring for the `serve` command. Each worker runs on its own
interval. Runs of the same worker never overlap, and runs missed while a
slow one was busy collapse into a single catch-up run.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable
from datetime import datetime, timezone
from typing import Any

from apscheduler.schedulers.blocking import BlockingScheduler
from apscheduler.triggers.interval import IntervalTrigger

logger = logging.getLogger(__name__)

# (job name, interval in seconds, zero-argument callable)
Task = tuple[str, float, Callable[[], Any]]

MISFIRE_GRACE_S = 60


def logged(name: str, run: Callable[[], Any]) -> Callable[[], Any]:
    """Wrap a worker run so a failure is logged and the next interval still fires."""

    def job() -> Any:
        try:
            result = run()
        except Exception:
            # Storage outages included: the scheduler outlives a broken run.
            logger.exception("Scheduled %s failed", name)
            return None
        logger.info("Scheduled %s finished: %s", name, result)
        return result

    job.__name__ = f"{name}_job"
    return job


def build_scheduler(tasks: Iterable[Task], *, tz: str = "UTC") -> BlockingScheduler:
    """
    Register every task on a BlockingScheduler.

    Tasks with a non-positive interval are disabled. The first run of each
    task is due immediately.
    """
    scheduler = BlockingScheduler(timezone=tz)
    now = datetime.now(timezone.utc)
    for name, interval_s, run in tasks:
        if interval_s <= 0:
            logger.info("Task %s disabled (interval %s)", name, interval_s)
            continue
        scheduler.add_job(
            logged(name, run),
            trigger=IntervalTrigger(seconds=interval_s, timezone=tz),
            id=name,
            name=name,
            next_run_time=now,
            max_instances=1,
            coalesce=True,
            misfire_grace_time=MISFIRE_GRACE_S,
            replace_existing=True,
        )
        logger.info("Added interval job: %s every %gs", name, interval_s)
    return scheduler
