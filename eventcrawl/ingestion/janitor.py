"""
eventcrawl.ingestion.janitor

Recovers work abandoned by crashed or timed-out workers. Safe to run on a
fixed interval: rows with a fresh claim are never touched.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

from eventcrawl.storage.repository import PipelineStore
from eventcrawl.storage.tables import utcnow

from .context import PipelineContext

logger = logging.getLogger(__name__)


def stale_cutoff(stale_after_minutes: int, now: Optional[datetime] = None) -> datetime:
    return (now or utcnow()) - timedelta(minutes=stale_after_minutes)


def run_janitor(
    store: PipelineStore,
    *,
    stale_after_minutes: int = 60,
    max_attempts: int = 3,
    now: Optional[datetime] = None,
) -> Dict[str, Any]:
    """Reset stale claims on staging rows, scrape jobs and scouting sources."""
    cutoff = stale_cutoff(stale_after_minutes, now)
    staging = store.staging.reset_stale(cutoff, max_attempts=max_attempts)
    jobs = store.jobs.reset_stale(cutoff)
    sources = store.sources.reset_stale_scouting(cutoff)

    report = {"cutoff": cutoff.isoformat(), "staging": staging, "jobs": jobs, "sources": {"reset": sources}}
    recovered = sum(staging.values()) + sum(jobs.values()) + sources
    if recovered:
        logger.warning("Janitor recovered %d stale claims: %s", recovered, report)
    else:
        logger.info("Janitor found nothing stale")
    return report


def pipeline_health(store: PipelineStore, *, stale_after_minutes: int = 60) -> Dict[str, Any]:
    """Status counts per stage plus the number of rows stuck past the staleness window."""
    return {
        "staging": store.staging.status_counts(),
        "jobs": store.jobs.status_counts(),
        "sources": store.sources.status_counts(),
        "events": store.events.count(),
        "stuck": store.staging.stuck_count(stale_cutoff(stale_after_minutes)),
    }


def run_janitor_for(ctx: PipelineContext) -> Dict[str, Any]:
    return run_janitor(
        ctx.store,
        stale_after_minutes=ctx.settings.STALE_AFTER_MINUTES,
        max_attempts=ctx.settings.MAX_ATTEMPTS,
    )
