"""
eventcrawl.ingestion.executor

Deterministic listing scrapes. Replays each source's recipe, stages every
card it finds and tracks empty runs so broken recipes get re-scouted.
The Executor never calls an LLM and never edits a recipe.
"""

from __future__ import annotations

import logging
from typing import Optional

from eventcrawl.engines.failover import FailoverFetcher
from eventcrawl.errors import EventCrawlError, ExtractionError, FetchError, StorageError
from eventcrawl.extraction.recipe import apply_recipe
from eventcrawl.extraction.transforms import clean_text, parse_date
from eventcrawl.monitoring.logging import with_context
from eventcrawl.runtime.resilience import RateLimiter
from eventcrawl.schemas.event import EventCard
from eventcrawl.schemas.source import RecipeMode, Source
from eventcrawl.schemas.staging import ScrapeJob, StagingRecord

from .context import BatchSummary, PipelineContext
from .deduplication import compute_fingerprint
from .scout import listing_url

logger = logging.getLogger(__name__)


def card_source_url(card: EventCard, page_url: str, source_id: int) -> str:
    """
    Detail URL of a card, or `page_url#<fingerprint>` when the card has no
    page of its own.
    """
    if card.url and card.url.split("#", 1)[0] != page_url.split("#", 1)[0]:
        return card.url
    day = parse_date(card.date_text) or card.date_text
    return f"{page_url.split('#', 1)[0]}#{compute_fingerprint(card.title or '', day, source_id)[:16]}"


def staging_record_for(card: EventCard, *, source: Source, page_url: str, tier, confidence) -> StagingRecord:
    source_url = card_source_url(card, page_url, source.id)
    detail_url = card.url if source_url == card.url else None
    return StagingRecord(
        source_id=source.id,
        source_url=source_url,
        title=clean_text(card.title, max_length=500),
        card=card.model_dump(mode="json", exclude={"raw_html"}, exclude_none=True),
        raw_html=card.raw_html,
        detail_url=detail_url,
        parsing_method=tier,
        confidence=confidence,
    )


def scrape_url(source: Source) -> str:
    recipe = source.recipe
    if recipe is not None and RecipeMode(recipe.mode) is RecipeMode.FEED and recipe.feed_url:
        return recipe.feed_url
    return listing_url(source)


def enqueue(ctx: PipelineContext) -> list[int]:
    """Scheduler tick: one pending job per enabled, scouted source without an open job."""
    created = ctx.store.jobs.enqueue_due(max_attempts=ctx.settings.MAX_ATTEMPTS)
    logger.info("Enqueued %d scrape jobs", len(created))
    return created


class Executor:
    """
    Runs claimed scrape jobs.

    One RateLimiter per source is kept for the lifetime of the Executor, so
    several jobs for the same source in one batch are paced against each other.
    """

    def __init__(self, ctx: PipelineContext) -> None:
        self.ctx = ctx
        self._limiters: dict[int, RateLimiter] = {}

    def _limiter(self, source: Source) -> RateLimiter:
        if source.id not in self._limiters:
            self._limiters[source.id] = self.ctx.rate_limiter_for(source)
        return self._limiters[source.id]

    def run_job(self, job: ScrapeJob) -> dict:
        """
        Scrape one job's source and return its result entry. Failures raise;
        the caller releases the job.
        """
        ctx = self.ctx
        settings = ctx.settings
        source = ctx.store.sources.get(job.source_id)
        log = with_context(logger, worker_id=ctx.worker_id, source_id=source.id, stage="execute")

        if source.recipe is None:
            raise ExtractionError(f"Source {source.id} has no recipe")

        fetcher: FailoverFetcher = ctx.fetcher_for(source, self._limiter(source))
        try:
            url = scrape_url(source)
            page = fetcher.fetch_page(url, ctx=ctx.engine_context_for(source))
            if not page.ok:
                ctx.store.sources.record_scrape_outcome(
                    source.id,
                    status_code=page.status_code,
                    cards_found=0,
                    threshold=settings.RE_SCOUT_THRESHOLD,
                    error=page.short_error(),
                )
                raise FetchError(f"Fetch failed for {url}: {page.short_error()}", status_code=page.status_code)

            base_url = page.final_url or url
            extraction = apply_recipe(
                source.recipe,
                page.html,
                base_url,
                fetch_text=ctx.fetch_text_for(fetcher, source),
            )
            staged = 0
            for card in extraction.cards:
                record = staging_record_for(
                    card,
                    source=source,
                    page_url=base_url,
                    tier=extraction.tier,
                    confidence=extraction.confidence,
                )
                record.content_hash = page.content_hash
                if ctx.store.staging.stage(record) is not None:
                    staged += 1

            rescout = ctx.store.sources.record_scrape_outcome(
                source.id,
                status_code=page.status_code,
                cards_found=len(extraction.cards),
                threshold=settings.RE_SCOUT_THRESHOLD,
            )
            if rescout:
                log.warning(
                    "No events in %d consecutive runs, source queued for re-scout",
                    settings.RE_SCOUT_THRESHOLD,
                )
            ctx.store.jobs.complete(job.id, ctx.worker_id, events_found=len(extraction.cards))
            log.info(
                "Job %s: %d cards via %s, %d newly staged",
                job.id,
                len(extraction.cards),
                extraction.tier.value if extraction.tier else "none",
                staged,
            )
            return {
                "job_id": job.id,
                "source_id": source.id,
                "events_found": len(extraction.cards),
                "staged": staged,
                "parsing_method": extraction.tier.value if extraction.tier else None,
                "fetcher_used": page.fetcher_used,
                "needs_re_scout": rescout,
            }
        finally:
            fetcher.close()

    def run_batch(self, *, batch_size: Optional[int] = None) -> BatchSummary:
        ctx = self.ctx
        summary = BatchSummary()
        jobs = ctx.store.jobs.claim(ctx.worker_id, limit=batch_size or ctx.settings.SCRAPE_BATCH_SIZE)
        if not jobs:
            logger.info("No pending scrape jobs")
            return summary

        for job in jobs:
            try:
                summary.ok(**self.run_job(job))
            except StorageError:
                raise
            except Exception as e:
                # Anything that escapes one job must not stop the batch.
                if isinstance(e, EventCrawlError):
                    error = str(e)
                else:
                    error = f"{type(e).__name__}: {e}"
                    logger.exception("Job %s crashed", job.id)
                status = ctx.store.jobs.fail(job.id, ctx.worker_id, error=error)
                logger.warning("Job %s failed (%s): %s", job.id, status, error)
                summary.error(error, job_id=job.id, source_id=job.source_id, job_status=status)
        return summary


def run_executor(ctx: PipelineContext, *, batch_size: Optional[int] = None) -> BatchSummary:
    return Executor(ctx).run_batch(batch_size=batch_size)
