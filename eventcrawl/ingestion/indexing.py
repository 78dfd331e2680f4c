"""
eventcrawl.ingestion.indexing

Commits ready_to_index staging rows to the canonical event store.

Rows missing a title or a date are failed with `missing_required_fields`
instead of being dropped, so they stay visible in staging. Everything else
goes through the Deduplicator: new events are inserted, stale matches are
refreshed and fresh matches are only linked.
"""

from __future__ import annotations

import logging
from datetime import date, time
from typing import Any, Dict, Optional

from pydantic import ValidationError

from eventcrawl.errors import StorageError
from eventcrawl.monitoring.logging import with_context
from eventcrawl.schemas.event import CanonicalEvent
from eventcrawl.schemas.staging import StagingRecord

from .context import BatchSummary, PipelineContext
from .deduplication import Deduplicator, compute_fingerprint

logger = logging.getLogger(__name__)

MISSING_REQUIRED = "missing_required_fields"

INSERTED = "inserted"
REFRESHED = "refreshed"
LINKED = "linked"


class TerminalIndexError(Exception):
    """The record can never be indexed as it is."""


def _time(value: Optional[str]) -> Optional[time]:
    return time.fromisoformat(value) if value else None


def build_event(record: StagingRecord) -> CanonicalEvent:
    fields: Dict[str, Any] = record.normalized or {}
    title = fields.get("title") or record.title
    if not title or not fields.get("event_date"):
        raise TerminalIndexError(MISSING_REQUIRED)
    try:
        event_date = date.fromisoformat(fields["event_date"])
        return CanonicalEvent(
            source_id=record.source_id,
            source_url=record.source_url,
            title=title,
            description=fields.get("description"),
            event_date=event_date,
            start_time=_time(fields.get("start_time")),
            end_time=_time(fields.get("end_time")),
            duration_minutes=fields.get("duration_minutes"),
            venue_name=fields.get("venue_name"),
            address=fields.get("address"),
            category=fields.get("category"),
            image_url=fields.get("image_url"),
            ticket_url=fields.get("ticket_url"),
            price_level=fields.get("price_level"),
            latitude=fields.get("latitude"),
            longitude=fields.get("longitude"),
            fingerprint=compute_fingerprint(title, event_date, record.source_id),
            parsing_method=record.parsing_method,
        )
    except (ValidationError, ValueError) as e:
        raise TerminalIndexError(f"invalid_fields: {e}") from e


class IndexingWorker:
    def __init__(self, ctx: PipelineContext, *, deduplicator: Optional[Deduplicator] = None) -> None:
        self.ctx = ctx
        settings = ctx.settings
        self.deduplicator = deduplicator or Deduplicator(
            ctx.store.events,
            fuzzy_threshold=settings.DEDUP_FUZZY_THRESHOLD,
            date_window_hours=settings.DEDUP_DATE_WINDOW_HOURS,
            stale_after_days=settings.DEDUP_STALE_AFTER_DAYS,
        )

    def index(self, record: StagingRecord) -> Dict[str, Any]:
        events = self.ctx.store.events
        candidate = build_event(record)
        match = self.deduplicator.check_duplicate(candidate, record.source_id)

        if match.is_duplicate:
            event_id = match.existing_id
            action = LINKED
            if match.should_update:
                events.refresh(event_id, candidate)
                action = REFRESHED
        else:
            event_id = events.insert_if_absent(candidate)
            action = INSERTED
            if event_id is None:
                # Another worker committed the same URL in between.
                existing = events.find_by_source_url(candidate.source_url)
                event_id = existing.id if existing else None
                action = LINKED

        self.ctx.store.staging.complete_indexing(record.id, self.ctx.worker_id, event_id=event_id)
        return {
            "id": record.id,
            "event_id": event_id,
            "action": action,
            "match_method": match.match_method,
            "confidence": match.confidence,
        }

    def run(self, *, batch_size: Optional[int] = None) -> BatchSummary:
        ctx = self.ctx
        settings = ctx.settings
        summary = BatchSummary()
        records = ctx.store.staging.claim_for_indexing(
            ctx.worker_id, limit=batch_size or settings.INDEX_BATCH_SIZE
        )
        if not records:
            logger.info("Nothing ready to index")
            return summary

        for record in records:
            log = with_context(
                logger, worker_id=ctx.worker_id, stage="index", source_id=record.source_id, record_id=record.id
            )
            try:
                result = self.index(record)
            except StorageError:
                raise
            except TerminalIndexError as e:
                status = ctx.store.staging.fail_indexing(
                    record.id,
                    ctx.worker_id,
                    error=str(e),
                    max_attempts=settings.MAX_ATTEMPTS,
                    terminal=True,
                )
                log.warning("Not indexable: %s", e)
                summary.error(str(e), id=record.id, status=status)
                continue
            except Exception as e:
                log.exception("Indexing failed")
                status = ctx.store.staging.fail_indexing(
                    record.id,
                    ctx.worker_id,
                    error=f"{type(e).__name__}: {e}",
                    max_attempts=settings.MAX_ATTEMPTS,
                )
                summary.error(f"{type(e).__name__}: {e}", id=record.id, status=status)
                continue
            log.info("Indexed as event %s (%s)", result["event_id"], result["action"])
            summary.ok(**result)

        duplicates = sum(1 for r in summary.results if r.get("action") in (LINKED, REFRESHED))
        logger.info(
            "Indexed %d of %d records, %d matched existing events",
            summary.succeeded,
            summary.processed,
            duplicates,
        )
        return summary


def run_indexing(ctx: PipelineContext, *, batch_size: Optional[int] = None) -> BatchSummary:
    return IndexingWorker(ctx).run(batch_size=batch_size)
