"""
eventcrawl.ingestion.enrichment

Turns staged listing cards into normalized, index-ready records.

Per record:
- claim it (pending -> claimed)
- fetch the detail page when the staged markup is thin (-> awaiting_enrichment)
- run the waterfall on the detail page and merge with the listing fields
- parse dates, times, duration, price and category
- optionally let Social Five fill what is still missing
- write ready_to_index and release the claim

Failures release the record back to pending, or fail it once its attempt
budget is spent.
"""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Dict, Optional

from eventcrawl.errors import StorageError
from eventcrawl.extraction.parsers import get_text
from eventcrawl.extraction.transforms import (
    calculate_end_time,
    clean_text,
    format_time,
    map_category,
    normalize_price,
    parse_date,
    parse_duration,
    parse_time,
)
from eventcrawl.extraction.waterfall import Waterfall
from eventcrawl.monitoring.logging import with_context
from eventcrawl.normalization.social_five import SocialFiveNormalizer
from eventcrawl.schemas.event import EventCard
from eventcrawl.schemas.staging import Confidence, StagingRecord

from .context import BatchSummary, PipelineContext
from .deduplication import normalize_title, similarity

logger = logging.getLogger(__name__)

THIN_HTML_CHARS = 500

_MERGE_KEYS = (
    "title",
    "date_text",
    "time_text",
    "end_text",
    "location",
    "address",
    "url",
    "image_url",
    "ticket_url",
    "price_text",
    "duration_text",
    "latitude",
    "longitude",
)


def parse_payload(payload: Optional[Dict[str, Any]]) -> tuple[Optional[int], Optional[int], Optional[str]]:
    """
    Return (record_id, batch_size, ignored_reason) for an invocation payload.

    Accepts change notifications ``{"type": "INSERT", "record": {"id": ..}}``,
    direct ``{"id": ..}`` and ``{"batch_size": n}``.
    """
    payload = payload or {}
    if "type" in payload or "record" in payload:
        if str(payload.get("type", "")).upper() != "INSERT":
            return None, None, f"ignored {payload.get('type')} notification"
        record = payload.get("record") or {}
        if record.get("id") is None:
            return None, None, "notification without record id"
        raw_id = record["id"]
    elif payload.get("id") is not None:
        raw_id = payload["id"]
    else:
        size = payload.get("batch_size")
        try:
            return None, int(size) if size else None, None
        except (TypeError, ValueError):
            return None, None, "invalid batch size"
    try:
        return int(raw_id), None, None
    except (TypeError, ValueError):
        return None, None, "invalid record id"


def pick_detail_card(cards: list[EventCard], title: Optional[str]) -> Optional[EventCard]:
    """Detail pages often list related events; keep the one matching the staged title."""
    if not cards:
        return None
    if not title or len(cards) == 1:
        return cards[0]
    wanted = normalize_title(title)
    return max(cards, key=lambda c: similarity(wanted, normalize_title(c.title)))


def merge_cards(listing: EventCard, detail: Optional[EventCard]) -> EventCard:
    """Listing fields win; the detail page fills gaps and usually has the longer description."""
    if detail is None:
        return listing
    updates: Dict[str, Any] = {}
    for key in _MERGE_KEYS:
        if getattr(listing, key) in (None, "") and getattr(detail, key) not in (None, ""):
            updates[key] = getattr(detail, key)
    if len(detail.description or "") > len(listing.description or ""):
        updates["description"] = detail.description
    if not (listing.time_text or detail.time_text):
        # Detail pages often carry a full datetime where the listing only had a day.
        detail_time = parse_time(detail.date_text)
        if detail_time is not None:
            updates["time_text"] = format_time(detail_time)
    return listing.model_copy(update=updates)


def normalize_card(card: EventCard, *, today: Optional[date] = None) -> Dict[str, Any]:
    """Deterministic field parsing. Unparseable values are left empty."""
    event_date = parse_date(card.date_text, today=today)
    start = parse_time(card.time_text) or parse_time(card.date_text)
    end = parse_time(card.end_text)
    duration = parse_duration(card.duration_text)
    if end is None:
        end = calculate_end_time(start, duration)
    price = normalize_price(card.price_text)

    return {
        "title": clean_text(card.title, max_length=500),
        "description": clean_text(card.description, max_length=2000),
        "event_date": event_date.isoformat() if event_date else None,
        "start_time": format_time(start),
        "end_time": format_time(end),
        "duration_minutes": duration,
        "venue_name": clean_text(card.location, max_length=300),
        "address": clean_text(card.address, max_length=500),
        "image_url": card.image_url,
        "ticket_url": card.ticket_url,
        "price_text": clean_text(card.price_text, max_length=200),
        "price_level": price.value if price else None,
        "latitude": card.latitude,
        "longitude": card.longitude,
    }


def finalize(fields: Dict[str, Any]) -> Dict[str, Any]:
    """Derived fields, recomputed after any AI pass."""
    out = dict(fields)
    if not out.get("price_level") and out.get("price_text"):
        price = normalize_price(out["price_text"])
        out["price_level"] = price.value if price else None
    if not out.get("end_time") and out.get("start_time") and out.get("duration_minutes"):
        out["end_time"] = format_time(
            calculate_end_time(parse_time(out["start_time"]), out["duration_minutes"])
        )
    if not out.get("category"):
        out["category"] = map_category(out.get("title"), out.get("description")).value
    return {k: v for k, v in out.items() if v is not None}


class EnrichmentWorker:
    def __init__(
        self,
        ctx: PipelineContext,
        *,
        normalizer: Optional[SocialFiveNormalizer] = None,
        waterfall: Optional[Waterfall] = None,
    ) -> None:
        self.ctx = ctx
        self.waterfall = waterfall or Waterfall.default()
        if normalizer is None and ctx.settings.SOCIAL_FIVE_ENABLED:
            normalizer = SocialFiveNormalizer(ctx.llm)
        self.normalizer = normalizer

    def _fetch_detail(self, record: StagingRecord, log) -> Optional[str]:
        source = self.ctx.store.sources.get(record.source_id)
        fetcher = self.ctx.fetcher_for(source)
        try:
            page = fetcher.fetch_page(record.detail_url, ctx=self.ctx.engine_context_for(source))
        finally:
            fetcher.close()
        if not page.ok:
            log.info("Detail fetch failed for %s: %s", record.detail_url, page.short_error())
            return None
        return page.html

    def enrich(self, record: StagingRecord, *, today: Optional[date] = None) -> Dict[str, Any]:
        """Enrich one claimed record. Returns its result entry."""
        store = self.ctx.store.staging
        worker_id = self.ctx.worker_id
        log = with_context(
            logger, worker_id=worker_id, stage="enrich", source_id=record.source_id, record_id=record.id
        )

        detail_html = record.detail_html
        if record.detail_url and not detail_html and len(record.raw_html or "") < THIN_HTML_CHARS:
            detail_html = self._fetch_detail(record, log)
            if detail_html:
                store.mark_awaiting_enrichment(record.id, worker_id, detail_html=detail_html)

        listing = EventCard.model_validate(record.card or {})
        if not listing.title:
            listing = listing.model_copy(update={"title": record.title})

        parsing_method = record.parsing_method
        confidence = record.confidence or Confidence.LOW.value
        detail_card = None
        page_html = detail_html or record.raw_html
        if page_html:
            base_url = record.detail_url or record.source_url
            result = self.waterfall.run(page_html, base_url)
            detail_card = pick_detail_card(result.cards, listing.title)
            if detail_card is not None and detail_html:
                parsing_method = result.tier.value
                confidence = result.confidence.value

        card = merge_cards(listing, detail_card)
        fields = normalize_card(card, today=today)
        if not fields.get("event_date"):
            confidence = Confidence.LOW.value

        ai_applied = False
        if self.normalizer is not None:
            text = get_text(page_html) if page_html else " ".join(
                v for v in (card.title, card.date_text, card.time_text, card.location, card.description) if v
            )
            fields, ai_applied = self.normalizer.normalize(
                fields,
                text=text,
                url=record.source_url,
                confidence=confidence,
                today=today,
            )

        normalized = finalize(fields)
        if record.detail_url:
            normalized["detail_url"] = record.detail_url
        normalized["ai_normalized"] = ai_applied

        store.complete_enrichment(
            record.id,
            worker_id,
            normalized=normalized,
            parsing_method=parsing_method,
            confidence=confidence,
            title=normalized.get("title"),
        )
        log.info("Enriched via %s (%s confidence, ai=%s)", parsing_method, confidence, ai_applied)
        return {
            "id": record.id,
            "parsing_method": parsing_method,
            "confidence": confidence,
            "ai_normalized": ai_applied,
            "has_date": bool(normalized.get("event_date")),
        }

    def process(self, records: list[StagingRecord], summary: BatchSummary) -> BatchSummary:
        settings = self.ctx.settings
        for record in records:
            try:
                summary.ok(**self.enrich(record))
            except StorageError:
                raise
            except Exception as e:
                # One bad page must not stop the batch; the record is released.
                logger.exception("Enrichment failed for staging record %s", record.id)
                status = self.ctx.store.staging.fail_enrichment(
                    record.id,
                    self.ctx.worker_id,
                    error=f"{type(e).__name__}: {e}",
                    max_attempts=settings.MAX_ATTEMPTS,
                )
                summary.error(f"{type(e).__name__}: {e}", id=record.id, status=status)
        return summary

    def run(self, payload: Optional[Dict[str, Any]] = None) -> BatchSummary:
        settings = self.ctx.settings
        summary = BatchSummary()
        record_id, batch_size, ignored = parse_payload(payload)
        if ignored:
            summary.skip(ignored)
            return summary

        if record_id is not None:
            record = self.ctx.store.staging.claim_by_id(
                record_id, self.ctx.worker_id, max_attempts=settings.MAX_ATTEMPTS
            )
            if record is None:
                summary.skip("not claimable", id=record_id)
                return summary
            records = [record]
        else:
            records = self.ctx.store.staging.claim_for_enrichment(
                self.ctx.worker_id,
                limit=batch_size or settings.ENRICH_BATCH_SIZE,
                max_attempts=settings.MAX_ATTEMPTS,
            )
        if not records:
            logger.info("No staging records to enrich")
            return summary
        return self.process(records, summary)


def run_enrichment(ctx: PipelineContext, payload: Optional[Dict[str, Any]] = None) -> BatchSummary:
    return EnrichmentWorker(ctx).run(payload)
