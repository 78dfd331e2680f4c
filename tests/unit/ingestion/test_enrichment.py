"""
Unit tests for enrichment: payload handling, detail fetches, field parsing
and failure release.
"""

from datetime import date

import pytest

from eventcrawl.ingestion.enrichment import (
    EnrichmentWorker,
    finalize,
    merge_cards,
    normalize_card,
    parse_payload,
    pick_detail_card,
    run_enrichment,
)
from eventcrawl.normalization.social_five import SocialFiveNormalizer, SocialFiveOutput
from eventcrawl.schemas.event import EventCard
from eventcrawl.schemas.staging import StagingStatus

DETAIL_URL = "https://www.uitinzwolle.nl/agenda/jazz-in-het-park"

DETAIL_PAGE = """
<html><head>
<script type="application/ld+json">
{
  "@type": "MusicEvent",
  "name": "Jazz in het Park",
  "startDate": "2026-06-15T20:00",
  "description": "Een zomeravond vol jazz met lokale bands, foodtrucks en een picknickweide.",
  "location": {"@type": "Place", "name": "Park de Wezenlanden"},
  "offers": {"price": "12.50", "priceCurrency": "EUR"}
}
</script>
</head><body><h1>Jazz in het Park</h1></body></html>
"""

TODAY = date(2026, 6, 1)


class TestParsePayload:
    @pytest.mark.parametrize(
        "payload,expected",
        [
            ({"type": "INSERT", "record": {"id": 12}}, (12, None, None)),
            ({"type": "insert", "record": {"id": "12"}}, (12, None, None)),
            ({"type": "UPDATE", "record": {"id": 12}}, (None, None, "ignored UPDATE notification")),
            ({"type": "INSERT", "record": {}}, (None, None, "notification without record id")),
            ({"id": 5}, (5, None, None)),
            ({"batch_size": 20}, (None, 20, None)),
            ({}, (None, None, None)),
            (None, (None, None, None)),
            ({"id": "abc"}, (None, None, "invalid record id")),
            ({"type": "INSERT", "record": {"id": [1]}}, (None, None, "invalid record id")),
            ({"batch_size": "lots"}, (None, None, "invalid batch size")),
        ],
    )
    def test_payload_forms(self, payload, expected):
        assert parse_payload(payload) == expected


class TestFieldHelpers:
    def test_pick_detail_card_matches_title(self):
        cards = [EventCard(title="Rommelmarkt"), EventCard(title="Jazz in het Park 2026")]
        assert pick_detail_card(cards, "Jazz in het Park").title == "Jazz in het Park 2026"
        assert pick_detail_card([], "x") is None

    def test_merge_prefers_listing_and_longer_description(self):
        listing = EventCard(title="Jazz", date_text="2026-06-15", description="Kort")
        detail = EventCard(
            title="Jazz in het Park", location="Park", description="Een veel langere beschrijving"
        )
        merged = merge_cards(listing, detail)
        assert merged.title == "Jazz"
        assert merged.location == "Park"
        assert merged.description == "Een veel langere beschrijving"

    def test_normalize_card(self):
        card = EventCard(
            title="  Jazz in het Park ",
            date_text="zaterdag 15 juni",
            time_text="20.00 uur",
            duration_text="2 uur",
            location="Park de Wezenlanden",
            price_text="€ 12,50",
        )
        fields = normalize_card(card, today=TODAY)

        assert fields["title"] == "Jazz in het Park"
        assert fields["event_date"] == "2026-06-15"
        assert fields["start_time"] == "20:00"
        assert fields["end_time"] == "22:00"
        assert fields["duration_minutes"] == 120
        assert fields["price_level"] == "€"

    def test_finalize_derives_and_drops_empty(self):
        out = finalize({"title": "Jazz in het Park", "price_text": "Gratis", "description": None})
        assert out == {"title": "Jazz in het Park", "price_text": "Gratis", "price_level": "free", "category": "MUSIC"}


class TestEnrichmentWorker:
    def test_listing_card_is_normalized(self, ctx, create_staging):
        record_id = create_staging(
            card={"title": "Jazz in het Park", "date_text": "2026-06-15", "time_text": "20:00", "price_text": "€ 12,50"},
            parsing_method="recipe",
            confidence="medium",
        )

        summary = run_enrichment(ctx)

        record = ctx.store.staging.get(record_id)
        assert summary.succeeded == 1
        assert record.status == StagingStatus.READY_TO_INDEX.value
        assert record.claimed_by is None
        assert record.confidence == "medium"
        assert record.normalized["event_date"] == "2026-06-15"
        assert record.normalized["start_time"] == "20:00"
        assert record.normalized["price_level"] == "€"
        assert record.normalized["category"] == "MUSIC"
        assert record.normalized["ai_normalized"] is False

    def test_missing_date_lowers_confidence(self, ctx, create_staging):
        record_id = create_staging(card={"title": "Braderie", "date_text": "binnenkort"}, confidence="high")

        summary = run_enrichment(ctx)

        record = ctx.store.staging.get(record_id)
        assert summary.results[0]["has_date"] is False
        assert record.confidence == "low"
        assert record.status == StagingStatus.READY_TO_INDEX.value
        assert "event_date" not in record.normalized

    def test_detail_page_is_fetched_and_parsed(self, ctx, web, create_staging):
        web.static_pages[DETAIL_URL] = DETAIL_PAGE
        record_id = create_staging(
            source_url=DETAIL_URL,
            detail_url=DETAIL_URL,
            card={"title": "Jazz in het Park", "date_text": "2026-06-15"},
            parsing_method="recipe",
            confidence="medium",
        )

        run_enrichment(ctx)

        record = ctx.store.staging.get(record_id)
        assert web.calls() == [DETAIL_URL]
        assert record.detail_html == DETAIL_PAGE
        assert record.parsing_method == "json_ld"
        assert record.confidence == "high"
        assert record.normalized["venue_name"] == "Park de Wezenlanden"
        assert record.normalized["start_time"] == "20:00"
        assert record.normalized["description"].startswith("Een zomeravond vol jazz")
        assert record.normalized["detail_url"] == DETAIL_URL

    def test_failed_detail_fetch_keeps_listing_fields(self, ctx, web, create_staging):
        record_id = create_staging(
            detail_url="https://www.uitinzwolle.nl/agenda/weg",
            card={"title": "Jazz in het Park", "date_text": "2026-06-15"},
            parsing_method="recipe",
            confidence="medium",
        )

        run_enrichment(ctx)

        record = ctx.store.staging.get(record_id)
        assert record.status == StagingStatus.READY_TO_INDEX.value
        assert record.parsing_method == "recipe"
        assert record.detail_html is None

    def test_notification_for_one_record(self, ctx, create_staging):
        first = create_staging()
        second = create_staging()

        summary = run_enrichment(ctx, {"type": "INSERT", "record": {"id": second}})

        assert [r["id"] for r in summary.results] == [second]
        assert ctx.store.staging.get(first).status == StagingStatus.PENDING.value

    def test_notification_for_claimed_record_is_skipped(self, ctx, create_staging):
        record_id = create_staging()
        ctx.store.staging.claim_by_id(record_id, "other-worker", max_attempts=3)

        summary = run_enrichment(ctx, {"id": record_id})

        assert summary.processed == 0
        assert summary.results == [{"success": False, "skipped": "not claimable", "id": record_id}]

    def test_update_notification_is_ignored(self, ctx, create_staging):
        create_staging()
        summary = run_enrichment(ctx, {"type": "UPDATE", "record": {"id": 1}})
        assert summary.results[0]["skipped"] == "ignored UPDATE notification"
        assert ctx.store.staging.list(status="pending")

    def test_crash_releases_the_record(self, ctx, create_staging):
        class Exploding(SocialFiveNormalizer):
            def normalize(self, fields, **kwargs):
                raise RuntimeError("boom")

        record_id = create_staging()
        worker = EnrichmentWorker(ctx, normalizer=Exploding(ctx.llm))

        summary = worker.run()

        record = ctx.store.staging.get(record_id)
        assert summary.failed == 1
        assert summary.results[0]["status"] == StagingStatus.PENDING.value
        assert record.status == StagingStatus.PENDING.value
        assert record.last_error == "RuntimeError: boom"

    def test_social_five_fills_gaps(self, ctx, create_staging, scripted_llm):
        llm = scripted_llm([SocialFiveOutput(title="Jazz in het Park", event_date="2026-06-15", start_time="20:00")])
        record_id = create_staging(card={"title": "JAZZ!! 15/6 20u Park", "date_text": "binnenkort"})
        worker = EnrichmentWorker(ctx, normalizer=SocialFiveNormalizer(llm))

        worker.run()

        record = ctx.store.staging.get(record_id)
        assert record.normalized["ai_normalized"] is True
        assert record.normalized["title"] == "Jazz in het Park"
        assert record.normalized["event_date"] == "2026-06-15"
        assert record.normalized["start_time"] == "20:00"
