"""
Unit tests for the Executor: job runs, staging, synthetic URLs and
re-scout tracking.
"""

from datetime import date

from eventcrawl.ingestion.deduplication import compute_fingerprint
from eventcrawl.ingestion.executor import Executor, card_source_url, enqueue, run_executor, scrape_url
from eventcrawl.schemas.event import EventCard
from eventcrawl.schemas.source import ExtractionRecipe, RecipeMode, ScoutStatus
from eventcrawl.schemas.staging import JobStatus, StagingStatus

LISTING_URL = "https://www.uitinzwolle.nl/agenda"

LISTING = """
<html><body>
  <article class="event">
    <h3>Boekenmarkt</h3>
    <time datetime="2026-06-15">15 juni</time>
    <span class="venue">Grote Kerkplein</span>
    <a href="/agenda/boekenmarkt">Meer</a>
  </article>
  <article class="event">
    <h3>Stadswandeling</h3>
    <time datetime="2026-06-16">16 juni</time>
    <a href="/agenda/stadswandeling">Meer</a>
  </article>
</body></html>
"""

NO_LINKS = """
<html><body>
  <article class="event"><h3>Boekenmarkt</h3><time datetime="2026-06-15">15 juni</time></article>
</body></html>
"""

EMPTY = "<html><body><p>Er zijn op dit moment geen evenementen gepland.</p></body></html>"

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Agenda</title>
<item><title>Open Podium</title><link>https://www.uitinzwolle.nl/agenda/open-podium</link>
<description>Zaterdag 15 juni 2026</description></item>
</channel></rss>
"""


def scouted_source(create_source, recipe, **kwargs):
    return create_source(scout_status=ScoutStatus.SCOUTED, recipe=recipe, **kwargs)


def run_once(ctx):
    enqueue(ctx)
    return run_executor(ctx)


class TestCardSourceUrl:
    def test_detail_url_is_kept(self):
        card = EventCard(title="Boekenmarkt", date_text="2026-06-15", url="https://x.nl/agenda/boekenmarkt")
        assert card_source_url(card, "https://x.nl/agenda", 1) == "https://x.nl/agenda/boekenmarkt"

    def test_listing_link_gets_a_synthetic_url(self):
        card = EventCard(title="Boekenmarkt", date_text="15 juni 2026", url="https://x.nl/agenda#top")
        expected = compute_fingerprint("Boekenmarkt", date(2026, 6, 15), 7)[:16]
        assert card_source_url(card, "https://x.nl/agenda", 7) == f"https://x.nl/agenda#{expected}"

    def test_unparseable_date_is_used_as_written(self):
        card = EventCard(title="Braderie", date_text="binnenkort")
        expected = compute_fingerprint("Braderie", "binnenkort", 7)[:16]
        assert card_source_url(card, "https://x.nl/agenda", 7).endswith(expected)

    def test_feed_recipe_scrapes_the_feed(self, create_source):
        source = create_source(
            recipe=ExtractionRecipe(mode=RecipeMode.FEED, feed_url="https://x.nl/agenda.ics")
        )
        assert scrape_url(source) == "https://x.nl/agenda.ics"


class TestExecutor:
    def test_cards_are_staged(self, ctx, web, create_source, selector_recipe):
        web.static_pages[LISTING_URL] = LISTING
        source = scouted_source(create_source, selector_recipe)

        summary = run_once(ctx)

        assert summary.succeeded == 1
        result = summary.results[0]
        assert result["events_found"] == 2
        assert result["staged"] == 2
        assert result["parsing_method"] == "recipe"
        assert result["needs_re_scout"] is False

        first, second = ctx.store.staging.list(source_id=source.id)
        assert first.source_url == "https://www.uitinzwolle.nl/agenda/boekenmarkt"
        assert first.detail_url == first.source_url
        assert first.status == StagingStatus.PENDING.value
        assert first.parsing_method == "recipe"
        assert first.confidence == "medium"
        assert first.card["location"] == "Grote Kerkplein"
        assert "raw_html" not in first.card
        assert "<article" in first.raw_html
        assert first.content_hash is not None
        assert second.title == "Stadswandeling"

        job = ctx.store.jobs.get(result["job_id"])
        assert job.status == JobStatus.COMPLETED.value
        assert job.events_found == 2

    def test_rerun_stages_nothing_new(self, ctx, web, create_source, selector_recipe):
        web.static_pages[LISTING_URL] = LISTING
        scouted_source(create_source, selector_recipe)

        run_once(ctx)
        summary = run_once(ctx)

        assert summary.results[0]["staged"] == 0
        assert len(ctx.store.staging.list()) == 2

    def test_cards_without_detail_page(self, ctx, web, create_source, selector_recipe):
        web.static_pages[LISTING_URL] = NO_LINKS
        source = scouted_source(create_source, selector_recipe)

        run_once(ctx)

        (record,) = ctx.store.staging.list()
        fingerprint = compute_fingerprint("Boekenmarkt", date(2026, 6, 15), source.id)
        assert record.source_url == f"{LISTING_URL}#{fingerprint[:16]}"
        assert record.detail_url is None

    def test_three_empty_runs_request_rescout(self, ctx, web, create_source, selector_recipe):
        web.static_pages[LISTING_URL] = EMPTY
        source = scouted_source(create_source, selector_recipe)

        flags = [run_once(ctx).results[0]["needs_re_scout"] for _ in range(3)]

        stored = ctx.store.sources.get(source.id)
        assert flags == [False, False, True]
        assert stored.scout_status == ScoutStatus.NEEDS_RE_SCOUT.value
        assert stored.recipe.item_selector == "article.event"
        assert enqueue(ctx) == []

    def test_fetch_failure_releases_the_job(self, ctx, web, create_source, selector_recipe):
        web.static_pages[LISTING_URL] = (503, "Service Unavailable")
        source = scouted_source(create_source, selector_recipe)

        summary = run_once(ctx)

        assert summary.failed == 1
        assert summary.results[0]["job_status"] == JobStatus.PENDING.value
        stored = ctx.store.sources.get(source.id)
        assert stored.consecutive_empty_runs == 0
        assert stored.last_error == "HTTP 503"
        assert stored.scout_status == ScoutStatus.SCOUTED.value

    def test_source_without_recipe_fails_the_job(self, ctx, create_source):
        job_id = ctx.store.jobs.create(create_source().id)

        summary = run_executor(ctx)

        assert summary.failed == 1
        assert "has no recipe" in summary.results[0]["error"]
        assert ctx.store.jobs.get(job_id).last_error.endswith("has no recipe")

    def test_feed_recipe(self, ctx, web, create_source):
        feed_url = "https://www.uitinzwolle.nl/agenda.rss"
        web.static_pages[feed_url] = RSS
        scouted_source(create_source, ExtractionRecipe(mode=RecipeMode.FEED, feed_url=feed_url))

        summary = run_once(ctx)

        (record,) = ctx.store.staging.list()
        assert summary.results[0]["parsing_method"] == "feed"
        assert record.source_url == "https://www.uitinzwolle.nl/agenda/open-podium"
        assert web.calls() == [feed_url]

    def test_rate_limiter_is_shared_per_source(self, ctx, create_source, selector_recipe):
        source = scouted_source(create_source, selector_recipe)
        executor = Executor(ctx)
        assert executor._limiter(source) is executor._limiter(source)

    def test_no_jobs(self, ctx):
        assert run_executor(ctx).processed == 0
