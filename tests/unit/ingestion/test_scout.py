"""
Unit tests for Scout: recipe generation, validation and persistence.

Listing pages are served by the fake fetchers from conftest; the LLM is
either absent or scripted.
"""

import json

import pytest

from eventcrawl.errors import ScoutError
from eventcrawl.ingestion.context import PipelineContext
from eventcrawl.ingestion.scout import (
    RecipeGenerator,
    RecipeProposal,
    guess_city,
    listing_url,
    run_scout,
)
from eventcrawl.normalization.llm_client import LLMUnavailableError, NullLLMClient
from eventcrawl.schemas.source import FieldMapping, RecipeMode, ScoutStatus, Source, SourceConfig

LISTING_URL = "https://www.uitinzwolle.nl/agenda"

PADDING = "<footer>" + "Uit in Zwolle, alles over cultuur en evenementen in de stad. " * 12 + "</footer>"

ARTICLES = """
<section class="events">
  <article class="event">
    <h3>Boekenmarkt</h3>
    <time datetime="2026-06-15">15 juni</time>
    <span class="venue">Grote Kerkplein</span>
    <a href="/agenda/boekenmarkt">Meer</a>
  </article>
  <article class="event">
    <h3>Stadswandeling</h3>
    <time datetime="2026-06-16">16 juni</time>
    <span class="venue">VVV Zwolle</span>
    <a href="/agenda/stadswandeling">Meer</a>
  </article>
</section>
"""

LISTING = f"<html><body><main>{ARTICLES}</main>{PADDING}</body></html>"

EMPTY_SHELL = f"<html><body><div id='app'></div>{PADDING}</body></html>"

NEXT_DATA = {"props": {"pageProps": {"events": [{"title": "Koningsdag", "startDate": "2026-04-27"}]}}}
HYDRATED = (
    f"<html><body><script id='__NEXT_DATA__' type='application/json'>{json.dumps(NEXT_DATA)}</script>"
    f"{PADDING}</body></html>"
)

RSS = """<?xml version="1.0"?>
<rss version="2.0"><channel><title>Agenda</title>
<item><title>Open Podium</title><link>https://www.uitinzwolle.nl/agenda/open-podium</link>
<description>Zaterdag 15 juni 2026</description></item>
</channel></rss>
"""


def llm_proposal(**kwargs):
    defaults = {
        "container_selector": "section.events",
        "item_selector": "article.event",
        "mapping": FieldMapping(title="h3", date="time", location=".venue", link="a"),
        "reasoning": "Each article is one event",
    }
    defaults.update(kwargs)
    return RecipeProposal(**defaults)


class TestHelpers:
    @pytest.mark.parametrize(
        "name,url,expected",
        [
            ("Uit in Zwolle", "https://www.uitinzwolle.nl", "Zwolle"),
            ("Agenda", "https://www.ontdekdeventer.nl/agenda", "Deventer"),
            ("Beleef Kampen", "https://kampen.example", "Kampen"),
            ("Stadsagenda", "https://example.nl", None),
        ],
    )
    def test_guess_city(self, name, url, expected):
        assert guess_city(name, url) == expected

    def test_listing_url_uses_listing_path(self):
        source = Source(name="x", url="https://www.zwolle.nl/", config=SourceConfig(listing_path="/agenda"))
        assert listing_url(source) == "https://www.zwolle.nl/agenda"


class TestRecipeGenerator:
    """Tests for proposal order: structured data, LLM, heuristics."""

    def _source(self):
        return Source(name="Uit in Zwolle", url=LISTING_URL, population_tier=1)

    def test_structured_data_needs_no_llm(self, scripted_llm):
        llm = scripted_llm([])
        proposal = RecipeGenerator(llm).propose(HYDRATED, self._source())

        assert proposal.recipe.mode == RecipeMode.HYDRATION
        assert proposal.cards_found == 1
        assert not proposal.used_llm
        assert llm.calls == []

    def test_llm_proposal_is_validated(self, scripted_llm):
        llm = scripted_llm([llm_proposal()])
        proposal = RecipeGenerator(llm).propose(LISTING, self._source())

        assert proposal.used_llm
        assert proposal.cards_found == 2
        assert proposal.recipe.item_selector == "article.event"
        assert proposal.recipe.hints["generated_by"] == "llm"
        assert "City: Zwolle" in llm.calls[0]["user"]
        assert llm.calls[0]["schema"] is RecipeProposal

    def test_previous_error_is_passed_to_the_llm(self, scripted_llm):
        llm = scripted_llm([llm_proposal()])
        RecipeGenerator(llm).propose(LISTING, self._source(), previous_error="selector matched nothing")
        assert "selector matched nothing" in llm.calls[0]["user"]

    def test_bad_llm_selector_falls_back_to_heuristics(self, scripted_llm):
        llm = scripted_llm([llm_proposal(item_selector="div.does-not-exist")])
        proposal = RecipeGenerator(llm).propose(LISTING, self._source())

        assert not proposal.used_llm
        assert proposal.recipe.hints["generated_by"] == "heuristic"
        assert "matched nothing" in proposal.rationale[0]

    def test_llm_errors_fall_back_to_heuristics(self, scripted_llm):
        llm = scripted_llm([LLMUnavailableError("quota")])
        proposal = RecipeGenerator(llm).propose(LISTING, self._source())
        assert proposal.recipe.item_selector == "article.event"

    def test_heuristic_search_without_llm(self):
        proposal = RecipeGenerator(NullLLMClient()).propose(LISTING, self._source())

        assert proposal.recipe.mode == RecipeMode.SELECTOR
        assert proposal.recipe.item_selector == "article.event"
        assert proposal.recipe.hints == {"generated_by": "heuristic", "cms": "generic"}
        assert proposal.cards_found == 2

    def test_nothing_found_raises(self):
        with pytest.raises(ScoutError, match="no extraction recipe"):
            RecipeGenerator(NullLLMClient()).propose(EMPTY_SHELL, self._source())


class TestRunScout:
    def test_recipe_is_activated(self, ctx, web, create_source):
        web.static_pages[LISTING_URL] = LISTING
        source = create_source()

        summary = run_scout(ctx)

        stored = ctx.store.sources.get(source.id)
        assert summary.succeeded == 1
        assert summary.results[0]["recipe_mode"] == "selector"
        assert stored.scout_status == ScoutStatus.SCOUTED.value
        assert stored.recipe.item_selector == "article.event"
        assert stored.scout_claimed_by is None
        assert all(engine.closed for engine in web.engines)

    def test_advertised_feed_becomes_feed_recipe(self, ctx, web, create_source):
        page = (
            '<html><head><link rel="alternate" type="application/rss+xml" href="/agenda.rss"></head>'
            f"<body>{PADDING}</body></html>"
        )
        web.static_pages[LISTING_URL] = page
        web.static_pages["https://www.uitinzwolle.nl/agenda.rss"] = RSS
        source = create_source()

        run_scout(ctx)

        recipe = ctx.store.sources.get(source.id).recipe
        assert recipe.mode == RecipeMode.FEED
        assert recipe.feed_url == "https://www.uitinzwolle.nl/agenda.rss"

    def test_render_only_listing(self, settings, store, web, create_source, scripted_llm):
        web.static_pages[LISTING_URL] = EMPTY_SHELL
        web.render_pages[LISTING_URL] = LISTING
        source = create_source()
        ctx = PipelineContext(
            settings=settings,
            store=store,
            worker_id="scout-test",
            llm=scripted_llm([llm_proposal(requires_render=True)]),
            static_factory=web.static_factory,
            render_factory=web.render_factory,
        )

        summary = run_scout(ctx)

        stored = store.sources.get(source.id)
        assert summary.results[0]["cards_found"] == 2
        assert stored.fetcher_strategy == "render"
        assert stored.recipe.requires_render
        assert web.calls("render") == [LISTING_URL]

    def test_short_sample_fails_the_attempt(self, ctx, web, create_source):
        web.static_pages[LISTING_URL] = "<html><body>Even geduld</body></html>"
        source = create_source()

        summary = run_scout(ctx)

        stored = ctx.store.sources.get(source.id)
        assert summary.failed == 1
        assert summary.results[0]["error"] == "HTML too short or empty"
        assert stored.scout_status == ScoutStatus.PENDING_SCOUT.value
        assert stored.scout_attempts == 1
        assert stored.last_error == "HTML too short or empty"

    def test_http_error_fails_the_attempt(self, ctx, web, create_source):
        web.static_pages[LISTING_URL] = (503, "Service Unavailable")
        source = create_source()

        run_scout(ctx)

        assert ctx.store.sources.get(source.id).last_error == "Sample fetch failed: HTTP 503"

    def test_specific_source(self, ctx, web, create_source):
        web.static_pages[LISTING_URL] = LISTING
        first = create_source()
        second = create_source(url="https://www.uitinzwolle.nl/agenda?site=2")
        web.static_pages[second.url] = LISTING

        summary = run_scout(ctx, source_id=second.id)

        assert [r["source_id"] for r in summary.results] == [second.id]
        assert ctx.store.sources.get(first.id).scout_status == ScoutStatus.PENDING_SCOUT.value

    def test_nothing_to_scout(self, ctx):
        assert run_scout(ctx).to_dict() == {"processed": 0, "succeeded": 0, "failed": 0, "results": []}
