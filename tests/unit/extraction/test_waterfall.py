"""
Unit tests for DOM heuristics, recipe replay and the extraction waterfall.
"""

import json

from eventcrawl.extraction.base import Extractor
from eventcrawl.extraction.dom import DomExtractor, detect_cms, selectors_for
from eventcrawl.extraction.parsers import condense_html
from eventcrawl.extraction.recipe import RecipeExtractor, apply_recipe, extractor_for
from eventcrawl.extraction.waterfall import Waterfall
from eventcrawl.extraction.feed import FeedExtractor
from eventcrawl.extraction.hydration import HydrationExtractor
from eventcrawl.extraction.jsonld import JsonLdExtractor
from eventcrawl.schemas.source import ExtractionRecipe, FieldMapping, RecipeMode
from eventcrawl.schemas.staging import Confidence, ParsingMethod

BASE_URL = "https://www.uitinzwolle.nl/agenda"

AGENDA_PAGE = """
<html><body>
<div class="agenda">
  <div class="agenda-item">
    <img data-src="/img/markt.jpg">
    <h3>Boekenmarkt</h3>
    <span class="date">15 juni 2026</span>
    <span class="time">10:00</span>
    <span class="venue">Grote Kerkplein</span>
    <a href="/agenda/boekenmarkt">Lees meer</a>
  </div>
  <div class="agenda-item">
    <h3>Stadswandeling</h3>
    <time datetime="2026-06-16T14:00">di 16 juni</time>
    <a href="/agenda/stadswandeling">Lees meer</a>
  </div>
  <div class="agenda-item"><h3>Zonder datum</h3></div>
</div>
</body></html>
"""

JSONLD_BLOCK = (
    '<script type="application/ld+json">'
    '{"@type": "Event", "name": "Uit JSON-LD", "startDate": "2026-06-20"}'
    "</script>"
)

NEXT_BLOCK = (
    "<script id='__NEXT_DATA__'>"
    + json.dumps({"props": {"events": [{"title": "Uit hydration", "startDate": "2026-06-20"}]}})
    + "</script>"
)


class TestDomExtractor:
    """Tests for the DOM heuristic tier."""

    def test_generic_agenda_items(self):
        result = DomExtractor().extract(AGENDA_PAGE, BASE_URL)

        assert result.tier == ParsingMethod.DOM
        assert result.confidence == Confidence.LOW
        assert [c.title for c in result.cards] == ["Boekenmarkt", "Stadswandeling"]

    def test_card_fields(self):
        first, second = DomExtractor().extract(AGENDA_PAGE, BASE_URL).cards
        assert first.date_text == "15 juni 2026"
        assert first.time_text == "10:00"
        assert first.location == "Grote Kerkplein"
        assert first.url == "https://www.uitinzwolle.nl/agenda/boekenmarkt"
        assert first.image_url == "https://www.uitinzwolle.nl/img/markt.jpg"
        assert second.date_text == "2026-06-16T14:00"

    def test_cms_detection_orders_selectors(self):
        html = "<link href='/wp-content/themes/x.css'><article class='type-tribe_events'></article>"
        assert detect_cms(html) == "wordpress"
        assert selectors_for("wordpress")[0] == "article.type-tribe_events"
        assert detect_cms("<html></html>") == "generic"


class TestRecipeExtractor:
    """Tests for replaying a selector recipe."""

    def test_selector_recipe(self):
        recipe = ExtractionRecipe(
            container_selector=".agenda",
            item_selector=".agenda-item",
            mapping=FieldMapping(title="h3", date=".date, time", location=".venue", link="a"),
        )
        result = RecipeExtractor(recipe).extract(AGENDA_PAGE, BASE_URL)

        assert result.tier == ParsingMethod.RECIPE
        assert result.confidence == Confidence.MEDIUM
        assert len(result.cards) == 2
        assert result.cards[1].date_text == "2026-06-16T14:00"

    def test_invalid_field_selector_falls_back(self):
        recipe = ExtractionRecipe(item_selector=".agenda-item", mapping=FieldMapping(title="h3[[["))
        cards = RecipeExtractor(recipe).extract(AGENDA_PAGE, BASE_URL).cards
        # Title falls back to the generic heading selector.
        assert [c.title for c in cards] == ["Boekenmarkt", "Stadswandeling"]

    def test_extractor_for_modes(self):
        assert isinstance(extractor_for(ExtractionRecipe(mode=RecipeMode.HYDRATION)), HydrationExtractor)
        assert isinstance(extractor_for(ExtractionRecipe(mode=RecipeMode.JSON_LD)), JsonLdExtractor)
        assert isinstance(extractor_for(ExtractionRecipe(mode=RecipeMode.FEED)), FeedExtractor)
        assert isinstance(extractor_for(ExtractionRecipe(item_selector="li")), RecipeExtractor)

    def test_apply_recipe_falls_back_to_waterfall(self):
        recipe = ExtractionRecipe(item_selector=".does-not-exist")
        result = apply_recipe(recipe, AGENDA_PAGE + JSONLD_BLOCK, BASE_URL)

        assert result.tier == ParsingMethod.JSON_LD
        assert result.attempted == ["recipe", "hydration", "json_ld"]
        assert recipe.item_selector == ".does-not-exist"

    def test_apply_without_recipe(self):
        result = apply_recipe(None, AGENDA_PAGE, BASE_URL)
        assert result.tier == ParsingMethod.DOM


class TestWaterfall:
    """Tier ordering and short-circuiting."""

    def test_hydration_beats_jsonld_and_dom(self):
        html = AGENDA_PAGE + JSONLD_BLOCK + NEXT_BLOCK
        result = Waterfall.default().run(html, BASE_URL)

        assert result.tier == ParsingMethod.HYDRATION
        assert result.confidence == Confidence.HIGH
        assert [c.title for c in result.cards] == ["Uit hydration"]
        assert result.attempted == ["hydration"]

    def test_jsonld_beats_dom(self):
        result = Waterfall.default().run(AGENDA_PAGE + JSONLD_BLOCK, BASE_URL)
        assert result.tier == ParsingMethod.JSON_LD
        assert result.attempted == ["hydration", "json_ld"]

    def test_dom_is_last_resort(self):
        result = Waterfall.default().run(AGENDA_PAGE, BASE_URL)
        assert result.tier == ParsingMethod.DOM
        assert result.attempted == ["hydration", "json_ld", "feed", "dom"]

    def test_nothing_found(self):
        result = Waterfall.default().run("<html><body><p>Geen evenementen</p></body></html>", BASE_URL)
        assert not result.success
        assert result.tier is None
        assert result.confidence == Confidence.LOW

    def test_empty_html_runs_no_tier(self):
        assert Waterfall.default().run("", BASE_URL).attempted == []

    def test_broken_tier_does_not_stop_the_waterfall(self):
        class Exploding(Extractor):
            tier = ParsingMethod.HYDRATION
            confidence = Confidence.HIGH

            def extract_cards(self, html, base_url):
                raise ValueError("bad markup")

        result = Waterfall([Exploding(), DomExtractor()]).run(AGENDA_PAGE, BASE_URL)
        assert result.tier == ParsingMethod.DOM
        assert len(result.cards) == 2


class TestCondenseHtml:
    def test_scripts_and_comments_are_removed(self):
        html = "<html><head><style>x{}</style></head><body><!-- nav --><script>var a</script><div class='e'>Hi</div></body></html>"
        condensed = condense_html(html)
        assert "<script" not in condensed
        assert "nav" not in condensed
        assert "class=\"e\"" in condensed

    def test_truncates(self):
        assert len(condense_html("<p>" + "x" * 100 + "</p>", max_chars=20)) == 20
