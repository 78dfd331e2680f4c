"""
eventcrawl.extraction.recipe

Replays a Scout recipe on a listing page. Selector recipes are applied
here; structured recipes delegate to the matching waterfall tier.
"""

from __future__ import annotations

import logging

from eventcrawl.schemas.event import EventCard
from eventcrawl.schemas.source import ExtractionRecipe, RecipeMode
from eventcrawl.schemas.staging import Confidence, ParsingMethod

from .base import ExtractionResult, Extractor
from .dom import DATE_SELECTOR, TITLE_SELECTOR
from .feed import FeedExtractor, FetchText
from .hydration import HydrationExtractor
from .jsonld import JsonLdExtractor
from .parsers import datetime_attr, first_link, image_url, make_soup, select_attr, select_text
from .waterfall import Waterfall

logger = logging.getLogger(__name__)


class RecipeExtractor(Extractor):
    """Container/item selectors plus a per-field mapping."""

    tier = ParsingMethod.RECIPE
    confidence = Confidence.MEDIUM

    def __init__(self, recipe: ExtractionRecipe) -> None:
        self.recipe = recipe

    def extract_cards(self, html: str, base_url: str) -> list[EventCard]:
        if not self.recipe.item_selector:
            return []
        soup = make_soup(html)
        root = soup
        if self.recipe.container_selector:
            root = soup.select_one(self.recipe.container_selector) or soup

        m = self.recipe.mapping
        cards = []
        for item in root.select(self.recipe.item_selector):
            date_text = None
            if m.date:
                date_text = select_attr(item, m.date, "datetime") or select_text(item, m.date)
            date_text = date_text or datetime_attr(item) or select_text(item, DATE_SELECTOR)

            cards.append(
                EventCard(
                    title=select_text(item, m.title) or select_text(item, TITLE_SELECTOR),
                    date_text=date_text,
                    time_text=select_text(item, m.time),
                    location=select_text(item, m.location),
                    description=select_text(item, m.description),
                    url=select_attr(item, m.link, "href") or first_link(item),
                    image_url=(
                        select_attr(item, m.image, "src")
                        or select_attr(item, m.image, "data-src")
                        or image_url(item)
                    ),
                    raw_html=str(item),
                )
            )
        return cards


def extractor_for(recipe: ExtractionRecipe, fetch_text: FetchText | None = None) -> Extractor:
    mode = RecipeMode(recipe.mode)
    if mode is RecipeMode.HYDRATION:
        return HydrationExtractor()
    if mode is RecipeMode.JSON_LD:
        return JsonLdExtractor()
    if mode is RecipeMode.FEED:
        return FeedExtractor(fetch_text=fetch_text)
    return RecipeExtractor(recipe)


def apply_recipe(
    recipe: ExtractionRecipe | None,
    html: str,
    base_url: str,
    *,
    fetch_text: FetchText | None = None,
    waterfall: Waterfall | None = None,
) -> ExtractionResult:
    """
    Extract listing cards with the source's recipe, falling back to the
    generic waterfall when there is no recipe or it finds nothing. The
    recipe itself is never modified here.
    """
    attempted: list[str] = []
    if recipe is not None:
        result = extractor_for(recipe, fetch_text).extract(html, base_url)
        if result.success:
            return result
        attempted.extend(result.attempted)
        logger.info("Recipe (%s) found no events on %s, running waterfall", recipe.mode, base_url)

    waterfall = waterfall or Waterfall.default(fetch_text=fetch_text)
    result = waterfall.run(html, base_url)
    result.attempted = attempted + result.attempted
    return result
