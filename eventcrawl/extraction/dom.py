"""
eventcrawl.extraction.dom

Tier 4: CSS-selector heuristics, last resort.

Selectors are tried most specific first (detected CMS, then generic) and the
first selector that yields usable cards wins.
"""

from __future__ import annotations

import re
from typing import Optional

from bs4 import Tag

from eventcrawl.schemas.event import EventCard
from eventcrawl.schemas.staging import Confidence, ParsingMethod

from .base import Extractor
from .parsers import collapse_ws, datetime_attr, first_link, image_url, make_soup, select_text
from .transforms import MONTHS

CMS_SELECTORS: dict[str, list[str]] = {
    "wordpress": [
        "article.type-tribe_events",
        ".tribe-events-calendar-list__event-row",
        ".tribe-common-g-row.tribe-events-calendar-list__event-row",
        "article.event",
        ".event-article",
    ],
    "wix": ["[data-hook='event-list-item']", ".wix-events-list-item"],
    "squarespace": [".eventlist-event", ".event-item"],
    "generic": [
        "article.event",
        ".event-item",
        ".event-card",
        ".agenda-item",
        ".calendar-event",
        "li.event",
        ".post-item",
        ".activity-card",
    ],
}

_CMS_MARKERS = {
    "wordpress": ("wp-content", "tribe-events", "wp-json"),
    "wix": ("wix.com", "_wixcssimports", "wixstatic"),
    "squarespace": ("squarespace", "sqs-block"),
}

TITLE_SELECTOR = "h1, h2, h3, h4, .title, [class*='title']"
DATE_SELECTOR = "time, .date, [class*='date'], [datetime]"
TIME_SELECTOR = ".time, [class*='time']"
LOCATION_SELECTOR = ".location, .venue, [class*='location'], [class*='venue']"
DESCRIPTION_SELECTOR = "p, .description, .excerpt"

_LOOSE_DATE_RE = re.compile(
    r"\b\d{1,2}\s+(?:" + "|".join(sorted(MONTHS, key=len, reverse=True)) + r")\b(?:\s+\d{4})?",
    re.IGNORECASE,
)


def detect_cms(html: str) -> str:
    lowered = html[:200_000].lower()
    for cms, markers in _CMS_MARKERS.items():
        if any(m in lowered for m in markers):
            return cms
    return "generic"


def selectors_for(cms: str) -> list[str]:
    ordered = list(CMS_SELECTORS.get(cms, []))
    for selector in CMS_SELECTORS["generic"]:
        if selector not in ordered:
            ordered.append(selector)
    return ordered


def parse_element(el: Tag) -> Optional[EventCard]:
    title = select_text(el, TITLE_SELECTOR) or select_text(el, "a")
    if not title or len(title) < 3:
        return None

    date_text = datetime_attr(el) or select_text(el, DATE_SELECTOR)
    if not date_text:
        m = _LOOSE_DATE_RE.search(collapse_ws(el.get_text(" ")))
        date_text = m.group(0) if m else None

    return EventCard(
        title=title,
        date_text=date_text,
        time_text=select_text(el, TIME_SELECTOR),
        location=select_text(el, LOCATION_SELECTOR),
        description=select_text(el, DESCRIPTION_SELECTOR),
        url=first_link(el),
        image_url=image_url(el),
        raw_html=str(el),
    )


class DomExtractor(Extractor):
    tier = ParsingMethod.DOM
    confidence = Confidence.LOW

    def extract_cards(self, html: str, base_url: str) -> list[EventCard]:
        soup = make_soup(html)
        for selector in selectors_for(detect_cms(html)):
            cards = []
            for el in soup.select(selector):
                card = parse_element(el)
                if card is not None and card.is_usable:
                    cards.append(card)
            if cards:
                return cards
        return []
