"""
eventcrawl.extraction.hydration

Tier 1: client-side application state embedded in the page
(Next.js __NEXT_DATA__, Nuxt __NUXT_DATA__, window.__INITIAL_STATE__).
The site's own data model, so field values are already clean.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Optional

from bs4 import BeautifulSoup

from eventcrawl.schemas.event import EventCard
from eventcrawl.schemas.staging import Confidence, ParsingMethod

from .base import Extractor

logger = logging.getLogger(__name__)

MAX_DEPTH = 5
_SKIP_KEYS = {"html", "content", "children"}
_INITIAL_STATE_RE = re.compile(r"window\.__INITIAL_STATE__\s*=\s*({.*?})\s*;", re.DOTALL)

TITLE_KEYS = ("title", "name", "headline", "summary")
DATE_KEYS = ("startDate", "start_date", "date", "startTime", "datetime", "begin", "start")
END_KEYS = ("endDate", "end_date", "endTime", "end")
LOCATION_KEYS = ("location", "venue.name", "venue", "place.name", "locationName")
DESCRIPTION_KEYS = ("description", "intro", "shortDescription", "summary")
IMAGE_KEYS = ("image", "imageUrl", "image.url", "thumbnail", "picture", "photo")
URL_KEYS = ("url", "permalink", "link", "href", "slug")
PRICE_KEYS = ("price", "priceRange", "price_info", "ticketPrice")


def find_state_blobs(html: str) -> list[Any]:
    """Return every parseable hydration payload in the page."""
    soup = BeautifulSoup(html, "lxml")
    blobs: list[Any] = []

    for script_id in ("__NEXT_DATA__", "__NUXT_DATA__"):
        tag = soup.find("script", id=script_id)
        if tag and tag.string:
            try:
                blobs.append(json.loads(tag.string))
            except json.JSONDecodeError as e:
                logger.debug("Unparseable %s payload: %s", script_id, e)

    m = _INITIAL_STATE_RE.search(html)
    if m:
        try:
            blobs.append(json.loads(m.group(1)))
        except json.JSONDecodeError as e:
            logger.debug("Unparseable __INITIAL_STATE__ payload: %s", e)

    return blobs


def is_event_like(obj: dict[str, Any]) -> bool:
    keys = {str(k).lower() for k in obj}
    has_title = bool(keys & {"title", "name", "headline"})
    has_date = any(
        "date" in k or k in ("start", "starttime", "begin", "datetime") for k in keys
    )
    is_user = "username" in keys or "email" in keys
    is_menu = "menuitem" in keys or "navigation" in keys
    return has_title and has_date and not is_user and not is_menu


def find_event_objects(obj: Any, depth: int = 0) -> list[dict[str, Any]]:
    """Depth-limited search for event-like dicts."""
    if depth > MAX_DEPTH or not obj:
        return []
    found: list[dict[str, Any]] = []

    if isinstance(obj, list):
        for item in obj:
            found.extend(find_event_objects(item, depth + 1))
        return found

    if isinstance(obj, dict):
        if is_event_like(obj):
            found.append(obj)
        for key, value in obj.items():
            if key in _SKIP_KEYS:
                continue
            found.extend(find_event_objects(value, depth + 1))
    return found


def _scalar(value: Any) -> Optional[str]:
    if value is None or value == "":
        return None
    if isinstance(value, dict):
        for key in ("name", "url", "title"):
            if value.get(key):
                return str(value[key])
        return None
    if isinstance(value, list):
        return _scalar(value[0]) if value else None
    return str(value)


def pick(obj: dict[str, Any], patterns: tuple[str, ...]) -> Optional[str]:
    """First non-empty value for the given keys; supports `parent.child`."""
    lowered = {str(k).lower(): k for k in obj}
    for pattern in patterns:
        if "." in pattern:
            parent, child = pattern.split(".", 1)
            nested = obj.get(parent)
            if isinstance(nested, dict) and nested.get(child):
                return _scalar(nested[child])
            continue
        key = pattern if pattern in obj else lowered.get(pattern.lower())
        if key is not None:
            value = _scalar(obj[key])
            if value:
                return value
    return None


def card_from_object(obj: dict[str, Any]) -> EventCard:
    title = pick(obj, TITLE_KEYS)
    description = pick(obj, DESCRIPTION_KEYS)
    if description == title:
        description = None
    return EventCard(
        title=title,
        date_text=pick(obj, DATE_KEYS),
        end_text=pick(obj, END_KEYS),
        location=pick(obj, LOCATION_KEYS),
        description=description,
        image_url=pick(obj, IMAGE_KEYS),
        url=pick(obj, URL_KEYS),
        price_text=pick(obj, PRICE_KEYS),
    )


class HydrationExtractor(Extractor):
    tier = ParsingMethod.HYDRATION
    confidence = Confidence.HIGH

    def extract_cards(self, html: str, base_url: str) -> list[EventCard]:
        cards: list[EventCard] = []
        for blob in find_state_blobs(html):
            cards.extend(card_from_object(obj) for obj in find_event_objects(blob))
        return cards
