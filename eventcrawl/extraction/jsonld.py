"""
eventcrawl.extraction.jsonld

Tier 2: Schema.org Event markup in application/ld+json blocks.
"""

from __future__ import annotations

import json
import logging
import re
from typing import Any, Iterator, Optional

from bs4 import BeautifulSoup

from eventcrawl.schemas.event import EventCard
from eventcrawl.schemas.staging import Confidence, ParsingMethod

from .base import Extractor

logger = logging.getLogger(__name__)

EVENT_TYPES = frozenset(
    {
        "Event",
        "SportsEvent",
        "MusicEvent",
        "Festival",
        "TheaterEvent",
        "DanceEvent",
        "ComedyEvent",
        "ExhibitionEvent",
        "SocialEvent",
        "BusinessEvent",
        "EducationEvent",
        "FoodEvent",
        "ScreeningEvent",
        "ChildrensEvent",
        "LiteraryEvent",
    }
)

_TRAILING_COMMA_RE = re.compile(r",\s*([}\]])")


def load_block(text: str) -> Optional[Any]:
    """Parse one ld+json block, tolerating trailing commas."""
    try:
        return json.loads(text)
    except json.JSONDecodeError:
        pass
    try:
        return json.loads(_TRAILING_COMMA_RE.sub(r"\1", text))
    except json.JSONDecodeError as e:
        logger.debug("Skipping malformed JSON-LD block: %s", e)
        return None


def iter_nodes(data: Any) -> Iterator[dict[str, Any]]:
    """Flatten lists and @graph containers into individual nodes."""
    if isinstance(data, list):
        for item in data:
            yield from iter_nodes(item)
    elif isinstance(data, dict):
        if "@graph" in data and isinstance(data["@graph"], list):
            yield from iter_nodes(data["@graph"])
        else:
            yield data


def is_event_node(node: dict[str, Any]) -> bool:
    types = node.get("@type")
    if not types:
        return False
    if not isinstance(types, list):
        types = [types]
    return any(str(t).split("/")[-1] in EVENT_TYPES for t in types)


def _text(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, list):
        return _text(value[0]) if value else None
    if isinstance(value, dict):
        return _text(value.get("name") or value.get("url") or value.get("@id"))
    text = str(value).strip()
    return text or None


def _address(address: Any) -> Optional[str]:
    if isinstance(address, str):
        return address.strip() or None
    if isinstance(address, dict):
        parts = [
            _text(address.get(k))
            for k in ("streetAddress", "postalCode", "addressLocality", "addressCountry")
        ]
        return ", ".join(p for p in parts if p) or None
    return None


def _image(image: Any) -> Optional[str]:
    if isinstance(image, str):
        return image
    if isinstance(image, list):
        return _image(image[0]) if image else None
    if isinstance(image, dict):
        return _text(image.get("url") or image.get("contentUrl"))
    return None


def _offers(offers: Any) -> tuple[Optional[str], Optional[str]]:
    """Return (price text, ticket url) from an offers node or list."""
    if isinstance(offers, list):
        prices = []
        ticket_url = None
        for offer in offers:
            price, url = _offers(offer)
            if price:
                prices.append(price)
            ticket_url = ticket_url or url
        return (" - ".join(prices) or None), ticket_url
    if not isinstance(offers, dict):
        return None, None

    price = offers.get("price", offers.get("lowPrice"))
    high = offers.get("highPrice")
    currency = offers.get("priceCurrency") or ""
    parts = [str(p) for p in (price, high) if p not in (None, "")]
    text = f"{currency} {' - '.join(parts)}".strip() if parts else None
    return text, _text(offers.get("url"))


def card_from_node(node: dict[str, Any]) -> EventCard:
    location = node.get("location")
    venue = None
    address = None
    latitude = longitude = None
    if isinstance(location, str):
        venue = location
    elif isinstance(location, list) and location:
        location = location[0]
    if isinstance(location, dict):
        venue = _text(location.get("name"))
        address = _address(location.get("address"))
        geo = location.get("geo") or {}
        if isinstance(geo, dict):
            try:
                latitude = float(geo["latitude"]) if geo.get("latitude") is not None else None
                longitude = float(geo["longitude"]) if geo.get("longitude") is not None else None
            except (TypeError, ValueError):
                latitude = longitude = None
        venue = venue or address

    price_text, ticket_url = _offers(node.get("offers"))
    return EventCard(
        title=_text(node.get("name")) or _text(node.get("headline")),
        date_text=_text(node.get("startDate")),
        end_text=_text(node.get("endDate")),
        location=venue,
        address=address,
        description=_text(node.get("description")),
        url=_text(node.get("url")),
        image_url=_image(node.get("image")),
        ticket_url=ticket_url,
        price_text=price_text,
        duration_text=_text(node.get("duration")),
        latitude=latitude,
        longitude=longitude,
    )


class JsonLdExtractor(Extractor):
    tier = ParsingMethod.JSON_LD
    confidence = Confidence.HIGH

    def extract_cards(self, html: str, base_url: str) -> list[EventCard]:
        soup = BeautifulSoup(html, "lxml")
        cards: list[EventCard] = []
        for script in soup.find_all("script", type="application/ld+json"):
            data = load_block(script.string or script.get_text() or "")
            if data is None:
                continue
            cards.extend(card_from_node(n) for n in iter_nodes(data) if is_event_node(n))
        return cards
