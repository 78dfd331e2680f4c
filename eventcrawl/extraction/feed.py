"""
eventcrawl.extraction.feed

Tier 3: calendar and syndication feeds.

RSS/Atom goes through feedparser; iCalendar VEVENT blocks are read line by
line. A page that only advertises a feed (<link rel="alternate">) is
followed when the extractor was given a fetch callable.
"""

from __future__ import annotations

import logging
import re
from collections.abc import Callable
from typing import Optional
from urllib.parse import urljoin

import feedparser
from bs4 import BeautifulSoup

from eventcrawl.schemas.event import EventCard
from eventcrawl.schemas.staging import Confidence, ParsingMethod

from .base import Extractor
from .transforms import clean_text, parse_date

logger = logging.getLogger(__name__)

FEED_TYPES = (
    "application/rss+xml",
    "application/atom+xml",
    "text/calendar",
)

_ICS_DT_RE = re.compile(r"^(\d{4})(\d{2})(\d{2})(?:T(\d{2})(\d{2})(\d{2})?)?")

FetchText = Callable[[str], Optional[str]]


def looks_like_feed(text: str) -> bool:
    head = text.lstrip()[:500].lower()
    return head.startswith("begin:vcalendar") or "<rss" in head or (
        "<feed" in head and "xmlns" in head
    )


def discover_feed_urls(html: str, base_url: str) -> list[str]:
    soup = BeautifulSoup(html, "lxml")
    urls = []
    for link in soup.find_all("link", rel="alternate"):
        if (link.get("type") or "").lower() in FEED_TYPES and link.get("href"):
            urls.append(urljoin(base_url, link["href"]))
    return urls


# ---------------------------------------------------------------------------
# RSS / Atom
# ---------------------------------------------------------------------------


def parse_syndication(text: str) -> list[EventCard]:
    parsed = feedparser.parse(text)
    cards = []
    for entry in parsed.entries:
        summary = entry.get("summary")
        date_text = entry.get("ev_startdate")
        if not date_text and summary and parse_date(summary):
            date_text = summary
        if not date_text:
            date_text = entry.get("published") or entry.get("updated")

        summary_text = (
            clean_text(BeautifulSoup(summary, "lxml").get_text(" ")) if summary else None
        )
        image = None
        for enclosure in entry.get("enclosures", []):
            if str(enclosure.get("type", "")).startswith("image/"):
                image = enclosure.get("href")
                break

        cards.append(
            EventCard(
                title=clean_text(entry.get("title")),
                date_text=date_text,
                end_text=entry.get("ev_enddate"),
                location=entry.get("ev_location"),
                description=summary_text,
                url=entry.get("link"),
                image_url=image,
            )
        )
    return cards


# ---------------------------------------------------------------------------
# iCalendar
# ---------------------------------------------------------------------------


def _unfold(text: str) -> list[str]:
    lines: list[str] = []
    for raw in text.splitlines():
        if raw[:1] in (" ", "\t") and lines:
            lines[-1] += raw[1:]
        else:
            lines.append(raw)
    return lines


def _ics_datetime(value: str) -> Optional[str]:
    m = _ICS_DT_RE.match(value.strip())
    if not m:
        return None
    year, month, day, hour, minute, _ = m.groups()
    if hour:
        return f"{year}-{month}-{day}T{hour}:{minute}"
    return f"{year}-{month}-{day}"


def _ics_text(value: str) -> str:
    return value.replace("\\n", "\n").replace("\\,", ",").replace("\\;", ";")


def parse_ics(text: str) -> list[EventCard]:
    cards = []
    current: Optional[dict[str, str]] = None
    for line in _unfold(text):
        if line.upper() == "BEGIN:VEVENT":
            current = {}
            continue
        if line.upper() == "END:VEVENT":
            if current is not None:
                cards.append(
                    EventCard(
                        title=clean_text(current.get("SUMMARY")),
                        date_text=_ics_datetime(current.get("DTSTART", "")),
                        end_text=_ics_datetime(current.get("DTEND", "")),
                        location=clean_text(current.get("LOCATION")),
                        description=clean_text(current.get("DESCRIPTION")),
                        url=current.get("URL"),
                        duration_text=current.get("DURATION"),
                    )
                )
            current = None
            continue
        if current is None or ":" not in line:
            continue
        name, value = line.split(":", 1)
        key = name.split(";", 1)[0].upper()
        current[key] = _ics_text(value)
    return cards


class FeedExtractor(Extractor):
    tier = ParsingMethod.FEED
    confidence = Confidence.MEDIUM

    def __init__(self, fetch_text: FetchText | None = None) -> None:
        self.fetch_text = fetch_text

    def parse(self, text: str) -> list[EventCard]:
        if text.lstrip()[:15].upper().startswith("BEGIN:VCALENDAR"):
            return parse_ics(text)
        return parse_syndication(text)

    def extract_cards(self, html: str, base_url: str) -> list[EventCard]:
        if looks_like_feed(html):
            return self.parse(html)

        if self.fetch_text is None:
            return []
        for feed_url in discover_feed_urls(html, base_url):
            text = self.fetch_text(feed_url)
            if text:
                cards = self.parse(text)
                if cards:
                    logger.info("Feed tier used %s (%d entries)", feed_url, len(cards))
                    return cards
        return []
