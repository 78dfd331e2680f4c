"""
eventcrawl.extraction.transforms

Field parsers shared by every extraction tier: dates, times, durations,
prices and categories. None of these raise on bad input; they return None
and the caller downgrades the record's confidence.
"""

from __future__ import annotations

import re
from datetime import date, datetime, time, timedelta
from typing import Optional

from dateutil import parser as date_parser

from eventcrawl.schemas.event import EventCategory, PriceLevel

MONTHS = {
    # Dutch
    "januari": 1, "februari": 2, "maart": 3, "april": 4, "mei": 5, "juni": 6,
    "juli": 7, "augustus": 8, "september": 9, "oktober": 10, "november": 11,
    "december": 12, "mrt": 3, "okt": 10,
    # English
    "january": 1, "february": 2, "march": 3, "may": 5, "june": 6, "july": 7,
    "august": 8, "october": 10,
    "jan": 1, "feb": 2, "mar": 3, "apr": 4, "jun": 6, "jul": 7, "aug": 8,
    "sep": 9, "sept": 9, "oct": 10, "nov": 11, "dec": 12,
    # German
    "januar": 1, "februar": 2, "märz": 3, "maerz": 3, "dezember": 12,
    "dez": 12, "mai": 5,
}
_MONTH_ALT = "|".join(sorted(MONTHS, key=len, reverse=True))

_ISO_DATE_RE = re.compile(r"\b(\d{4})-(\d{1,2})-(\d{1,2})")
_NUMERIC_DATE_RE = re.compile(r"\b(\d{1,2})[-/.](\d{1,2})[-/.](\d{4})\b")
_DAY_MONTH_RE = re.compile(
    rf"\b(\d{{1,2}})(?:e|ste|de|st|nd|rd|th)?\.?\s+({_MONTH_ALT})\.?(?:\s+(\d{{4}}))?\b",
    re.IGNORECASE,
)
_MONTH_DAY_RE = re.compile(
    rf"\b({_MONTH_ALT})\.?\s+(\d{{1,2}})(?:st|nd|rd|th)?,?(?:\s+(\d{{4}}))?\b",
    re.IGNORECASE,
)
_YEAR_RE = re.compile(r"\b(19|20)\d{2}\b")

_RELATIVE_DAYS = {
    "vandaag": 0, "today": 0, "heute": 0,
    "morgen": 1, "tomorrow": 1,
    "overmorgen": 2, "übermorgen": 2,
}

_ISO_TIME_RE = re.compile(r"T(\d{2}):(\d{2})")
_CLOCK_RE = re.compile(r"\b([01]?\d|2[0-3])[:.h]([0-5]\d)\b(?:\s*([ap])\.?m\.?)?", re.IGNORECASE)
_AMPM_RE = re.compile(r"\b(1[0-2]|0?[1-9])\s*([ap])\.?m\.?\b", re.IGNORECASE)
_DUTCH_HOUR_RE = re.compile(r"\b([01]?\d|2[0-3])\s*(?:u|uur|uhr)\b", re.IGNORECASE)

_HOURS_RE = re.compile(r"(\d+(?:[.,]\d+)?)\s*(?:h|hour|hours|hr|hrs|uur|uren)\b", re.IGNORECASE)
_MINUTES_RE = re.compile(r"(\d+)\s*(?:m|min|mins|minutes|minuten)\b", re.IGNORECASE)
_BARE_NUMBER_RE = re.compile(r"^\s*(\d+)\s*$")
_ISO_DURATION_RE = re.compile(r"^PT(?:(\d+)H)?(?:(\d+)M)?$", re.IGNORECASE)

# Digit runs with any mix of "." and "," (1.250 | 12,50 | 1.250,00)
_PRICE_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)*")

FREE_INDICATORS = (
    "free",
    "gratis",
    "vrije toegang",
    "vrij entree",
    "kostenlos",
    "gratuit",
    "no charge",
    "no cover",
)

CATEGORY_KEYWORDS: list[tuple[EventCategory, tuple[str, ...]]] = [
    (EventCategory.NIGHTLIFE, ("club", "dj", "party", "feest", "nightlife", "rave")),
    (EventCategory.MUSIC, ("concert", "music", "muziek", "band", "jazz", "festival", "koor", "orkest")),
    (EventCategory.FOOD, ("food", "dinner", "diner", "restaurant", "wine", "wijn", "beer", "bier", "proeverij", "markt", "market")),
    (EventCategory.FAMILY, ("kids", "kinder", "family", "familie", "children", "zoo", "speeltuin")),
    (EventCategory.ACTIVE, ("sport", "run", "loop", "walk", "wandel", "fiets", "cycling", "yoga", "fitness")),
    (EventCategory.CIVIC, ("gemeente", "raad", "council", "inspraak", "informatieavond", "verkiezing")),
    (EventCategory.CULTURE, ("museum", "exhibition", "expositie", "tentoonstelling", "theater", "theatre", "film", "art", "kunst", "lezing")),
    (EventCategory.SOCIAL, ("meetup", "borrel", "social", "netwerk", "ontmoeting", "café")),
    (EventCategory.COMMUNITY, ("buurt", "vrijwilliger", "community", "wijk", "vereniging")),
]

_WS_RE = re.compile(r"\s+")


def clean_text(value: Optional[str], *, max_length: Optional[int] = None) -> Optional[str]:
    """Collapse whitespace; empty strings become None."""
    if value is None:
        return None
    text = _WS_RE.sub(" ", str(value)).strip()
    if not text:
        return None
    if max_length and len(text) > max_length:
        text = text[: max_length - 1].rstrip() + "…"
    return text


# ---------------------------------------------------------------------------
# Dates
# ---------------------------------------------------------------------------


def _safe_date(year: int, month: int, day: int) -> Optional[date]:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def _infer_year(month: int, day: int, today: date) -> Optional[date]:
    """Listings omit the year for upcoming events; roll over to next year if needed."""
    candidate = _safe_date(today.year, month, day)
    if candidate and candidate < today - timedelta(days=60):
        candidate = _safe_date(today.year + 1, month, day)
    return candidate


def parse_date(value: Optional[str], *, today: Optional[date] = None) -> Optional[date]:
    """
    Parse a date from free text.

    Handles ISO dates and datetimes, day-first numeric dates
    (15-01-2026, 15/01/2026, 15.01.2026), Dutch/English/German month names
    with or without a year, and relative words (vandaag, morgen, today).
    Returns None when nothing parseable is found.
    """
    if not value:
        return None
    text = str(value).strip().lower()
    if not text:
        return None
    today = today or date.today()

    for word, offset in _RELATIVE_DAYS.items():
        if re.search(rf"\b{word}\b", text):
            return today + timedelta(days=offset)

    m = _ISO_DATE_RE.search(text)
    if m:
        return _safe_date(int(m.group(1)), int(m.group(2)), int(m.group(3)))

    m = _NUMERIC_DATE_RE.search(text)
    if m:
        return _safe_date(int(m.group(3)), int(m.group(2)), int(m.group(1)))

    m = _DAY_MONTH_RE.search(text)
    if m:
        day, month = int(m.group(1)), MONTHS[m.group(2).lower()]
        if m.group(3):
            return _safe_date(int(m.group(3)), month, day)
        return _infer_year(month, day, today)

    m = _MONTH_DAY_RE.search(text)
    if m:
        month, day = MONTHS[m.group(1).lower()], int(m.group(2))
        if m.group(3):
            return _safe_date(int(m.group(3)), month, day)
        return _infer_year(month, day, today)

    # dateutil only when there is a year to anchor it; bare numbers are too
    # ambiguous to trust.
    if _YEAR_RE.search(text):
        try:
            return date_parser.parse(text, dayfirst=True, fuzzy=True).date()
        except (ValueError, OverflowError):
            return None
    return None


# ---------------------------------------------------------------------------
# Times
# ---------------------------------------------------------------------------


def _to_24h(hour: int, minute: int, meridiem: Optional[str]) -> Optional[time]:
    if meridiem:
        meridiem = meridiem.lower()
        if meridiem == "p" and hour < 12:
            hour += 12
        elif meridiem == "a" and hour == 12:
            hour = 0
    if not (0 <= hour < 24 and 0 <= minute < 60):
        return None
    return time(hour, minute)


def parse_time(value: Optional[str]) -> Optional[time]:
    """Parse a start time (20:00, 20.00, 20h30, 8pm, 20 uur, ISO datetimes)."""
    if not value:
        return None
    text = str(value)

    m = _ISO_TIME_RE.search(text)
    if m:
        return _to_24h(int(m.group(1)), int(m.group(2)), None)

    # Day-first dates like 15.01.2026 would otherwise read as 15:01.
    text = _NUMERIC_DATE_RE.sub(" ", text)
    text = _ISO_DATE_RE.sub(" ", text)

    m = _CLOCK_RE.search(text)
    if m:
        return _to_24h(int(m.group(1)), int(m.group(2)), m.group(3))

    m = _AMPM_RE.search(text)
    if m:
        return _to_24h(int(m.group(1)), 0, m.group(2))

    m = _DUTCH_HOUR_RE.search(text)
    if m:
        return _to_24h(int(m.group(1)), 0, None)
    return None


def format_time(value: Optional[time]) -> Optional[str]:
    return value.strftime("%H:%M") if value else None


# ---------------------------------------------------------------------------
# Durations
# ---------------------------------------------------------------------------


def parse_duration(value: Optional[str]) -> Optional[int]:
    """
    Parse a duration into minutes.

    "2h 30min" -> 150, "1 uur 45 minuten" -> 105, "90 min" -> 90,
    "2 hours" -> 120, "1,5 uur" -> 90, "90" -> 90. Returns None for zero or unparseable input.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    iso = _ISO_DURATION_RE.match(text)
    if iso:
        total = int(iso.group(1) or 0) * 60 + int(iso.group(2) or 0)
        return total or None

    bare = _BARE_NUMBER_RE.match(text)
    if bare:
        minutes = int(bare.group(1))
        return minutes or None

    hours = sum(float(h.replace(",", ".")) for h in _HOURS_RE.findall(text))
    minutes = sum(int(m) for m in _MINUTES_RE.findall(text))
    total = round(hours * 60) + minutes
    return total or None


def calculate_end_time(start: Optional[time], duration_minutes: Optional[int]) -> Optional[time]:
    """Start time plus duration, wrapping past midnight."""
    if start is None or not duration_minutes:
        return None
    end = datetime.combine(date(2000, 1, 1), start) + timedelta(minutes=duration_minutes)
    return end.time()


# ---------------------------------------------------------------------------
# Prices
# ---------------------------------------------------------------------------


def parse_amount(token: str) -> float:
    """
    Read one price number, telling grouping from decimal separators.

    "12,50" -> 12.5, "1.250" -> 1250.0, "1.250,00" -> 1250.0, "1,250.50" -> 1250.5.
    With a single separator kind, a final group of exactly three digits is
    thousands grouping.
    """
    parts = re.split(r"[.,]", token)
    if len(parts) == 1:
        return float(token)
    *head, last = parts
    mixed = len(set(re.findall(r"[.,]", token))) > 1
    if mixed or len(last) != 3:
        return float("".join(head) + "." + last)
    return float("".join(parts))


def normalize_price(value: Optional[str]) -> Optional[PriceLevel]:
    """
    Map price text onto the discrete scale.

    free, <= 15 -> €, <= 40 -> €€, <= 100 -> €€€, above -> €€€€, using the
    highest amount mentioned. Already-normalized values pass through.
    """
    if value is None:
        return None
    text = str(value).strip()
    if not text:
        return None

    for level in PriceLevel:
        if text == level.value:
            return level

    lowered = text.lower()
    if any(indicator in lowered for indicator in FREE_INDICATORS):
        return PriceLevel.FREE

    amounts = [parse_amount(n) for n in _PRICE_NUMBER_RE.findall(text)]
    if not amounts:
        return None

    highest = max(amounts)
    if highest == 0:
        return PriceLevel.FREE
    if highest <= 15:
        return PriceLevel.LOW
    if highest <= 40:
        return PriceLevel.MID
    if highest <= 100:
        return PriceLevel.HIGH
    return PriceLevel.PREMIUM


# ---------------------------------------------------------------------------
# Categories
# ---------------------------------------------------------------------------


def map_category(*texts: Optional[str]) -> EventCategory:
    """Keyword match over title/description; defaults to CULTURE."""
    haystack = " ".join(t for t in texts if t).lower()
    for category, keywords in CATEGORY_KEYWORDS:
        if any(re.search(rf"\b{re.escape(k)}", haystack) for k in keywords):
            return category
    return EventCategory.CULTURE
