"""
Event models.

EventCard is what an extraction tier produces from one page: loosely typed,
mostly raw strings. CanonicalEvent is the normalized record committed to the
event store that the discovery feed reads.
"""

from __future__ import annotations

from datetime import date, datetime, time, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


def _utc_now() -> datetime:
    """Return current UTC time as timezone-aware datetime."""
    return datetime.now(timezone.utc)


class EventCategory(str, Enum):
    MUSIC = "MUSIC"
    SOCIAL = "SOCIAL"
    ACTIVE = "ACTIVE"
    CULTURE = "CULTURE"
    FOOD = "FOOD"
    NIGHTLIFE = "NIGHTLIFE"
    FAMILY = "FAMILY"
    CIVIC = "CIVIC"
    COMMUNITY = "COMMUNITY"


class PriceLevel(str, Enum):
    FREE = "free"
    LOW = "€"
    MID = "€€"
    HIGH = "€€€"
    PREMIUM = "€€€€"


class EventCard(BaseModel):
    """Raw fields for one event as found on a page."""

    title: Optional[str] = None
    date_text: Optional[str] = Field(None, description="Date or datetime as written on the page")
    time_text: Optional[str] = None
    end_text: Optional[str] = None
    location: Optional[str] = None
    address: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = Field(None, description="Absolute detail page URL")
    image_url: Optional[str] = None
    ticket_url: Optional[str] = None
    price_text: Optional[str] = None
    duration_text: Optional[str] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    raw_html: Optional[str] = Field(None, description="Markup the card was read from")

    @property
    def is_usable(self) -> bool:
        return bool(self.title and self.title.strip() and self.date_text)


class CanonicalEvent(BaseModel):
    """Normalized event as stored in the canonical event store."""

    model_config = ConfigDict(use_enum_values=True)

    id: Optional[int] = None
    source_id: int
    source_url: str
    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    event_date: date
    start_time: Optional[time] = None
    end_time: Optional[time] = None
    duration_minutes: Optional[int] = None
    venue_name: Optional[str] = None
    address: Optional[str] = None
    category: Optional[EventCategory] = None
    image_url: Optional[str] = None
    ticket_url: Optional[str] = None
    price_level: Optional[PriceLevel] = None
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    fingerprint: Optional[str] = None
    parsing_method: Optional[str] = None
    created_at: datetime = Field(default_factory=_utc_now)
    updated_at: Optional[datetime] = None

    @field_validator("title")
    @classmethod
    def _strip_title(cls, v: str) -> str:
        v = " ".join(v.split())
        if not v:
            raise ValueError("title must not be blank")
        return v

    @property
    def starts_at(self) -> datetime:
        """Naive start datetime; events without a time start at midnight."""
        return datetime.combine(self.event_date, self.start_time or time(0, 0))
