"""
Social Five normalization.

An optional AI pass over title, description, date, time and venue (plus a
few secondary fields). It runs per record, after the waterfall, and never
fails the record: any LLM problem leaves the deterministic fields in place.

High-fidelity tiers (hydration, JSON-LD) that already produced all five
fields skip the pass entirely; otherwise the AI output only fills gaps
unless the tier was low-fidelity DOM text, where its cleaner free-text
fields also replace the scraped ones.
"""

from __future__ import annotations

import logging
from datetime import date
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, ValidationError

from eventcrawl.extraction.transforms import clean_text, parse_date, parse_time
from eventcrawl.prompts import PromptLoader
from eventcrawl.schemas.event import EventCategory
from eventcrawl.schemas.staging import Confidence

from .llm_client import BaseLLMClient, LLMUnavailableError

logger = logging.getLogger(__name__)

SOCIAL_FIVE = ("title", "description", "event_date", "start_time", "venue_name")
FREE_TEXT_FIELDS = ("title", "description", "venue_name")
MAX_TEXT_CHARS = 6000


class LanguageProfile(str, Enum):
    NL = "NL"
    EN = "EN"
    MIXED = "Mixed"
    OTHER = "Other"


class SocialFiveOutput(BaseModel):
    """Structured output requested from the LLM."""

    title: Optional[str] = Field(None, description="Event name without date or venue")
    description: Optional[str] = Field(None, max_length=500, description="Plain text summary")
    event_date: Optional[str] = Field(None, description="YYYY-MM-DD")
    start_time: Optional[str] = Field(None, description="HH:MM, 24h")
    end_time: Optional[str] = Field(None, description="HH:MM, 24h")
    venue_name: Optional[str] = None
    street_address: Optional[str] = None
    city: Optional[str] = None
    estimated_duration_minutes: Optional[int] = Field(None, ge=1, le=60 * 24 * 14)
    language_profile: Optional[LanguageProfile] = None
    category: Optional[EventCategory] = None
    price_info: Optional[str] = None
    ticket_url: Optional[str] = None


def needs_normalization(fields: Dict[str, Any], confidence: str) -> bool:
    missing = [k for k in SOCIAL_FIVE if not fields.get(k)]
    if confidence == Confidence.HIGH.value:
        return bool(missing)
    return True


class SocialFiveNormalizer:
    def __init__(self, llm: BaseLLMClient, prompts: Optional[PromptLoader] = None) -> None:
        self.llm = llm
        self.prompts = prompts or PromptLoader()

    @property
    def enabled(self) -> bool:
        return self.llm.is_available

    def _ask(self, fields: Dict[str, Any], text: str, url: str, today: date) -> Optional[SocialFiveOutput]:
        prompt = self.prompts.get_prompt(
            "enrichment",
            "social_five",
            {
                "today": today.isoformat(),
                "categories": ", ".join(c.value for c in EventCategory),
                "url": url,
                "known": {k: v for k, v in fields.items() if v not in (None, "")},
                "text": text[:MAX_TEXT_CHARS],
            },
        )
        try:
            return self.llm.invoke_structured(prompt["system"], prompt["user"], SocialFiveOutput)
        except (LLMUnavailableError, ValidationError) as e:
            logger.warning("Social Five skipped for %s: %s", url, e)
        except Exception as e:
            # Provider SDKs raise their own hierarchies; the record must survive them.
            logger.warning("Social Five call failed for %s: %s: %s", url, type(e).__name__, e)
        return None

    def normalize(
        self,
        fields: Dict[str, Any],
        *,
        text: str,
        url: str,
        confidence: str,
        today: Optional[date] = None,
    ) -> tuple[Dict[str, Any], bool]:
        """
        Return (fields, applied). `fields` uses the staging normalized keys:
        event_date/start_time/end_time as ISO strings.
        """
        if not self.enabled or not needs_normalization(fields, confidence):
            return fields, False

        today = today or date.today()
        output = self._ask(fields, text, url, today)
        if output is None:
            return fields, False

        overwrite_text = confidence == Confidence.LOW.value
        merged = dict(fields)

        def put(key: str, value: Any, *, overwrite: bool = False) -> None:
            if value in (None, ""):
                return
            if overwrite or not merged.get(key):
                merged[key] = value

        for key in FREE_TEXT_FIELDS:
            put(key, clean_text(getattr(output, key), max_length=500), overwrite=overwrite_text)

        ai_date = parse_date(output.event_date, today=today)
        put("event_date", ai_date.isoformat() if ai_date else None)
        for key in ("start_time", "end_time"):
            ai_time = parse_time(getattr(output, key))
            put(key, ai_time.strftime("%H:%M") if ai_time else None)

        put("duration_minutes", output.estimated_duration_minutes)
        put("address", ", ".join(p for p in (output.street_address, output.city) if p) or None)
        put("category", output.category.value if output.category else None)
        put("price_text", output.price_info)
        put("ticket_url", output.ticket_url)
        if output.language_profile:
            merged["language_profile"] = output.language_profile.value
        return merged, True
