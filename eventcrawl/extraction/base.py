"""
eventcrawl.extraction.base

Extractor interface shared by the waterfall tiers and the recipe extractor.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from typing import Optional
from urllib.parse import urljoin

from eventcrawl.schemas.event import EventCard
from eventcrawl.schemas.staging import Confidence, ParsingMethod

from .parsers import SELECTOR_ERRORS

logger = logging.getLogger(__name__)


@dataclass
class ExtractionResult:
    cards: list[EventCard] = field(default_factory=list)
    tier: Optional[ParsingMethod] = None
    confidence: Confidence = Confidence.LOW
    attempted: list[str] = field(default_factory=list)

    @property
    def success(self) -> bool:
        return bool(self.cards)


class Extractor(ABC):
    """One extraction tier: HTML in, usable event cards out."""

    tier: ParsingMethod
    confidence: Confidence

    @abstractmethod
    def extract_cards(self, html: str, base_url: str) -> list[EventCard]:
        raise NotImplementedError

    def extract(self, html: str, base_url: str) -> ExtractionResult:
        """Run the tier and keep only cards with a title and a date."""
        try:
            cards = self.extract_cards(html, base_url)
        except (*SELECTOR_ERRORS, TypeError, KeyError, AttributeError) as e:
            # Broken markup in one tier must not stop the waterfall.
            logger.warning("%s extraction failed on %s: %s", self.tier.value, base_url, e)
            cards = []
        usable = [_absolutize(c, base_url) for c in cards if c.is_usable]
        return ExtractionResult(
            cards=usable,
            tier=self.tier if usable else None,
            confidence=self.confidence if usable else Confidence.LOW,
            attempted=[self.tier.value],
        )


def _absolutize(card: EventCard, base_url: str) -> EventCard:
    updates = {}
    for key in ("url", "image_url", "ticket_url"):
        value = getattr(card, key)
        if value and base_url:
            updates[key] = urljoin(base_url, value)
    return card.model_copy(update=updates) if updates else card
