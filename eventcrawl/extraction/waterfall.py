"""
eventcrawl.extraction.waterfall

Tries extraction tiers in fidelity order and stops at the first one that
yields usable cards:

    hydration -> json-ld -> feed -> dom

The winning tier is returned with the cards so it can be stored per record.
"""

from __future__ import annotations

import logging
from collections.abc import Sequence

from .base import ExtractionResult, Extractor
from .dom import DomExtractor
from .feed import FeedExtractor, FetchText
from .hydration import HydrationExtractor
from .jsonld import JsonLdExtractor

logger = logging.getLogger(__name__)


class Waterfall:
    def __init__(self, tiers: Sequence[Extractor]) -> None:
        self.tiers = list(tiers)

    @classmethod
    def default(cls, *, fetch_text: FetchText | None = None) -> "Waterfall":
        return cls(
            [
                HydrationExtractor(),
                JsonLdExtractor(),
                FeedExtractor(fetch_text=fetch_text),
                DomExtractor(),
            ]
        )

    def run(self, html: str, base_url: str) -> ExtractionResult:
        attempted: list[str] = []
        if html:
            for tier in self.tiers:
                result = tier.extract(html, base_url)
                attempted.extend(result.attempted)
                if result.success:
                    logger.debug(
                        "Tier %s produced %d cards for %s",
                        result.tier.value,
                        len(result.cards),
                        base_url,
                    )
                    result.attempted = attempted
                    return result
        return ExtractionResult(attempted=attempted)
