"""
Module for event deduplication.

An incoming event is matched against the canonical store with three
strategies, in order:

1. exact source URL
2. fingerprint (normalized title, date and source), scoped to the source
3. fuzzy title match within a time window, with a small venue bonus

The first strategy that matches wins. A match also says whether the stored
event is stale enough to be refreshed with the incoming data.
"""

from __future__ import annotations

import hashlib
import logging
import re
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Dict, List, Optional, Sequence

from eventcrawl.schemas.event import CanonicalEvent
from eventcrawl.storage.repository import EventStore
from eventcrawl.storage.tables import utcnow

logger = logging.getLogger(__name__)

SOURCE_URL = "source_url"
FINGERPRINT = "fingerprint"
FUZZY = "fuzzy"

VENUE_BONUS = 0.1
VENUE_MATCH = 0.8
FUZZY_CANDIDATE_LIMIT = 50

_PUNCT_RE = re.compile(r"[^\w\s]")
_WS_RE = re.compile(r"\s+")


def normalize_title(title: Optional[str]) -> str:
    """Lowercase, drop punctuation and collapse whitespace."""
    if not title:
        return ""
    return _WS_RE.sub(" ", _PUNCT_RE.sub("", title.lower())).strip()


def compute_fingerprint(title: str, event_date, source_id) -> str:
    """sha256 over `normalized title|YYYY-MM-DD|source id`. Unparsed dates are used as written."""
    if hasattr(event_date, "isoformat"):
        day = event_date.isoformat()
    else:
        day = (event_date or "").strip()
    raw = f"{normalize_title(title)}|{day}|{source_id}"
    return hashlib.sha256(raw.encode("utf-8")).hexdigest()


def levenshtein(a: str, b: str) -> int:
    if len(a) < len(b):
        a, b = b, a
    previous = list(range(len(b) + 1))
    for i, ca in enumerate(a, start=1):
        current = [i]
        for j, cb in enumerate(b, start=1):
            current.append(
                min(
                    previous[j] + 1,
                    current[j - 1] + 1,
                    previous[j - 1] + (ca != cb),
                )
            )
        previous = current
    return previous[-1]


def similarity(a: str, b: str) -> float:
    """1.0 for identical strings, scaled by edit distance over the longer one."""
    if a == b:
        return 1.0
    if not a or not b:
        return 0.0
    longer = max(len(a), len(b))
    return (longer - levenshtein(a, b)) / longer


@dataclass
class DeduplicationResult:
    is_duplicate: bool = False
    existing_id: Optional[int] = None
    match_method: Optional[str] = None
    confidence: float = 0.0
    should_update: bool = False


class Deduplicator:
    """
    Match candidates against canonical events.

    Args:
        events: canonical event store
        fuzzy_threshold: minimum fuzzy confidence that counts as a duplicate
        date_window_hours: half-width of the fuzzy comparison window
        stale_after_days: matches older than this are refreshed
    """

    def __init__(
        self,
        events: EventStore,
        *,
        fuzzy_threshold: float = 0.8,
        date_window_hours: float = 2.0,
        stale_after_days: int = 7,
    ) -> None:
        self.events = events
        self.fuzzy_threshold = fuzzy_threshold
        self.date_window = timedelta(hours=date_window_hours)
        self.stale_after = timedelta(days=stale_after_days)

    def should_update(self, existing: CanonicalEvent, now: Optional[datetime] = None) -> bool:
        if existing.updated_at is None:
            return True
        updated = existing.updated_at.replace(tzinfo=None)
        return (now or utcnow()) - updated > self.stale_after

    def _match(self, existing: CanonicalEvent, method: str, confidence: float) -> DeduplicationResult:
        return DeduplicationResult(
            is_duplicate=True,
            existing_id=existing.id,
            match_method=method,
            confidence=confidence,
            should_update=self.should_update(existing),
        )

    def check_duplicate(self, candidate: CanonicalEvent, source_id: Optional[int] = None) -> DeduplicationResult:
        if candidate.source_url:
            existing = self.events.find_by_source_url(candidate.source_url)
            if existing is not None:
                return self._match(existing, SOURCE_URL, 1.0)

        if source_id is not None:
            fingerprint = candidate.fingerprint or compute_fingerprint(
                candidate.title, candidate.event_date, source_id
            )
            existing = self.events.find_by_fingerprint(fingerprint, source_id)
            if existing is not None:
                return self._match(existing, FINGERPRINT, 1.0)

        return self.check_fuzzy(candidate)

    def check_fuzzy(self, candidate: CanonicalEvent) -> DeduplicationResult:
        start = candidate.starts_at
        nearby = self.events.find_in_window(
            start - self.date_window,
            start + self.date_window,
            limit=FUZZY_CANDIDATE_LIMIT,
        )
        title = normalize_title(candidate.title)
        venue = normalize_title(candidate.venue_name)

        best: Optional[CanonicalEvent] = None
        best_score = 0.0
        for existing in nearby:
            score = similarity(title, normalize_title(existing.title))
            if venue and existing.venue_name:
                if similarity(venue, normalize_title(existing.venue_name)) > VENUE_MATCH:
                    score += VENUE_BONUS
            score = min(1.0, score)
            if best is None or score > best_score:
                best, best_score = existing, score

        if best is not None and best_score >= self.fuzzy_threshold:
            return self._match(best, FUZZY, best_score)
        if best is not None:
            logger.debug("Closest fuzzy candidate %s scored %.2f, below threshold", best.id, best_score)
        return DeduplicationResult()

    def batch_check(
        self, candidates: Sequence[CanonicalEvent], source_id: Optional[int] = None
    ) -> Dict[int, DeduplicationResult]:
        """
        Check many candidates at once. Source URL matches are resolved with a
        single query; everything else goes through `check_duplicate`.

        Returns:
            Mapping of candidate index to result
        """
        results: Dict[int, DeduplicationResult] = {}
        by_url = self.events.find_by_source_urls([c.source_url for c in candidates if c.source_url])
        for i, candidate in enumerate(candidates):
            existing = by_url.get(candidate.source_url)
            if existing is not None:
                results[i] = self._match(existing, SOURCE_URL, 1.0)

        for i, candidate in enumerate(candidates):
            if i not in results:
                results[i] = self.check_duplicate(candidate, source_id)
        return results

    @staticmethod
    def calculate_stats(results: Dict[int, DeduplicationResult] | List[DeduplicationResult]) -> Dict[str, float]:
        values = list(results.values()) if isinstance(results, dict) else list(results)
        total = len(values)
        duplicates = sum(1 for r in values if r.is_duplicate)
        return {
            "total": total,
            "duplicates": duplicates,
            "unique": total - duplicates,
            "duplicate_rate": duplicates / total if total else 0.0,
        }
