"""
Staging and scrape job models plus the staging state machine.

    pending -> claimed -> awaiting_enrichment -> ready_to_index -> indexed

`failed` is terminal and reachable from every processing state once the
attempt budget is spent. Moving back to `pending` is reserved for failure
handling and the janitor.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field

from eventcrawl.errors import InvalidTransitionError


class StagingStatus(str, Enum):
    PENDING = "pending"
    CLAIMED = "claimed"
    AWAITING_ENRICHMENT = "awaiting_enrichment"
    READY_TO_INDEX = "ready_to_index"
    INDEXED = "indexed"
    FAILED = "failed"


class JobStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


class ParsingMethod(str, Enum):
    HYDRATION = "hydration"
    JSON_LD = "json_ld"
    FEED = "feed"
    DOM = "dom"
    RECIPE = "recipe"


class Confidence(str, Enum):
    HIGH = "high"
    MEDIUM = "medium"
    LOW = "low"


PROCESSING_STATES = frozenset(
    {StagingStatus.CLAIMED, StagingStatus.AWAITING_ENRICHMENT}
)

ALLOWED_TRANSITIONS: dict[StagingStatus, frozenset[StagingStatus]] = {
    StagingStatus.PENDING: frozenset({StagingStatus.CLAIMED}),
    StagingStatus.CLAIMED: frozenset(
        {
            StagingStatus.AWAITING_ENRICHMENT,
            StagingStatus.READY_TO_INDEX,
            StagingStatus.PENDING,
            StagingStatus.FAILED,
        }
    ),
    StagingStatus.AWAITING_ENRICHMENT: frozenset(
        {StagingStatus.READY_TO_INDEX, StagingStatus.PENDING, StagingStatus.FAILED}
    ),
    StagingStatus.READY_TO_INDEX: frozenset(
        {StagingStatus.INDEXED, StagingStatus.FAILED}
    ),
    StagingStatus.INDEXED: frozenset(),
    StagingStatus.FAILED: frozenset(),
}


def check_transition(current: str, target: str) -> None:
    """Raise InvalidTransitionError unless `current -> target` is allowed."""
    if StagingStatus(target) not in ALLOWED_TRANSITIONS[StagingStatus(current)]:
        raise InvalidTransitionError(current, target)


def allowed_sources(target: StagingStatus) -> list[str]:
    """States from which `target` may be entered."""
    return [
        state.value
        for state, targets in ALLOWED_TRANSITIONS.items()
        if target in targets
    ]


class StagingRecord(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: Optional[int] = None
    source_id: int
    source_url: str = Field(..., description="Globally unique event URL")
    title: Optional[str] = None
    card: Dict[str, Any] = Field(
        default_factory=dict, description="Listing-level fields captured by the Executor"
    )
    raw_html: Optional[str] = None
    detail_url: Optional[str] = None
    detail_html: Optional[str] = None
    status: StagingStatus = StagingStatus.PENDING
    parsing_method: Optional[ParsingMethod] = None
    confidence: Optional[Confidence] = None
    normalized: Dict[str, Any] = Field(default_factory=dict)
    attempt_count: int = 0
    index_attempts: int = 0
    claimed_by: Optional[str] = None
    claimed_at: Optional[datetime] = None
    last_error: Optional[str] = None
    content_hash: Optional[str] = None
    event_id: Optional[int] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ScrapeJob(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: Optional[int] = None
    source_id: int
    status: JobStatus = JobStatus.PENDING
    attempts: int = 0
    max_attempts: int = 3
    started_at: Optional[datetime] = None
    claimed_by: Optional[str] = None
    events_found: int = 0
    last_error: Optional[str] = None
    created_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None
