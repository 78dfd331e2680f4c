"""
Source registry and extraction recipe models.

A Source is a municipal or venue website that lists events. Scout attaches
an ExtractionRecipe to it once; the Executor replays that recipe on every
scrape without calling an LLM.
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, ConfigDict, Field


class ScoutStatus(str, Enum):
    PENDING_SCOUT = "pending_scout"
    SCOUTING = "scouting"
    SCOUTED = "scouted"
    NEEDS_RE_SCOUT = "needs_re_scout"


class FetcherStrategy(str, Enum):
    STATIC = "static"
    RENDER = "render"


class RecipeMode(str, Enum):
    SELECTOR = "selector"
    HYDRATION = "hydration"
    JSON_LD = "json_ld"
    FEED = "feed"


class FieldMapping(BaseModel):
    """CSS selectors relative to one event item."""

    title: Optional[str] = Field(None, description="Selector for the event title")
    date: Optional[str] = Field(None, description="Selector for the date text or <time>")
    time: Optional[str] = Field(None, description="Selector for the start time")
    location: Optional[str] = Field(None, description="Selector for the venue name")
    description: Optional[str] = Field(None, description="Selector for a teaser text")
    link: Optional[str] = Field(None, description="Selector for the detail page anchor")
    image: Optional[str] = Field(None, description="Selector for the event image")


class ExtractionRecipe(BaseModel):
    """Deterministic, reusable extraction instructions for one source."""

    mode: RecipeMode = RecipeMode.SELECTOR
    container_selector: Optional[str] = Field(
        None, description="Selector for the element wrapping the event list"
    )
    item_selector: Optional[str] = Field(
        None, description="Selector for one event card inside the container"
    )
    mapping: FieldMapping = Field(default_factory=FieldMapping)
    requires_render: bool = Field(
        False, description="Whether the listing only appears after JavaScript runs"
    )
    feed_url: Optional[str] = Field(None, description="Feed URL for feed mode")
    hints: Dict[str, Any] = Field(default_factory=dict)


class SourceConfig(BaseModel):
    """Per-source fetch configuration."""

    headers: Dict[str, str] = Field(default_factory=dict)
    pacing_delay_s: Optional[float] = Field(
        None, description="Delay between fetches for this source; falls back to settings"
    )
    listing_path: Optional[str] = None
    language: str = "nl"


class Source(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: Optional[int] = None
    name: str
    url: str
    city: Optional[str] = None
    population: Optional[int] = None
    population_tier: int = 3
    fetcher_strategy: FetcherStrategy = FetcherStrategy.STATIC
    config: SourceConfig = Field(default_factory=SourceConfig)
    recipe: Optional[ExtractionRecipe] = None
    scout_status: ScoutStatus = ScoutStatus.PENDING_SCOUT
    scout_attempts: int = 0
    consecutive_failures: int = 0
    consecutive_empty_runs: int = 0
    enabled: bool = True
    last_scraped_at: Optional[datetime] = None
    last_error: Optional[str] = None
    scout_claimed_by: Optional[str] = None
    scout_claimed_at: Optional[datetime] = None


def population_tier(population: Optional[int]) -> int:
    """Tier 1 for cities above 100k, tier 2 above 20k, else tier 3."""
    if population is None:
        return 3
    if population > 100_000:
        return 1
    if population > 20_000:
        return 2
    return 3
