from .event import CanonicalEvent, EventCard, EventCategory, PriceLevel
from .source import (
    ExtractionRecipe,
    FetcherStrategy,
    FieldMapping,
    RecipeMode,
    ScoutStatus,
    Source,
    SourceConfig,
)
from .staging import (
    Confidence,
    JobStatus,
    ParsingMethod,
    ScrapeJob,
    StagingRecord,
    StagingStatus,
)

__all__ = [
    "CanonicalEvent",
    "Confidence",
    "EventCard",
    "EventCategory",
    "ExtractionRecipe",
    "FetcherStrategy",
    "FieldMapping",
    "JobStatus",
    "ParsingMethod",
    "PriceLevel",
    "RecipeMode",
    "ScoutStatus",
    "ScrapeJob",
    "Source",
    "SourceConfig",
    "StagingRecord",
    "StagingStatus",
]
