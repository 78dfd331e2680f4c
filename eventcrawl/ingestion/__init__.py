from .context import BatchSummary, PipelineContext
from .deduplication import DeduplicationResult, Deduplicator, compute_fingerprint
from .enrichment import EnrichmentWorker, run_enrichment
from .executor import Executor, enqueue, run_executor
from .indexing import IndexingWorker, run_indexing
from .janitor import pipeline_health, run_janitor
from .scout import RecipeGenerator, run_scout

__all__ = [
    "BatchSummary",
    "DeduplicationResult",
    "Deduplicator",
    "EnrichmentWorker",
    "Executor",
    "IndexingWorker",
    "PipelineContext",
    "RecipeGenerator",
    "compute_fingerprint",
    "enqueue",
    "pipeline_health",
    "run_enrichment",
    "run_executor",
    "run_indexing",
    "run_janitor",
    "run_scout",
]
