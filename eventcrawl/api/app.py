"""
eventcrawl.api.app

HTTP surface for the pipeline workers.

Responsibilities
----------------
• One POST endpoint per worker (scout, execute, enrich, index, janitor)
• Change-notification entry point for enrichment
• Health and pipeline status

Every worker endpoint answers 200 with the batch summary, including
per-record failures. Only an unreachable store yields a 500.
"""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from typing import Any, Optional

from fastapi import Body, Depends, FastAPI, HTTPException, Request
from pydantic import BaseModel, Field

from eventcrawl.configs.settings import Settings, get_settings
from eventcrawl.errors import StorageError
from eventcrawl.ingestion import (
    PipelineContext,
    enqueue,
    pipeline_health,
    run_enrichment,
    run_executor,
    run_indexing,
    run_scout,
)
from eventcrawl.ingestion.context import new_worker_id
from eventcrawl.ingestion.janitor import run_janitor_for
from eventcrawl.storage import PipelineStore, create_db_engine

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# REQUEST / RESPONSE MODELS
# ---------------------------------------------------------------------------


class BatchRequest(BaseModel):
    batch_size: Optional[int] = Field(None, ge=1, le=500)


class ScoutRequest(BatchRequest):
    source_id: Optional[int] = None


class ExecuteRequest(BatchRequest):
    enqueue: bool = Field(False, description="Create due jobs before claiming")


class BatchResponse(BaseModel):
    processed: int
    succeeded: int
    failed: int
    results: list[dict[str, Any]]


# ---------------------------------------------------------------------------
# APP FACTORY
# ---------------------------------------------------------------------------


def create_app(settings: Optional[Settings] = None, store: Optional[PipelineStore] = None) -> FastAPI:
    """
    Build the API. `store` is created on startup from DATABASE_URL unless
    one is passed in.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        app.state.settings = settings or get_settings()
        app.state.store = store
        owns_engine = store is None
        if owns_engine:
            engine = create_db_engine(
                app.state.settings.DATABASE_URL,
                kind="web",
                warmup_policy=app.state.settings.warmup_policy(),
            )
            app.state.store = PipelineStore(engine)
        yield
        if owns_engine:
            app.state.store.engine.dispose()

    app = FastAPI(
        title="Event Crawl API",
        version="0.1.0",
        description="Workers for scouting, scraping, enriching and indexing local events.",
        lifespan=lifespan,
    )
    _register_routes(app)
    return app


def get_context(request: Request) -> PipelineContext:
    """A fresh per-request context; nothing mutable is shared between calls."""
    return PipelineContext(
        settings=request.app.state.settings,
        store=request.app.state.store,
        worker_id=new_worker_id("api"),
    )


def _storage_failure(e: StorageError) -> HTTPException:
    logger.error("Storage unavailable: %s", e)
    return HTTPException(status_code=500, detail=f"Storage unavailable: {e}")


def _register_routes(app: FastAPI) -> None:
    @app.get("/health", tags=["Monitoring"])
    def health(request: Request) -> dict[str, Any]:
        """Service status plus per-stage counts."""
        settings = request.app.state.settings
        try:
            counts = pipeline_health(
                request.app.state.store, stale_after_minutes=settings.STALE_AFTER_MINUTES
            )
        except StorageError as e:
            raise _storage_failure(e) from e
        return {"status": "ok", **counts}

    @app.post("/scout", response_model=BatchResponse, tags=["Workers"])
    def scout(body: Optional[ScoutRequest] = None, ctx: PipelineContext = Depends(get_context)):
        body = body or ScoutRequest()
        try:
            return run_scout(ctx, source_id=body.source_id, batch_size=body.batch_size).to_dict()
        except StorageError as e:
            raise _storage_failure(e) from e

    @app.post("/execute", response_model=BatchResponse, tags=["Workers"])
    def execute(body: Optional[ExecuteRequest] = None, ctx: PipelineContext = Depends(get_context)):
        body = body or ExecuteRequest()
        try:
            if body.enqueue:
                enqueue(ctx)
            return run_executor(ctx, batch_size=body.batch_size).to_dict()
        except StorageError as e:
            raise _storage_failure(e) from e

    @app.post("/enrich", response_model=BatchResponse, tags=["Workers"])
    def enrich(payload: Optional[dict[str, Any]] = Body(None), ctx: PipelineContext = Depends(get_context)):
        """Accepts change notifications, `{"id": ..}` or `{"batch_size": n}`."""
        try:
            return run_enrichment(ctx, payload).to_dict()
        except StorageError as e:
            raise _storage_failure(e) from e

    @app.post("/index", response_model=BatchResponse, tags=["Workers"])
    def index(body: Optional[BatchRequest] = None, ctx: PipelineContext = Depends(get_context)):
        body = body or BatchRequest()
        try:
            return run_indexing(ctx, batch_size=body.batch_size).to_dict()
        except StorageError as e:
            raise _storage_failure(e) from e

    @app.post("/janitor", tags=["Workers"])
    def janitor(ctx: PipelineContext = Depends(get_context)) -> dict[str, Any]:
        try:
            return run_janitor_for(ctx)
        except StorageError as e:
            raise _storage_failure(e) from e
