"""
Shared pytest fixtures for the eventcrawl test suite.

Provides a throwaway SQLite store, test settings, factories for sources and
staging rows, and in-memory fetchers so no test touches the network.
"""

from typing import Optional

import pytest

from eventcrawl.configs.settings import Settings
from eventcrawl.engines.base import BaseEngine
from eventcrawl.ingestion.context import PipelineContext
from eventcrawl.normalization.llm_client import BaseLLMClient, NullLLMClient
from eventcrawl.runtime.results import PageResult
from eventcrawl.schemas.source import ExtractionRecipe, FieldMapping, Source
from eventcrawl.schemas.staging import StagingRecord
from eventcrawl.storage import PipelineStore, create_db_engine, init_db

LISTING_URL = "https://www.uitinzwolle.nl/agenda"


class FakeEngine(BaseEngine):
    """Serves canned pages; unknown URLs answer 404."""

    def __init__(self, pages, *, name="static", options=None, retry_policy=None, limiter=None):
        super().__init__(retry_policy=retry_policy, limiter=limiter)
        self.name = name
        self.pages = pages
        self.calls = []
        self.closed = False

    def _fetch_once(self, url, ctx):
        self.calls.append(url)
        page = self.pages.get(url)
        if page is None:
            return PageResult(final_url=url, status_code=404, html="Not found")
        if isinstance(page, PageResult):
            return PageResult(
                final_url=page.final_url,
                status_code=page.status_code,
                html=page.html,
                error=page.error,
                block_signals=list(page.block_signals),
            )
        if isinstance(page, tuple):
            status, html = page
            return PageResult(final_url=url, status_code=status, html=html)
        return PageResult(final_url=url, status_code=200, html=page)

    def close(self):
        self.closed = True


class FakeWeb:
    """Page tables for the static and render fetchers plus every engine built."""

    def __init__(self):
        self.static_pages = {}
        self.render_pages = {}
        self.engines = []

    def static_factory(self, **kwargs):
        engine = FakeEngine(self.static_pages, name="static", **kwargs)
        self.engines.append(engine)
        return engine

    def render_factory(self, **kwargs):
        engine = FakeEngine(self.render_pages, name="render", **kwargs)
        self.engines.append(engine)
        return engine

    def calls(self, name: Optional[str] = None):
        return [url for e in self.engines if name in (None, e.name) for url in e.calls]


@pytest.fixture
def settings(tmp_path):
    """Settings with no pacing, no backoff and no LLM keys."""
    return Settings(
        _env_file=None,
        DATABASE_URL=f"sqlite:///{tmp_path}/eventcrawl.db",
        PACING_DELAY_S=0.0,
        RETRY_MAX_RETRIES=1,
        RETRY_BASE_DELAY_S=0.0,
        RETRY_JITTER=0.0,
        OPENAI_API_KEY=None,
        ANTHROPIC_API_KEY=None,
    )


@pytest.fixture
def store(settings):
    """A PipelineStore on a fresh SQLite file with all tables created."""
    engine = create_db_engine(settings.DATABASE_URL, warmup=False)
    init_db(engine)
    yield PipelineStore(engine)
    engine.dispose()


@pytest.fixture
def web():
    return FakeWeb()


@pytest.fixture
def ctx(settings, store, web):
    """PipelineContext wired to the fake fetchers and no LLM."""
    return PipelineContext(
        settings=settings,
        store=store,
        worker_id="test-worker",
        llm=NullLLMClient(),
        static_factory=web.static_factory,
        render_factory=web.render_factory,
    )


@pytest.fixture
def selector_recipe():
    return ExtractionRecipe(
        item_selector="article.event",
        mapping=FieldMapping(title="h3", date="time", location=".venue", link="a"),
    )


@pytest.fixture
def create_source(store):
    """
    Return a function that stores a Source with sensible defaults.

    Factory fixture; every default can be overridden via keyword arguments.

    Example:
        source = create_source(recipe=recipe, scout_status="scouted")
    """
    counter = {"n": 0}

    def _create_source(
        name: str = "Uit in Zwolle",
        url: Optional[str] = None,
        **kwargs,
    ) -> Source:
        counter["n"] += 1
        if url is None:
            url = LISTING_URL if counter["n"] == 1 else f"{LISTING_URL}?site={counter['n']}"
        defaults = {"name": name, "url": url, "city": "Zwolle", "population": 130_000, "population_tier": 1}
        defaults.update(kwargs)
        return store.sources.add(Source(**defaults))

    return _create_source


@pytest.fixture
def create_staging(store, create_source):
    """
    Return a function that stages a record and returns its id.

    Creates a source on first use unless `source_id` is given.
    """
    state = {"source_id": None, "n": 0}

    def _create_staging(source_id: Optional[int] = None, **kwargs) -> int:
        if source_id is None:
            if state["source_id"] is None:
                state["source_id"] = create_source().id
            source_id = state["source_id"]
        state["n"] += 1
        defaults = {
            "source_id": source_id,
            "source_url": f"https://www.uitinzwolle.nl/agenda/event-{state['n']}",
            "title": f"Event {state['n']}",
            "card": {"title": f"Event {state['n']}", "date_text": "2026-06-15"},
        }
        defaults.update(kwargs)
        record_id = store.staging.stage(StagingRecord(**defaults))
        assert record_id is not None
        return record_id

    return _create_staging


class ScriptedLLM(BaseLLMClient):
    """Returns queued responses in order; exceptions in the queue are raised."""

    def __init__(self, responses):
        self.responses = list(responses)
        self.calls = []

    def invoke_structured(self, system_prompt, user_prompt, output_schema):
        self.calls.append({"system": system_prompt, "user": user_prompt, "schema": output_schema})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response


@pytest.fixture
def scripted_llm():
    """Return a function that builds a ScriptedLLM from queued responses."""
    return ScriptedLLM
