"""
eventcrawl.ingestion.scout

Recipe generation for sources that have none yet (or whose recipe stopped
producing events).

V1 flow per source:
- fetch a sample of the listing page through the source's fetcher
- structured data first: hydration state, JSON-LD events or a feed mean the
  recipe is just "use that tier", no LLM needed
- otherwise ask the LLM for container/item selectors and a field mapping
- without an LLM, search the known CMS/generic selectors
- every proposal is replayed on the sample and rejected if it finds nothing
"""

from __future__ import annotations

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Optional
from urllib.parse import urljoin

from pydantic import BaseModel, Field, ValidationError

from eventcrawl.engines.failover import RENDER, FailoverFetcher
from eventcrawl.errors import ScoutError, StorageError
from eventcrawl.extraction.base import Extractor
from eventcrawl.extraction.dom import (
    DATE_SELECTOR,
    DESCRIPTION_SELECTOR,
    LOCATION_SELECTOR,
    TIME_SELECTOR,
    TITLE_SELECTOR,
    detect_cms,
    selectors_for,
)
from eventcrawl.extraction.feed import FeedExtractor, FetchText, discover_feed_urls, looks_like_feed
from eventcrawl.extraction.hydration import HydrationExtractor
from eventcrawl.extraction.jsonld import JsonLdExtractor
from eventcrawl.extraction.parsers import condense_html
from eventcrawl.extraction.recipe import RecipeExtractor
from eventcrawl.monitoring.logging import with_context
from eventcrawl.normalization.llm_client import BaseLLMClient, LLMUnavailableError
from eventcrawl.prompts import PromptLoader
from eventcrawl.runtime.results import PageResult
from eventcrawl.schemas.source import ExtractionRecipe, FieldMapping, RecipeMode, Source
from eventcrawl.schemas.staging import ParsingMethod

from .context import BatchSummary, PipelineContext

logger = logging.getLogger(__name__)

MIN_SAMPLE_CHARS = 500

_STRUCTURED_MODES = {
    ParsingMethod.HYDRATION: RecipeMode.HYDRATION,
    ParsingMethod.JSON_LD: RecipeMode.JSON_LD,
    ParsingMethod.FEED: RecipeMode.FEED,
}

_CITY_URL_RE = re.compile(r"(?:ontdek|beleef|visit|uitin|uit)([a-z]{3,})\.", re.IGNORECASE)
_CITY_NAME_RE = re.compile(r"(?:Ontdek|Beleef|Visit|Uit\s+in|Uit)\s+(\w{3,})", re.IGNORECASE)


def guess_city(name: str, url: str) -> Optional[str]:
    """Best-effort city from typical Dutch tourism domains and source names."""
    m = _CITY_URL_RE.search(url) or _CITY_NAME_RE.search(name or "")
    return m.group(1).capitalize() if m else None


class RecipeProposal(BaseModel):
    """Structured output requested from the LLM."""

    container_selector: Optional[str] = Field(None, description="Element wrapping all event items")
    item_selector: str = Field(..., description="Selector matching one element per event")
    mapping: FieldMapping = Field(default_factory=FieldMapping)
    requires_render: bool = False
    reasoning: Optional[str] = Field(None, description="One or two sentences on the choice")

    def to_recipe(self) -> ExtractionRecipe:
        hints: dict[str, Any] = {"generated_by": "llm"}
        if self.reasoning:
            hints["reasoning"] = self.reasoning
        return ExtractionRecipe(
            mode=RecipeMode.SELECTOR,
            container_selector=self.container_selector,
            item_selector=self.item_selector,
            mapping=self.mapping,
            requires_render=self.requires_render,
            hints=hints,
        )


@dataclass
class ScoutProposal:
    recipe: ExtractionRecipe
    cards_found: int
    rationale: list[str] = field(default_factory=list)
    used_llm: bool = False


def heuristic_mapping() -> FieldMapping:
    return FieldMapping(
        title=TITLE_SELECTOR,
        date=DATE_SELECTOR,
        time=TIME_SELECTOR,
        location=LOCATION_SELECTOR,
        description=DESCRIPTION_SELECTOR,
    )


class RecipeGenerator:
    """
    Turns a sampled listing page into an ExtractionRecipe.

    Args:
        llm: LLM client used for selector proposals (may be unavailable)
        prompts: prompt loader for the scout prompt
    """

    def __init__(self, llm: BaseLLMClient, prompts: Optional[PromptLoader] = None) -> None:
        self.llm = llm
        self.prompts = prompts or PromptLoader()

    def _validate(self, extractor: Extractor, html: str, base_url: str) -> int:
        return len(extractor.extract(html, base_url).cards)

    def detect_structured(
        self, html: str, base_url: str, fetch_text: Optional[FetchText] = None
    ) -> Optional[ScoutProposal]:
        for extractor in (HydrationExtractor(), JsonLdExtractor(), FeedExtractor(fetch_text=fetch_text)):
            found = self._validate(extractor, html, base_url)
            if not found:
                continue
            mode = _STRUCTURED_MODES[extractor.tier]
            feed_url = None
            if mode is RecipeMode.FEED and not looks_like_feed(html):
                feed_url = next(iter(discover_feed_urls(html, base_url)), None)
            return ScoutProposal(
                recipe=ExtractionRecipe(mode=mode, feed_url=feed_url, hints={"generated_by": "detection"}),
                cards_found=found,
                rationale=[f"{mode.value} data exposes {found} events"],
            )
        return None

    def ask_llm(
        self,
        html: str,
        source: Source,
        *,
        city: Optional[str],
        previous_error: Optional[str] = None,
    ) -> Optional[RecipeProposal]:
        if not self.llm.is_available:
            return None
        prompt = self.prompts.get_prompt(
            "scout",
            "recipe",
            {
                "city": city,
                "population_tier": source.population_tier,
                "url": source.url,
                "previous_error": previous_error,
                "html": condense_html(html),
            },
        )
        try:
            return self.llm.invoke_structured(prompt["system"], prompt["user"], RecipeProposal)
        except (LLMUnavailableError, ValidationError) as e:
            logger.warning("Scout LLM proposal unusable for %s: %s", source.url, e)
        except Exception as e:
            # Provider SDK errors; the heuristic search still runs.
            logger.warning("Scout LLM call failed for %s: %s: %s", source.url, type(e).__name__, e)
        return None

    def search_heuristic(self, html: str, base_url: str) -> Optional[ScoutProposal]:
        cms = detect_cms(html)
        for selector in selectors_for(cms):
            recipe = ExtractionRecipe(
                mode=RecipeMode.SELECTOR,
                item_selector=selector,
                mapping=heuristic_mapping(),
                hints={"generated_by": "heuristic", "cms": cms},
            )
            found = self._validate(RecipeExtractor(recipe), html, base_url)
            if found:
                return ScoutProposal(
                    recipe=recipe,
                    cards_found=found,
                    rationale=[f"{cms} selector {selector!r} matched {found} events"],
                )
        return None

    def propose(
        self,
        html: str,
        source: Source,
        *,
        base_url: Optional[str] = None,
        fetch_text: Optional[FetchText] = None,
        previous_error: Optional[str] = None,
    ) -> ScoutProposal:
        """
        Produce a validated recipe for the sample, or raise ScoutError.

        A proposal that asks for rendering but finds nothing on the sample is
        returned with `cards_found=0` so the caller can re-sample rendered.
        """
        base_url = base_url or source.url
        structured = self.detect_structured(html, base_url, fetch_text)
        if structured is not None:
            return structured

        rationale: list[str] = []
        city = source.city or guess_city(source.name, source.url)
        proposal = self.ask_llm(html, source, city=city, previous_error=previous_error)
        if proposal is not None:
            recipe = proposal.to_recipe()
            found = self._validate(RecipeExtractor(recipe), html, base_url)
            if found or recipe.requires_render:
                return ScoutProposal(
                    recipe=recipe,
                    cards_found=found,
                    rationale=[proposal.reasoning or "llm proposal"],
                    used_llm=True,
                )
            rationale.append(f"llm selector {proposal.item_selector!r} matched nothing")

        heuristic = self.search_heuristic(html, base_url)
        if heuristic is not None:
            heuristic.rationale = rationale + heuristic.rationale
            return heuristic

        raise ScoutError("; ".join(rationale + ["no extraction recipe matched the sample"]))


def fetch_sample(fetcher: FailoverFetcher, url: str, ctx=None) -> PageResult:
    result = fetcher.fetch_page(url, ctx=ctx)
    check_sample(result)
    return result


def check_sample(result: PageResult) -> None:
    if result.status_code is None or result.status_code >= 400:
        raise ScoutError(f"Sample fetch failed: {result.short_error()}")
    if len(result.html or "") < MIN_SAMPLE_CHARS:
        raise ScoutError("HTML too short or empty")


def listing_url(source: Source) -> str:
    if source.config.listing_path:
        return urljoin(source.url, source.config.listing_path)
    return source.url


def scout_source(ctx: PipelineContext, source: Source, generator: RecipeGenerator) -> ScoutProposal:
    """Scout one claimed source and persist the outcome."""
    log = with_context(logger, worker_id=ctx.worker_id, source_id=source.id, stage="scout")
    fetcher = ctx.fetcher_for(source)
    engine_ctx = ctx.engine_context_for(source)
    url = listing_url(source)
    try:
        sample = fetch_sample(fetcher, url, engine_ctx)
        log.info("Fetched %d chars with %s", len(sample.html), sample.fetcher_used)
        proposal = generator.propose(
            sample.html,
            source,
            base_url=sample.final_url or url,
            fetch_text=ctx.fetch_text_for(fetcher, source),
            previous_error=source.last_error,
        )
        strategy = RENDER if sample.fetcher_used == RENDER else None

        if proposal.cards_found == 0 and proposal.recipe.requires_render:
            rendered = fetcher.render.fetch_page(url, ctx=engine_ctx)
            check_sample(rendered)
            found = len(RecipeExtractor(proposal.recipe).extract(rendered.html, rendered.final_url).cards)
            if not found:
                raise ScoutError("Recipe requires rendering but matched nothing on the rendered page")
            proposal.cards_found = found
            strategy = RENDER
        elif proposal.recipe.requires_render:
            strategy = RENDER

        ctx.store.sources.activate_recipe(source.id, proposal.recipe, fetcher_strategy=strategy)
        log.info(
            "Recipe %s activated (%d sample events, llm=%s)",
            RecipeMode(proposal.recipe.mode).value,
            proposal.cards_found,
            proposal.used_llm,
        )
        return proposal
    except StorageError:
        raise
    except ScoutError as e:
        log.warning("Scout failed: %s", e)
        ctx.store.sources.fail_scout(source.id, str(e))
        raise
    except Exception as e:
        log.exception("Unexpected scout error")
        ctx.store.sources.fail_scout(source.id, f"{type(e).__name__}: {e}")
        raise ScoutError(f"{type(e).__name__}: {e}") from e
    finally:
        fetcher.close()


def run_scout(
    ctx: PipelineContext,
    *,
    source_id: Optional[int] = None,
    batch_size: Optional[int] = None,
    generator: Optional[RecipeGenerator] = None,
) -> BatchSummary:
    """
    Scout a specific source or a claimed batch.

    Sources are processed one after another with the pacing delay between
    them, which keeps LLM and target-site load predictable.
    """
    settings = ctx.settings
    generator = generator or RecipeGenerator(ctx.llm)
    summary = BatchSummary()

    if source_id is not None:
        claimed = ctx.store.sources.claim_one_for_scouting(
            source_id, ctx.worker_id, max_attempts=settings.SCOUT_MAX_ATTEMPTS
        )
        batch = [claimed] if claimed else []
    else:
        batch = ctx.store.sources.claim_for_scouting(
            ctx.worker_id,
            limit=batch_size or settings.SCOUT_BATCH_SIZE,
            max_attempts=settings.SCOUT_MAX_ATTEMPTS,
        )

    if not batch:
        logger.info("No sources need scouting")
        return summary

    for i, source in enumerate(batch):
        if i and settings.PACING_DELAY_S:
            time.sleep(settings.PACING_DELAY_S)
        started = time.monotonic()
        try:
            proposal = scout_source(ctx, source, generator)
        except ScoutError as e:
            summary.error(str(e), source_id=source.id, source_name=source.name)
            continue
        summary.ok(
            source_id=source.id,
            source_name=source.name,
            recipe_mode=RecipeMode(proposal.recipe.mode).value,
            requires_render=proposal.recipe.requires_render,
            cards_found=proposal.cards_found,
            elapsed_ms=round((time.monotonic() - started) * 1000),
        )
    return summary
