from __future__ import annotations

import asyncio
import math
import re
import time
from collections import Counter
from dataclasses import dataclass, field
from datetime import date
from typing import Any

from loguru import logger

from eventscout.agents.discovery import DiscoveryOrchestrator
from eventscout.agents.extractor import ExtractionOrchestrator
from eventscout.agents.prioritizer import PrioritizeContext, Prioritizer
from eventscout.agents.quality_gate import expand_request, score_and_filter
from eventscout.agents.reranker import RerankContext, Reranker
from eventscout.data.templates import get_template
from eventscout.models.interfaces import ExtractedEvent
from eventscout.models.schemas import (
    EventOut,
    PipelineMetadata,
    PipelineOutput,
    SearchRequest,
    parse_search_request,
)
from eventscout.services.demo_events import DEMO_SOURCE, demo_events
from eventscout.services.logger import log_event, log_stage
from eventscout.services.pipeline_context import PipelineContext, RunState, get_context
from eventscout.services.query_builder import build_query
from eventscout.tools import web_utils

WORD_RE = re.compile(r"[a-zA-Z0-9äöüÄÖÜß][\w-]{3,}")


@dataclass(slots=True)
class PipelineResult:
    """Outcome of one discovery-to-quality pass for a single request."""

    request: SearchRequest
    solid_hits: list[ExtractedEvent] = field(default_factory=list)
    scored: list[ExtractedEvent] = field(default_factory=list)
    total_candidates: int = 0
    prioritized: int = 0
    extracted: int = 0
    providers_used: list[str] = field(default_factory=list)
    cached: bool = False
    partial: bool = False


def industry_terms(request: SearchRequest, default_industry: str = "") -> tuple[str, ...]:
    template = get_template(request.industry or default_industry)
    if template is not None:
        return template.industry_terms
    return tuple(dict.fromkeys(w.lower() for w in WORD_RE.findall(request.user_text)))


def merge_solid_hits(base: list[ExtractedEvent], extra: list[ExtractedEvent]) -> list[ExtractedEvent]:
    """Union by normalized URL; events already present win."""
    return web_utils.dedupe_by_url(list(base) + list(extra), key=lambda e: e.url)


def rank_events(events: list[ExtractedEvent], reference: date) -> list[ExtractedEvent]:
    """Drop events without a named speaker, then sort by confidence and date proximity."""

    def proximity(event: ExtractedEvent) -> float:
        if event.starts_at is None:
            return math.inf
        return abs((event.starts_at - reference).days)

    with_speakers = [e for e in events if any((s.name or "").strip() for s in e.speakers)]
    return sorted(with_speakers, key=lambda e: (-e.confidence, proximity(e)))


class EventPipeline:
    """Query -> discovery -> rerank -> prioritize -> extract -> quality gate.

    ``run`` is the boundary entry point. It validates the request, falls back
    to demo events when no search provider can be used, and otherwise runs
    ``run_once`` in a bounded loop, widening the date window when the first
    pass produced too few solid hits.
    """

    def __init__(
        self,
        ctx: PipelineContext | None = None,
        *,
        discovery: DiscoveryOrchestrator | None = None,
        reranker: Reranker | None = None,
        prioritizer: Prioritizer | None = None,
        extractor: ExtractionOrchestrator | None = None,
    ):
        self.ctx = ctx or get_context()
        self.settings = self.ctx.settings
        self.discovery = discovery or DiscoveryOrchestrator(self.ctx)
        self.reranker = reranker or Reranker(self.ctx)
        self.prioritizer = prioritizer or Prioritizer(self.ctx)
        self.extractor = extractor or ExtractionOrchestrator(self.ctx)

    async def run_once(self, request: SearchRequest, run_state: RunState) -> PipelineResult:
        built = build_query(request, config=self.settings)
        logger.info(f"Query: {built.query!r} | narrative: {built.narrative_query!r}")

        discovered = await self.discovery.discover(request, built, run_state)
        result = PipelineResult(
            request=request,
            total_candidates=len(discovered.candidates),
            providers_used=list(discovered.providers_used),
            cached=discovered.cached,
            partial=discovered.partial,
        )
        if not discovered.candidates or run_state.cancelled:
            result.partial = result.partial or run_state.cancelled
            return result

        reranked = await self.reranker.rerank(
            discovered.candidates,
            RerankContext(query=built.narrative_query, country=request.country),
            run_state,
        )
        prioritized = await self.prioritizer.prioritize(
            reranked.candidates,
            PrioritizeContext(
                query=request.user_text or built.narrative_query,
                country=request.country,
                industry_terms=industry_terms(request, self.settings.default_industry),
                date_from=request.date_from,
                date_to=request.date_to,
            ),
            run_state,
        )
        result.prioritized = len(prioritized)
        if run_state.cancelled:
            result.partial = True
            return result

        events = await self.extractor.extract(prioritized, request, run_state)
        result.extracted = len(events)
        result.solid_hits, result.scored = score_and_filter(
            events, request.window, request.country, self.settings
        )
        result.partial = result.partial or run_state.partial or run_state.cancelled
        return result

    async def run(
        self,
        payload: SearchRequest | dict[str, Any],
        *,
        cancel: asyncio.Event | None = None,
    ) -> PipelineOutput:
        """Run the pipeline for one request.

        Raises ``ValidationError`` for a malformed request. Every other
        failure degrades into fewer results with ``success``/``partial`` set.
        """
        request = parse_search_request(payload)
        started = time.monotonic()
        run_state = RunState(cancel=cancel) if cancel is not None else RunState()
        log_event("pipeline_start", "Event search started", request=request.model_dump(mode="json", by_alias=True))

        if self.settings.demo_fallback_enabled and not self.discovery.providers_available():
            logger.warning("No search provider available, returning demo events")
            return self._demo_output(request, started)

        passes: list[PipelineResult] = []
        merged: list[ExtractedEvent] = []
        success = True
        current = request
        try:
            while True:
                result = await self.run_once(current, run_state)
                passes.append(result)
                merged = merge_solid_hits(merged, result.solid_hits)
                if run_state.cancelled or len(merged) >= self.settings.quality_min_solid_hits:
                    break
                if len(passes) > self.settings.max_expansions:
                    break
                widened = expand_request(current, self.settings.expand_days)
                if widened is None:
                    break
                logger.info(
                    f"Only {len(merged)} solid hits, widening window to "
                    f"{widened.date_from}..{widened.date_to}"
                )
                current = widened
        except Exception as exc:
            logger.exception(f"Pipeline failed: {exc}")
            success = False

        if (
            self.settings.demo_fallback_enabled
            and success
            and not run_state.cancelled
            and not any(r.total_candidates for r in passes)
            and not self.discovery.web_search_available()
        ):
            logger.warning("Local event store had no matches and no web search is available, returning demo events")
            return self._demo_output(request, started)

        reference = request.date_from or date.today()
        ranked = rank_events(merged, reference)
        output = self._build_output(ranked, passes, started, success, run_state)
        log_stage(
            "pipeline",
            "complete" if success else "failed",
            output.metadata.total_duration_ms,
            output.metadata.model_dump(by_alias=True),
        )
        return output

    def _build_output(
        self,
        events: list[ExtractedEvent],
        passes: list[PipelineResult],
        started: float,
        success: bool,
        run_state: RunState,
    ) -> PipelineOutput:
        providers: list[str] = []
        for result in passes:
            providers.extend(p for p in result.providers_used if p not in providers)
        confidence = sum(e.confidence for e in events) / len(events) if events else 0.0
        first = passes[0] if passes else None
        metadata = PipelineMetadata(
            total_candidates=first.total_candidates if first else 0,
            prioritized_candidates=sum(r.prioritized for r in passes),
            extracted_candidates=sum(r.extracted for r in passes),
            total_duration_ms=int((time.monotonic() - started) * 1000),
            average_confidence=round(confidence, 4),
            source_breakdown=dict(Counter(e.source for e in events)),
            providers_used=providers,
            cached=bool(first and first.cached),
            expanded=len(passes) > 1,
            success=success,
            partial=run_state.cancelled or run_state.partial or any(r.partial for r in passes),
        )
        return PipelineOutput(events=[EventOut.from_event(e) for e in events], metadata=metadata)

    def _demo_output(self, request: SearchRequest, started: float) -> PipelineOutput:
        events = demo_events(request)
        metadata = PipelineMetadata(
            extracted_candidates=len(events),
            total_duration_ms=int((time.monotonic() - started) * 1000),
            source_breakdown={DEMO_SOURCE: len(events)},
            provider=DEMO_SOURCE,
        )
        return PipelineOutput(events=[EventOut.from_event(e) for e in events], metadata=metadata)
