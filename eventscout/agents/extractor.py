"""Extraction: deep-crawl prioritized URLs and compose event records."""

from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Awaitable, Callable

from loguru import logger

from eventscout.errors import StageTimeoutError
from eventscout.models.interfaces import CrawlResult, EventDetails, ExtractedEvent, PrioritizedURL, Speaker
from eventscout.models.schemas import SearchRequest
from eventscout.services import event_details
from eventscout.services.concurrency import run_bounded, with_timeout
from eventscout.services.logger import log_provider_failure, log_stage
from eventscout.services.pipeline_context import PipelineContext, RunState
from eventscout.services.reliability import call_with_protection
from eventscout.tools import crawler, extraction_cache, web_utils

CrawlFn = Callable[[str], Awaitable[CrawlResult]]
MetadataFn = Callable[[CrawlResult], Awaitable[EventDetails]]
SpeakersFn = Callable[[CrawlResult], Awaitable[list[Speaker]]]

PRIORITY_WEIGHT = 0.6
COMPLETENESS_WEIGHT = 0.4


@dataclass(frozen=True, slots=True)
class ConcurrencyPlan:
    url_concurrency: int
    parallel_substeps: bool


def plan_concurrency(
    batch_size: int,
    *,
    max_cap: int,
    call_budget: int,
    calls_per_url: int,
    small_batch: int,
) -> ConcurrencyPlan:
    """Small batches run wide; larger ones are throttled to the call budget."""
    batch_size = max(batch_size, 1)
    max_cap = max(max_cap, 1)
    if batch_size <= small_batch:
        return ConcurrencyPlan(url_concurrency=min(max_cap, batch_size), parallel_substeps=True)
    calls_per_url = max(calls_per_url, 1)
    by_budget = max(call_budget // calls_per_url, 1)
    concurrency = max(min(max_cap, by_budget, batch_size), 1)
    parallel = call_budget // (calls_per_url * batch_size) >= 1
    return ConcurrencyPlan(url_concurrency=concurrency, parallel_substeps=parallel)


def completeness(event: ExtractedEvent) -> float:
    signals = (
        bool(event.title),
        event.starts_at is not None,
        bool(event.city or event.venue),
        bool(event.speakers),
        bool(event.description),
    )
    return sum(signals) / len(signals)


def is_high_quality(event: ExtractedEvent, threshold: float) -> bool:
    return (
        bool(event.title)
        and event.starts_at is not None
        and bool(event.city or event.venue)
        and any((s.name or "").strip() for s in event.speakers)
        and event.confidence >= threshold
    )


class ExtractionOrchestrator:
    def __init__(
        self,
        ctx: PipelineContext,
        *,
        crawl_fn: CrawlFn | None = None,
        metadata_fn: MetadataFn | None = None,
        speakers_fn: SpeakersFn | None = None,
    ):
        self.ctx = ctx
        self.settings = ctx.settings
        self._crawl = crawl_fn or crawler.crawl
        self._metadata = metadata_fn or event_details.extract_metadata
        self._speakers = speakers_fn or event_details.extract_speakers

    async def extract(
        self,
        prioritized: list[PrioritizedURL],
        request: SearchRequest,
        run_state: RunState | None = None,
    ) -> list[ExtractedEvent]:
        """Extract up to the URL cap, stopping early once enough good events exist.

        The early stop only skips queued URLs; in-flight ones finish.
        """
        run_state = run_state or RunState()
        started = time.monotonic()
        batch = prioritized[: max(int(self.settings.extract_max_urls), 0)]
        if len(prioritized) > len(batch):
            logger.info(f"Extraction capped at {len(batch)} of {len(prioritized)} URLs")
        if not batch:
            return []

        plan = plan_concurrency(
            len(batch),
            max_cap=self.settings.extract_max_parallel,
            call_budget=self.settings.extract_call_budget,
            calls_per_url=self.settings.extract_calls_per_url,
            small_batch=self.settings.extract_small_batch,
        )
        target = int(self.settings.extract_target_high_quality)
        threshold = float(self.settings.extract_confidence_threshold)
        high_quality = 0

        async def run_one(item: PrioritizedURL) -> ExtractedEvent | None:
            nonlocal high_quality
            event = await self._extract_one(item, plan)
            if event is not None and is_high_quality(event, threshold):
                high_quality += 1
            return event

        outcome = await run_bounded(
            batch,
            run_one,
            limit=plan.url_concurrency,
            cancel=run_state.cancel,
            should_skip=lambda: high_quality >= target,
        )
        for exc in outcome.errors:
            log_provider_failure("extractor", "extract", exc)
        if outcome.skipped:
            logger.info(f"Early termination: {high_quality} high-quality events, skipped {outcome.skipped} URLs")
        if outcome.cancelled:
            run_state.partial = True

        events = [e for e in outcome.results if e is not None]
        log_stage(
            "extract",
            "cancelled" if outcome.cancelled else "complete",
            int((time.monotonic() - started) * 1000),
            {
                "batch": len(batch),
                "events": len(events),
                "high_quality": high_quality,
                "skipped": outcome.skipped,
                "concurrency": plan.url_concurrency,
            },
        )
        return events

    async def _extract_one(self, item: PrioritizedURL, plan: ConcurrencyPlan) -> ExtractedEvent | None:
        cached = extraction_cache.load(item.url)
        if cached is not None:
            logger.debug(f"Extraction cache hit for {item.url}")
            cached.confidence = self._confidence(item, cached)
            return cached

        # Breakers are per host.
        provider = f"{crawler.PROVIDER}:{web_utils.extract_host(item.url) or item.url}"
        try:
            crawl = await with_timeout(
                call_with_protection(self.ctx, provider, lambda: self._crawl(item.url)),
                self.settings.crawl_timeout_seconds,
                "crawl",
            )
        except StageTimeoutError as exc:
            logger.info(f"No result for {item.url}: {exc}")
            return None
        except Exception as exc:
            log_provider_failure(provider, "crawl", exc, url=item.url)
            return None

        if plan.parallel_substeps:
            details, speakers = await asyncio.gather(
                self._safe_metadata(crawl),
                self._safe_speakers(crawl),
            )
        else:
            details = await self._safe_metadata(crawl)
            speakers = await self._safe_speakers(crawl)

        event = ExtractedEvent(
            url=item.url,
            title=details.title or crawl.title,
            description=details.description or crawl.description,
            starts_at=details.starts_at,
            city=details.city,
            country=details.country,
            venue=details.venue,
            speakers=event_details.clean_speakers(speakers),
            sponsors=list(details.sponsors),
            source=item.source,
        )
        if not event.title:
            logger.info(f"No usable title for {item.url}, skipping")
            return None
        event.confidence = self._confidence(item, event)
        extraction_cache.save(item.url, event)
        return event

    async def _safe_metadata(self, crawl: CrawlResult) -> EventDetails:
        try:
            return await self._metadata(crawl)
        except Exception as exc:
            log_provider_failure("metadata", "extract", exc, url=crawl.url)
            return EventDetails(title=crawl.title, description=crawl.description)

    async def _safe_speakers(self, crawl: CrawlResult) -> list[Speaker]:
        try:
            return await self._speakers(crawl)
        except Exception as exc:
            log_provider_failure("speakers", "extract", exc, url=crawl.url)
            return []

    @staticmethod
    def _confidence(item: PrioritizedURL, event: ExtractedEvent) -> float:
        score = PRIORITY_WEIGHT * item.score + COMPLETENESS_WEIGHT * completeness(event)
        return round(min(max(score, 0.0), 1.0), 4)
