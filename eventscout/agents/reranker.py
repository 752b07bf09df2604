"""Rerank / gate: drop aggregator pages and bias toward primary event sites."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Awaitable, Callable
from urllib.parse import urlsplit

from loguru import logger

from eventscout.data.countries import host_matches_country
from eventscout.models.interfaces import CandidateURL
from eventscout.services.logger import log_provider_failure
from eventscout.services.pipeline_context import PipelineContext, RunState
from eventscout.services.reliability import call_with_protection
from eventscout.tools import voyage_rerank, web_utils

RerankFn = Callable[[str, list[str]], Awaitable[list[tuple[int, float]]]]

# Listing sites, social networks, job boards and documentation.
AGGREGATOR_DOMAINS = (
    "vendelux.com",
    "linkedin.com",
    "internationalconferencealerts.com",
    "10times.com",
    "allevents.in",
    "eventbrite.com",
    "eventbrite.de",
    "meetup.com",
    "conference-service.com",
    "conference2go.com",
    "eventora.com",
    "eventsworld.com",
    "globalriskcommunity.com",
    "cvent.com",
    "conferencealert.com",
    "conferenceseries.com",
    "waset.org",
    "facebook.com",
    "instagram.com",
    "twitter.com",
    "x.com",
    "youtube.com",
    "reddit.com",
    "xing.com",
    "indeed.com",
    "stepstone.de",
    "glassdoor.com",
    "learn.microsoft.com",
    "wikipedia.org",
)

LISTING_PATH_KEYWORDS = (
    "/events-calendar",
    "/event-calendar",
    "/veranstaltungskalender",
    "/calendar/",
    "/jobs/",
    "/careers",
    "/karriere",
    "/stellenangebote",
    "/tag/",
    "/category/",
    "/search",
)

EVENT_PATH_KEYWORDS = (
    "event",
    "conference",
    "konferenz",
    "kongress",
    "summit",
    "veranstaltung",
    "programm",
    "programme",
    "program",
    "agenda",
    "schedule",
    "zeitplan",
    "referenten",
    "speakers",
    "sprecher",
    "faculty",
    "presenters",
    "keynote",
    "sessions",
    "workshops",
)

COUNTRY_TLD_BONUS = 0.08
EVENT_PATH_BONUS = 0.05
MAX_RERANK_DOCS = 40


@dataclass(slots=True)
class RerankContext:
    query: str
    country: str = "ALL"


@dataclass(slots=True)
class RerankMetrics:
    items_in: int = 0
    items_out: int = 0
    aggregators_dropped: int = 0
    bias_hits: int = 0
    model_used: bool = False


@dataclass(slots=True)
class RerankResult:
    candidates: list[CandidateURL] = field(default_factory=list)
    metrics: RerankMetrics = field(default_factory=RerankMetrics)


def is_aggregator(url: str) -> bool:
    host = web_utils.extract_host(url)
    if any(web_utils.host_matches(host, domain) for domain in AGGREGATOR_DOMAINS):
        return True
    path = urlsplit(url).path.lower()
    return any(keyword in path for keyword in LISTING_PATH_KEYWORDS)


def has_event_path(url: str) -> bool:
    path = urlsplit(url).path.lower()
    return any(keyword in path for keyword in EVENT_PATH_KEYWORDS)


def _document(candidate: CandidateURL) -> str:
    return " ".join(part for part in (candidate.title, candidate.snippet, candidate.url) if part)


class Reranker:
    """Filter and bias candidates. An optional model reorders the survivors."""

    def __init__(self, ctx: PipelineContext, rerank_fn: RerankFn | None = None):
        self.ctx = ctx
        if rerank_fn is None and voyage_rerank.rerank_available():
            rerank_fn = voyage_rerank.rerank
        self._rerank_fn = rerank_fn

    async def rerank(
        self,
        candidates: list[CandidateURL],
        context: RerankContext,
        run_state: RunState,
    ) -> RerankResult:
        metrics = RerankMetrics(items_in=len(candidates))
        kept: list[CandidateURL] = []

        for candidate in candidates:
            if is_aggregator(candidate.url):
                metrics.aggregators_dropped += 1
                run_state.note_aggregator(web_utils.extract_host(candidate.url))
                continue

            bonus = 0.0
            if context.country != "ALL" and host_matches_country(
                web_utils.extract_host(candidate.url), context.country
            ):
                bonus += COUNTRY_TLD_BONUS
            if has_event_path(candidate.url):
                bonus += EVENT_PATH_BONUS
            if bonus:
                metrics.bias_hits += 1
            kept.append(replace(candidate, score=candidate.score + bonus))

        kept.sort(key=lambda c: c.score, reverse=True)

        if self._rerank_fn is not None and len(kept) > 1:
            reordered = await self._model_rerank(kept, context)
            if reordered is not None:
                kept = reordered
                metrics.model_used = True

        metrics.items_out = len(kept)
        logger.info(
            f"Rerank: {metrics.items_in} in, {metrics.items_out} out, "
            f"{metrics.aggregators_dropped} aggregators dropped"
        )
        return RerankResult(candidates=kept, metrics=metrics)

    async def _model_rerank(
        self, candidates: list[CandidateURL], context: RerankContext
    ) -> list[CandidateURL] | None:
        head = candidates[:MAX_RERANK_DOCS]
        documents = [_document(c) for c in head]
        rerank_fn = self._rerank_fn
        try:
            ranked = await call_with_protection(
                self.ctx,
                voyage_rerank.PROVIDER,
                lambda: rerank_fn(context.query, documents),
            )
        except Exception as exc:
            log_provider_failure(voyage_rerank.PROVIDER, "rerank", exc)
            return None

        order: list[int] = []
        for index, _ in ranked:
            if 0 <= index < len(head) and index not in order:
                order.append(index)
        order.extend(idx for idx in range(len(head)) if idx not in order)
        return [head[idx] for idx in order] + candidates[MAX_RERANK_DOCS:]
