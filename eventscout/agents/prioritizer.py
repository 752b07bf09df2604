"""Prioritization: score candidate URLs with the model, falling back to heuristics.

Candidates are scored in fixed-size chunks behind a minimum-interval rate
limit. A chunk that times out is requeued for another pass; any other
failure (provider error, unparseable output) scores that chunk
heuristically right away. Heuristic and model scores are on loosely
comparable 0..1 scales, not calibrated to each other.
"""

from __future__ import annotations

import re
import time
from dataclasses import dataclass, field
from datetime import date
from typing import Awaitable, Callable
from urllib.parse import urlsplit

from loguru import logger

from eventscout.agents.reranker import is_aggregator
from eventscout.data.countries import host_matches_country
from eventscout.errors import StageTimeoutError
from eventscout.llm_client import complete, llm_available
from eventscout.models.interfaces import CandidateURL, PrioritizedURL
from eventscout.services.concurrency import run_bounded, with_timeout
from eventscout.services.llm_json import parse_json_array
from eventscout.services.logger import log_provider_failure, log_stage
from eventscout.services.pipeline_context import PipelineContext, RunState
from eventscout.tools import web_utils

HEURISTIC_REASON = "fallback-heuristic"
HEURISTIC_BASE = 0.5
POSITION_PENALTY = 0.02
INDUSTRY_PATH_BOOST = 0.15
EVENT_SLUG_BOOST = 0.15
COUNTRY_DOMAIN_BOOST = 0.1
AGGREGATOR_SCORE = 0.05

EVENT_SLUG_RE = re.compile(
    r"/(?:events?|conferences?|konferenz(?:en)?|veranstaltung(?:en)?|summits?|kongress)/[a-z0-9][a-z0-9-]{2,}"
)

SYSTEM_PROMPT = (
    "You rank web pages for an event search. For each URL give a score between 0 and 1 "
    "for how likely it is the official page of one specific upcoming event that matches "
    "the request. Prefer pages with a clear future date, venue and registration. Score "
    "directories, listings and past recaps low. Respond with a JSON array of objects "
    'with keys "url", "score" and "reason".'
)


@dataclass(slots=True)
class PrioritizeContext:
    query: str
    country: str = "ALL"
    industry_terms: tuple[str, ...] = ()
    date_from: date | None = None
    date_to: date | None = None


ScoreFn = Callable[[list[CandidateURL], PrioritizeContext], Awaitable[str]]


@dataclass(slots=True)
class _ChunkOutcome:
    chunk: list[CandidateURL]
    scored: list[PrioritizedURL] = field(default_factory=list)
    timed_out: bool = False


def build_prompt(chunk: list[CandidateURL], context: PrioritizeContext) -> str:
    lines = [f"Request: {context.query}", f"Country: {context.country}"]
    if context.date_from or context.date_to:
        lines.append(f"Dates: {context.date_from or '?'} to {context.date_to or '?'}")
    lines.append("URLs:")
    for idx, candidate in enumerate(chunk, start=1):
        detail = " | ".join(p for p in (candidate.title, candidate.snippet[:160]) if p)
        lines.append(f"{idx}. {candidate.url}" + (f" | {detail}" if detail else ""))
    return "\n".join(lines)


async def llm_score(chunk: list[CandidateURL], context: PrioritizeContext) -> str:
    return await complete(system=SYSTEM_PROMPT, prompt=build_prompt(chunk, context), caller="prioritize")


def heuristic_score(candidate: CandidateURL, position: int, context: PrioritizeContext) -> float:
    """Best-effort score from URL shape alone. Always inside (0, 1)."""
    if is_aggregator(candidate.url):
        return AGGREGATOR_SCORE
    path = urlsplit(candidate.url).path.lower()
    score = HEURISTIC_BASE - position * POSITION_PENALTY
    terms = [t.lower().replace(" ", "-") for t in context.industry_terms if t]
    if any(term in path for term in terms):
        score += INDUSTRY_PATH_BOOST
    if EVENT_SLUG_RE.search(path):
        score += EVENT_SLUG_BOOST
    if context.country != "ALL" and host_matches_country(web_utils.extract_host(candidate.url), context.country):
        score += COUNTRY_DOMAIN_BOOST
    return round(min(max(score, 0.01), 0.99), 4)


class Prioritizer:
    def __init__(self, ctx: PipelineContext, scorer: ScoreFn | None = None):
        self.ctx = ctx
        self.settings = ctx.settings
        if scorer is None and self.settings.llm_ranking_enabled and llm_available():
            scorer = llm_score
        self._scorer = scorer

    async def prioritize(
        self,
        candidates: list[CandidateURL],
        context: PrioritizeContext,
        run_state: RunState | None = None,
    ) -> list[PrioritizedURL]:
        run_state = run_state or RunState()
        if not candidates:
            return []
        started = time.monotonic()
        positions = {web_utils.normalize_url(c.url): idx for idx, c in enumerate(candidates)}

        if self._scorer is None:
            logger.info("LLM ranking unavailable, scoring all candidates heuristically")
            scored = [self._heuristic(c, positions, context) for c in candidates]
            return self._apply_threshold(scored, started)

        size = max(int(self.settings.prioritize_chunk_size), 1)
        pending = [candidates[i : i + size] for i in range(0, len(candidates), size)]
        scored: list[PrioritizedURL] = []
        max_passes = max(int(self.settings.prioritize_max_requeues), 0) + 1

        for pass_no in range(max_passes):
            if not pending or run_state.cancelled:
                break
            outcome = await run_bounded(
                pending,
                lambda chunk: self._score_chunk(chunk, context, positions),
                limit=self.settings.prioritize_max_parallel,
                cancel=run_state.cancel,
            )
            finished = {id(o.chunk) for o in outcome.results}
            requeue: list[list[CandidateURL]] = []
            for result in outcome.results:
                if result.timed_out:
                    requeue.append(result.chunk)
                else:
                    scored.extend(result.scored)
            # Chunks lost to cancellation or errors are scored heuristically below.
            unfinished = [chunk for chunk in pending if id(chunk) not in finished]
            for chunk in unfinished:
                scored.extend(self._heuristic(c, positions, context) for c in chunk)
            if requeue and pass_no + 1 < max_passes:
                logger.info(f"Requeueing {sum(len(c) for c in requeue)} URLs after timeout (pass {pass_no + 2})")
            pending = requeue

        for chunk in pending:
            logger.warning(f"Scoring timed out for {len(chunk)} URLs after {max_passes} passes, using heuristic")
            scored.extend(self._heuristic(c, positions, context) for c in chunk)

        return self._apply_threshold(scored, started)

    async def _score_chunk(
        self,
        chunk: list[CandidateURL],
        context: PrioritizeContext,
        positions: dict[str, int],
    ) -> _ChunkOutcome:
        await self.ctx.rate_limiter.acquire()
        try:
            text = await with_timeout(
                self._scorer(chunk, context),
                self.settings.prioritize_timeout_seconds,
                "prioritize",
            )
        except StageTimeoutError as exc:
            logger.warning(f"Scoring chunk of {len(chunk)} URLs: {exc}")
            return _ChunkOutcome(chunk=chunk, timed_out=True)
        except Exception as exc:
            log_provider_failure("openrouter", "prioritize", exc)
            return _ChunkOutcome(chunk=chunk, scored=[self._heuristic(c, positions, context) for c in chunk])

        parsed = parse_json_array(text)
        if not parsed.ok:
            logger.warning(f"Unparseable scoring response ({parsed.error}), using heuristic")
            return _ChunkOutcome(chunk=chunk, scored=[self._heuristic(c, positions, context) for c in chunk])

        by_url: dict[str, tuple[float, str]] = {}
        for item in parsed.items:
            url = str(item.get("url") or "")
            try:
                score = float(item.get("score"))
            except (TypeError, ValueError):
                continue
            by_url[web_utils.normalize_url(url)] = (min(max(score, 0.0), 1.0), str(item.get("reason") or "llm"))

        scored: list[PrioritizedURL] = []
        for candidate in chunk:
            hit = by_url.get(web_utils.normalize_url(candidate.url))
            if hit is None:
                scored.append(self._heuristic(candidate, positions, context))
            else:
                scored.append(PrioritizedURL(candidate.url, hit[0], hit[1], candidate.source))
        return _ChunkOutcome(chunk=chunk, scored=scored)

    @staticmethod
    def _heuristic(
        candidate: CandidateURL,
        positions: dict[str, int],
        context: PrioritizeContext,
    ) -> PrioritizedURL:
        position = positions.get(web_utils.normalize_url(candidate.url), 0)
        return PrioritizedURL(
            url=candidate.url,
            score=heuristic_score(candidate, position, context),
            reason=HEURISTIC_REASON,
            source=candidate.source,
        )

    def _apply_threshold(self, scored: list[PrioritizedURL], started: float) -> list[PrioritizedURL]:
        threshold = float(self.settings.prioritize_threshold)
        ranked = sorted(scored, key=lambda p: p.score, reverse=True)
        kept = [p for p in ranked if p.score >= threshold]
        if not kept and ranked and all(p.reason == HEURISTIC_REASON for p in ranked):
            # Heuristic-only runs keep their best chunk rather than returning nothing.
            kept = ranked[: max(int(self.settings.prioritize_chunk_size), 1)]
        log_stage(
            "prioritize",
            "complete",
            int((time.monotonic() - started) * 1000),
            {"scored": len(scored), "kept": len(kept), "threshold": threshold},
        )
        return kept
