"""Discovery: fan query variations out over the search providers."""

from __future__ import annotations

import time
from dataclasses import dataclass, field

from loguru import logger

from eventscout.data.countries import get_country_context
from eventscout.errors import CircuitOpenError
from eventscout.models.interfaces import CandidateURL
from eventscout.models.schemas import SearchRequest
from eventscout.services.concurrency import run_bounded
from eventscout.services.logger import log_provider_failure, log_stage
from eventscout.services.pipeline_context import PipelineContext, RunState
from eventscout.services.query_builder import BuiltQuery
from eventscout.services.reliability import call_with_protection, discovery_cache_key, fingerprint
from eventscout.tools import cse_search, database_search, firecrawl_search, web_utils
from eventscout.tools.search_provider import (
    CSE,
    DATABASE,
    FIRECRAWL,
    SearchFn,
    SearchOptions,
    provider_configured,
)

VARIATION_SUFFIXES = ("conference", "summit", "workshop")


@dataclass(slots=True)
class DiscoveryResult:
    candidates: list[CandidateURL] = field(default_factory=list)
    providers_used: list[str] = field(default_factory=list)
    cached: bool = False
    dropped: int = 0
    partial: bool = False


def default_providers() -> dict[str, SearchFn]:
    """Adapters that have credentials, keyed by provider name."""
    providers: dict[str, SearchFn] = {}
    if provider_configured(DATABASE):
        providers[DATABASE] = database_search.search
    if provider_configured(FIRECRAWL):
        providers[FIRECRAWL] = firecrawl_search.search
    if provider_configured(CSE):
        providers[CSE] = cse_search.search
    return providers


def query_variations(base: str, country: str) -> list[str]:
    base = " ".join(base.split())
    variations = [base]
    lowered = base.lower()
    for suffix in VARIATION_SUFFIXES:
        if suffix not in lowered:
            variations.append(f"{base} {suffix}")
    context = get_country_context(country)
    if context is not None and context.names[0].lower() not in lowered:
        variations.append(f"{base} {context.names[0]}")
    return list(dict.fromkeys(v for v in variations if v))


class DiscoveryOrchestrator:
    """Database first, then cache, then parallel primary search with a CSE fallback.

    ``discover`` never raises: provider failures shrink the result instead.
    """

    def __init__(self, ctx: PipelineContext, providers: dict[str, SearchFn] | None = None):
        self.ctx = ctx
        self.settings = ctx.settings
        self.providers = providers if providers is not None else default_providers()

    @property
    def external_providers(self) -> list[str]:
        return [name for name in (FIRECRAWL, CSE) if name in self.providers]

    def providers_available(self) -> bool:
        """False when no provider is configured or every configured breaker is open."""
        configured = [name for name in (DATABASE, FIRECRAWL, CSE) if name in self.providers]
        return bool(configured) and not self.ctx.breakers.all_open(configured)

    def web_search_available(self) -> bool:
        external = self.external_providers
        return bool(external) and not self.ctx.breakers.all_open(external)

    async def discover(
        self,
        request: SearchRequest,
        query: BuiltQuery,
        run_state: RunState | None = None,
    ) -> DiscoveryResult:
        run_state = run_state or RunState()
        started = time.monotonic()
        opts = SearchOptions(
            country=request.country,
            date_from=request.date_from,
            date_to=request.date_to,
            limit=self.settings.discovery_results_per_query,
        )

        db_hits = await self._search_database(request, query, opts)
        if db_hits:
            result = self._finalize(db_hits, [DATABASE])
            log_stage("discovery", "database", self._elapsed(started), {"count": len(result.candidates)})
            return result

        cache_key = discovery_cache_key(
            FIRECRAWL, query.narrative_query, request.country, request.date_from, request.date_to
        )
        cached = self.ctx.cache.get(cache_key)
        if cached is not None:
            logger.info(f"Discovery cache hit for {query.narrative_query!r}")
            return DiscoveryResult(
                candidates=list(cached.candidates),
                providers_used=list(cached.providers_used),
                cached=True,
            )

        found: list[CandidateURL] = []
        providers_used: list[str] = []
        partial = False

        primary_ok, primary_hits, primary_partial = await self._search_primary(query, opts, run_state)
        partial = partial or primary_partial
        if primary_ok:
            providers_used.append(FIRECRAWL)
            found.extend(primary_hits)

        if not found and not run_state.cancelled:
            fallback_hits = await self._search_fallback(query, opts)
            if fallback_hits is not None:
                providers_used.append(CSE)
                found.extend(fallback_hits)

        result = self._finalize(found, providers_used)
        result.partial = partial or run_state.cancelled
        if result.candidates and not result.partial:
            self.ctx.cache.set(cache_key, result)
        log_stage(
            "discovery",
            "complete",
            self._elapsed(started),
            {
                "count": len(result.candidates),
                "dropped": result.dropped,
                "providers": providers_used,
            },
        )
        return result

    async def _search_database(
        self, request: SearchRequest, query: BuiltQuery, opts: SearchOptions
    ) -> list[CandidateURL]:
        search = self.providers.get(DATABASE)
        if search is None:
            return []
        text = request.user_text or query.narrative_query
        try:
            return await call_with_protection(self.ctx, DATABASE, lambda: search(text, opts))
        except Exception as exc:
            log_provider_failure(DATABASE, "discovery", exc)
            return []

    async def _search_primary(
        self, query: BuiltQuery, opts: SearchOptions, run_state: RunState
    ) -> tuple[bool, list[CandidateURL], bool]:
        """Returns (any variation succeeded, merged hits, partial)."""
        search = self.providers.get(FIRECRAWL)
        if search is None:
            return False, [], False
        if self.ctx.breakers.is_open(FIRECRAWL):
            logger.info("Firecrawl circuit open, skipping to fallback provider")
            return False, [], False

        variations = query_variations(query.narrative_query, opts.country)

        async def run_variation(item: tuple[int, str]) -> tuple[int, list[CandidateURL]]:
            idx, variation = item
            key = fingerprint(
                FIRECRAWL,
                "POST",
                {
                    "query": variation,
                    "country": opts.country,
                    "from": opts.date_from,
                    "to": opts.date_to,
                    "limit": opts.limit,
                },
            )
            hits = await call_with_protection(self.ctx, FIRECRAWL, lambda: search(variation, opts), key)
            return idx, hits

        outcome = await run_bounded(
            list(enumerate(variations)),
            run_variation,
            limit=self.settings.discovery_max_parallel,
            cancel=run_state.cancel,
        )
        for exc in outcome.errors:
            if not isinstance(exc, CircuitOpenError):
                log_provider_failure(FIRECRAWL, "discovery", exc)

        merged: list[CandidateURL] = []
        for _, hits in sorted(outcome.results, key=lambda pair: pair[0]):
            merged.extend(hits)
        return bool(outcome.results), merged, outcome.partial

    async def _search_fallback(self, query: BuiltQuery, opts: SearchOptions) -> list[CandidateURL] | None:
        search = self.providers.get(CSE)
        if search is None:
            return None
        text = query.query or query.narrative_query
        key = fingerprint(CSE, "GET", {"q": text, "country": opts.country})
        try:
            return await call_with_protection(self.ctx, CSE, lambda: search(text, opts), key)
        except Exception as exc:
            log_provider_failure(CSE, "discovery", exc)
            return None

    def _finalize(self, found: list[CandidateURL], providers_used: list[str]) -> DiscoveryResult:
        unique = web_utils.dedupe_by_url(
            (c for c in found if web_utils.is_valid_url(c.url)),
            key=lambda c: c.url,
        )
        cap = max(int(self.settings.discovery_max_urls), 1)
        dropped = max(len(unique) - cap, 0)
        if dropped:
            logger.warning(f"Discovery backpressure: dropped {dropped} of {len(unique)} URLs (cap {cap})")
        return DiscoveryResult(candidates=unique[:cap], providers_used=providers_used, dropped=dropped)

    @staticmethod
    def _elapsed(started: float) -> int:
        return int((time.monotonic() - started) * 1000)
