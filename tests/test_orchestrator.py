from __future__ import annotations

import asyncio
import json
from datetime import date

import pytest

from eventscout.agents.discovery import DiscoveryOrchestrator
from eventscout.agents.extractor import ExtractionOrchestrator
from eventscout.agents.orchestrator import EventPipeline, industry_terms, merge_solid_hits, rank_events
from eventscout.agents.prioritizer import Prioritizer
from eventscout.agents.reranker import Reranker
from eventscout.errors import ValidationError
from eventscout.models.interfaces import CandidateURL, CrawlResult, EventDetails, ExtractedEvent, Speaker
from eventscout.models.schemas import SearchRequest
from eventscout.services.pipeline_context import PipelineContext, RunState
from eventscout.tools.search_provider import DATABASE, FIRECRAWL

PAYLOAD = {
    "userText": "compliance conference",
    "country": "DE",
    "dateFrom": "2025-03-01",
    "dateTo": "2025-03-31",
}

URLS = [f"https://compliance-event{i}.de/konferenz-2025" for i in range(20)]
MODEL_SCORES = {URLS[0]: 0.9, URLS[1]: 0.85, URLS[2]: 0.8, URLS[3]: 0.75, URLS[4]: 0.7}
SOLID_URLS = URLS[:3]


class StubSearch:
    def __init__(self, urls: list[str]):
        self.urls = urls
        self.windows: list[tuple[date | None, date | None]] = []

    async def __call__(self, query, opts):
        self.windows.append((opts.date_from, opts.date_to))
        return [CandidateURL(url, score=0.9 - i * 0.01, source=FIRECRAWL) for i, url in enumerate(self.urls)]


async def stub_scorer(chunk, context):
    return json.dumps([{"url": c.url, "score": MODEL_SCORES.get(c.url, 0.1), "reason": "model"} for c in chunk])


async def stub_crawl(url: str) -> CrawlResult:
    return CrawlResult(url=url, markdown="# page", title=f"Page {url}")


def _details_for(dates: dict[str, date | None]):
    async def metadata(crawl: CrawlResult) -> EventDetails:
        return EventDetails(
            title=f"Compliance Event {URLS.index(crawl.url)}",
            description="Annual compliance meeting",
            starts_at=dates.get(crawl.url),
            city="Berlin",
            country="DE",
        )

    return metadata


async def stub_speakers(crawl: CrawlResult) -> list[Speaker]:
    return [Speaker("Anna Schmidt", "CCO"), Speaker("Jonas Weber", "General Counsel")]


def _pipeline(ctx, search: StubSearch, dates: dict[str, date | None]) -> EventPipeline:
    return EventPipeline(
        ctx,
        discovery=DiscoveryOrchestrator(ctx, providers={FIRECRAWL: search}),
        reranker=Reranker(ctx),
        prioritizer=Prioritizer(ctx, scorer=stub_scorer),
        extractor=ExtractionOrchestrator(
            ctx, crawl_fn=stub_crawl, metadata_fn=_details_for(dates), speakers_fn=stub_speakers
        ),
    )


@pytest.mark.asyncio
async def test_end_to_end_returns_solid_hits_ranked_by_confidence(ctx):
    dates = {url: date(2025, 3, 10 + i) for i, url in enumerate(SOLID_URLS)}
    search = StubSearch(URLS)

    output = await _pipeline(ctx, search, dates).run(PAYLOAD)

    assert [e.url for e in output.events] == SOLID_URLS
    confidences = [e.confidence for e in output.events]
    assert confidences == sorted(confidences, reverse=True)
    assert all(len(e.speakers) >= 2 for e in output.events)
    assert all(e.date_window_status == "in-window" for e in output.events)

    meta = output.metadata
    assert meta.total_candidates == 20
    assert meta.prioritized_candidates == 5
    assert meta.extracted_candidates == 5
    assert meta.providers_used == [FIRECRAWL]
    assert meta.source_breakdown == {FIRECRAWL: 3}
    assert meta.provider == "live"
    assert not meta.expanded
    assert meta.success and not meta.partial

    body = output.model_dump(mode="json", by_alias=True)
    assert body["metadata"]["totalCandidates"] == 20
    assert body["events"][0]["startsAt"] == "2025-03-10"


@pytest.mark.asyncio
async def test_under_filled_run_expands_window_exactly_once(ctx):
    # URLS[1] only lands inside the slack of the widened window.
    dates = {URLS[0]: date(2025, 3, 10), URLS[1]: date(2025, 5, 15)}
    first_run = _pipeline(PipelineContext(ctx.settings), StubSearch(URLS), dates)
    first_pass = await first_run.run_once(SearchRequest.model_validate(PAYLOAD), RunState())
    first_urls = {e.url for e in first_pass.solid_hits}

    search = StubSearch(URLS)
    output = await _pipeline(ctx, search, dates).run(PAYLOAD)

    assert sorted(set(search.windows)) == [
        (date(2025, 3, 1), date(2025, 3, 31)),
        (date(2025, 3, 1), date(2025, 4, 30)),
    ]
    assert output.metadata.expanded
    assert first_urls == {URLS[0]}
    assert first_urls <= {e.url for e in output.events}
    assert {e.url for e in output.events} == {URLS[0], URLS[1]}


@pytest.mark.asyncio
async def test_no_expansion_without_explicit_window(ctx):
    search = StubSearch(URLS)
    pipeline = _pipeline(ctx, search, {URLS[0]: date(2025, 3, 10)})

    output = await pipeline.run({"userText": "compliance conference", "country": "DE"})

    assert {window for window in search.windows} == {(None, None)}
    assert not output.metadata.expanded


@pytest.mark.asyncio
async def test_invalid_window_raises_validation_error(ctx):
    pipeline = _pipeline(ctx, StubSearch(URLS), {})
    with pytest.raises(ValidationError) as excinfo:
        await pipeline.run({**PAYLOAD, "dateFrom": "2025-04-01"})
    assert "dateFrom" in str(excinfo.value)


@pytest.mark.asyncio
async def test_no_provider_returns_tagged_demo_events(ctx):
    pipeline = EventPipeline(ctx, discovery=DiscoveryOrchestrator(ctx, providers={}))

    output = await pipeline.run(PAYLOAD)

    assert output.metadata.provider == "demo"
    assert len(output.events) == 3
    assert all(e.title.startswith("[Demo]") for e in output.events)
    assert all(e.source == "demo" for e in output.events)


@pytest.mark.asyncio
async def test_open_breakers_switch_to_demo_mode(ctx):
    ctx.breakers.record_failure(FIRECRAWL)
    search = StubSearch(URLS)

    output = await _pipeline(ctx, search, {}).run(PAYLOAD)

    assert output.metadata.provider == "demo"
    assert search.windows == []


@pytest.mark.asyncio
async def test_local_store_is_searched_when_it_is_the_only_provider(ctx):
    dates = {url: date(2025, 3, 10 + i) for i, url in enumerate(SOLID_URLS)}
    search = StubSearch(URLS)
    pipeline = EventPipeline(
        ctx,
        discovery=DiscoveryOrchestrator(ctx, providers={DATABASE: search}),
        prioritizer=Prioritizer(ctx, scorer=stub_scorer),
        extractor=ExtractionOrchestrator(
            ctx, crawl_fn=stub_crawl, metadata_fn=_details_for(dates), speakers_fn=stub_speakers
        ),
    )

    output = await pipeline.run(PAYLOAD)

    assert search.windows == [(date(2025, 3, 1), date(2025, 3, 31))]
    assert output.metadata.provider == "live"
    assert output.metadata.providers_used == [DATABASE]
    assert [e.url for e in output.events] == SOLID_URLS


@pytest.mark.asyncio
async def test_empty_local_store_without_web_search_falls_back_to_demo(ctx):
    search = StubSearch([])
    pipeline = EventPipeline(ctx, discovery=DiscoveryOrchestrator(ctx, providers={DATABASE: search}))

    output = await pipeline.run(PAYLOAD)

    assert search.windows
    assert output.metadata.provider == "demo"
    assert len(output.events) == 3


@pytest.mark.asyncio
async def test_pipeline_applies_its_own_context_settings(ctx):
    strict = PipelineContext(
        ctx.settings.model_copy(update={"quality_min_score": 0.99, "quality_min_speakers": 5, "expand_days": 10})
    )
    dates = {url: date(2025, 3, 10 + i) for i, url in enumerate(SOLID_URLS)}
    search = StubSearch(URLS)

    output = await _pipeline(strict, search, dates).run(PAYLOAD)

    assert output.events == []
    assert output.metadata.expanded
    assert sorted(set(search.windows)) == [
        (date(2025, 3, 1), date(2025, 3, 31)),
        (date(2025, 3, 1), date(2025, 4, 10)),
    ]


@pytest.mark.asyncio
async def test_cancellation_returns_partial_result(ctx):
    class HangingSearch(StubSearch):
        async def __call__(self, query, opts):
            await asyncio.sleep(30)
            return []

    pipeline = _pipeline(ctx, HangingSearch(URLS), {})
    cancel = asyncio.Event()

    task = asyncio.ensure_future(pipeline.run(PAYLOAD, cancel=cancel))
    await asyncio.sleep(0.05)
    cancel.set()
    output = await asyncio.wait_for(task, timeout=2)

    assert output.events == []
    assert output.metadata.partial
    assert output.metadata.success


@pytest.mark.asyncio
async def test_unexpected_stage_failure_degrades_to_unsuccessful_output(ctx):
    class ExplodingReranker(Reranker):
        async def rerank(self, candidates, context, run_state):
            raise RuntimeError("boom")

    pipeline = _pipeline(ctx, StubSearch(URLS), {})
    pipeline.reranker = ExplodingReranker(ctx)

    output = await pipeline.run(PAYLOAD)

    assert output.events == []
    assert not output.metadata.success


def test_rank_events_excludes_speakerless_and_breaks_ties_by_date():
    reference = date(2025, 3, 1)
    near = ExtractedEvent("https://a.de", "A", starts_at=date(2025, 3, 5), speakers=[Speaker("A B")], confidence=0.7)
    far = ExtractedEvent("https://b.de", "B", starts_at=date(2025, 3, 25), speakers=[Speaker("C D")], confidence=0.7)
    best = ExtractedEvent("https://c.de", "C", starts_at=date(2025, 3, 30), speakers=[Speaker("E F")], confidence=0.9)
    silent = ExtractedEvent("https://d.de", "D", starts_at=date(2025, 3, 2), speakers=[], confidence=0.95)

    ranked = rank_events([far, silent, near, best], reference)

    assert [e.url for e in ranked] == ["https://c.de", "https://a.de", "https://b.de"]


def test_merge_solid_hits_keeps_existing_entries():
    original = ExtractedEvent("https://a.de/event/", "Original")
    duplicate = ExtractedEvent("https://a.de/event", "Duplicate")
    extra = ExtractedEvent("https://b.de/event", "Extra")

    merged = merge_solid_hits([original], [duplicate, extra])

    assert [e.title for e in merged] == ["Original", "Extra"]


def test_industry_terms_from_template_or_user_text():
    assert "regtech" in industry_terms(SearchRequest(user_text="x", industry="legal-compliance"))
    assert industry_terms(SearchRequest(user_text="Anti-Money Laundering forum")) == (
        "anti-money",
        "laundering",
        "forum",
    )
