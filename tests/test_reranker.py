from __future__ import annotations

import pytest

from eventscout.agents.reranker import Reranker, RerankContext, is_aggregator
from eventscout.errors import ProviderError
from eventscout.models.interfaces import CandidateURL
from eventscout.services.pipeline_context import RunState


@pytest.mark.parametrize(
    "url, expected",
    [
        ("https://www.eventbrite.de/e/compliance-123", True),
        ("https://de.linkedin.com/events/123", True),
        ("https://compliance-forum.de/events-calendar/2025", True),
        ("https://compliance-forum.de/2025/programm", False),
    ],
)
def test_is_aggregator(url, expected):
    assert is_aggregator(url) is expected


@pytest.mark.asyncio
async def test_rerank_drops_aggregators_and_biases_country_and_event_paths(ctx, log_messages):
    candidates = [
        CandidateURL("https://example.com/news", score=0.6),
        CandidateURL("https://www.eventbrite.de/e/1", score=0.9),
        CandidateURL("https://www.eventbrite.de/e/2", score=0.9),
        CandidateURL("https://forum.de/konferenz-2025", score=0.5),
    ]
    run_state = RunState()

    result = await Reranker(ctx).rerank(candidates, RerankContext(query="compliance", country="DE"), run_state)

    assert [c.url for c in result.candidates] == ["https://forum.de/konferenz-2025", "https://example.com/news"]
    assert result.candidates[0].score == pytest.approx(0.5 + 0.08 + 0.05)
    assert candidates[3].score == 0.5
    assert result.metrics.aggregators_dropped == 2
    assert result.metrics.bias_hits == 1
    assert run_state.seen_aggregators == {"eventbrite.de"}
    assert sum("Dropping aggregator host eventbrite.de" in m for m in log_messages) == 1


@pytest.mark.asyncio
async def test_rerank_model_reorders_survivors(ctx):
    async def fake_rerank(query, documents):
        return [(1, 0.95), (0, 0.2)]

    candidates = [CandidateURL("https://a.de/event", score=0.9), CandidateURL("https://b.de/event", score=0.4)]
    result = await Reranker(ctx, rerank_fn=fake_rerank).rerank(candidates, RerankContext("q", "DE"), RunState())

    assert [c.url for c in result.candidates] == ["https://b.de/event", "https://a.de/event"]
    assert result.metrics.model_used


@pytest.mark.asyncio
async def test_rerank_model_failure_passes_list_through(ctx):
    async def broken(query, documents):
        raise ProviderError("voyage", "bad request", status_code=400)

    candidates = [CandidateURL("https://a.de/event", score=0.9), CandidateURL("https://b.de/event", score=0.4)]
    result = await Reranker(ctx, rerank_fn=broken).rerank(candidates, RerankContext("q", "DE"), RunState())

    assert [c.url for c in result.candidates] == ["https://a.de/event", "https://b.de/event"]
    assert not result.metrics.model_used
