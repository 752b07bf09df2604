from __future__ import annotations

from datetime import date

import httpx
import pytest

from eventscout.errors import ProviderError
from eventscout.tools import cse_search, database_search, firecrawl_search, voyage_rerank
from eventscout.tools.search_provider import CSE, DATABASE, FIRECRAWL, SearchOptions, provider_configured


def _response(method: str, url: str, status: int = 200, payload: dict | None = None, text: str = "") -> httpx.Response:
    request = httpx.Request(method, url)
    if payload is not None:
        return httpx.Response(status, json=payload, request=request)
    return httpx.Response(status, text=text, request=request)


def test_provider_configured_follows_credentials(monkeypatch, isolated_settings):
    assert not any(provider_configured(name) for name in (FIRECRAWL, CSE, DATABASE))
    monkeypatch.setattr(isolated_settings, "google_cse_key", "k")
    assert not provider_configured(CSE)
    monkeypatch.setattr(isolated_settings, "google_cse_cx", "cx")
    assert provider_configured(CSE)
    monkeypatch.setattr(isolated_settings, "database_url", "postgresql://localhost/events")
    assert provider_configured(DATABASE)
    with pytest.raises(ValueError):
        provider_configured("bing")


def test_firecrawl_payload_carries_country_and_date_range():
    opts = SearchOptions(country="DE", date_from=date(2025, 3, 1), date_to=date(2025, 3, 31), limit=15)
    payload = firecrawl_search.build_payload("compliance conference", opts)
    assert payload["query"] == "compliance conference"
    assert payload["limit"] == 15
    assert payload["country"] == "de"
    assert payload["location"] == "Germany"
    assert payload["lang"] == "de"
    assert payload["tbs"] == "cdr:1,cd_min:03/01/2025,cd_max:03/31/2025"


@pytest.mark.asyncio
async def test_firecrawl_search_parses_results(monkeypatch, isolated_settings):
    monkeypatch.setattr(isolated_settings, "firecrawl_api_key", "fc-key")
    captured: dict = {}

    async def fake_post(self, url: str, **kwargs):  # noqa: ARG001
        captured["url"] = url
        captured["headers"] = kwargs.get("headers", {})
        return _response(
            "POST",
            url,
            payload={
                "success": True,
                "data": [
                    {"url": "https://compliance-forum.de/2025", "title": "Compliance Forum", "description": "Berlin"},
                    {"url": "not-a-url", "title": "junk"},
                    {"url": "https://legaltech.de/summit", "title": "Legal Tech Summit"},
                ],
            },
        )

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    results = await firecrawl_search.search("compliance conference", SearchOptions(country="DE"))

    assert captured["url"].endswith("/v1/search")
    assert captured["headers"]["Authorization"] == "Bearer fc-key"
    assert [r.url for r in results] == ["https://compliance-forum.de/2025", "https://legaltech.de/summit"]
    assert results[0].source == FIRECRAWL
    assert results[0].score > results[1].score


@pytest.mark.asyncio
async def test_firecrawl_search_wraps_http_errors(monkeypatch, isolated_settings):
    monkeypatch.setattr(isolated_settings, "firecrawl_api_key", "fc-key")

    async def fake_post(self, url: str, **kwargs):  # noqa: ARG001
        return _response("POST", url, status=503, text="unavailable")

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    with pytest.raises(ProviderError) as excinfo:
        await firecrawl_search.search("q", SearchOptions())
    assert excinfo.value.provider == FIRECRAWL
    assert excinfo.value.status_code == 503


def test_cse_relaxation_drops_locale_then_region():
    params = cse_search.build_params("q", SearchOptions(country="DE"))
    assert {"gl", "cr", "hl", "lr"} <= set(params)
    first = cse_search.relaxed_params(params, 0)
    second = cse_search.relaxed_params(params, 1)
    third = cse_search.relaxed_params(params, 2)
    assert first == params
    assert "hl" not in second and "lr" not in second and "gl" in second
    assert not {"gl", "cr", "hl", "lr"} & set(third)


@pytest.mark.asyncio
async def test_cse_relaxes_on_rejection_then_succeeds(monkeypatch, isolated_settings):
    monkeypatch.setattr(isolated_settings, "google_cse_key", "k")
    monkeypatch.setattr(isolated_settings, "google_cse_cx", "cx")
    seen_params: list[dict] = []

    async def fake_get(self, url: str, **kwargs):  # noqa: ARG001
        seen_params.append(dict(kwargs.get("params", {})))
        if len(seen_params) == 1:
            return _response("GET", url, status=400, text="bad locale")
        return _response("GET", url, payload={"items": [{"link": "https://event.de/a", "title": "A"}]})

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    results = await cse_search.search("compliance", SearchOptions(country="DE"))

    assert [r.url for r in results] == ["https://event.de/a"]
    assert "hl" in seen_params[0]
    assert "hl" not in seen_params[1]


@pytest.mark.asyncio
async def test_cse_gives_up_after_three_rejections(monkeypatch, isolated_settings, log_messages):
    monkeypatch.setattr(isolated_settings, "google_cse_key", "k")
    monkeypatch.setattr(isolated_settings, "google_cse_cx", "cx")
    calls = 0

    async def fake_get(self, url: str, **kwargs):  # noqa: ARG001
        nonlocal calls
        calls += 1
        return _response("GET", url, status=403, text="quota")

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    results = await cse_search.search("compliance", SearchOptions(country="DE"))

    assert results == []
    assert calls == cse_search.MAX_ATTEMPTS
    assert any("CSE gave up" in m for m in log_messages)


@pytest.mark.asyncio
async def test_cse_server_error_raises(monkeypatch, isolated_settings):
    monkeypatch.setattr(isolated_settings, "google_cse_key", "k")
    monkeypatch.setattr(isolated_settings, "google_cse_cx", "cx")

    async def fake_get(self, url: str, **kwargs):  # noqa: ARG001
        return _response("GET", url, status=500, text="oops")

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    with pytest.raises(ProviderError):
        await cse_search.search("compliance", SearchOptions())


@pytest.mark.asyncio
async def test_database_search_is_empty_without_configuration():
    assert await database_search.search("compliance", SearchOptions()) == []


def test_tsquery_terms_are_or_joined_and_unique():
    assert database_search.to_tsquery_terms("Compliance, compliance & Risk!") == "compliance | risk"


@pytest.mark.asyncio
async def test_voyage_rerank_ignores_out_of_range_indices(monkeypatch, isolated_settings):
    monkeypatch.setattr(isolated_settings, "voyage_api_key", "vk")

    async def fake_post(self, url: str, **kwargs):  # noqa: ARG001
        return _response(
            "POST",
            url,
            payload={"data": [{"index": 1, "relevance_score": 0.9}, {"index": 7, "relevance_score": 0.5}]},
        )

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    ranked = await voyage_rerank.rerank("q", ["doc a", "doc b"])
    assert ranked == [(1, 0.9)]
