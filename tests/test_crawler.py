from __future__ import annotations

import json
from datetime import date, datetime, timedelta, timezone

import httpx
import pytest

from eventscout.errors import ProviderError
from eventscout.models.interfaces import ExtractedEvent, Speaker
from eventscout.tools import crawler, extraction_cache

PAGE = """
<html><head>
<title>Ignored title</title>
<meta property="og:title" content="Compliance  Forum 2025">
<meta name="description" content="Two days of compliance talks in Berlin.">
</head><body><article><h1>Compliance Forum 2025</h1><p>Join us in Berlin.</p></article></body></html>
"""


def test_page_metadata_prefers_open_graph():
    title, description = crawler.page_metadata(PAGE)
    assert title == "Compliance Forum 2025"
    assert description == "Two days of compliance talks in Berlin."


@pytest.mark.asyncio
async def test_crawl_fetches_directly_without_firecrawl(monkeypatch):
    async def fake_get(self, url: str, **kwargs):  # noqa: ARG001
        return httpx.Response(200, text=PAGE, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    result = await crawler.crawl("https://forum.de/2025")

    assert result.title == "Compliance Forum 2025"
    assert "Berlin" in result.markdown
    assert result.html == PAGE


@pytest.mark.asyncio
async def test_crawl_falls_back_when_firecrawl_fails(monkeypatch, isolated_settings):
    monkeypatch.setattr(isolated_settings, "firecrawl_api_key", "fc-key")

    async def fake_post(self, url: str, **kwargs):  # noqa: ARG001
        return httpx.Response(500, text="oops", request=httpx.Request("POST", url))

    async def fake_get(self, url: str, **kwargs):  # noqa: ARG001
        return httpx.Response(200, text=PAGE, request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "post", fake_post)
    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    result = await crawler.crawl("https://forum.de/2025")

    assert result.title == "Compliance Forum 2025"


@pytest.mark.asyncio
async def test_crawl_raises_provider_error_when_nothing_works(monkeypatch):
    async def fake_get(self, url: str, **kwargs):  # noqa: ARG001
        return httpx.Response(404, text="missing", request=httpx.Request("GET", url))

    monkeypatch.setattr(httpx.AsyncClient, "get", fake_get)
    with pytest.raises(ProviderError) as excinfo:
        await crawler.crawl("https://forum.de/gone")
    assert excinfo.value.status_code == 404


def test_extraction_cache_round_trip_and_expiry(isolated_settings):
    event = ExtractedEvent(
        url="https://forum.de/2025",
        title="Compliance Forum",
        starts_at=date(2025, 3, 12),
        speakers=[Speaker("Anna Schmidt", "CCO", "Acme AG")],
    )
    extraction_cache.save("https://FORUM.de/2025/", event)

    loaded = extraction_cache.load("https://forum.de/2025")
    assert loaded is not None
    assert loaded.starts_at == date(2025, 3, 12)
    assert loaded.speakers[0].company == "Acme AG"

    path = extraction_cache.cache_path(event.url)
    payload = json.loads(path.read_text(encoding="utf-8"))
    payload["fetched_at"] = (datetime.now(timezone.utc) - timedelta(hours=25)).isoformat()
    path.write_text(json.dumps(payload), encoding="utf-8")
    assert extraction_cache.load(event.url) is None


def test_extraction_cache_disabled(monkeypatch, isolated_settings):
    monkeypatch.setattr(isolated_settings, "extraction_cache_enabled", False)
    event = ExtractedEvent(url="https://forum.de/2025", title="Compliance Forum")
    extraction_cache.save(event.url, event)
    assert extraction_cache.load(event.url) is None
