from __future__ import annotations

from typing import Awaitable, Callable

import httpx
import trafilatura
from bs4 import BeautifulSoup
from loguru import logger

from eventscout.config import settings
from eventscout.errors import ProviderError
from eventscout.models.interfaces import CrawlResult

PROVIDER = "crawler"
USER_AGENT = "EventScoutBot/1.0 (+https://example.local)"


def _truncate(text: str, max_chars: int) -> str:
    if max_chars <= 0 or len(text) <= max_chars:
        return text
    return text[:max_chars]


def page_metadata(html: str) -> tuple[str, str]:
    """Title and description from ``<title>``/OpenGraph/meta tags."""
    if not html:
        return "", ""
    soup = BeautifulSoup(html, "html.parser")
    title = ""
    og_title = soup.find("meta", attrs={"property": "og:title"})
    if og_title and og_title.get("content"):
        title = str(og_title["content"])
    elif soup.title and soup.title.string:
        title = soup.title.string
    description = ""
    for attrs in ({"property": "og:description"}, {"name": "description"}):
        tag = soup.find("meta", attrs=attrs)
        if tag and tag.get("content"):
            description = str(tag["content"])
            break
    return " ".join(title.split()), " ".join(description.split())


def html_to_text(html: str) -> str:
    extracted = trafilatura.extract(html, output_format="markdown", include_links=False)
    if isinstance(extracted, str) and extracted.strip():
        return extracted
    soup = BeautifulSoup(html, "html.parser")
    return soup.get_text("\n")


async def _crawl_with_firecrawl(url: str) -> CrawlResult:
    endpoint = settings.firecrawl_base_url.rstrip("/") + "/v1/scrape"
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {settings.firecrawl_api_key}",
    }
    payload = {"url": url, "formats": ["markdown", "html"], "onlyMainContent": False}
    async with httpx.AsyncClient(timeout=settings.crawl_timeout_seconds, follow_redirects=True) as client:
        response = await client.post(endpoint, json=payload, headers=headers)
        response.raise_for_status()
        data = response.json()

    body = data.get("data", data) if isinstance(data, dict) else {}
    if not isinstance(body, dict):
        body = {}
    markdown = str(body.get("markdown") or "")
    html = str(body.get("html") or "")
    metadata = body.get("metadata") if isinstance(body.get("metadata"), dict) else {}
    if not markdown and not html:
        raise ValueError("Firecrawl response missing content")

    title = str(metadata.get("ogTitle") or metadata.get("title") or "")
    description = str(metadata.get("ogDescription") or metadata.get("description") or "")
    if html and not (title and description):
        html_title, html_description = page_metadata(html)
        title = title or html_title
        description = description or html_description
    return CrawlResult(
        url=url,
        markdown=_truncate(markdown or html_to_text(html), settings.crawl_max_chars),
        html=html,
        title=title,
        description=description,
        final_url=str(metadata.get("sourceURL") or metadata.get("url") or url),
        status_code=int(metadata.get("statusCode") or response.status_code),
    )


async def _crawl_with_httpx(url: str) -> CrawlResult:
    async with httpx.AsyncClient(timeout=settings.crawl_timeout_seconds, follow_redirects=True) as client:
        response = await client.get(url, headers={"User-Agent": USER_AGENT})
        response.raise_for_status()
    html = response.text
    title, description = page_metadata(html)
    return CrawlResult(
        url=url,
        markdown=_truncate(html_to_text(html), settings.crawl_max_chars),
        html=html,
        title=title,
        description=description,
        final_url=str(response.url),
        status_code=int(response.status_code),
    )


async def crawl(url: str) -> CrawlResult:
    """Deep crawl one page: Firecrawl scrape when configured, plain fetch otherwise.

    Raises ProviderError when no strategy produced content.
    """
    attempts: list[Callable[[str], Awaitable[CrawlResult]]] = []
    if settings.firecrawl_api_key:
        attempts.append(_crawl_with_firecrawl)
    attempts.append(_crawl_with_httpx)

    last_error: Exception | None = None
    for crawl_fn in attempts:
        try:
            return await crawl_fn(url)
        except (httpx.HTTPError, ValueError) as exc:
            logger.debug(f"{crawl_fn.__name__} failed for {url}: {exc}")
            last_error = exc
            continue
    status_code = None
    if isinstance(last_error, httpx.HTTPStatusError):
        status_code = last_error.response.status_code
    raise ProviderError(PROVIDER, last_error or "no crawl strategy", status_code=status_code)
