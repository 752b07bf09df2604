from __future__ import annotations

from typing import Any

import httpx

from eventscout.config import settings
from eventscout.data.countries import get_country_context
from eventscout.models.interfaces import CandidateURL
from eventscout.tools import web_utils
from eventscout.tools.search_provider import FIRECRAWL, SearchOptions, rank_score, to_provider_error


def _date_filter(opts: SearchOptions) -> str | None:
    """Google-style ``tbs`` custom date range understood by Firecrawl search."""
    if not opts.date_from and not opts.date_to:
        return None
    parts = ["cdr:1"]
    if opts.date_from:
        parts.append(f"cd_min:{opts.date_from.strftime('%m/%d/%Y')}")
    if opts.date_to:
        parts.append(f"cd_max:{opts.date_to.strftime('%m/%d/%Y')}")
    return ",".join(parts)


def build_payload(query: str, opts: SearchOptions) -> dict[str, Any]:
    payload: dict[str, Any] = {
        "query": query,
        "limit": max(int(opts.limit), 1),
    }
    tbs = _date_filter(opts)
    if tbs:
        payload["tbs"] = tbs
    context = get_country_context(opts.country)
    if context is not None:
        payload["country"] = context.iso2.lower()
        payload["location"] = context.names[0]
        if opts.locale or context.locale:
            payload["lang"] = opts.locale or context.locale
    return payload


def parse_results(data: Any) -> list[CandidateURL]:
    rows = data.get("data", []) if isinstance(data, dict) else []
    if isinstance(rows, dict):
        rows = rows.get("web", [])
    candidates: list[CandidateURL] = []
    for row in rows or []:
        if not isinstance(row, dict):
            continue
        url = str(row.get("url") or "").strip()
        if not web_utils.is_valid_url(url):
            continue
        candidates.append(
            CandidateURL(
                url=url,
                score=rank_score(len(candidates)),
                reason=f"firecrawl rank {len(candidates) + 1}",
                source=FIRECRAWL,
                title=str(row.get("title") or ""),
                snippet=str(row.get("description") or row.get("snippet") or ""),
            )
        )
    return candidates


async def search(query: str, opts: SearchOptions) -> list[CandidateURL]:
    """Execute a Firecrawl web search.

    API: POST {base}/v1/search with Bearer auth.
    Raises ProviderError on network or HTTP failure.
    """
    if not settings.firecrawl_api_key:
        raise to_provider_error(FIRECRAWL, ValueError("FIRECRAWL_API_KEY not configured"))

    endpoint = settings.firecrawl_base_url.rstrip("/") + "/v1/search"
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {settings.firecrawl_api_key}",
    }
    try:
        async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
            response = await client.post(endpoint, json=build_payload(query, opts), headers=headers)
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise to_provider_error(FIRECRAWL, exc) from exc

    return parse_results(data)
