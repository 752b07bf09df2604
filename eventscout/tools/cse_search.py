"""Google Custom Search fallback with progressive parameter relaxation."""
from __future__ import annotations

from typing import Any

import httpx
from loguru import logger

from eventscout.config import settings
from eventscout.data.countries import get_country_context
from eventscout.models.interfaces import CandidateURL
from eventscout.tools import web_utils
from eventscout.tools.search_provider import CSE, SearchOptions, rank_score, to_provider_error

CSE_ENDPOINT = "https://www.googleapis.com/customsearch/v1"
RELAXABLE_STATUS = {400, 403, 429}
MAX_ATTEMPTS = 3
# Locale hints go first, region hints second.
RELAXATION_STEPS: tuple[tuple[str, ...], ...] = ((), ("hl", "lr"), ("gl", "cr"))


def build_params(query: str, opts: SearchOptions) -> dict[str, Any]:
    params: dict[str, Any] = {
        "key": settings.google_cse_key,
        "cx": settings.google_cse_cx,
        "q": query,
        "num": min(max(int(opts.limit), 1), 10),
        "safe": "off",
    }
    context = get_country_context(opts.country)
    if context is not None:
        params["gl"] = context.iso2.lower()
        params["cr"] = f"country{context.iso2}"
        locale = opts.locale or context.locale
        params["hl"] = locale
        params["lr"] = f"lang_{locale}"
    return params


def relaxed_params(params: dict[str, Any], attempt: int) -> dict[str, Any]:
    dropped: set[str] = set()
    for step in RELAXATION_STEPS[: attempt + 1]:
        dropped.update(step)
    return {k: v for k, v in params.items() if k not in dropped}


def parse_items(data: Any) -> list[CandidateURL]:
    items = data.get("items", []) if isinstance(data, dict) else []
    candidates: list[CandidateURL] = []
    for item in items or []:
        url = str(item.get("link") or "").strip()
        if not web_utils.is_valid_url(url):
            continue
        candidates.append(
            CandidateURL(
                url=url,
                score=rank_score(len(candidates)),
                reason=f"cse rank {len(candidates) + 1}",
                source=CSE,
                title=str(item.get("title") or ""),
                snippet=str(item.get("snippet") or ""),
            )
        )
    return candidates


async def search(query: str, opts: SearchOptions) -> list[CandidateURL]:
    """Query Google CSE, dropping hints on 400/403/429.

    After three rejected attempts the diagnostics are logged and an empty
    list is returned. Network errors and 5xx raise ProviderError.
    """
    if not (settings.google_cse_key and settings.google_cse_cx):
        raise to_provider_error(CSE, ValueError("GOOGLE_CSE_KEY/GOOGLE_CSE_CX not configured"))

    base_params = build_params(query, opts)
    diagnostics: list[dict[str, Any]] = []

    async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
        for attempt in range(MAX_ATTEMPTS):
            params = relaxed_params(base_params, attempt)
            try:
                response = await client.get(CSE_ENDPOINT, params=params)
            except httpx.HTTPError as exc:
                raise to_provider_error(CSE, exc) from exc

            if response.status_code in RELAXABLE_STATUS:
                diagnostics.append(
                    {
                        "attempt": attempt + 1,
                        "status": response.status_code,
                        "params": sorted(k for k in params if k not in {"key", "cx"}),
                        "body": response.text[:200],
                    }
                )
                continue

            try:
                response.raise_for_status()
                return parse_items(response.json())
            except (httpx.HTTPError, ValueError) as exc:
                raise to_provider_error(CSE, exc) from exc

    logger.warning(f"CSE gave up after {MAX_ATTEMPTS} attempts: {diagnostics}")
    return []
