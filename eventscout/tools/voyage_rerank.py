"""Optional reranking-model call (Voyage AI rerank API)."""
from __future__ import annotations

import httpx

from eventscout.config import settings
from eventscout.tools.search_provider import to_provider_error

PROVIDER = "voyage"
VOYAGE_RERANK_URL = "https://api.voyageai.com/v1/rerank"


def rerank_available() -> bool:
    return bool(settings.rerank_enabled and settings.voyage_api_key)


async def rerank(query: str, documents: list[str], *, top_k: int | None = None) -> list[tuple[int, float]]:
    """Return ``(index, relevance_score)`` pairs, best first.

    Raises ProviderError on failure; callers pass their input through unchanged.
    """
    if not documents:
        return []
    payload = {
        "query": query,
        "documents": documents,
        "model": settings.voyage_rerank_model,
        "top_k": top_k or len(documents),
        "truncation": True,
    }
    headers = {
        "Content-Type": "application/json",
        "Authorization": f"Bearer {settings.voyage_api_key}",
    }
    try:
        async with httpx.AsyncClient(timeout=settings.provider_timeout_seconds) as client:
            response = await client.post(VOYAGE_RERANK_URL, json=payload, headers=headers)
            response.raise_for_status()
            data = response.json()
    except (httpx.HTTPError, ValueError) as exc:
        raise to_provider_error(PROVIDER, exc) from exc

    ranked: list[tuple[int, float]] = []
    for row in data.get("data", []) if isinstance(data, dict) else []:
        index = row.get("index")
        if isinstance(index, int) and 0 <= index < len(documents):
            ranked.append((index, float(row.get("relevance_score") or 0.0)))
    return ranked
