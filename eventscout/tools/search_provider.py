from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import Awaitable, Callable

import httpx

from eventscout.config import settings
from eventscout.errors import ProviderError
from eventscout.models.interfaces import CandidateURL

FIRECRAWL = "firecrawl"
CSE = "cse"
DATABASE = "database"


@dataclass(frozen=True, slots=True)
class SearchOptions:
    country: str = "ALL"
    date_from: date | None = None
    date_to: date | None = None
    locale: str | None = None
    limit: int = 20


SearchFn = Callable[[str, SearchOptions], Awaitable[list[CandidateURL]]]


def provider_configured(name: str) -> bool:
    if name == FIRECRAWL:
        return bool(settings.firecrawl_api_key)
    if name == CSE:
        return bool(settings.google_cse_key and settings.google_cse_cx)
    if name == DATABASE:
        return bool(settings.database_url)
    raise ValueError(f"Unsupported search provider: {name}")


def to_provider_error(provider: str, exc: Exception) -> ProviderError:
    if isinstance(exc, ProviderError):
        return exc
    status_code = None
    if isinstance(exc, httpx.HTTPStatusError):
        status_code = exc.response.status_code
    return ProviderError(provider, exc, status_code=status_code)


def rank_score(index: int) -> float:
    """Position-based score for providers that return ordered results."""
    return max(0.05, 1.0 - index * 0.03)
