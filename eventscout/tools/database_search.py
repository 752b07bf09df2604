"""Local event store lookup using asyncpg."""

from __future__ import annotations

import re
from typing import Any

import asyncpg

from eventscout.config import settings
from eventscout.models.interfaces import CandidateURL
from eventscout.tools import web_utils
from eventscout.tools.search_provider import DATABASE, SearchOptions, to_provider_error

# Connection pool
_pool: asyncpg.Pool | None = None

TERM_RE = re.compile(r"[^\W\d_]{3,}", re.UNICODE)

LOOKUP_SQL = """
    SELECT source_url, title, description, starts_at, city, country, confidence
    FROM collected_events
    WHERE to_tsvector('simple', coalesce(title, '') || ' ' || coalesce(description, ''))
          @@ to_tsquery('simple', $1)
      AND ($2 = 'ALL' OR upper(country) = $2)
      AND ($3::date IS NULL OR starts_at >= $3)
      AND ($4::date IS NULL OR starts_at <= $4)
    ORDER BY confidence DESC NULLS LAST, starts_at ASC
    LIMIT $5
"""


def _db_available() -> bool:
    """Check if database is configured."""
    return bool(settings.database_url)


async def _get_pool() -> asyncpg.Pool:
    """Get or create the database connection pool."""
    global _pool
    if not _db_available():
        raise RuntimeError("Database not configured. Set DATABASE_URL in .env")
    if _pool is None:
        _pool = await asyncpg.create_pool(
            settings.database_url,
            min_size=1,
            max_size=5,
        )
    return _pool


async def close_pool() -> None:
    """Close the database connection pool."""
    global _pool
    if _pool is not None:
        await _pool.close()
        _pool = None


def to_tsquery_terms(query: str) -> str:
    """OR together the words of a free-text query for ``to_tsquery``."""
    terms: list[str] = []
    for term in TERM_RE.findall(query.lower()):
        if term not in terms:
            terms.append(term)
    return " | ".join(terms)


def _row_to_candidate(row: Any) -> CandidateURL | None:
    url = str(row["source_url"] or "").strip()
    if not web_utils.is_valid_url(url):
        return None
    confidence = row["confidence"]
    return CandidateURL(
        url=url,
        score=float(confidence) if confidence is not None else 0.8,
        reason="database match",
        source=DATABASE,
        title=str(row["title"] or ""),
        snippet=str(row["description"] or "")[:300],
    )


async def search(query: str, opts: SearchOptions) -> list[CandidateURL]:
    """Return stored events matching text, country and date range.

    Not configured or no usable terms -> empty list.
    """
    if not _db_available():
        return []
    terms = to_tsquery_terms(query)
    if not terms:
        return []

    try:
        pool = await _get_pool()
        async with pool.acquire() as conn:
            rows = await conn.fetch(
                LOOKUP_SQL,
                terms,
                (opts.country or "ALL").upper(),
                opts.date_from,
                opts.date_to,
                max(int(opts.limit), 1),
            )
    except (asyncpg.PostgresError, OSError, RuntimeError) as exc:
        raise to_provider_error(DATABASE, exc) from exc

    candidates = [_row_to_candidate(row) for row in rows]
    return [c for c in candidates if c is not None]
