"""Turn a search request into provider query strings.

Two shapes are produced: ``query`` (boolean, weighted, used for the general
web search fallback) and ``narrative_query`` (short natural phrasing, used
for the primary search provider and its variations).
"""
from __future__ import annotations

import re
from dataclasses import dataclass
from datetime import date
from typing import Any

from loguru import logger

from eventscout.config import Settings, settings
from eventscout.data.countries import get_country_context
from eventscout.data.templates import WeightedTemplate, get_template
from eventscout.models.schemas import SearchRequest

YEAR_RE = re.compile(r"\b(19|20)\d{2}\b")
EVENT_KEYWORDS = ("conference", "summit")


@dataclass(slots=True)
class BuiltQuery:
    query: str
    narrative_query: str
    template_id: str | None = None


def _quote(term: str) -> str:
    return f'"{term}"' if " " in term else term


def _truncate(text: str, max_length: int) -> str:
    text = " ".join(text.split())
    if max_length <= 0 or len(text) <= max_length:
        return text
    cut = text[:max_length]
    if " " in cut:
        cut = cut.rsplit(" ", 1)[0]
    return cut.strip()


def _year_token(request: SearchRequest, today: date | None) -> str:
    source = request.date_from or today or date.today()
    return str(source.year)


def _contains(text: str, term: str) -> bool:
    return term.lower() in text.lower()


def _negative_cutoff(weight: int) -> int | None:
    if weight >= 7:
        return 7
    if weight >= 4:
        return 5
    return None


def _build_weighted(
    request: SearchRequest,
    template: WeightedTemplate,
    user_profile: dict[str, Any] | None,
    today: date | None,
    max_length: int,
) -> BuiltQuery:
    weights = template.weights
    user_text = request.user_text.strip()
    context = get_country_context(request.country)

    base_count = max(2, round(len(template.base_terms) * weights.industry_specific / 10))
    base_terms = template.base_terms[:base_count]
    parts = ["(" + " OR ".join(_quote(t) for t in base_terms) + ")"]

    if user_text:
        parts.append(f"({user_text})")

    if user_profile:
        profile_terms = list(user_profile.get("industry_terms") or [])[:3]
        profile_terms += list(user_profile.get("icp_terms") or [])[:2]
        extra = [t for t in profile_terms if t and not _contains(user_text, t)]
        if extra:
            parts.append("(" + " OR ".join(_quote(t) for t in extra) + ")")

    if context is not None:
        if weights.geographic >= 7:
            parts.append("(" + " OR ".join(_quote(c) for c in context.cities[:3]) + ")")
        elif weights.geographic >= 4:
            parts.append(_quote(context.names[0]))

    cutoff = _negative_cutoff(weights.cross_industry_prevention)
    negatives: list[str] = []
    if cutoff is not None:
        negatives = [f"-{_quote(f.term)}" for f in template.negative_filters if f.weight >= cutoff]
    if user_profile:
        negatives += [f"-{_quote(c)}" for c in list(user_profile.get("competitors") or [])[:2] if c]

    query = " ".join(parts + negatives)

    primary_type = template.event_types[0] if template.event_types else "conference"
    if user_text and len(user_text) < 100:
        narrative = user_text
        if not any(_contains(user_text, et) for et in template.event_types):
            narrative = f"{narrative} {primary_type}"
    else:
        narrative = " ".join(template.industry_terms[:2] or ("business",)) + f" {primary_type}"
    if context is not None and not _contains(narrative, context.names[0]):
        narrative = f"{narrative} {context.names[0]}"
    if not YEAR_RE.search(narrative):
        narrative = f"{narrative} {_year_token(request, today)}"

    return BuiltQuery(
        query=_truncate(query, max_length),
        narrative_query=_truncate(narrative, max_length),
        template_id=template.id,
    )


def _build_unified(request: SearchRequest, today: date | None, max_length: int) -> BuiltQuery:
    text = request.user_text.strip()
    missing = [kw for kw in EVENT_KEYWORDS if not _contains(text, kw)]
    if missing:
        text = f"{text} {' '.join(missing)}".strip()
    if not YEAR_RE.search(text):
        text = f"{text} {_year_token(request, today)}"
    text = _truncate(text, max_length)
    return BuiltQuery(query=text, narrative_query=text)


def build_query(
    request: SearchRequest,
    template: WeightedTemplate | None = None,
    user_profile: dict[str, Any] | None = None,
    *,
    today: date | None = None,
    config: Settings | None = None,
) -> BuiltQuery:
    """Build provider queries. Never raises: on error the raw user text is returned."""
    config = config or settings
    try:
        if template is None:
            template = get_template(request.industry or config.default_industry)
        if template is not None:
            return _build_weighted(request, template, user_profile, today, config.query_max_length)
        return _build_unified(request, today, config.query_max_length)
    except Exception as exc:
        logger.warning(f"Query build failed, using raw user text: {exc}")
        return BuiltQuery(query=request.user_text, narrative_query=request.user_text)
