"""Weighted industry templates used by the query builder.

Each precision weight runs 0..10. Higher weights make the generated query
stricter: more base terms, more negative filters, tighter geography.
"""
from __future__ import annotations

from dataclasses import dataclass, field


@dataclass(frozen=True, slots=True)
class WeightedTerm:
    term: str
    weight: int


@dataclass(frozen=True, slots=True)
class PrecisionWeights:
    industry_specific: int = 8
    cross_industry_prevention: int = 7
    geographic: int = 6
    quality: int = 5
    event_type_specificity: int = 6


@dataclass(frozen=True, slots=True)
class WeightedTemplate:
    id: str
    name: str
    base_terms: tuple[str, ...]
    industry_terms: tuple[str, ...]
    icp_terms: tuple[str, ...]
    event_types: tuple[str, ...]
    negative_filters: tuple[WeightedTerm, ...] = ()
    exclude_terms: tuple[str, ...] = ()
    weights: PrecisionWeights = field(default_factory=PrecisionWeights)


_COMMON_NEGATIVES = (
    WeightedTerm("food", 9),
    WeightedTerm("fashion", 9),
    WeightedTerm("cooking", 9),
    WeightedTerm("recipes", 9),
    WeightedTerm("sports", 8),
    WeightedTerm("entertainment", 8),
    WeightedTerm("concerts", 8),
    WeightedTerm("travel", 7),
    WeightedTerm("vacations", 7),
    WeightedTerm("real estate", 6),
    WeightedTerm("car shows", 6),
    WeightedTerm("shopping", 6),
    WeightedTerm("automotive", 5),
    WeightedTerm("retail", 5),
)

TEMPLATES: dict[str, WeightedTemplate] = {
    "legal-compliance": WeightedTemplate(
        id="legal-compliance",
        name="Legal & Compliance",
        base_terms=(
            "compliance",
            "legal",
            "regulatory",
            "governance",
            "risk management",
            "audit",
            "investigation",
            "e-discovery",
            "legal tech",
            "GDPR",
            "data protection",
            "whistleblowing",
            "ESG",
            "corporate governance",
        ),
        industry_terms=(
            "compliance",
            "investigations",
            "regtech",
            "ESG",
            "legal tech",
            "GDPR",
            "privacy",
            "cybersecurity",
            "whistleblowing",
            "audit",
            "governance",
            "risk management",
        ),
        icp_terms=(
            "general counsel",
            "compliance officer",
            "legal counsel",
            "risk manager",
            "data protection officer",
        ),
        event_types=("conference", "summit", "forum", "workshop", "seminar"),
        negative_filters=_COMMON_NEGATIVES,
        exclude_terms=("reddit", "forum", "legal advice"),
        weights=PrecisionWeights(8, 7, 6, 5, 6),
    ),
    "fintech": WeightedTemplate(
        id="fintech",
        name="FinTech & Financial Services",
        base_terms=(
            "fintech",
            "financial technology",
            "banking innovation",
            "digital banking",
            "payment systems",
            "blockchain",
            "regtech",
            "insurtech",
            "open banking",
        ),
        industry_terms=(
            "fintech",
            "banking innovation",
            "digital banking",
            "payment systems",
            "blockchain",
            "regtech",
            "insurtech",
            "wealthtech",
        ),
        icp_terms=("fintech executive", "banking executive", "payment executive"),
        event_types=("conference", "summit", "forum", "expo"),
        negative_filters=(
            WeightedTerm("food", 8),
            WeightedTerm("fashion", 8),
            WeightedTerm("cooking", 8),
            WeightedTerm("sports", 7),
            WeightedTerm("entertainment", 7),
            WeightedTerm("travel", 6),
            WeightedTerm("real estate", 5),
            WeightedTerm("healthcare", 4),
        ),
        weights=PrecisionWeights(8, 7, 6, 5, 6),
    ),
    "healthcare": WeightedTemplate(
        id="healthcare",
        name="Healthcare & Medical Technology",
        base_terms=(
            "healthcare",
            "medical technology",
            "health innovation",
            "digital health",
            "telemedicine",
            "medical devices",
            "biotech",
        ),
        industry_terms=(
            "healthcare",
            "medical technology",
            "digital health",
            "telemedicine",
            "healthcare IT",
            "medical devices",
            "pharmaceutical",
            "biotech",
        ),
        icp_terms=("healthcare executive", "medical director", "healthcare IT director"),
        event_types=("conference", "congress", "summit", "forum"),
        negative_filters=(
            WeightedTerm("food", 7),
            WeightedTerm("fashion", 7),
            WeightedTerm("cooking", 7),
            WeightedTerm("sports", 6),
            WeightedTerm("entertainment", 6),
            WeightedTerm("travel", 5),
            WeightedTerm("fintech", 4),
            WeightedTerm("legal", 4),
        ),
        weights=PrecisionWeights(8, 7, 6, 5, 6),
    ),
}


def get_template(industry: str | None) -> WeightedTemplate | None:
    if not industry:
        return None
    return TEMPLATES.get(industry.strip().lower())
