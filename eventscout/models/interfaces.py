from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date
from typing import Any, Literal

CandidateSource = Literal["firecrawl", "cse", "database", "fallback-heuristic"]
DateWindowStatus = Literal["in-window", "within-month", "out-of-window", "no-date"]


@dataclass(slots=True)
class CandidateURL:
    url: str
    score: float = 0.0
    reason: str = ""
    source: str = "firecrawl"
    title: str = ""
    snippet: str = ""

    def __post_init__(self) -> None:
        self.score = max(0.0, min(float(self.score), 1.0))


@dataclass(slots=True)
class PrioritizedURL:
    url: str
    score: float
    reason: str
    source: str = "firecrawl"


@dataclass(slots=True)
class Speaker:
    name: str
    title: str | None = None
    company: str | None = None


@dataclass(slots=True)
class ExtractedEvent:
    url: str
    title: str
    description: str = ""
    starts_at: date | None = None
    city: str | None = None
    country: str | None = None
    venue: str | None = None
    speakers: list[Speaker] = field(default_factory=list)
    sponsors: list[str] = field(default_factory=list)
    confidence: float = 0.0
    source: str = "firecrawl"
    quality_score: float | None = None
    date_window_status: DateWindowStatus | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "title": self.title,
            "description": self.description,
            "starts_at": self.starts_at.isoformat() if self.starts_at else None,
            "city": self.city,
            "country": self.country,
            "venue": self.venue,
            "speakers": [
                {"name": s.name, "title": s.title, "company": s.company}
                for s in self.speakers
            ],
            "sponsors": list(self.sponsors),
            "confidence": self.confidence,
            "source": self.source,
            "quality_score": self.quality_score,
            "date_window_status": self.date_window_status,
        }

    @classmethod
    def from_dict(cls, payload: dict[str, Any]) -> "ExtractedEvent":
        starts_at = payload.get("starts_at")
        return cls(
            url=str(payload["url"]),
            title=str(payload.get("title") or ""),
            description=str(payload.get("description") or ""),
            starts_at=date.fromisoformat(starts_at) if starts_at else None,
            city=payload.get("city"),
            country=payload.get("country"),
            venue=payload.get("venue"),
            speakers=[
                Speaker(
                    name=str(s.get("name") or ""),
                    title=s.get("title"),
                    company=s.get("company"),
                )
                for s in payload.get("speakers") or []
                if isinstance(s, dict)
            ],
            sponsors=[str(s) for s in payload.get("sponsors") or []],
            confidence=float(payload.get("confidence") or 0.0),
            source=str(payload.get("source") or "firecrawl"),
        )


@dataclass(frozen=True, slots=True)
class Window:
    start: date
    end: date


@dataclass(slots=True)
class CircuitState:
    open: bool = False
    open_until: float = 0.0


@dataclass(slots=True)
class CrawlResult:
    url: str
    markdown: str
    html: str = ""
    title: str = ""
    description: str = ""
    final_url: str = ""
    status_code: int = 200


@dataclass(slots=True)
class EventDetails:
    """Metadata pulled from one crawled page, before speakers are attached."""

    title: str = ""
    description: str = ""
    starts_at: date | None = None
    city: str | None = None
    country: str | None = None
    venue: str | None = None
    sponsors: list[str] = field(default_factory=list)


@dataclass(slots=True)
class QualityVerdict:
    quality: float
    ok: bool
    date_window_status: DateWindowStatus
    missing: list[str] = field(default_factory=list)
