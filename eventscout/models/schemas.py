from __future__ import annotations

from datetime import date
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic import ValidationError as PydanticValidationError
from pydantic.alias_generators import to_camel

from eventscout.data.countries import normalize_country
from eventscout.errors import ValidationError
from eventscout.models.interfaces import ExtractedEvent, Window


class _CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


# --- Requests ---


class SearchRequest(_CamelModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        str_strip_whitespace=True,
    )

    user_text: str = ""
    country: str = "ALL"
    date_from: date | None = None
    date_to: date | None = None
    industry: str | None = None

    @field_validator("country", mode="before")
    @classmethod
    def _normalize_country(cls, value: Any) -> str:
        normalized = normalize_country(str(value) if value is not None else None)
        if normalized != "ALL" and len(normalized) != 2:
            raise ValueError(f"country must be ISO-2 or ALL, got {value!r}")
        return normalized

    @model_validator(mode="after")
    def _check_window(self) -> "SearchRequest":
        if self.date_from and self.date_to and self.date_from > self.date_to:
            raise ValueError("dateFrom must be on or before dateTo")
        return self

    @property
    def has_window(self) -> bool:
        return self.date_from is not None and self.date_to is not None

    @property
    def window(self) -> Window | None:
        if self.date_from is None or self.date_to is None:
            return None
        return Window(start=self.date_from, end=self.date_to)


def parse_search_request(payload: SearchRequest | dict[str, Any]) -> SearchRequest:
    """Validate caller input, converting pydantic errors into ``ValidationError``."""
    if isinstance(payload, SearchRequest):
        return payload
    try:
        return SearchRequest.model_validate(payload)
    except PydanticValidationError as exc:
        errors = [
            {"loc": list(err.get("loc", ())), "msg": err.get("msg", "")}
            for err in exc.errors()
        ]
        raise ValidationError(f"invalid search request: {errors}", errors) from exc


# --- Responses ---


class SpeakerOut(_CamelModel):
    name: str
    title: str | None = None
    company: str | None = None


class EventOut(_CamelModel):
    url: str
    title: str
    description: str = ""
    starts_at: date | None = None
    city: str | None = None
    country: str | None = None
    venue: str | None = None
    speakers: list[SpeakerOut] = Field(default_factory=list)
    sponsors: list[str] = Field(default_factory=list)
    confidence: float = 0.0
    source: str = "firecrawl"
    quality_score: float | None = None
    date_window_status: str | None = None

    @classmethod
    def from_event(cls, event: ExtractedEvent) -> "EventOut":
        return cls.model_validate(event.to_dict())


class PipelineMetadata(_CamelModel):
    total_candidates: int = 0
    prioritized_candidates: int = 0
    extracted_candidates: int = 0
    total_duration_ms: int = 0
    average_confidence: float = 0.0
    source_breakdown: dict[str, int] = Field(default_factory=dict)
    providers_used: list[str] = Field(default_factory=list)
    cached: bool = False
    expanded: bool = False
    provider: str = "live"
    success: bool = True
    partial: bool = False


class PipelineOutput(_CamelModel):
    events: list[EventOut] = Field(default_factory=list)
    metadata: PipelineMetadata = Field(default_factory=PipelineMetadata)
