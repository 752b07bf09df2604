"""Quality gate: score extracted events against the window and expand it when thin."""

from __future__ import annotations

from datetime import date, timedelta

from loguru import logger

from eventscout.config import Settings, settings
from eventscout.data.countries import country_matches
from eventscout.models.interfaces import DateWindowStatus, ExtractedEvent, QualityVerdict, Window
from eventscout.models.schemas import SearchRequest

DATE_IN_WINDOW_WEIGHT = 0.35
DATE_WITHIN_MONTH_WEIGHT = 0.2
LOCATION_WEIGHT = 0.2
SPEAKERS_WEIGHT = 0.25
COUNTRY_WEIGHT = 0.2
WITHIN_MONTH_DAYS = 30

SOLID_STATUSES = ("in-window", "within-month")


def date_window_status(starts_at: date | None, window: Window | None) -> DateWindowStatus:
    if starts_at is None:
        return "no-date"
    if window is None:
        return "in-window"
    if window.start <= starts_at <= window.end:
        return "in-window"
    slack = timedelta(days=WITHIN_MONTH_DAYS)
    if window.start - slack <= starts_at <= window.end + slack:
        return "within-month"
    return "out-of-window"


def _named_speakers(event: ExtractedEvent) -> int:
    return sum(1 for s in event.speakers if (s.name or "").strip())


def assess(
    event: ExtractedEvent,
    window: Window | None,
    country: str,
    config: Settings | None = None,
) -> QualityVerdict:
    """Composite quality for one event plus the signals it is missing."""
    config = config or settings
    status = date_window_status(event.starts_at, window)
    quality = 0.0
    missing: list[str] = []

    if status == "in-window":
        quality += DATE_IN_WINDOW_WEIGHT
    elif status == "within-month":
        quality += DATE_WITHIN_MONTH_WEIGHT
        missing.append("date outside window (within a month)")
    elif status == "out-of-window":
        missing.append("date outside window")
    else:
        missing.append("date")

    if (event.city or "").strip() or (event.venue or "").strip():
        quality += LOCATION_WEIGHT
    else:
        missing.append("city/venue")

    speakers = _named_speakers(event)
    if speakers >= config.quality_min_speakers:
        quality += SPEAKERS_WEIGHT
    else:
        missing.append(f"speakers ({speakers}/{config.quality_min_speakers})")

    if country == "ALL" or country_matches(event.country, country) or country_matches(event.city, country):
        quality += COUNTRY_WEIGHT
    else:
        missing.append(f"country {country}")

    quality = round(min(quality, 1.0), 4)
    ok = status in SOLID_STATUSES and quality >= config.quality_min_score and speakers >= 1
    return QualityVerdict(quality=quality, ok=ok, date_window_status=status, missing=missing)


def score_and_filter(
    events: list[ExtractedEvent],
    window: Window | None,
    country: str = "ALL",
    config: Settings | None = None,
) -> tuple[list[ExtractedEvent], list[ExtractedEvent]]:
    """Attach quality fields and split out the solid hits.

    Returns ``(solid_hits, all_scored)``. Rejected events are logged with the
    signals they lack.
    """
    solid: list[ExtractedEvent] = []
    for event in events:
        verdict = assess(event, window, country, config)
        event.quality_score = verdict.quality
        event.date_window_status = verdict.date_window_status
        if verdict.ok:
            solid.append(event)
        else:
            logger.info(
                f"Quality gate rejected {event.url} (quality {verdict.quality:.2f}): "
                f"missing {', '.join(verdict.missing) or 'nothing'}"
            )
    return solid, list(events)


def expand_request(request: SearchRequest, days: int | None = None) -> SearchRequest | None:
    """New request with ``date_to`` pushed out. None when there is no explicit window."""
    if not request.has_window:
        return None
    days = settings.expand_days if days is None else days
    return request.model_copy(update={"date_to": request.date_to + timedelta(days=days)})
