"""Placeholder events returned when no provider can be used."""
from __future__ import annotations

from datetime import date, timedelta

from eventscout.models.interfaces import ExtractedEvent, Speaker
from eventscout.models.schemas import SearchRequest

DEMO_SOURCE = "demo"

_DEMO_ROWS = (
    ("Compliance & Risk Summit", "Berlin", "DE", "Estrel Congress Center"),
    ("Legal Tech Forum", "Frankfurt", "DE", "Kap Europa"),
    ("Data Protection Conference", "München", "DE", "ICM Messe München"),
)


def demo_events(request: SearchRequest, *, today: date | None = None) -> list[ExtractedEvent]:
    """Three clearly labelled placeholder events inside the requested window."""
    start = request.date_from or today or date.today()
    country = request.country if request.country != "ALL" else None
    events: list[ExtractedEvent] = []
    for idx, (title, city, default_country, venue) in enumerate(_DEMO_ROWS):
        events.append(
            ExtractedEvent(
                url=f"https://example.com/demo/event-{idx + 1}",
                title=f"[Demo] {title}",
                description="Placeholder event. Configure a search provider to see real results.",
                starts_at=start + timedelta(days=7 * (idx + 1)),
                city=city,
                country=country or default_country,
                venue=venue,
                speakers=[
                    Speaker(name="Demo Speaker", title="Chief Compliance Officer", company="Example AG"),
                    Speaker(name="Sample Presenter", title="General Counsel", company="Example GmbH"),
                ],
                sponsors=[],
                confidence=0.0,
                source=DEMO_SOURCE,
            )
        )
    return events
