"""Event metadata and speaker extraction from crawl output.

The model is asked first when configured. Without it (or for fields it
leaves empty) the page is parsed deterministically: schema.org JSON-LD,
OpenGraph tags, then plain-text patterns in the markdown.
"""
from __future__ import annotations

import json
import re
from datetime import date
from typing import Any

from bs4 import BeautifulSoup

from eventscout.data.countries import COUNTRIES, normalize_country
from eventscout.llm_client import complete, llm_available
from eventscout.models.interfaces import CrawlResult, EventDetails, Speaker
from eventscout.services.llm_json import parse_json_array, parse_json_object

PROMPT_CONTENT_CHARS = 12000
MAX_SPEAKERS = 40

MONTHS = {
    "january": 1, "jan": 1, "januar": 1, "janvier": 1,
    "february": 2, "feb": 2, "februar": 2, "février": 2,
    "march": 3, "mar": 3, "märz": 3, "maerz": 3, "mars": 3,
    "april": 4, "apr": 4, "avril": 4,
    "may": 5, "mai": 5,
    "june": 6, "jun": 6, "juni": 6, "juin": 6,
    "july": 7, "jul": 7, "juli": 7, "juillet": 7,
    "august": 8, "aug": 8, "août": 8,
    "september": 9, "sep": 9, "sept": 9, "septembre": 9,
    "october": 10, "oct": 10, "oktober": 10, "okt": 10, "octobre": 10,
    "november": 11, "nov": 11, "novembre": 11,
    "december": 12, "dec": 12, "dezember": 12, "dez": 12, "décembre": 12,
}

ISO_DATE_RE = re.compile(r"\b(20\d{2})-(\d{1,2})-(\d{1,2})")
DOTTED_DATE_RE = re.compile(r"\b(\d{1,2})\.(\d{1,2})\.(20\d{2})\b")
DAY_MONTH_RE = re.compile(r"\b(\d{1,2})\.?\s+([A-Za-zäéû]+)\.?\s+(20\d{2})\b")
MONTH_DAY_RE = re.compile(r"\b([A-Za-zäéû]+)\.?\s+(\d{1,2})(?:st|nd|rd|th)?(?:\s*[-–]\s*\d{1,2})?,?\s+(20\d{2})\b")

SPEAKER_HEADINGS = ("speaker", "referent", "sprecher", "faculty", "presenter", "keynote", "intervenant")
NAME_RE = re.compile(r"^[A-ZÄÖÜ][\w'’.-]+(?:\s+(?:von|van|de|der|dr\.?)?\s*[A-ZÄÖÜ][\w'’.-]+){1,3}$")

EVENT_TYPES = {
    "Event", "BusinessEvent", "EducationEvent", "ExhibitionEvent",
    "SocialEvent", "Festival", "CourseInstance", "Conference",
}

METADATA_SYSTEM = (
    "You extract event metadata from web pages. Respond with one JSON object "
    'with keys "title", "description", "starts_at" (YYYY-MM-DD or null), '
    '"city", "country" (ISO-2), "venue" and "sponsors" (list of strings). '
    "Use null for unknown values. Do not invent data."
)

SPEAKERS_SYSTEM = (
    "You extract conference speakers from web pages. Respond with a JSON array "
    'of objects with keys "name", "title" and "company". Only include real '
    "people listed as speakers, panelists or moderators. Return [] if none."
)


# --- Dates ---


def _safe_date(year: int, month: int, day: int) -> date | None:
    try:
        return date(year, month, day)
    except ValueError:
        return None


def parse_date(value: Any) -> date | None:
    """Parse the first recognizable date in ``value``."""
    if isinstance(value, date):
        return value
    if not value:
        return None
    text = str(value)

    match = ISO_DATE_RE.search(text)
    if match:
        return _safe_date(int(match.group(1)), int(match.group(2)), int(match.group(3)))

    match = DOTTED_DATE_RE.search(text)
    if match:
        return _safe_date(int(match.group(3)), int(match.group(2)), int(match.group(1)))

    match = DAY_MONTH_RE.search(text)
    if match and match.group(2).lower() in MONTHS:
        return _safe_date(int(match.group(3)), MONTHS[match.group(2).lower()], int(match.group(1)))

    match = MONTH_DAY_RE.search(text)
    if match and match.group(1).lower() in MONTHS:
        return _safe_date(int(match.group(3)), MONTHS[match.group(1).lower()], int(match.group(2)))

    return None


# --- JSON-LD ---


def _walk_json_ld(node: Any) -> list[dict[str, Any]]:
    found: list[dict[str, Any]] = []
    if isinstance(node, list):
        for item in node:
            found.extend(_walk_json_ld(item))
    elif isinstance(node, dict):
        types = node.get("@type")
        types = types if isinstance(types, list) else [types]
        if any(t in EVENT_TYPES for t in types if isinstance(t, str)):
            found.append(node)
        if "@graph" in node:
            found.extend(_walk_json_ld(node["@graph"]))
    return found


def json_ld_events(html: str) -> list[dict[str, Any]]:
    if not html:
        return []
    soup = BeautifulSoup(html, "html.parser")
    events: list[dict[str, Any]] = []
    for script in soup.find_all("script", attrs={"type": "application/ld+json"}):
        raw = script.string or script.get_text() or ""
        try:
            payload = json.loads(raw)
        except ValueError:
            continue
        events.extend(_walk_json_ld(payload))
    return events


def _text(value: Any) -> str | None:
    if isinstance(value, str):
        value = " ".join(value.split())
        return value or None
    if isinstance(value, dict):
        return _text(value.get("name"))
    return None


def _details_from_json_ld(node: dict[str, Any]) -> EventDetails:
    location = node.get("location")
    if isinstance(location, list):
        location = location[0] if location else None
    venue = city = country = None
    if isinstance(location, dict):
        venue = _text(location.get("name"))
        address = location.get("address")
        if isinstance(address, dict):
            city = _text(address.get("addressLocality"))
            country = _text(address.get("addressCountry"))
        elif isinstance(address, str):
            city = _city_from_text(address)
    sponsors_raw = node.get("sponsor") or node.get("organizer") or []
    if not isinstance(sponsors_raw, list):
        sponsors_raw = [sponsors_raw]
    return EventDetails(
        title=_text(node.get("name")) or "",
        description=_text(node.get("description")) or "",
        starts_at=parse_date(node.get("startDate")),
        city=city,
        country=normalize_country(country) if country else None,
        venue=venue,
        sponsors=[s for s in (_text(item) for item in sponsors_raw) if s],
    )


def _speakers_from_json_ld(node: dict[str, Any]) -> list[Speaker]:
    performers = node.get("performer") or []
    if not isinstance(performers, list):
        performers = [performers]
    speakers: list[Speaker] = []
    for performer in performers:
        name = _text(performer)
        if not name:
            continue
        company = None
        title = None
        if isinstance(performer, dict):
            title = _text(performer.get("jobTitle"))
            company = _text(performer.get("worksFor")) or _text(performer.get("affiliation"))
        speakers.append(Speaker(name=name, title=title, company=company))
    return speakers


# --- Plain-text heuristics ---


def _city_from_text(text: str) -> str | None:
    lowered = text.lower()
    for context in COUNTRIES.values():
        for city in context.cities:
            if re.search(rf"\b{re.escape(city.lower())}\b", lowered):
                return city
    return None


def _country_for_city(city: str | None) -> str | None:
    if not city:
        return None
    for iso2, context in COUNTRIES.items():
        if city in context.cities:
            return iso2
    return None


def _parse_speaker_line(line: str) -> Speaker | None:
    line = re.sub(r"^[\s*#>\-•|]+", "", line).replace("**", "").strip()
    if not line or len(line) > 160:
        return None
    parts = [p.strip() for p in re.split(r"\s+[-–|]\s+|,\s*", line) if p.strip()]
    if not parts or not NAME_RE.match(parts[0]):
        return None
    title = parts[1] if len(parts) > 1 else None
    company = parts[2] if len(parts) > 2 else None
    return Speaker(name=parts[0], title=title, company=company)


def speakers_from_markdown(markdown: str) -> list[Speaker]:
    speakers: list[Speaker] = []
    # Heading level of the current speaker section, None outside one.
    section_level: int | None = None
    for raw_line in markdown.splitlines():
        line = raw_line.strip()
        if not line:
            continue
        is_speaker_heading = any(h in line.lower() for h in SPEAKER_HEADINGS)
        level = len(line) - len(line.lstrip("#"))
        if level:
            if section_level is None or level <= section_level:
                section_level = level if is_speaker_heading else None
                continue
        elif len(line) < 40 and line.endswith(":"):
            section_level = 6 if is_speaker_heading else None
            continue
        if section_level is None:
            continue
        speaker = _parse_speaker_line(line)
        if speaker is not None:
            speakers.append(speaker)
        if len(speakers) >= MAX_SPEAKERS:
            break
    return speakers


def heuristic_details(crawl: CrawlResult) -> EventDetails:
    for node in json_ld_events(crawl.html):
        details = _details_from_json_ld(node)
        if details.title:
            details.description = details.description or crawl.description
            return details

    text = crawl.markdown or ""
    city = _city_from_text(f"{crawl.title} {crawl.description} {text[:4000]}")
    return EventDetails(
        title=crawl.title,
        description=crawl.description,
        starts_at=parse_date(f"{crawl.title} {crawl.description}") or parse_date(text[:6000]),
        city=city,
        country=_country_for_city(city),
    )


def heuristic_speakers(crawl: CrawlResult) -> list[Speaker]:
    for node in json_ld_events(crawl.html):
        speakers = _speakers_from_json_ld(node)
        if speakers:
            return speakers
    return speakers_from_markdown(crawl.markdown or "")


def clean_speakers(speakers: list[Speaker]) -> list[Speaker]:
    """Drop nameless entries and duplicates by name."""
    seen: set[str] = set()
    cleaned: list[Speaker] = []
    for speaker in speakers:
        name = " ".join((speaker.name or "").split())
        if not name or name.lower() in seen:
            continue
        seen.add(name.lower())
        cleaned.append(Speaker(name=name, title=speaker.title or None, company=speaker.company or None))
    return cleaned


# --- Entry points ---


def _page_prompt(crawl: CrawlResult) -> str:
    return (
        f"URL: {crawl.final_url or crawl.url}\n"
        f"Page title: {crawl.title}\n\n"
        f"{crawl.markdown[:PROMPT_CONTENT_CHARS]}"
    )


async def extract_metadata(crawl: CrawlResult) -> EventDetails:
    """Raises ProviderError or ParseError when the model path fails."""
    fallback = heuristic_details(crawl)
    if not llm_available():
        return fallback

    text = await complete(system=METADATA_SYSTEM, prompt=_page_prompt(crawl), caller="extract_metadata")
    payload = parse_json_object(text)
    sponsors = payload.get("sponsors") or []
    city = _text(payload.get("city"))
    country = _text(payload.get("country"))
    return EventDetails(
        title=_text(payload.get("title")) or fallback.title,
        description=_text(payload.get("description")) or fallback.description,
        starts_at=parse_date(payload.get("starts_at")) or fallback.starts_at,
        city=city or fallback.city,
        country=normalize_country(country) if country else fallback.country,
        venue=_text(payload.get("venue")) or fallback.venue,
        sponsors=[str(s) for s in sponsors if s] if isinstance(sponsors, list) else fallback.sponsors,
    )


async def extract_speakers(crawl: CrawlResult) -> list[Speaker]:
    """Raises ProviderError when the model call fails."""
    if not llm_available():
        return clean_speakers(heuristic_speakers(crawl))

    text = await complete(system=SPEAKERS_SYSTEM, prompt=_page_prompt(crawl), caller="extract_speakers")
    result = parse_json_array(text)
    if not result.ok:
        return clean_speakers(heuristic_speakers(crawl))
    speakers = [
        Speaker(
            name=str(item.get("name") or ""),
            title=_text(item.get("title")),
            company=_text(item.get("company")),
        )
        for item in result.items
    ]
    return clean_speakers(speakers)[:MAX_SPEAKERS]
