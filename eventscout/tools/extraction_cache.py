from __future__ import annotations

import json
from datetime import datetime, timedelta, timezone
from hashlib import sha256
from pathlib import Path

from eventscout.config import settings
from eventscout.models.interfaces import ExtractedEvent
from eventscout.tools.web_utils import normalize_url

CACHE_VERSION = 1


def _utc_now() -> datetime:
    return datetime.now(timezone.utc)


def _cache_key(url: str) -> str:
    material = f"v{CACHE_VERSION}|{normalize_url(url)}"
    return sha256(material.encode("utf-8")).hexdigest()


def cache_path(url: str) -> Path:
    return Path(settings.extraction_cache_dir) / f"{_cache_key(url)}.json"


def load(url: str) -> ExtractedEvent | None:
    if not settings.extraction_cache_enabled:
        return None

    path = cache_path(url)
    if not path.exists():
        return None

    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError):
        return None

    fetched_at_raw = payload.get("fetched_at")
    if not isinstance(fetched_at_raw, str):
        return None

    try:
        fetched_at = datetime.fromisoformat(fetched_at_raw)
    except ValueError:
        return None

    if fetched_at.tzinfo is None:
        fetched_at = fetched_at.replace(tzinfo=timezone.utc)

    ttl = max(int(settings.extraction_cache_ttl_hours), 0)
    if ttl == 0:
        return None

    if _utc_now() > fetched_at + timedelta(hours=ttl):
        return None

    event = payload.get("event")
    if not isinstance(event, dict) or not event.get("url"):
        return None

    try:
        return ExtractedEvent.from_dict(event)
    except (KeyError, TypeError, ValueError):
        return None


def save(url: str, event: ExtractedEvent) -> None:
    if not settings.extraction_cache_enabled:
        return

    path = cache_path(url)
    path.parent.mkdir(parents=True, exist_ok=True)

    payload = {
        "version": CACHE_VERSION,
        "url": normalize_url(url),
        "fetched_at": _utc_now().isoformat(),
        "event": event.to_dict(),
    }
    path.write_text(json.dumps(payload, ensure_ascii=True), encoding="utf-8")
