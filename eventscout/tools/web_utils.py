from __future__ import annotations

from typing import Callable, Iterable, TypeVar
from urllib.parse import urlsplit, urlunsplit

T = TypeVar("T")


def is_valid_url(url: str) -> bool:
    """Basic URL validation."""
    try:
        result = urlsplit(url)
        return all([result.scheme in ("http", "https"), result.netloc])
    except Exception:
        return False


def normalize_url(url: str) -> str:
    """Identity key for a URL: lower scheme/host, no query or fragment, no trailing slash."""
    parsed = urlsplit((url or "").strip())
    scheme = (parsed.scheme or "https").lower()
    netloc = parsed.netloc.lower()
    if netloc.endswith(":80") and scheme == "http":
        netloc = netloc[:-3]
    elif netloc.endswith(":443") and scheme == "https":
        netloc = netloc[:-4]
    path = parsed.path.rstrip("/")
    return urlunsplit((scheme, netloc, path, "", ""))


def extract_host(url: str) -> str:
    """Hostname without a leading ``www.``."""
    try:
        host = (urlsplit(url).hostname or "").lower()
    except Exception:
        return ""
    if host.startswith("www."):
        host = host[4:]
    return host


def host_matches(host: str, domain: str) -> bool:
    return host == domain or host.endswith("." + domain)


def dedupe_by_url(items: Iterable[T], key: Callable[[T], str]) -> list[T]:
    """Keep the first item per normalized URL, preserving order."""
    seen: set[str] = set()
    unique: list[T] = []
    for item in items:
        normalized = normalize_url(key(item))
        if normalized in seen:
            continue
        seen.add(normalized)
        unique.append(item)
    return unique
