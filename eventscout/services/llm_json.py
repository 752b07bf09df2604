"""Tolerant parsing of JSON produced by a language model.

Model output is often fenced, commented, truncated mid-array or missing
quotes around keys. Parsing walks a fixed ladder and reports which rung
succeeded so callers can fall back on ``FAILED``.
"""
from __future__ import annotations

import json
import re
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from eventscout.errors import ParseError

ARRAY_RE = re.compile(r"\[.*\]", re.DOTALL)
WRAPPER_KEYS = ("results", "items", "urls", "data", "events", "speakers")


class ParseStatus(str, Enum):
    PARSED = "parsed"
    PARTIALLY_REPAIRED = "partially_repaired"
    FAILED = "failed"


@dataclass(slots=True)
class JsonParseResult:
    status: ParseStatus
    items: list[dict[str, Any]] = field(default_factory=list)
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status is not ParseStatus.FAILED


def strip_fences(text: str) -> str:
    text = text.strip()
    if text.startswith("```"):
        parts = text.split("```")
        if len(parts) >= 2:
            text = parts[1]
        if text.lower().startswith("json"):
            text = text[4:]
        text = text.strip()
    return text


def repair_json(text: str) -> str:
    """Fix the usual model mistakes: comments, trailing commas, bare keys."""
    text = strip_fences(text)
    text = re.sub(r"/\*.*?\*/", "", text, flags=re.DOTALL)
    text = re.sub(r"(?m)^\s*//.*$", "", text)
    text = re.sub(r",\s*([}\]])", r"\1", text)
    text = re.sub(r"([{,]\s*)([A-Za-z_][A-Za-z0-9_]*)\s*:", r'\1"\2":', text)
    return text.strip()


def _as_items(parsed: Any) -> list[dict[str, Any]] | None:
    if isinstance(parsed, list):
        return [item for item in parsed if isinstance(item, dict)]
    if isinstance(parsed, dict):
        for key in WRAPPER_KEYS:
            value = parsed.get(key)
            if isinstance(value, list):
                return [item for item in value if isinstance(item, dict)]
        return [parsed]
    return None


def _loads(text: str) -> list[dict[str, Any]] | None:
    try:
        return _as_items(json.loads(text))
    except (json.JSONDecodeError, ValueError):
        return None


def _balanced_objects(text: str) -> list[str]:
    """Return every complete top-level ``{...}`` block inside ``text``."""
    objects: list[str] = []
    depth = 0
    start = -1
    in_string = False
    escaped = False
    for idx, ch in enumerate(text):
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"':
            in_string = True
        elif ch == "{":
            if depth == 0:
                start = idx
            depth += 1
        elif ch == "}" and depth > 0:
            depth -= 1
            if depth == 0 and start >= 0:
                objects.append(text[start : idx + 1])
                start = -1
    return objects


def parse_json_array(raw_text: str) -> JsonParseResult:
    """Parse a list of objects: strict, array regex, repair, per-object salvage."""
    if not raw_text or not raw_text.strip():
        return JsonParseResult(ParseStatus.FAILED, error="empty response")

    text = strip_fences(raw_text)

    items = _loads(text)
    if items is not None:
        return JsonParseResult(ParseStatus.PARSED, items)

    match = ARRAY_RE.search(text)
    if match:
        items = _loads(match.group(0))
        if items is not None:
            return JsonParseResult(ParseStatus.PARSED, items)

    repaired = repair_json(match.group(0) if match else text)
    items = _loads(repaired)
    if items is not None:
        return JsonParseResult(ParseStatus.PARTIALLY_REPAIRED, items)

    salvaged: list[dict[str, Any]] = []
    for block in _balanced_objects(text):
        parsed = _loads(block) or _loads(repair_json(block))
        if parsed:
            salvaged.extend(parsed)
    if salvaged:
        return JsonParseResult(ParseStatus.PARTIALLY_REPAIRED, salvaged)

    return JsonParseResult(ParseStatus.FAILED, error="no parseable JSON objects")


def parse_json_object(raw_text: str) -> dict[str, Any]:
    text = strip_fences(raw_text or "")
    start = text.find("{")
    end = text.rfind("}")
    if start < 0 or end <= start:
        raise ParseError("object not found")
    candidate = text[start : end + 1]
    for attempt in (candidate, repair_json(candidate)):
        try:
            parsed = json.loads(attempt)
        except (json.JSONDecodeError, ValueError):
            continue
        if isinstance(parsed, dict):
            return parsed
        raise ParseError("not an object")
    raise ParseError("malformed JSON object")
