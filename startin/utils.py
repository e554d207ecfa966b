"""Shared utility functions used across StartIn modules."""
from __future__ import annotations

import json
from collections.abc import Iterable
from typing import Any

_MISSING = object()


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def parse_tags(value: str | None) -> list[str]:
    tags = json_parse(value, [])
    if not isinstance(tags, list):
        return []
    return [str(t) for t in tags if t]


def dump_tags(tags: Iterable[str] | None) -> str:
    """Serialize tags, dropping blanks and duplicates but keeping first-seen order."""
    seen: dict[str, None] = {}
    for tag in tags or ():
        tag = tag.strip()
        if tag:
            seen.setdefault(tag, None)
    return json.dumps(list(seen))


def split_csv(value: str | None) -> list[str]:
    """Split a comma-separated query parameter into trimmed, non-empty parts."""
    if not value:
        return []
    return [part.strip() for part in value.split(",") if part.strip()]
