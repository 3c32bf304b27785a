"""Shared utility functions used across Pitch Review modules."""
from __future__ import annotations

import json
import re
from datetime import UTC, datetime
from typing import Any

from pitchreview.errors import ParseError

_MISSING = object()

_FENCE_RE = re.compile(r"```(?:json|JSON)?\s*(.*?)```", re.DOTALL)
_PUNCT_RE = re.compile(r"[^\w\s]")
_SPACE_RE = re.compile(r"\s+")


def json_parse(value: str | None, default: Any = _MISSING) -> Any:
    """Safely parse a JSON string, returning *default* on failure.

    If no default is given, returns ``{}`` on parse error.
    """
    try:
        return json.loads(value or "")
    except (json.JSONDecodeError, TypeError):
        return {} if default is _MISSING else default


def _balanced_object_end(text: str, start: int) -> int | None:
    """Index just past the ``}`` closing the object opened at *start*."""
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
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
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i + 1
    return None


def _first_object(text: str) -> dict[str, Any] | None:
    pos = text.find("{")
    while pos != -1:
        end = _balanced_object_end(text, pos)
        if end is not None:
            try:
                value = json.loads(text[pos:end])
            except json.JSONDecodeError:
                value = None
            if isinstance(value, dict):
                return value
        pos = text.find("{", pos + 1)
    return None


def extract_json(text: str | None) -> dict[str, Any]:
    """Extract the JSON object embedded in a model reply.

    Fenced code blocks win; otherwise the first balanced ``{...}`` that decodes
    to an object is returned. Raises :class:`ParseError` holding the raw text
    when nothing usable is found.
    """
    raw = text or ""
    for block in _FENCE_RE.findall(raw):
        found = _first_object(block)
        if found is not None:
            return found
    found = _first_object(raw)
    if found is None:
        raise ParseError("No valid JSON object in model reply", raw_text=raw)
    return found


def bullet_join(value: Any) -> str:
    """Render feedback that may arrive as a list of points."""
    if value is None:
        return ""
    if isinstance(value, (list, tuple)):
        points = [str(v).strip() for v in value if str(v).strip()]
        return "\n".join(f"• {p}" for p in points)
    return str(value).strip()


def normalize_name(name: str | None) -> str:
    """Identity key for company names: case-folded, no punctuation.

    Names made only of symbols keep them, so distinct names never share a key.
    """
    folded = _SPACE_RE.sub(" ", (name or "").casefold()).strip()
    cleaned = _SPACE_RE.sub(" ", _PUNCT_RE.sub(" ", folded)).strip()
    return cleaned or folded


def utcnow() -> datetime:
    """Naive UTC timestamp, the form every DateTime column stores."""
    return datetime.now(UTC).replace(tzinfo=None)
