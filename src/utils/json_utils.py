"""Centralized JSON serialization and sanitization utilities.

A compact serializer for tool results and events, plus helpers for cleaning
control characters out of untrusted text (tool output, scraped pages) before
it is parsed or shown to a model.
"""

from __future__ import annotations

import json
import re

from collections.abc import Callable
from functools import partial
from typing import Any

# Compact JSON serialization (no spaces) with fallback to str for non-serializable types.
# Use for tool results and network transmission where size matters.
json_compact: Callable[..., str] = partial(json.dumps, separators=(",", ":"), default=str, ensure_ascii=False)

# Whitespace control characters become spaces; the rest are dropped
_WHITESPACE_CONTROL_RE = re.compile(r"[\t\n\r]")
_CONTROL_CHARS_RE = re.compile(r"[\x00-\x1f\x7f]")

# Greedy match from the first "{" to the last "}"
_EMBEDDED_OBJECT_RE = re.compile(r"\{[\s\S]*\}")


def strip_control_characters(text: str) -> str:
    """Replace tab/newline/CR with spaces and remove every other control character."""
    return _CONTROL_CHARS_RE.sub("", _WHITESPACE_CONTROL_RE.sub(" ", text))


def remove_control_characters(text: str) -> str:
    """Remove control characters but keep tabs and newlines (for human-facing previews)."""
    return re.sub(r"[\x00-\x08\x0b\x0c\x0e-\x1f\x7f]", "", text)


def extract_json_object(text: str) -> str | None:
    """Return the largest ``{...}`` span in text, or None."""
    match = _EMBEDDED_OBJECT_RE.search(text)
    return match.group(0) if match else None


def parse_json_object(text: str) -> dict[str, Any] | None:
    """Parse text as a JSON object, returning None for invalid JSON or non-objects."""
    try:
        value = json.loads(text)
    except (TypeError, ValueError):
        return None
    return value if isinstance(value, dict) else None
