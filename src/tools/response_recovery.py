"""
Recovery of malformed tool output.

Tools are expected to return JSON. When one returns a string that does not
parse, recovery tries, in order: stripping control characters, extracting the
outermost ``{...}`` span, and finally wrapping a truncated preview in a safe
error envelope. The result is always valid JSON text.
"""

from __future__ import annotations

import json

from typing import Any

from core.constants import RAW_OUTPUT_PREVIEW_LENGTH
from tools.errors import ToolResponseParseError
from utils.json_utils import extract_json_object, json_compact, strip_control_characters
from utils.logger import logger

TRUNCATION_SUFFIX = "...[truncated for safety]"


def _is_json(text: str) -> bool:
    try:
        json.loads(text)
    except ValueError:
        return False
    return True


def recover_tool_output(tool_name: str, output: str) -> str:
    """Return output unchanged when it is valid JSON, otherwise a recovered or enveloped JSON string."""
    try:
        json.loads(output)
        return output
    except ValueError as e:
        parse_error = str(e)

    logger.warning(f"Tool {tool_name} returned malformed JSON, attempting recovery: {parse_error}")

    cleaned = strip_control_characters(output)
    if _is_json(cleaned):
        logger.info(f"Recovered {tool_name} output by removing control characters")
        return cleaned

    embedded = extract_json_object(cleaned)
    if embedded is not None and _is_json(embedded):
        logger.info(f"Recovered {tool_name} output by extracting embedded JSON object")
        return embedded

    preview = output[:RAW_OUTPUT_PREVIEW_LENGTH]
    if len(output) > RAW_OUTPUT_PREVIEW_LENGTH:
        preview += TRUNCATION_SUFFIX

    logger.error(f"Could not recover {tool_name} output ({len(output):,} chars)")
    return json_compact(ToolResponseParseError(tool_name, parse_error, preview).to_result())


def serialize_tool_output(tool_name: str, output: Any) -> str:
    """Normalize whatever a tool returned into JSON text."""
    if isinstance(output, str):
        return recover_tool_output(tool_name, output)
    if isinstance(output, bytes):
        return recover_tool_output(tool_name, output.decode("utf-8", errors="replace"))
    return json_compact(output)


__all__ = ["TRUNCATION_SUFFIX", "recover_tool_output", "serialize_tool_output"]
