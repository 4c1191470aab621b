"""Response parsing utilities for LLM output.

Extracts JSON objects from raw, often chatty, model responses.
"""

from __future__ import annotations

import json
import re
from typing import Any, Optional

from devflow.core.exceptions import ResponseParseError


def extract_code_blocks(text: str, language: Optional[str] = None) -> list[str]:
    """Extract fenced code blocks from LLM output.

    Args:
        text: Raw LLM response.
        language: If specified, only return blocks with this language tag.

    Returns:
        List of code block contents (without fences).
    """
    if language:
        pattern = rf"```{re.escape(language)}\s*\n(.*?)```"
    else:
        pattern = r"```(?:\w+)?\s*\n(.*?)```"

    matches = re.findall(pattern, text, re.DOTALL)
    return [m.strip() for m in matches]


def extract_json_object(text: str) -> Optional[dict[str, Any]]:
    """Find the first JSON object in a response.

    Tries, in order: a ```json fenced block, the whole response, and the
    outermost {...} span.
    """
    for block in extract_code_blocks(text, "json"):
        parsed = _loads_object(block)
        if parsed is not None:
            return parsed

    parsed = _loads_object(text.strip())
    if parsed is not None:
        return parsed

    match = re.search(r"\{.*\}", text, re.DOTALL)
    if match:
        return _loads_object(match.group(0))
    return None


def parse_json_response(text: str, source: str = "model") -> dict[str, Any]:
    """Like extract_json_object, but raises when nothing parses."""
    parsed = extract_json_object(text)
    if parsed is None:
        raise ResponseParseError(f"Failed to parse JSON from {source} response. Raw: {text[:500]}")
    return parsed


def _loads_object(text: str) -> Optional[dict[str, Any]]:
    try:
        value = json.loads(text)
    except json.JSONDecodeError:
        return None
    return value if isinstance(value, dict) else None
