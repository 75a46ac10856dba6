"""
DocRelay Backend - AI Response JSON Parsing
============================================

What:  Optional post-processing that turns an LLM answer into a JSON value.
Why:   Clients that ask the model for JSON (`?parse_json=true`) get a parsed
       object next to the raw text, even when the model wraps it in a
       markdown fence or adds prose around it.
How:   Strip ``` / ```json fences, take the outermost {...} block, json.loads.
"""

import json
import re
from typing import Any, Optional, Tuple

_OPENING_FENCE = re.compile(r"^```(?:json)?\s*", re.IGNORECASE)
_CLOSING_FENCE = re.compile(r"\s*```$")
_OBJECT_BLOCK = re.compile(r"\{[\s\S]*\}")


def parse_json_content(content: str) -> Any:
    """
    Parse the JSON object contained in an AI answer.

    Raises:
        ValueError: content is empty or not valid JSON, with the message
            "Invalid JSON format: <reason>" in the latter case.
    """
    if not content or not isinstance(content, str):
        raise ValueError("Content is empty or not a string")

    cleaned = content.strip()
    if cleaned.startswith("```"):
        cleaned = _CLOSING_FENCE.sub("", _OPENING_FENCE.sub("", cleaned))
    cleaned = cleaned.strip()

    match = _OBJECT_BLOCK.search(cleaned)
    if match:
        cleaned = match.group(0)

    try:
        return json.loads(cleaned)
    except json.JSONDecodeError as e:
        raise ValueError(f"Invalid JSON format: {e}")


def try_parse_json_content(content: str) -> Tuple[Optional[Any], Optional[str]]:
    """Returns (parsed_content, parse_error); parse_error is None on success."""
    try:
        return parse_json_content(content), None
    except ValueError as e:
        return None, str(e)
