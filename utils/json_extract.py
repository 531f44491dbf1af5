"""Defensive extraction of JSON payloads embedded in LLM output."""

import json
from typing import Any

_PAIRS = {"{": "}", "[": "]"}


def find_balanced(text: str, opener: str) -> str | None:
    """
    Return the first balanced ``{...}`` or ``[...]`` substring of text.

    Brackets inside JSON string literals are ignored, so prose before or after
    the payload (or a fenced code block around it) does not matter.
    """
    if opener not in _PAIRS or not text:
        return None
    closer = _PAIRS[opener]

    start = text.find(opener)
    while start != -1:
        depth = 0
        in_string = False
        escaped = False
        for idx in range(start, len(text)):
            ch = text[idx]
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
            elif ch == opener:
                depth += 1
            elif ch == closer:
                depth -= 1
                if depth == 0:
                    return text[start : idx + 1]
        # unbalanced from this opener; try the next one
        start = text.find(opener, start + 1)
    return None


def extract_json_object(text: str) -> dict[str, Any] | None:
    """Parse the first balanced JSON object in text, or None."""
    candidate = find_balanced(text, "{")
    if candidate is None:
        return None
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def extract_json_array(text: str) -> list[Any] | None:
    """Parse the first balanced JSON array in text, or None."""
    candidate = find_balanced(text, "[")
    if candidate is None:
        return None
    try:
        parsed = json.loads(candidate)
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, list) else None
