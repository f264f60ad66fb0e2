"""Response parsing utilities for extracting JSON from generated text.

Used by the structured-response validator.
Pure string manipulation, no external dependencies.
"""

from __future__ import annotations

import re
from typing import Optional

# A JSON-tagged fence wins over any other fence. An unterminated fence
# runs to the end of the text.
_JSON_FENCE = re.compile(r"```json\s*(.*?)(?:```|\Z)", re.DOTALL | re.IGNORECASE)
_ANY_FENCE = re.compile(r"```[\w-]*\s*(.*?)(?:```|\Z)", re.DOTALL)


def strip_code_fence(raw_response: str) -> str:
    """Remove a single pair of fenced code-block markers, if present.

    Handles:
    - ```json ... ``` (preferred when several fences exist)
    - ``` ... ``` or ```<lang> ... ```
    - Text with no fences (returned stripped)
    """
    for pattern in (_JSON_FENCE, _ANY_FENCE):
        match = pattern.search(raw_response)
        if match:
            return match.group(1).strip()
    return raw_response.strip()


def extract_json_span(text: str) -> Optional[str]:
    """Slice from the first opening brace/bracket to the last closing one.

    Returns None when no plausible span exists. The slice is not
    guaranteed to be valid JSON; callers still have to parse it.
    """
    openers = [i for i in (text.find("{"), text.find("[")) if i != -1]
    if not openers:
        return None
    start = min(openers)
    end = max(text.rfind("}"), text.rfind("]"))
    if end <= start:
        return None
    return text[start : end + 1]


def json_candidates(raw_response: str) -> list[str]:
    """Texts worth trying to parse, in order.

    Cleaned text, then its span, then the span of the raw response. The
    last one covers payloads whose string values contain a code fence,
    which cuts the fence-stripped text short.
    """
    cleaned = strip_code_fence(raw_response)
    candidates = [cleaned]
    for span in (extract_json_span(cleaned), extract_json_span(raw_response)):
        if span is not None and span not in candidates:
            candidates.append(span)
    return candidates

