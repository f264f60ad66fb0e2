"""Structured response validator.

Forces free-form generated text into a validated shape. Each attempt is
a fresh generation: malformed output is a generation-quality problem, so
the model is asked again instead of re-parsing the same text.

A "schema" is any callable that takes decoded JSON and returns a typed
value, raising ValueError, KeyError or TypeError when the shape is wrong
(see convergence.feedback.parse_feedback).
"""

from __future__ import annotations

import json
import logging
from typing import Any, Awaitable, Callable, Optional, TypeVar

from convergence.core.errors import SchemaValidationError
from convergence.core.parsing import json_candidates

logger = logging.getLogger(__name__)

T = TypeVar("T")

SchemaParser = Callable[[Any], T]

_SHAPE_ERRORS = (json.JSONDecodeError, ValueError, KeyError, TypeError)


def parse_structured(raw_response: str, parse: SchemaParser[T]) -> T:
    """Parse one response: cleaned text first, then the extracted span.

    Raises the last parse/validation error when no candidate fits.
    """
    last_error: Optional[Exception] = None
    for candidate in json_candidates(raw_response):
        try:
            return parse(json.loads(candidate))
        except _SHAPE_ERRORS as e:
            last_error = e
    if last_error is None:
        raise ValueError("Empty response")
    raise last_error


async def produce_structured(
    generate_fn: Callable[[], Awaitable[str]],
    parse: SchemaParser[T],
    max_retries: int = 1,
) -> T:
    """Generate until the response validates, at most max_retries + 1 times.

    Flow per attempt:
    1. Call generate_fn() for raw text
    2. Strip one fenced code block (```json preferred)
    3. Parse + validate the cleaned text
    4. On failure, parse + validate the outermost {...} / [...] slice of
       the cleaned text, then of the raw response
    5. On failure, generate again if attempts remain

    Errors raised by generate_fn itself (LLMError etc.) propagate
    immediately; only shape problems are retried.

    Raises:
        SchemaValidationError: If every attempt fails to validate.
    """
    last_error: Optional[Exception] = None
    attempts = max_retries + 1

    for attempt in range(1, attempts + 1):
        raw_response = await generate_fn()
        try:
            return parse_structured(raw_response, parse)
        except _SHAPE_ERRORS as e:
            last_error = e
            if attempt < attempts:
                logger.warning(
                    "Structured response invalid (attempt %d/%d), regenerating: %s",
                    attempt, attempts, e,
                )

    raise SchemaValidationError(
        f"Failed to generate valid JSON after {max_retries} retries: {last_error}"
    )
