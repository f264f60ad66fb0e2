"""relay request/response models.

ConvergeRequest is what a caller sends to the invocation boundary;
ConvergeResponse is what it always gets back, success or not.
"""

from __future__ import annotations

import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, Optional

from convergence.core.errors import InputError, ProviderNotFoundError
from convergence.models import ConvergenceResult
from relay.config import RequestLimits


class ProviderType(str, Enum):
    """Hosted generation services a role can be bound to."""

    OPENAI = "openai"
    ANTHROPIC = "anthropic"
    GOOGLE = "google"

    @classmethod
    def parse(cls, value: Any) -> ProviderType:
        try:
            return cls(value)
        except ValueError:
            valid = [p.value for p in cls]
            raise ProviderNotFoundError(f"Provider not found: '{value}'. Valid: {valid}") from None


# JSON key -> dataclass field
_REQUEST_KEYS = {
    "idea": "idea",
    "context": "context",
    "templateId": "template_id",
    "writerProvider": "writer_provider",
    "collaboratorProvider": "collaborator_provider",
    "writerModel": "writer_model",
    "collaboratorModel": "collaborator_model",
    "maxRounds": "max_rounds",
    "scoreThreshold": "score_threshold",
    "showLog": "show_log",
}

_REQUIRED_FIELDS = (
    "idea",
    "template_id",
    "writer_provider",
    "collaborator_provider",
    "writer_model",
    "collaborator_model",
)


@dataclass(frozen=True)
class ConvergeRequest:
    """One convergence request. Overrides left as None use template defaults."""

    idea: str
    template_id: str
    writer_provider: ProviderType
    collaborator_provider: ProviderType
    writer_model: str
    collaborator_model: str
    context: Optional[str] = None
    max_rounds: Optional[int] = None
    score_threshold: Optional[float] = None
    show_log: bool = False

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> ConvergeRequest:
        """Build from API-style JSON (camelCase keys).

        Raises:
            InputError: Missing required key, unknown key, or bad provider.
        """
        if not isinstance(data, dict):
            raise InputError(f"Expected JSON object, got {type(data).__name__}")
        unknown = set(data) - set(_REQUEST_KEYS)
        if unknown:
            raise InputError(f"Unknown request fields: {sorted(unknown)}")
        kwargs = {_REQUEST_KEYS[k]: v for k, v in data.items()}
        missing = [name for name in _REQUIRED_FIELDS if name not in kwargs]
        if missing:
            raise InputError(f"Missing request fields: {missing}")
        kwargs["writer_provider"] = ProviderType.parse(kwargs["writer_provider"])
        kwargs["collaborator_provider"] = ProviderType.parse(kwargs["collaborator_provider"])
        return cls(**kwargs)

    @classmethod
    def from_json(cls, raw: str) -> ConvergeRequest:
        try:
            data = json.loads(raw)
        except json.JSONDecodeError as e:
            raise InputError(f"Request body is not valid JSON: {e}") from e
        return cls.from_dict(data)

    def validate(self, limits: RequestLimits = RequestLimits()) -> None:
        """Check field types and override bounds.

        Raises:
            InputError: Describing every problem found.
        """
        problems: list[str] = []

        for name in ("idea", "template_id"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value.strip():
                problems.append(f"{name} must be non-empty text")
        for name in ("writer_model", "collaborator_model"):
            if not isinstance(getattr(self, name), str):
                problems.append(f"{name} must be text")
        if self.context is not None and not isinstance(self.context, str):
            problems.append("context must be text")

        if self.max_rounds is not None:
            if isinstance(self.max_rounds, bool) or not isinstance(self.max_rounds, int):
                problems.append("max_rounds must be an integer")
            elif not limits.max_rounds_min <= self.max_rounds <= limits.max_rounds_max:
                problems.append(
                    f"max_rounds must be between {limits.max_rounds_min} "
                    f"and {limits.max_rounds_max}"
                )

        if self.score_threshold is not None:
            if isinstance(self.score_threshold, bool) or not isinstance(
                self.score_threshold, (int, float)
            ):
                problems.append("score_threshold must be a number")
            elif not limits.score_threshold_min <= self.score_threshold <= limits.score_threshold_max:
                problems.append(
                    f"score_threshold must be between {limits.score_threshold_min} "
                    f"and {limits.score_threshold_max}"
                )

        if not isinstance(self.show_log, bool):
            problems.append("show_log must be a boolean")

        if problems:
            raise InputError("Invalid request: " + "; ".join(problems))


@dataclass(frozen=True)
class ConvergeResponse:
    """What the invocation boundary returns. Never an exception."""

    success: bool
    request_id: str
    data: Optional[ConvergenceResult] = None
    error: Optional[str] = None

    def to_dict(self) -> dict[str, Any]:
        out: dict[str, Any] = {"success": self.success, "requestId": self.request_id}
        if self.data is not None:
            out["data"] = self.data.to_dict()
        if self.error is not None:
            out["error"] = self.error
        return out
