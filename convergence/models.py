"""convergence data models and loop state.

Contains all dataclasses that cross module boundaries within convergence.
LoopState is the LangGraph TypedDict for the convergence loop.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Optional, TypedDict


# --- Enums ---


class StopReason(str, Enum):
    """Why the loop ended. The four canonical tags."""

    THRESHOLD_MET = "THRESHOLD_MET"
    MAX_ROUNDS = "MAX_ROUNDS"
    NO_IMPROVEMENT = "NO_IMPROVEMENT"
    ERROR_FALLBACK = "ERROR_FALLBACK"

    @classmethod
    def parse(cls, value: Any) -> Optional[StopReason]:
        """Canonical tag for value, or None if it is not one."""
        try:
            return cls(value)
        except ValueError:
            return None


class PatchOperation(str, Enum):
    REPLACE = "replace"
    ADD = "add"
    REMOVE = "remove"


class FieldType(str, Enum):
    """Input widget kinds a template asks the caller for."""

    TEXT = "text"
    TEXTAREA = "textarea"
    SELECT = "select"


# --- Template contract (read-only to the core) ---


@dataclass(frozen=True)
class FieldDefinition:
    id: str
    label: str
    type: FieldType
    required: bool
    placeholder: Optional[str] = None
    options: tuple[str, ...] = ()
    default_value: Optional[str] = None


@dataclass(frozen=True)
class SectionDefinition:
    id: str
    label: str
    description: str
    required: bool


@dataclass(frozen=True)
class RubricDimension:
    """One scoring dimension shown to the Collaborator."""

    id: str
    label: str
    description: str
    weight: float

    def to_prompt_line(self) -> str:
        return f"- {self.label} (weight {self.weight}): {self.description}"


@dataclass(frozen=True)
class ConvergencePolicy:
    """Template defaults for when to stop iterating."""

    max_rounds: int
    score_threshold: float
    require_questions_resolved: bool = False
    require_all_sections_present: bool = False


@dataclass(frozen=True)
class ArtifactTemplate:
    """Everything the loop needs to know about one kind of artifact.

    Immutable. The core reads it but never mutates it.
    """

    id: str
    name: str
    description: str
    writer_instructions: str
    collaborator_instructions: str
    rubric: tuple[RubricDimension, ...]
    convergence_policy: ConvergencePolicy
    inputs: tuple[FieldDefinition, ...] = ()
    output_schema: tuple[SectionDefinition, ...] = ()
    icon: Optional[str] = None

    def rubric_text(self) -> str:
        return "\n".join(dim.to_prompt_line() for dim in self.rubric)


# --- Round records ---


@dataclass(frozen=True)
class Patch:
    """An advisory edit suggested by the Collaborator.

    Rendered for the Writer; never applied mechanically.
    """

    path: str
    operation: PatchOperation
    content: str

    def to_prompt_context(self) -> str:
        """Format for inclusion in Writer revision prompts."""
        return f'[{self.operation.value.upper()} at "{self.path}"]: {self.content}'

    def to_dict(self) -> dict[str, Any]:
        return {"path": self.path, "operation": self.operation.value, "content": self.content}


@dataclass(frozen=True)
class Feedback:
    """Structured critique of one draft.

    Communication contract between Collaborator and Writer.
    Score is 1-10 by convention and is not clamped.
    """

    score: float
    ready: bool
    must_fix: list[str] = field(default_factory=list)
    should_improve: list[str] = field(default_factory=list)
    questions: list[str] = field(default_factory=list)
    patches: list[Patch] = field(default_factory=list)
    no_material_improvements: bool = False
    explicit_stop: Optional[StopReason] = None

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "score": self.score,
            "ready": self.ready,
            "mustFix": list(self.must_fix),
            "shouldImprove": list(self.should_improve),
            "questions": list(self.questions),
            "patches": [p.to_dict() for p in self.patches],
            "noMaterialImprovements": self.no_material_improvements,
        }
        if self.explicit_stop is not None:
            data["stopReason"] = self.explicit_stop.value
        return data


@dataclass(frozen=True)
class Round:
    """One feedback cycle. Append-only; never mutated once recorded.

    `draft` is the text the Collaborator reviewed in this round.
    """

    round_num: int
    draft: str
    feedback: Feedback
    time_ms: int = 0
    tokens_used: int = 0

    def to_dict(self) -> dict[str, Any]:
        return {
            "roundNum": self.round_num,
            "draft": self.draft,
            "collaboratorFeedback": self.feedback.to_dict(),
            "tokensUsed": self.tokens_used,
            "timeMs": self.time_ms,
        }


# --- Session inputs and result ---


@dataclass(frozen=True)
class GeneratorBinding:
    """A generator plus the model id to call it with."""

    generator: Any
    model: str


@dataclass(frozen=True)
class SessionInputs:
    """Fully resolved inputs for one controller invocation."""

    idea: str
    template: ArtifactTemplate
    writer: GeneratorBinding
    collaborator: GeneratorBinding
    max_rounds: int
    score_threshold: float
    context: Optional[str] = None


@dataclass(frozen=True)
class ConvergenceResult:
    """Outcome of one controller invocation.

    Always produced, including on failure: `final` is the best-known draft
    and `error` carries the failure message for ERROR_FALLBACK.
    """

    final: str
    stop_reason: StopReason
    rounds: list[Round]
    unresolved_questions: list[str] = field(default_factory=list)
    total_time_ms: int = 0
    total_cost: float = 0.0
    total_tokens: int = 0
    metadata: dict[str, str] = field(default_factory=dict)
    error: Optional[str] = None

    @property
    def success(self) -> bool:
        return self.stop_reason != StopReason.ERROR_FALLBACK

    @property
    def last_feedback(self) -> Optional[Feedback]:
        return self.rounds[-1].feedback if self.rounds else None

    def to_dict(self) -> dict[str, Any]:
        return {
            "final": self.final,
            "stopReason": self.stop_reason.value,
            "rounds": [r.to_dict() for r in self.rounds],
            "unresolvedQuestions": list(self.unresolved_questions),
            "totalCost": self.total_cost,
            "totalTokens": self.total_tokens,
            "totalTimeMs": self.total_time_ms,
            "metadata": dict(self.metadata),
        }


def effective(requested: Optional[Any], template_default: Any) -> Any:
    """Requested override if given, else the template default.

    None means "not requested"; any other value (including 0) wins.
    """
    return template_default if requested is None else requested


# --- Convergence Loop State (LangGraph TypedDict) ---


class LoopState(TypedDict, total=False):
    """LangGraph state for the convergence loop.

    total=False: all fields optional, enabling incremental building.
    Nodes read/write only their fields and return new lists, never
    mutating the ones already in state.
    """

    # Current draft (set by draft node, replaced by revise node)
    draft: str

    # Round history
    rounds: list[Round]
    round_num: int

    # Stop evaluation carry-over
    last_score: float
    stall_count: int
    stop_reason: Optional[StopReason]

    # Accumulated across rounds, insertion-ordered, deduplicated
    unresolved_questions: list[str]

    # Set by any node whose generator call failed
    error: Optional[str]
