"""Feedback shape validation.

parse_feedback is the schema the structured-response validator checks
Collaborator output against. Keys follow the JSON contract given to the
Collaborator (camelCase).
"""

from __future__ import annotations

from typing import Any

from convergence.models import Feedback, Patch, PatchOperation, StopReason


def _require_bool(data: dict[str, Any], key: str) -> bool:
    value = data[key]
    if not isinstance(value, bool):
        raise TypeError(f"'{key}' must be a boolean, got {type(value).__name__}")
    return value


def _require_str_list(data: dict[str, Any], key: str) -> list[str]:
    value = data[key]
    if not isinstance(value, list):
        raise TypeError(f"'{key}' must be a list, got {type(value).__name__}")
    for idx, item in enumerate(value):
        if not isinstance(item, str):
            raise TypeError(f"'{key}[{idx}]' must be a string, got {type(item).__name__}")
    return list(value)


def _parse_patch(patch_data: Any, index: int) -> Patch:
    if not isinstance(patch_data, dict):
        raise TypeError(f"patches[{index}] must be an object")
    for key in ("path", "content"):
        if not isinstance(patch_data[key], str):
            raise TypeError(f"patches[{index}].{key} must be a string")
    try:
        operation = PatchOperation(patch_data["operation"])
    except ValueError:
        valid = [op.value for op in PatchOperation]
        raise ValueError(
            f"patches[{index}].operation '{patch_data['operation']}' invalid. Valid: {valid}"
        )
    return Patch(path=patch_data["path"], operation=operation, content=patch_data["content"])


def parse_feedback(data: Any) -> Feedback:
    """Validate decoded Collaborator JSON and build a Feedback.

    Every field of the contract is required; `shouldStop` and `stopReason`
    are optional. A `stopReason` that is not a canonical tag is accepted
    but carries no stop signal.

    Raises:
        TypeError: Wrong JSON type somewhere in the payload.
        KeyError: Required field missing.
        ValueError: Invalid enum value.
    """
    if not isinstance(data, dict):
        raise TypeError(f"Expected JSON object of feedback, got {type(data).__name__}")

    score = data["score"]
    if isinstance(score, bool) or not isinstance(score, (int, float)):
        raise TypeError(f"'score' must be a number, got {type(score).__name__}")

    patches_data = data["patches"]
    if not isinstance(patches_data, list):
        raise TypeError(f"'patches' must be a list, got {type(patches_data).__name__}")

    if "shouldStop" in data:
        _require_bool(data, "shouldStop")

    stop_reason = data.get("stopReason")
    if stop_reason is not None and not isinstance(stop_reason, str):
        raise TypeError(f"'stopReason' must be a string, got {type(stop_reason).__name__}")

    return Feedback(
        score=score,
        ready=_require_bool(data, "ready"),
        must_fix=_require_str_list(data, "mustFix"),
        should_improve=_require_str_list(data, "shouldImprove"),
        questions=_require_str_list(data, "questions"),
        patches=[_parse_patch(p, idx) for idx, p in enumerate(patches_data)],
        no_material_improvements=_require_bool(data, "noMaterialImprovements"),
        explicit_stop=StopReason.parse(stop_reason) if stop_reason else None,
    )
