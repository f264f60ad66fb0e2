"""Prompt assembly for the convergence loop.

Separated from loop.py so prompt iteration doesn't touch logic.
Template-specific instructions travel as system prompts; these builders
produce the user prompts for each step.
"""

from __future__ import annotations

from typing import Optional

from convergence.models import ArtifactTemplate, Feedback, Patch


def _request_block(idea: str, context: Optional[str]) -> str:
    lines = [f"Goal: {idea}"]
    if context:
        lines.append(f"Context: {context}")
    return "\n".join(lines)


def _bullets(items: list[str], empty: str = "- None") -> str:
    if not items:
        return empty
    return "\n".join(f"- {item}" for item in items)


def format_patches(patches: list[Patch]) -> str:
    """Render advisory patches one per line, or "" when there are none."""
    return "\n".join(p.to_prompt_context() for p in patches)


def build_initial_prompt(idea: str, context: Optional[str]) -> str:
    """User prompt for the Writer's first draft (round 0)."""
    return (
        f"{_request_block(idea, context)}\n\n"
        "Please generate the initial draft following the artifact template requirements."
    )


def build_feedback_prompt(
    idea: str,
    context: Optional[str],
    draft: str,
    round_num: int,
    template: ArtifactTemplate,
    unresolved_questions: list[str],
) -> str:
    """User prompt for the Collaborator's structured critique.

    Pure function: separated from the generator call for testability.
    """
    prompt = (
        f"## Original Request\n{_request_block(idea, context)}\n\n"
        f"## Current Draft (Round {round_num})\n{draft}\n\n"
        f"## Evaluation Rubric\n{template.rubric_text()}"
    )

    if unresolved_questions:
        prompt += (
            "\n\n## Unresolved Questions From Prior Rounds\n"
            "The writer has not yet addressed these questions. Factor them into your score:\n"
            f"{_bullets(unresolved_questions)}"
        )

    prompt += "\n\nProvide structured feedback in JSON format."
    return prompt


REVISION_INSTRUCTIONS = """## Instructions
Produce a revised, COMPLETE draft that:
1. Fixes all "Must Fix" issues
2. Integrates the collaborator's proposed rewrites where they improve quality
3. Addresses unresolved questions with reasonable assumptions
4. PRESERVES sections and phrasing that were NOT flagged. Do not regress on what already works
5. Improves "Should Improve" items where possible without over-engineering"""


def build_revision_prompt(
    idea: str,
    context: Optional[str],
    draft: str,
    feedback: Feedback,
    unresolved_questions: list[str],
    memory: str,
) -> str:
    """User prompt for the Writer's revision of the current draft."""
    prompt = (
        f"## Original Goal\n{_request_block(idea, context)}\n\n"
        f"## Current Draft\n{draft}\n\n"
        f"## Collaborator Feedback (Score: {feedback.score}/10)\n\n"
        f"### Must Fix (Critical)\n{_bullets(feedback.must_fix)}\n\n"
        f"### Should Improve\n{_bullets(feedback.should_improve)}"
    )

    patch_text = format_patches(feedback.patches)
    if patch_text:
        prompt += (
            "\n\n### Specific Rewrites Proposed by Collaborator\n"
            "The collaborator has suggested these concrete changes. "
            "Integrate them where they improve the draft:\n"
            f"{patch_text}"
        )

    if unresolved_questions:
        prompt += (
            "\n\n### Unresolved Questions\n"
            "Address these by either answering them in the draft or making "
            "reasonable assumptions (state assumptions explicitly):\n"
            f"{_bullets(unresolved_questions)}"
        )

    if memory:
        prompt += f"\n\n### Round History\n{memory}"

    prompt += f"\n\n{REVISION_INSTRUCTIONS}"
    return prompt
