"""Tests for convergence.prompts — Writer and Collaborator prompt assembly."""

import pytest

from convergence.models import Feedback, Patch, PatchOperation
from convergence.prompts import (
    REVISION_INSTRUCTIONS,
    build_feedback_prompt,
    build_initial_prompt,
    build_revision_prompt,
    format_patches,
)
from relay.templates import get_template


@pytest.fixture
def template():
    return get_template("email-reply")


@pytest.fixture
def feedback():
    return Feedback(
        score=6,
        ready=False,
        must_fix=["State the meeting date"],
        should_improve=["Warmer closing"],
        questions=["Is Friday OK?"],
        patches=[Patch(path="Closing", operation=PatchOperation.REPLACE, content="Best regards,")],
    )


# =============================================================================
# build_initial_prompt
# =============================================================================


class TestBuildInitialPrompt:
    def test_includes_idea_and_context(self):
        prompt = build_initial_prompt("Decline the invite", "Sender is my manager")
        assert "Goal: Decline the invite" in prompt
        assert "Context: Sender is my manager" in prompt
        assert "initial draft" in prompt

    def test_context_omitted_when_absent(self):
        prompt = build_initial_prompt("Decline the invite", None)
        assert "Context:" not in prompt


# =============================================================================
# build_feedback_prompt
# =============================================================================


class TestBuildFeedbackPrompt:
    def test_sections_present(self, template):
        prompt = build_feedback_prompt("Reply", None, "Hi there", 2, template, [])
        assert "## Original Request" in prompt
        assert "## Current Draft (Round 2)\nHi there" in prompt
        assert "## Evaluation Rubric" in prompt
        assert prompt.endswith("Provide structured feedback in JSON format.")

    def test_rubric_dimensions_rendered(self, template):
        prompt = build_feedback_prompt("Reply", None, "draft", 1, template, [])
        for dim in template.rubric:
            assert dim.to_prompt_line() in prompt
            assert f"(weight {dim.weight})" in prompt

    def test_no_question_block_when_empty(self, template):
        prompt = build_feedback_prompt("Reply", None, "draft", 1, template, [])
        assert "Unresolved Questions" not in prompt

    def test_questions_listed(self, template):
        prompt = build_feedback_prompt("Reply", None, "draft", 2, template, ["Q1", "Q2"])
        assert "## Unresolved Questions From Prior Rounds" in prompt
        assert "- Q1\n- Q2" in prompt
        assert "Factor them into your score" in prompt


# =============================================================================
# build_revision_prompt
# =============================================================================


class TestBuildRevisionPrompt:
    def test_feedback_lists_rendered(self, feedback):
        prompt = build_revision_prompt("Reply", None, "old draft", feedback, [], "")
        assert "## Current Draft\nold draft" in prompt
        assert "(Score: 6/10)" in prompt
        assert "### Must Fix (Critical)\n- State the meeting date" in prompt
        assert "### Should Improve\n- Warmer closing" in prompt

    def test_empty_lists_render_none(self):
        fb = Feedback(score=7, ready=False)
        prompt = build_revision_prompt("Reply", None, "d", fb, [], "")
        assert "### Must Fix (Critical)\n- None" in prompt
        assert "### Should Improve\n- None" in prompt

    def test_patches_rendered_with_operation_and_path(self, feedback):
        prompt = build_revision_prompt("Reply", None, "d", feedback, [], "")
        assert "### Specific Rewrites Proposed by Collaborator" in prompt
        assert '[REPLACE at "Closing"]: Best regards,' in prompt

    def test_no_patch_block_without_patches(self):
        prompt = build_revision_prompt("Reply", None, "d", Feedback(score=5, ready=False), [], "")
        assert "Specific Rewrites" not in prompt

    def test_unresolved_questions_ask_for_assumptions(self, feedback):
        prompt = build_revision_prompt("Reply", None, "d", feedback, ["Is Friday OK?"], "")
        assert "### Unresolved Questions" in prompt
        assert "state assumptions explicitly" in prompt
        assert "- Is Friday OK?" in prompt

    def test_memory_included_when_present(self, feedback):
        prompt = build_revision_prompt(
            "Reply", None, "d", feedback, [], "Score progression:\n  Round 1: 5/10"
        )
        assert "### Round History\nScore progression:" in prompt

    def test_memory_block_omitted_when_empty(self, feedback):
        prompt = build_revision_prompt("Reply", None, "d", feedback, [], "")
        assert "Round History" not in prompt

    def test_ends_with_preservation_instructions(self, feedback):
        prompt = build_revision_prompt("Reply", "ctx", "d", feedback, [], "")
        assert prompt.endswith(REVISION_INSTRUCTIONS)
        assert "PRESERVES sections" in prompt


class TestFormatPatches:
    def test_one_line_per_patch(self):
        patches = [
            Patch(path="A", operation=PatchOperation.ADD, content="x"),
            Patch(path="B", operation=PatchOperation.REMOVE, content=""),
        ]
        assert format_patches(patches) == '[ADD at "A"]: x\n[REMOVE at "B"]: '

    def test_empty(self):
        assert format_patches([]) == ""
