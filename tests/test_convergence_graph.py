"""Tests for convergence.loop — graph topology, stop reasons and failure containment."""

import asyncio
import json

import pytest

from convergence.config import ConvergenceConfig
from convergence.core.errors import LLMError
from convergence.core.structured import produce_structured
from convergence.loop import (
    ConvergenceController,
    after_writer,
    build_convergence_graph,
    initial_state,
    merge_questions,
    recursion_limit,
    run_convergence,
    should_revise,
)
from convergence.models import (
    ConvergenceResult,
    GeneratorBinding,
    LoopState,
    SessionInputs,
    StopReason,
)
from relay.templates import get_template


class ScriptedGenerator:
    """Generator returning queued responses in order. Queued exceptions are raised."""

    def __init__(self, responses: list):
        self.responses = list(responses)
        self.calls: list[dict] = []

    async def complete(
        self,
        system: str,
        user: str,
        model=None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> str:
        self.calls.append({"system": system, "user": user, "temperature": temperature})
        response = self.responses.pop(0)
        if isinstance(response, Exception):
            raise response
        return response

    async def complete_json(
        self,
        system: str,
        user: str,
        parse,
        model=None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        max_retries: int = 1,
    ):
        async def generate() -> str:
            return await self.complete(system, user, model, temperature, max_tokens)

        return await produce_structured(generate, parse, max_retries)


def fb_json(score, ready=False, questions=(), must_fix=(), nmi=False, stop_reason=None) -> str:
    data = {
        "score": score,
        "ready": ready,
        "mustFix": list(must_fix),
        "shouldImprove": [],
        "questions": list(questions),
        "patches": [],
        "noMaterialImprovements": nmi,
    }
    if stop_reason is not None:
        data["shouldStop"] = True
        data["stopReason"] = stop_reason
    return "```json\n" + json.dumps(data) + "\n```"


def make_inputs(writer, collaborator, max_rounds=3, threshold=9, idea="Decline the meeting"):
    return SessionInputs(
        idea=idea,
        context=None,
        template=get_template("email-reply"),
        writer=GeneratorBinding(writer, "writer-model"),
        collaborator=GeneratorBinding(collaborator, "collaborator-model"),
        max_rounds=max_rounds,
        score_threshold=threshold,
    )


def drafts(n: int) -> list[str]:
    return [f"v{i}" for i in range(n)]


# =============================================================================
# Topology and edges
# =============================================================================


class TestGraphTopology:
    def test_graph_has_expected_nodes(self):
        inputs = make_inputs(ScriptedGenerator([]), ScriptedGenerator([]))
        graph = build_convergence_graph(inputs)
        node_names = set(graph.get_graph().nodes.keys())
        assert {"draft", "feedback", "revise"} <= node_names

    def test_initial_state_starts_at_zero(self):
        state = initial_state()
        assert state["last_score"] == 0.0
        assert state["stall_count"] == 0
        assert state["rounds"] == []
        assert state["unresolved_questions"] == []

    def test_recursion_limit_covers_max_rounds(self):
        # draft + max_rounds feedback + (max_rounds - 1) revise
        for max_rounds in range(1, 11):
            assert recursion_limit(max_rounds) > 2 * max_rounds


class TestShouldRevise:
    def test_no_stop_reason_revises(self):
        state: LoopState = {"stop_reason": None}
        assert should_revise(state) == "revise"

    def test_stop_reason_stops(self):
        state: LoopState = {"stop_reason": StopReason.MAX_ROUNDS}
        assert should_revise(state) == "stop"

    def test_error_stops(self):
        state: LoopState = {"error": "Feedback failed in round 1: boom"}
        assert should_revise(state) == "stop"

    def test_empty_state_revises(self):
        assert should_revise({}) == "revise"


class TestAfterWriter:
    def test_success_goes_to_feedback(self):
        assert after_writer({"draft": "v1"}) == "feedback"

    def test_error_stops(self):
        assert after_writer({"error": "Initial draft failed: x"}) == "stop"


class TestMergeQuestions:
    def test_dedup_preserves_first_seen_order(self):
        assert merge_questions(["Q1", "Q2"], ["Q2", "Q3", "Q1"]) == ["Q1", "Q2", "Q3"]

    def test_does_not_mutate_existing(self):
        existing = ["Q1"]
        merge_questions(existing, ["Q2"])
        assert existing == ["Q1"]


# =============================================================================
# Stop reasons
# =============================================================================


class TestStopReasons:
    @pytest.mark.asyncio
    async def test_threshold_met_on_round_two(self):
        writer = ScriptedGenerator(drafts(2))
        collaborator = ScriptedGenerator([fb_json(6), fb_json(9, ready=True)])
        result = await run_convergence(make_inputs(writer, collaborator, max_rounds=2))

        assert result.stop_reason == StopReason.THRESHOLD_MET
        assert len(result.rounds) == 2
        assert result.final == "v1"
        assert [r.round_num for r in result.rounds] == [1, 2]
        assert result.rounds[-1].feedback.score >= 9
        assert result.success

    @pytest.mark.asyncio
    async def test_flat_scores_stop_with_no_improvement(self):
        writer = ScriptedGenerator(drafts(3))
        collaborator = ScriptedGenerator([fb_json(5), fb_json(5), fb_json(5)])
        result = await run_convergence(make_inputs(writer, collaborator, max_rounds=3))

        assert result.stop_reason == StopReason.NO_IMPROVEMENT
        assert len(result.rounds) == 3
        # No revision after the stopping round
        assert len(writer.calls) == 3
        assert result.final == "v2"

    @pytest.mark.asyncio
    async def test_no_material_improvements_stops_after_one_round(self):
        writer = ScriptedGenerator(drafts(1))
        collaborator = ScriptedGenerator([fb_json(7, nmi=True)])
        result = await run_convergence(make_inputs(writer, collaborator))
        assert result.stop_reason == StopReason.NO_IMPROVEMENT
        assert len(result.rounds) == 1

    @pytest.mark.asyncio
    async def test_explicit_stop_overrides_threshold(self):
        writer = ScriptedGenerator(drafts(1))
        collaborator = ScriptedGenerator(
            [fb_json(9, ready=True, stop_reason="NO_IMPROVEMENT")]
        )
        result = await run_convergence(make_inputs(writer, collaborator))
        assert result.stop_reason == StopReason.NO_IMPROVEMENT
        assert len(result.rounds) == 1

    @pytest.mark.asyncio
    async def test_max_rounds_after_last_feedback(self):
        writer = ScriptedGenerator(drafts(2))
        collaborator = ScriptedGenerator([fb_json(5), fb_json(6)])
        result = await run_convergence(make_inputs(writer, collaborator, max_rounds=2))

        assert result.stop_reason == StopReason.MAX_ROUNDS
        assert len(result.rounds) == 2
        assert len(writer.calls) == 2
        assert result.final == "v1"

    @pytest.mark.asyncio
    async def test_single_round_session(self):
        writer = ScriptedGenerator(drafts(1))
        collaborator = ScriptedGenerator([fb_json(4)])
        result = await run_convergence(make_inputs(writer, collaborator, max_rounds=1))
        assert result.stop_reason == StopReason.MAX_ROUNDS
        assert len(result.rounds) == 1
        assert result.final == "v0"

    @pytest.mark.asyncio
    async def test_rounds_never_exceed_max_rounds(self):
        for max_rounds in range(1, 6):
            writer = ScriptedGenerator(drafts(max_rounds))
            collaborator = ScriptedGenerator([fb_json(s) for s in range(1, max_rounds + 1)])
            result = await run_convergence(make_inputs(writer, collaborator, max_rounds=max_rounds))
            assert len(result.rounds) == max_rounds
            assert result.stop_reason == StopReason.MAX_ROUNDS

    @pytest.mark.asyncio
    async def test_zero_first_scores_stop_after_round_two(self):
        writer = ScriptedGenerator(drafts(2))
        collaborator = ScriptedGenerator([fb_json(0), fb_json(0)])
        result = await run_convergence(make_inputs(writer, collaborator, max_rounds=5))
        assert result.stop_reason == StopReason.NO_IMPROVEMENT
        assert len(result.rounds) == 2


# =============================================================================
# Round contents and prompts
# =============================================================================


class TestRoundFlow:
    @pytest.mark.asyncio
    async def test_each_round_reviews_previous_writer_output(self):
        writer = ScriptedGenerator(drafts(3))
        collaborator = ScriptedGenerator([fb_json(5), fb_json(6), fb_json(9, ready=True)])
        result = await run_convergence(make_inputs(writer, collaborator))

        assert [r.draft for r in result.rounds] == ["v0", "v1", "v2"]
        assert "## Current Draft (Round 1)\nv0" in collaborator.calls[0]["user"]
        assert "## Current Draft (Round 2)\nv1" in collaborator.calls[1]["user"]
        assert all(r.time_ms >= 0 for r in result.rounds)

    @pytest.mark.asyncio
    async def test_questions_accumulate_in_order(self):
        writer = ScriptedGenerator(drafts(3))
        collaborator = ScriptedGenerator(
            [
                fb_json(5, questions=["Q1", "Q2"]),
                fb_json(6, questions=["Q2", "Q3"]),
                fb_json(9, ready=True),
            ]
        )
        result = await run_convergence(make_inputs(writer, collaborator))

        assert result.unresolved_questions == ["Q1", "Q2", "Q3"]
        assert "Unresolved Questions" not in collaborator.calls[0]["user"]
        round_two = collaborator.calls[1]["user"]
        assert "- Q1" in round_two
        assert "Q3" not in round_two
        assert "- Q3" in collaborator.calls[2]["user"]
        assert "- Q1\n- Q2" in writer.calls[1]["user"]

    @pytest.mark.asyncio
    async def test_questions_from_stopping_round_not_merged(self):
        writer = ScriptedGenerator(drafts(1))
        collaborator = ScriptedGenerator([fb_json(9, ready=True, questions=["Late?"])])
        result = await run_convergence(make_inputs(writer, collaborator))
        assert result.unresolved_questions == []

    @pytest.mark.asyncio
    async def test_memory_appears_from_second_revision(self):
        writer = ScriptedGenerator(drafts(3))
        collaborator = ScriptedGenerator(
            [fb_json(5, must_fix=["No date"]), fb_json(6), fb_json(9, ready=True)]
        )
        await run_convergence(make_inputs(writer, collaborator))

        assert "Round History" not in writer.calls[1]["user"]
        second_revision = writer.calls[2]["user"]
        assert "### Round History" in second_revision
        assert "Round 1: 5/10" in second_revision
        assert "✓ No date" in second_revision

    @pytest.mark.asyncio
    async def test_writer_temperature_schedule(self):
        writer = ScriptedGenerator(drafts(3))
        collaborator = ScriptedGenerator([fb_json(5), fb_json(6), fb_json(7)])
        await run_convergence(make_inputs(writer, collaborator, max_rounds=3))
        assert [c["temperature"] for c in writer.calls] == [0.7, 0.55, 0.55]

    @pytest.mark.asyncio
    async def test_role_instructions_sent_as_system_prompts(self):
        template = get_template("email-reply")
        writer = ScriptedGenerator(drafts(1))
        collaborator = ScriptedGenerator([fb_json(9, ready=True)])
        await run_convergence(make_inputs(writer, collaborator))
        assert writer.calls[0]["system"] == template.writer_instructions
        assert collaborator.calls[0]["system"] == template.collaborator_instructions
        assert collaborator.calls[0]["temperature"] == 0.0

    @pytest.mark.asyncio
    async def test_malformed_feedback_regenerated_within_round(self):
        writer = ScriptedGenerator(drafts(1))
        collaborator = ScriptedGenerator(["Sorry, here goes:", fb_json(9, ready=True)])
        result = await run_convergence(make_inputs(writer, collaborator))
        assert result.stop_reason == StopReason.THRESHOLD_MET
        assert len(result.rounds) == 1
        assert len(collaborator.calls) == 2

    @pytest.mark.asyncio
    async def test_metadata_and_serialization(self):
        writer = ScriptedGenerator(drafts(1))
        collaborator = ScriptedGenerator([fb_json(9, ready=True)])
        result = await run_convergence(make_inputs(writer, collaborator))

        assert result.metadata == {
            "templateId": "email-reply",
            "writerModel": "writer-model",
            "collaboratorModel": "collaborator-model",
        }
        data = result.to_dict()
        assert data["stopReason"] == "THRESHOLD_MET"
        assert data["rounds"][0]["collaboratorFeedback"]["score"] == 9
        assert data["final"] == "v0"


# =============================================================================
# Failure containment
# =============================================================================


class TestFailureContainment:
    @pytest.mark.asyncio
    async def test_revision_failure_keeps_last_draft(self):
        writer = ScriptedGenerator(["v0", ConnectionError("network down")])
        collaborator = ScriptedGenerator([fb_json(5)])
        result = await run_convergence(make_inputs(writer, collaborator))

        assert result.stop_reason == StopReason.ERROR_FALLBACK
        assert len(result.rounds) == 1
        assert result.final == "v0"
        assert "Revision failed in round 1" in result.error
        assert "network down" in result.error
        assert not result.success

    @pytest.mark.asyncio
    async def test_initial_draft_failure(self):
        writer = ScriptedGenerator([LLMError("quota exceeded")])
        collaborator = ScriptedGenerator([])
        result = await run_convergence(make_inputs(writer, collaborator))

        assert result.stop_reason == StopReason.ERROR_FALLBACK
        assert result.rounds == []
        assert result.final == ""
        assert collaborator.calls == []

    @pytest.mark.asyncio
    async def test_validator_exhaustion_falls_back(self):
        writer = ScriptedGenerator(drafts(1))
        collaborator = ScriptedGenerator(["not json", "still not json"])
        result = await run_convergence(make_inputs(writer, collaborator))

        assert result.stop_reason == StopReason.ERROR_FALLBACK
        assert result.rounds == []
        assert result.final == "v0"
        assert "Feedback failed in round 1" in result.error

    @pytest.mark.asyncio
    async def test_collaborator_failure_in_later_round(self):
        writer = ScriptedGenerator(drafts(2))
        collaborator = ScriptedGenerator([fb_json(5), RuntimeError("503")])
        result = await run_convergence(make_inputs(writer, collaborator))

        assert result.stop_reason == StopReason.ERROR_FALLBACK
        assert len(result.rounds) == 1
        assert result.final == "v1"

    @pytest.mark.asyncio
    async def test_blank_idea_rejected_without_calls(self):
        writer = ScriptedGenerator(drafts(1))
        collaborator = ScriptedGenerator([])
        result = await run_convergence(make_inputs(writer, collaborator, idea="   "))

        assert result.stop_reason == StopReason.ERROR_FALLBACK
        assert "idea" in result.error
        assert writer.calls == []

    @pytest.mark.asyncio
    async def test_non_positive_max_rounds_rejected(self):
        writer = ScriptedGenerator(drafts(1))
        result = await run_convergence(
            make_inputs(writer, ScriptedGenerator([]), max_rounds=0)
        )
        assert result.stop_reason == StopReason.ERROR_FALLBACK
        assert writer.calls == []

    @pytest.mark.asyncio
    async def test_custom_config_json_retries(self):
        writer = ScriptedGenerator(drafts(1))
        collaborator = ScriptedGenerator(["x", "y", fb_json(9, ready=True)])
        controller = ConvergenceController(ConvergenceConfig(json_max_retries=2))
        result = await controller.run(make_inputs(writer, collaborator))
        assert result.stop_reason == StopReason.THRESHOLD_MET
        assert len(collaborator.calls) == 3

    @pytest.mark.asyncio
    async def test_progress_tracks_latest_snapshot(self):
        writer = ScriptedGenerator(drafts(2))
        collaborator = ScriptedGenerator([fb_json(5, questions=["When?"]), fb_json(9, ready=True)])
        progress: dict = {}
        result = await ConvergenceController().run(make_inputs(writer, collaborator), progress)

        assert progress["draft"] == result.final == "v1"
        assert progress["rounds"] == result.rounds
        assert progress["unresolved_questions"] == ["When?"]
        assert progress["stop_reason"] == StopReason.THRESHOLD_MET


# =============================================================================
# Concurrency
# =============================================================================


class TestConcurrentSessions:
    @pytest.mark.asyncio
    async def test_sessions_share_no_state(self):
        controller = ConvergenceController()
        inputs_a = make_inputs(
            ScriptedGenerator(["a0", "a1"]),
            ScriptedGenerator([fb_json(5, questions=["A?"]), fb_json(9, ready=True)]),
        )
        inputs_b = make_inputs(
            ScriptedGenerator(["b0"]),
            ScriptedGenerator([fb_json(3, nmi=True, questions=["B?"])]),
        )
        result_a, result_b = await asyncio.gather(
            controller.run(inputs_a), controller.run(inputs_b)
        )

        assert isinstance(result_a, ConvergenceResult)
        assert result_a.stop_reason == StopReason.THRESHOLD_MET
        assert result_a.final == "a1"
        assert result_a.unresolved_questions == ["A?"]
        assert result_b.stop_reason == StopReason.NO_IMPROVEMENT
        assert result_b.final == "b0"
        assert result_b.unresolved_questions == []
