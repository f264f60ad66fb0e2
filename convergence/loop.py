"""Convergence loop graph (LangGraph StateGraph).

Graph topology:
    draft -> feedback -> decide
                            ├── "revise" -> revise -> feedback (loop back)
                            └── "stop"   -> END

Any node whose generator call fails records `error` instead of raising,
and the conditional edges route straight to END. The draft and rounds
already in state survive as the fallback result.
"""

from __future__ import annotations

import logging
import time
from typing import Optional

from langgraph.graph import END, START, StateGraph
from langgraph.graph.state import CompiledStateGraph

from convergence.config import ConvergenceConfig
from convergence.core.errors import InputError
from convergence.feedback import parse_feedback
from convergence.memory import compress_memory
from convergence.models import (
    ConvergenceResult,
    LoopState,
    Round,
    SessionInputs,
    StopReason,
)
from convergence.prompts import (
    build_feedback_prompt,
    build_initial_prompt,
    build_revision_prompt,
)
from convergence.stopping import evaluate_stop
from convergence.temperature import writer_temperature

logger = logging.getLogger(__name__)


def merge_questions(existing: list[str], new: list[str]) -> list[str]:
    """Append unseen questions, keeping first-seen order. Never removes."""
    merged = list(existing)
    seen = set(merged)
    for question in new:
        if question not in seen:
            merged.append(question)
            seen.add(question)
    return merged


def validate_inputs(inputs: SessionInputs) -> None:
    """Raise InputError for inputs no round should run with."""
    if not inputs.idea or not inputs.idea.strip():
        raise InputError("idea must be non-empty text")
    if isinstance(inputs.max_rounds, bool) or not isinstance(inputs.max_rounds, int):
        raise InputError(f"max_rounds must be an integer, got {inputs.max_rounds!r}")
    if inputs.max_rounds < 1:
        raise InputError(f"max_rounds must be positive, got {inputs.max_rounds}")
    if inputs.template is None:
        raise InputError("template is required")


# =============================================================================
# Nodes
# =============================================================================


def _make_draft_node(inputs: SessionInputs, config: ConvergenceConfig):
    """Create the initial-draft node (round 0).

    LangGraph nodes must have signature (state) -> dict, so session inputs
    are captured via closure rather than passed as arguments.
    """

    async def draft_node(state: LoopState) -> dict:
        try:
            draft = await inputs.writer.generator.complete(
                system=inputs.template.writer_instructions,
                user=build_initial_prompt(inputs.idea, inputs.context),
                model=inputs.writer.model,
                temperature=writer_temperature(0, inputs.max_rounds),
                max_tokens=config.writer_max_tokens,
            )
        except Exception as e:
            logger.warning("Initial draft failed: %s", e)
            return {"error": f"Initial draft failed: {e}"}
        return {"draft": draft}

    return draft_node


def _make_feedback_node(inputs: SessionInputs, config: ConvergenceConfig):
    """Create the feedback node: critique, record the round, evaluate stop."""

    async def feedback_node(state: LoopState) -> dict:
        round_num = state.get("round_num", 0) + 1
        draft = state.get("draft", "")
        started = time.monotonic()

        user_prompt = build_feedback_prompt(
            idea=inputs.idea,
            context=inputs.context,
            draft=draft,
            round_num=round_num,
            template=inputs.template,
            unresolved_questions=state.get("unresolved_questions", []),
        )
        try:
            feedback = await inputs.collaborator.generator.complete_json(
                system=inputs.template.collaborator_instructions,
                user=user_prompt,
                parse=parse_feedback,
                model=inputs.collaborator.model,
                temperature=config.collaborator_temperature,
                max_tokens=config.collaborator_max_tokens,
                max_retries=config.json_max_retries,
            )
        except Exception as e:
            logger.warning("Feedback failed in round %d: %s", round_num, e)
            return {"error": f"Feedback failed in round {round_num}: {e}"}

        elapsed_ms = int((time.monotonic() - started) * 1000)
        rounds = state.get("rounds", []) + [
            Round(round_num=round_num, draft=draft, feedback=feedback, time_ms=elapsed_ms)
        ]

        decision = evaluate_stop(
            feedback,
            last_score=state.get("last_score", 0.0),
            stall_count=state.get("stall_count", 0),
            threshold=inputs.score_threshold,
            stall_limit=config.stall_limit,
        )
        stop_reason = decision.reason
        if not decision.should_stop and round_num >= inputs.max_rounds:
            stop_reason = StopReason.MAX_ROUNDS

        logger.info(
            "Round %d: score=%s ready=%s stalls=%d -> %s",
            round_num, feedback.score, feedback.ready, decision.stall_count,
            stop_reason.value if stop_reason else "revise",
        )
        return {
            "rounds": rounds,
            "round_num": round_num,
            "last_score": decision.last_score,
            "stall_count": decision.stall_count,
            "stop_reason": stop_reason,
        }

    return feedback_node


def _make_revise_node(inputs: SessionInputs, config: ConvergenceConfig):
    """Create the revision node: fold questions in, compress memory, rewrite."""

    async def revise_node(state: LoopState) -> dict:
        rounds = state.get("rounds", [])
        round_num = state.get("round_num", len(rounds))
        feedback = rounds[-1].feedback
        questions = merge_questions(state.get("unresolved_questions", []), feedback.questions)
        memory = compress_memory(rounds, config.memory_window, config.resolved_limit)

        user_prompt = build_revision_prompt(
            idea=inputs.idea,
            context=inputs.context,
            draft=state.get("draft", ""),
            feedback=feedback,
            unresolved_questions=questions,
            memory=memory,
        )
        try:
            draft = await inputs.writer.generator.complete(
                system=inputs.template.writer_instructions,
                user=user_prompt,
                model=inputs.writer.model,
                temperature=writer_temperature(round_num, inputs.max_rounds),
                max_tokens=config.writer_max_tokens,
            )
        except Exception as e:
            logger.warning("Revision failed in round %d: %s", round_num, e)
            return {
                "unresolved_questions": questions,
                "error": f"Revision failed in round {round_num}: {e}",
            }
        return {"draft": draft, "unresolved_questions": questions}

    return revise_node


# =============================================================================
# Conditional edges
# =============================================================================


def after_writer(state: LoopState) -> str:
    """Conditional edge after a Writer step.

    Returns:
        "feedback" -> critique the new draft
        "stop"     -> the Writer call failed
    """
    return "stop" if state.get("error") else "feedback"


def should_revise(state: LoopState) -> str:
    """Conditional edge after feedback.

    Returns:
        "revise" -> continue to revise_node
        "stop"   -> stop reason set (including MAX_ROUNDS) or feedback failed
    """
    if state.get("error") or state.get("stop_reason") is not None:
        return "stop"
    return "revise"


def build_convergence_graph(
    inputs: SessionInputs,
    config: ConvergenceConfig = ConvergenceConfig(),
) -> CompiledStateGraph:
    """Build the convergence loop for one session as a LangGraph StateGraph.

    Returns a compiled StateGraph ready to invoke with an empty LoopState.
    """
    graph = StateGraph(LoopState)

    graph.add_node("draft", _make_draft_node(inputs, config))
    graph.add_node("feedback", _make_feedback_node(inputs, config))
    graph.add_node("revise", _make_revise_node(inputs, config))

    graph.add_edge(START, "draft")
    graph.add_conditional_edges("draft", after_writer, {"feedback": "feedback", "stop": END})
    graph.add_conditional_edges(
        "feedback",
        should_revise,
        {"revise": "revise", "stop": END},
    )
    graph.add_conditional_edges("revise", after_writer, {"feedback": "feedback", "stop": END})

    return graph.compile()


def initial_state() -> LoopState:
    """State before round 0: no draft, no rounds, last_score 0."""
    return {
        "draft": "",
        "rounds": [],
        "round_num": 0,
        "last_score": 0.0,
        "stall_count": 0,
        "stop_reason": None,
        "unresolved_questions": [],
        "error": None,
    }


def recursion_limit(max_rounds: int) -> int:
    """Graph steps one session can take: draft + feedback/revise pairs."""
    return 2 * max_rounds + 5


# =============================================================================
# Controller
# =============================================================================


class ConvergenceController:
    """Runs one Writer/Collaborator session to a stop reason.

    Holds configuration only. Every run() builds its own graph and state,
    so concurrent sessions share nothing mutable.
    """

    def __init__(self, config: Optional[ConvergenceConfig] = None) -> None:
        self.config = config or ConvergenceConfig()

    async def run(
        self,
        inputs: SessionInputs,
        progress: Optional[dict] = None,
    ) -> ConvergenceResult:
        """Drive the loop. Never raises: failures become ERROR_FALLBACK.

        Args:
            inputs: Resolved session inputs.
            progress: Optional dict updated with every state snapshot, so a
                caller that cancels the run can still read the latest draft
                and rounds.
        """
        started = time.monotonic()
        state: LoopState = initial_state()

        try:
            validate_inputs(inputs)
            logger.info(
                "Starting convergence: template=%s writer=%s collaborator=%s "
                "max_rounds=%d threshold=%s",
                inputs.template.id, inputs.writer.model, inputs.collaborator.model,
                inputs.max_rounds, inputs.score_threshold,
            )
            graph = build_convergence_graph(inputs, self.config)
            async for snapshot in graph.astream(
                initial_state(),
                config={"recursion_limit": recursion_limit(inputs.max_rounds)},
                stream_mode="values",
            ):
                state = snapshot
                if progress is not None:
                    progress.update(snapshot)
        except Exception as e:
            logger.exception("Convergence failed")
            state = {**state, "error": str(e)}

        result = self._to_result(inputs, state, started)
        logger.info(
            "Convergence finished: stop=%s rounds=%d time=%dms",
            result.stop_reason.value, len(result.rounds), result.total_time_ms,
        )
        return result

    @staticmethod
    def _to_result(
        inputs: SessionInputs,
        state: LoopState,
        started: float,
    ) -> ConvergenceResult:
        error = state.get("error")
        if error:
            stop_reason = StopReason.ERROR_FALLBACK
        else:
            stop_reason = state.get("stop_reason") or StopReason.MAX_ROUNDS

        template = getattr(inputs, "template", None)
        writer = getattr(inputs, "writer", None)
        collaborator = getattr(inputs, "collaborator", None)
        return ConvergenceResult(
            final=state.get("draft", ""),
            stop_reason=stop_reason,
            rounds=list(state.get("rounds", [])),
            unresolved_questions=list(state.get("unresolved_questions", [])),
            total_time_ms=int((time.monotonic() - started) * 1000),
            metadata={
                "templateId": getattr(template, "id", ""),
                "writerModel": getattr(writer, "model", ""),
                "collaboratorModel": getattr(collaborator, "model", ""),
            },
            error=error,
        )


async def run_convergence(
    inputs: SessionInputs,
    config: Optional[ConvergenceConfig] = None,
) -> ConvergenceResult:
    """Convenience wrapper: one controller, one session."""
    return await ConvergenceController(config).run(inputs)
