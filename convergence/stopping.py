"""Stop-condition evaluation.

Pure function over (feedback, carry-over) -> decision. The controller
threads last_score and stall_count from one round to the next.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Optional

from convergence.models import Feedback, StopReason

# Consecutive stalled rounds before NO_IMPROVEMENT
STALL_LIMIT: int = 2


class Verdict(str, Enum):
    CONTINUE = "continue"
    STOP = "stop"


@dataclass(frozen=True)
class StopDecision:
    verdict: Verdict
    reason: Optional[StopReason]
    last_score: float
    stall_count: int

    @property
    def should_stop(self) -> bool:
        return self.verdict == Verdict.STOP


def evaluate_stop(
    feedback: Feedback,
    last_score: float,
    stall_count: int,
    threshold: float,
    stall_limit: int = STALL_LIMIT,
) -> StopDecision:
    """Decide whether the loop stops after this feedback.

    Precedence (checked in order):
    1. explicit_stop names a canonical reason -> stop with it
    2. score >= threshold and ready -> THRESHOLD_MET
    3. stagnation bookkeeping: score <= last_score or
       no_material_improvements -> stall_count + 1, else reset to 0
    4. stall_count >= stall_limit or no_material_improvements
       -> NO_IMPROVEMENT
    5. continue, carrying this score as last_score

    last_score starts at 0 before round 1, so a first score of 0 counts
    as a stall. Stop decisions keep the incoming last_score.
    """
    if feedback.explicit_stop is not None:
        return StopDecision(Verdict.STOP, feedback.explicit_stop, last_score, stall_count)

    if feedback.score >= threshold and feedback.ready:
        return StopDecision(Verdict.STOP, StopReason.THRESHOLD_MET, last_score, stall_count)

    if feedback.score <= last_score or feedback.no_material_improvements:
        stall_count += 1
    else:
        stall_count = 0

    if stall_count >= stall_limit or feedback.no_material_improvements:
        return StopDecision(Verdict.STOP, StopReason.NO_IMPROVEMENT, last_score, stall_count)

    return StopDecision(Verdict.CONTINUE, None, feedback.score, stall_count)
