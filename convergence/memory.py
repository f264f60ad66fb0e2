"""Memory compression across rounds.

Bounds revision-prompt growth by summarizing recent history instead of
replaying every round. List membership is compared by exact text; this
is a summarization heuristic, not a semantic diff.
"""

from __future__ import annotations

from convergence.models import Round

MEMORY_WINDOW: int = 3
RESOLVED_LIMIT: int = 3


def _format_score_line(round_: Round) -> str:
    suffix = " (ready)" if round_.feedback.ready else ""
    return f"  Round {round_.round_num}: {round_.feedback.score}/10{suffix}"


def resolved_issues(rounds: list[Round], limit: int = RESOLVED_LIMIT) -> list[str]:
    """Must-fix items from earlier rounds that the latest round no longer lists.

    Keeps the most recent `limit` items, in round order.
    """
    if not rounds:
        return []
    latest = set(rounds[-1].feedback.must_fix)
    earlier = [issue for r in rounds[:-1] for issue in r.feedback.must_fix]
    resolved = [issue for issue in earlier if issue not in latest]
    return resolved[-limit:] if limit > 0 else []


def compress_memory(
    rounds: list[Round],
    window: int = MEMORY_WINDOW,
    resolved_limit: int = RESOLVED_LIMIT,
) -> str:
    """Short plain-text summary of score trend and resolved issues.

    Empty when fewer than 2 rounds exist.
    """
    if len(rounds) < 2:
        return ""

    recent = rounds[-window:]
    history = "\n".join(_format_score_line(r) for r in recent)
    memory = f"Score progression:\n{history}"

    resolved = resolved_issues(rounds, resolved_limit)
    if resolved:
        lines = "\n".join(f"  ✓ {issue}" for issue in resolved)
        memory += f"\n\nPreviously resolved (keep these fixes):\n{lines}"
    return memory
