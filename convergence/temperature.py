# convergence/temperature.py

from __future__ import annotations


# Writer temperature schedule. Policy constants, not user-configurable.
INITIAL_TEMPERATURE: float = 0.7
MID_TEMPERATURE: float = 0.55
FLOOR_TEMPERATURE: float = 0.3


def writer_temperature(round_index: int, max_rounds: int) -> float:
    """Writer randomness for a given round.

    Round 0 (initial draft) is the most creative. Revisions taper
    linearly from MID at rounds 1-2 down to FLOOR at max_rounds:

        t = max(0, (round_index - 2) / max(1, max_rounds - 2))
        temperature = MID - t * (MID - FLOOR)

    Rounded to 2 decimal places. Pure function.
    """
    if round_index <= 0:
        return INITIAL_TEMPERATURE
    t = max(0.0, (round_index - 2) / max(1, max_rounds - 2))
    return round(MID_TEMPERATURE - t * (MID_TEMPERATURE - FLOOR_TEMPERATURE), 2)
