"""Convergence loop configuration."""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class ConvergenceConfig:
    """Configurable parameters for the convergence loop.

    Declarative: behavior is driven by these values, not if-else chains.
    Round limits and score thresholds come from the template policy (or
    the request), not from here.
    """

    # Structured-response validator: regenerations after the first attempt
    json_max_retries: int = 1

    # Stop evaluation
    stall_limit: int = 2

    # Memory compression
    memory_window: int = 3
    resolved_limit: int = 3

    # Generation parameters per role
    collaborator_temperature: float = 0.0
    writer_max_tokens: int = 4096
    collaborator_max_tokens: int = 4096
