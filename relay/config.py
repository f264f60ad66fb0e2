"""Runner configuration.

Composes all sub-configs. Each module receives the relevant slice.
Uses field(default_factory=...) for mutable defaults.
"""

from __future__ import annotations

from dataclasses import dataclass, field

from convergence.config import ConvergenceConfig
from convergence.core.config import LLMConfig


@dataclass(frozen=True)
class RateLimitConfig:
    """Per-client request budget at the invocation boundary."""

    window_seconds: float = 600.0
    max_requests: int = 10


@dataclass(frozen=True)
class RequestLimits:
    """Bounds on caller-supplied overrides."""

    max_rounds_min: int = 1
    max_rounds_max: int = 10
    score_threshold_min: float = 1.0
    score_threshold_max: float = 10.0


@dataclass(frozen=True)
class RunnerConfig:
    """Top-level configuration for a convergence runner."""

    # Wall-clock budget for one whole session
    timeout_seconds: float = 60.0

    convergence: ConvergenceConfig = field(default_factory=ConvergenceConfig)
    llm: LLMConfig = field(default_factory=LLMConfig)
    limits: RequestLimits = field(default_factory=RequestLimits)
