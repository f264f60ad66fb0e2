"""Foundation configuration dataclasses.

LLMConfig is shared across convergence and relay.
All behavior-controlling parameters live here, not as magic numbers in code.
"""

from __future__ import annotations

from dataclasses import dataclass


@dataclass(frozen=True)
class LLMConfig:
    """Vendor-neutral configuration for generator API calls.

    Controls transport behavior only. Sampling parameters are chosen
    per call by the loop; auth (API keys) is handled by each client.
    """

    # Attempts per call before a transient failure surfaces as LLMError
    max_retries: int = 3
