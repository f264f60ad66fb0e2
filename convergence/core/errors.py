"""Exception hierarchy for the convergence runner.

ConvergenceError is the root. All exceptions inherit from it so callers
can catch broad categories or specific types.
"""


class ConvergenceError(Exception):
    """Root exception for the entire project."""


# --- Shared errors ---


class ConfigError(ConvergenceError):
    """Configuration errors: missing API key, invalid config values."""


class LLMError(ConvergenceError):
    """Generator call failures: auth, quota, network, provider-side errors."""


class SchemaValidationError(LLMError):
    """Structured output still invalid after all generation attempts."""


# --- Input errors (raised before any round runs) ---


class InputError(ConvergenceError):
    """Missing or invalid session inputs."""


class TemplateNotFoundError(InputError):
    """No artifact template registered under the requested id."""


class ProviderNotFoundError(InputError):
    """Unknown generator provider type."""


# --- Invocation boundary ---


class RateLimitedError(ConvergenceError):
    """The rate limiter refused the client key for the current window."""
