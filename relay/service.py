"""Invocation boundary.

converge() turns one ConvergeRequest into one ConvergeResponse:
throttle, validate, resolve template and generators, merge overrides
with template defaults, run the controller under a wall-clock deadline,
and log a single summary line. It never raises for request problems;
they come back as success=False responses.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from typing import Callable, Optional

from convergence.core.config import LLMConfig
from convergence.core.errors import ConvergenceError, RateLimitedError
from convergence.core.llm import Generator
from convergence.loop import ConvergenceController
from convergence.models import (
    ArtifactTemplate,
    ConvergenceResult,
    GeneratorBinding,
    SessionInputs,
    StopReason,
    effective,
)
from relay.config import RunnerConfig
from relay.models import ConvergeRequest, ConvergeResponse, ProviderType
from relay.providers import get_generator
from relay.ratelimit import AllowAll, RateLimiter
from relay.templates import get_template

logger = logging.getLogger(__name__)

GeneratorFactory = Callable[[ProviderType, LLMConfig], Generator]


def build_session_inputs(
    request: ConvergeRequest,
    template: ArtifactTemplate,
    writer: Generator,
    collaborator: Generator,
) -> SessionInputs:
    """Resolve a request against its template. Pure function."""
    policy = template.convergence_policy
    return SessionInputs(
        idea=request.idea,
        context=request.context or None,
        template=template,
        writer=GeneratorBinding(writer, request.writer_model),
        collaborator=GeneratorBinding(collaborator, request.collaborator_model),
        max_rounds=effective(request.max_rounds, policy.max_rounds),
        score_threshold=effective(request.score_threshold, policy.score_threshold),
    )


def timeout_result(
    inputs: SessionInputs,
    progress: dict,
    elapsed_ms: int,
) -> ConvergenceResult:
    """ERROR_FALLBACK result for a session cut off by the deadline.

    Built from the last state snapshot the controller published, so the
    draft and rounds finished before the deadline are kept.
    """
    return ConvergenceResult(
        final=progress.get("draft", ""),
        stop_reason=StopReason.ERROR_FALLBACK,
        rounds=list(progress.get("rounds", [])),
        unresolved_questions=list(progress.get("unresolved_questions", [])),
        total_time_ms=elapsed_ms,
        metadata={
            "templateId": inputs.template.id,
            "writerModel": inputs.writer.model,
            "collaboratorModel": inputs.collaborator.model,
        },
        error="Timeout",
    )


async def converge(
    request: ConvergeRequest,
    *,
    client_key: str = "local",
    rate_limiter: Optional[RateLimiter] = None,
    generator_factory: Optional[GeneratorFactory] = None,
    config: Optional[RunnerConfig] = None,
) -> ConvergeResponse:
    """Run one convergence request end to end.

    Args:
        request: The caller's request.
        client_key: Rate-limit key (remote address, user id, ...).
        rate_limiter: Admission policy. Default: admit everything.
        generator_factory: Builds a Generator per provider. Default:
            vendor clients keyed from environment variables.
        config: Timeout, limits and sub-configs.
    """
    config = config or RunnerConfig()
    limiter = rate_limiter or AllowAll()
    factory = generator_factory or get_generator
    request_id = str(uuid.uuid4())

    try:
        if not limiter.admit(client_key):
            raise RateLimitedError("Too many requests. Please try again later.")
        request.validate(config.limits)
        template = get_template(request.template_id)
        writer = factory(request.writer_provider, config.llm)
        collaborator = factory(request.collaborator_provider, config.llm)
    except ConvergenceError as e:
        logger.warning("[CONVERGE] rid=%s rejected: %s", request_id, e)
        return ConvergeResponse(success=False, request_id=request_id, error=str(e))

    inputs = build_session_inputs(request, template, writer, collaborator)
    controller = ConvergenceController(config.convergence)
    progress: dict = {}
    started = time.monotonic()

    try:
        result = await asyncio.wait_for(
            controller.run(inputs, progress), timeout=config.timeout_seconds
        )
    except asyncio.TimeoutError:
        logger.warning(
            "[CONVERGE] rid=%s TIMEOUT after %ss", request_id, config.timeout_seconds
        )
        elapsed_ms = int((time.monotonic() - started) * 1000)
        return ConvergeResponse(
            success=False,
            request_id=request_id,
            data=timeout_result(inputs, progress, elapsed_ms),
            error="Timeout",
        )

    logger.info(
        "[CONVERGE] rid=%s tid=%s wp=%s cp=%s stop=%s time=%dms",
        request_id, request.template_id, request.writer_provider.value,
        request.collaborator_provider.value, result.stop_reason.value,
        result.total_time_ms,
    )
    return ConvergeResponse(
        success=result.error is None,
        request_id=request_id,
        data=result,
        error=result.error,
    )
