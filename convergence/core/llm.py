"""Generator protocol and vendor implementations.

The loop controller depends on the Generator protocol via dependency
injection. No module outside this one instantiates any vendor SDK.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, Optional, Protocol, TypeVar, runtime_checkable

from convergence.core.config import LLMConfig
from convergence.core.errors import LLMError
from convergence.core.structured import SchemaParser, produce_structured

logger = logging.getLogger(__name__)

T = TypeVar("T")

JSON_ONLY_SYSTEM = (
    "Output only valid JSON. Do not include any explanation or "
    "markdown formatting outside the JSON."
)
JSON_ONLY_PREFIX = "Respond with valid JSON only. "


@runtime_checkable
class Generator(Protocol):
    """Protocol for text-generation back-ends.

    The controller depends on this, not on any SDK directly.
    Enables testing with scripted mock generators.
    """

    async def complete(
        self,
        system: str,
        user: str,
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> str:
        """Return the text content of the response."""
        ...

    async def complete_json(
        self,
        system: str,
        user: str,
        parse: SchemaParser[T],
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        max_retries: int = 1,
    ) -> T:
        """Return the response parsed and validated by `parse`."""
        ...


def _json_system(system: str) -> str:
    return f"{system}\n\n{JSON_ONLY_SYSTEM}" if system else JSON_ONLY_SYSTEM


class _VendorClient:
    """Shared retry and JSON plumbing for the vendor clients.

    Subclasses implement _create() for one raw API call. Transient failures
    are retried here with exponential backoff; after max_retries the last
    error surfaces as LLMError.
    """

    vendor = "LLM"

    def __init__(self, config: LLMConfig, default_model: str) -> None:
        self.config = config
        self.default_model = default_model

    async def _create(
        self,
        system: str,
        user: str,
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        raise NotImplementedError

    async def _with_retries(self, call: Callable[[], Awaitable[str]]) -> str:
        last_error: Optional[Exception] = None
        for attempt in range(self.config.max_retries):
            try:
                return await call()
            except Exception as e:
                last_error = e
                logger.debug("%s call failed (attempt %d): %s", self.vendor, attempt + 1, e)
                if attempt < self.config.max_retries - 1:
                    await asyncio.sleep(2**attempt)
        raise LLMError(
            f"{self.vendor} call failed after {self.config.max_retries} retries: {last_error}"
        )

    async def complete(
        self,
        system: str,
        user: str,
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
    ) -> str:
        return await self._with_retries(
            lambda: self._create(
                system, user, model or self.default_model, temperature, max_tokens, False
            )
        )

    async def complete_json(
        self,
        system: str,
        user: str,
        parse: SchemaParser[T],
        model: Optional[str] = None,
        temperature: float = 0.0,
        max_tokens: int = 4096,
        max_retries: int = 1,
    ) -> T:
        async def generate() -> str:
            return await self._with_retries(
                lambda: self._create(
                    _json_system(system),
                    JSON_ONLY_PREFIX + user,
                    model or self.default_model,
                    temperature,
                    max_tokens,
                    True,
                )
            )

        return await produce_structured(generate, parse, max_retries)

    async def ping(self) -> bool:
        """Cheap connectivity check. Never raises."""
        try:
            await self._create("", "Ping", self.default_model, 0.0, 1, False)
            return True
        except Exception as e:
            logger.error("%s connection failed: %s", self.vendor, e)
            return False


class OpenAIClient(_VendorClient):
    """Generator implementation using the OpenAI chat completions API."""

    vendor = "OpenAI"

    def __init__(
        self,
        config: LLMConfig,
        api_key: str = "",
        default_model: str = "gpt-4o",
    ) -> None:
        super().__init__(config, default_model)
        # Lazy import: each vendor SDK is only needed when its client is used
        try:
            from openai import AsyncOpenAI
        except ImportError as e:
            raise LLMError(
                "openai package not installed. "
                "Install with: pip install openai"
            ) from e
        self._client = AsyncOpenAI(api_key=api_key or None)

    async def _create(
        self,
        system: str,
        user: str,
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        messages: list[dict[str, Any]] = []
        if system:
            messages.append({"role": "system", "content": system})
        messages.append({"role": "user", "content": user})
        params: dict[str, Any] = dict(
            model=model,
            messages=messages,
            temperature=temperature,
            max_tokens=max_tokens,
        )
        if json_mode:
            params["response_format"] = {"type": "json_object"}
        response = await self._client.chat.completions.create(**params)
        content = response.choices[0].message.content
        if content is None:
            raise LLMError("OpenAI returned an empty message")
        return content


class AnthropicClient(_VendorClient):
    """Generator implementation using the Anthropic messages API."""

    vendor = "Anthropic"

    def __init__(
        self,
        config: LLMConfig,
        api_key: str = "",
        default_model: str = "claude-3-5-sonnet-20240620",
    ) -> None:
        super().__init__(config, default_model)
        try:
            import anthropic
        except ImportError as e:
            raise LLMError(
                "anthropic package not installed. "
                "Install with: pip install anthropic"
            ) from e
        self._client = anthropic.AsyncAnthropic(api_key=api_key or None)

    async def _create(
        self,
        system: str,
        user: str,
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        params: dict[str, Any] = dict(
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            messages=[{"role": "user", "content": user}],
        )
        if system:
            params["system"] = system
        response = await self._client.messages.create(**params)
        block = response.content[0]
        if getattr(block, "type", "text") != "text":
            raise LLMError(f"Anthropic returned a non-text block: {block.type}")
        return block.text


class GeminiClient(_VendorClient):
    """Generator implementation using the Google Gemini API.

    Uses the google-genai SDK.
    """

    vendor = "Gemini"

    def __init__(
        self,
        config: LLMConfig,
        api_key: str = "",
        default_model: str = "gemini-1.5-pro",
    ) -> None:
        super().__init__(config, default_model)
        try:
            from google import genai
        except ImportError as e:
            raise LLMError(
                "google-genai package not installed. "
                "Install with: pip install google-genai"
            ) from e
        self._client = genai.Client(api_key=api_key or None)

    async def _create(
        self,
        system: str,
        user: str,
        model: str,
        temperature: float,
        max_tokens: int,
        json_mode: bool,
    ) -> str:
        from google.genai import types

        config = types.GenerateContentConfig(
            system_instruction=system or None,
            temperature=temperature,
            max_output_tokens=max_tokens,
            response_mime_type="application/json" if json_mode else None,
        )
        response = await self._client.aio.models.generate_content(
            model=model,
            contents=user,
            config=config,
        )
        if response.text is None:
            raise LLMError("Gemini returned no text")
        return response.text
