# =============================================================================
# Model Endpoints: Multi-Provider LLM Abstraction
# =============================================================================
#
# Each of the four roles is bound to one external provider. This module turns
# provider SDKs into a uniform `ModelEndpoint` that either returns text or
# raises a typed call failure the retry envelope understands.
#
# DESIGN DECISION: Protocol (structural typing) over ABC.
# Tests substitute any object with a matching `generate()` coroutine.
#
# DESIGN DECISION: Native SDKs (anthropic, openai) over LangChain wrappers.
# Most providers (Gemini, Perplexity, DeepSeek, Qwen) expose OpenAI-compatible
# APIs, so two implementations cover all four roles.
#
# DESIGN DECISION: Providers take explicit configuration.
# Keys, models and base URLs are resolved once in `build_role_endpoints()`
# from Settings; the provider classes never consult global settings.
#
# ARCHITECTURE:
#   LLMProvider (Protocol)           - complete(messages, system, ...)
#   ├── AnthropicProvider            - system prompt as top-level kwarg
#   └── OpenAICompatibleProvider     - system prompt as message role
#   ModelEndpoint (Protocol)         - generate(role, prompt, sampling)
#   └── ProviderEndpoint             - provider + SDK error classification
#   parse_provider_id() / create_provider_from_id() / build_role_endpoints()
# =============================================================================

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import TYPE_CHECKING, Protocol

import anthropic
import openai

from consensus_engine.errors import (
    CallFailure,
    PermanentCallFailure,
    TransientCallFailure,
)
from consensus_engine.models.records import Role

if TYPE_CHECKING:
    from consensus_engine.config import Settings

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Data Structures
# ---------------------------------------------------------------------------


@dataclass
class LLMResponse:
    """
    Standardised response from any LLM provider.

    Normalises the Anthropic and OpenAI response formats into a single
    structure that downstream code can consume.
    """

    content: str           # The generated text
    model: str             # Model identifier (e.g., "claude-sonnet-4-6")
    input_tokens: int      # Tokens consumed by the prompt
    output_tokens: int     # Tokens generated in the response


@dataclass(frozen=True)
class SamplingConfig:
    """
    Determinism knobs forwarded unchanged to every endpoint.

    `seed` is only honoured by providers that support it.
    """

    temperature: float = 0.0
    seed: int | None = None
    max_tokens: int = 4096

    @classmethod
    def from_settings(cls, settings: Settings) -> SamplingConfig:
        return cls(
            temperature=settings.llm_temperature,
            seed=settings.llm_seed,
            max_tokens=settings.llm_max_tokens,
        )

    @property
    def reproducible(self) -> bool:
        """True when the request pins both temperature and seed."""
        return self.temperature == 0.0 and self.seed is not None


@dataclass(frozen=True)
class RolePrompt:
    """The payload of one role call: a system prompt and a user message."""

    system: str
    user: str


# ---------------------------------------------------------------------------
# Protocol Definitions
# ---------------------------------------------------------------------------


class LLMProvider(Protocol):
    """Provider-level interface: one chat completion."""

    model: str

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        seed: int | None = None,
    ) -> LLMResponse:
        """
        Generate a completion from the LLM.

        Args:
            messages: Conversation messages as dicts with "role" and "content".
            system: System prompt. Anthropic takes it as a top-level kwarg,
                OpenAI-compatible APIs as the first message.
            temperature: Sampling temperature. 0.0 is a valid value.
            max_tokens: Maximum output tokens.
            seed: Sampling seed, where the API supports one.
        """
        ...


class ModelEndpoint(Protocol):
    """
    Role-level interface consumed by the remote call wrapper.

    Implementations raise `TransientCallFailure` or `PermanentCallFailure`;
    any other exception is treated as permanent by the wrapper.
    """

    model: str

    async def generate(
        self,
        role: Role,
        prompt: RolePrompt,
        sampling: SamplingConfig,
    ) -> LLMResponse:
        ...


# ---------------------------------------------------------------------------
# Implementation 1: Anthropic (Claude)
# ---------------------------------------------------------------------------


class AnthropicProvider:
    """
    Anthropic Claude provider using the native async SDK.

    KEY API DIFFERENCE: Anthropic takes system prompts as a top-level
    `system=` kwarg, NOT as a message with role "system". The Messages API
    has no seed parameter, so `seed` is ignored here.

    SDK-level retries are disabled (`max_retries=0`): retrying is owned by
    the remote call wrapper.
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        timeout: float | None = None,
    ) -> None:
        if not api_key:
            raise ValueError(
                "No Anthropic API key configured. Set the role's API key or "
                "ANTHROPIC_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": api_key, "max_retries": 0}
        if timeout is not None:
            client_kwargs["timeout"] = timeout

        self._client = anthropic.AsyncAnthropic(**client_kwargs)
        self.model = model

        logger.info("Initialized AnthropicProvider (model=%s)", self.model)

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        seed: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using Claude."""
        kwargs: dict = {
            "model": self.model,
            "messages": messages,
            "max_tokens": max_tokens or 4096,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature

        # Anthropic: system prompt is a top-level kwarg, not a message
        if system:
            kwargs["system"] = system

        response = await self._client.messages.create(**kwargs)

        # Extract text from the first content block
        content = ""
        for block in response.content:
            if block.type == "text":
                content = block.text
                break

        return LLMResponse(
            content=content,
            model=response.model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )


# ---------------------------------------------------------------------------
# Implementation 2: OpenAI-Compatible (OpenAI, Gemini, Perplexity, DeepSeek…)
# ---------------------------------------------------------------------------


class OpenAICompatibleProvider:
    """
    Provider for any API that follows the OpenAI chat completions spec.

    Switching providers is a config change:
        STRATEGIC_PROVIDER=openai_compatible/deepseek-chat@https://api.deepseek.com/v1
        STRATEGIC_API_KEY=your-key
    """

    def __init__(
        self,
        api_key: str,
        model: str,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        if not api_key:
            raise ValueError(
                "No API key configured for OpenAI-compatible provider "
                f"'{model}'. Set the role's API key or OPENAI_API_KEY in .env"
            )

        client_kwargs: dict = {"api_key": api_key, "max_retries": 0}
        if base_url:
            client_kwargs["base_url"] = base_url
        if timeout is not None:
            client_kwargs["timeout"] = timeout

        self._client = openai.AsyncOpenAI(**client_kwargs)
        self.model = model

        logger.info(
            "Initialized OpenAICompatibleProvider (model=%s, base_url=%s)",
            self.model,
            base_url or "https://api.openai.com/v1",
        )

    async def complete(
        self,
        messages: list[dict[str, str]],
        system: str | None = None,
        temperature: float | None = None,
        max_tokens: int | None = None,
        seed: int | None = None,
    ) -> LLMResponse:
        """Generate a completion using an OpenAI-compatible API."""
        # OpenAI: system prompt goes as the first message
        all_messages: list[dict[str, str]] = []
        if system:
            all_messages.append({"role": "system", "content": system})
        all_messages.extend(messages)

        kwargs: dict = {
            "model": self.model,
            "messages": all_messages,
            "max_tokens": max_tokens or 4096,
        }
        if temperature is not None:
            kwargs["temperature"] = temperature
        if seed is not None:
            kwargs["seed"] = seed

        response = await self._client.chat.completions.create(**kwargs)

        content = response.choices[0].message.content or ""

        # Token counts: OpenAI uses different field names than Anthropic
        usage = response.usage
        input_tokens = usage.prompt_tokens if usage else 0
        output_tokens = usage.completion_tokens if usage else 0

        return LLMResponse(
            content=content,
            model=response.model or self.model,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
        )


# ---------------------------------------------------------------------------
# Error Classification
# ---------------------------------------------------------------------------
# Transient: timeouts, connection drops, 408/409/425/429, any 5xx.
# Permanent: every other HTTP status (401 auth, 400 malformed, 404 model…)
# and any exception that does not come from the transport.
# ---------------------------------------------------------------------------

_TRANSIENT_STATUS_CODES = frozenset({408, 409, 425, 429})

_CONNECTION_ERRORS: tuple[type[BaseException], ...] = (
    TimeoutError,
    anthropic.APIConnectionError,  # includes APITimeoutError
    openai.APIConnectionError,     # includes APITimeoutError
)


def classify_provider_error(exc: BaseException) -> CallFailure:
    """Map an SDK exception onto the transient/permanent taxonomy."""
    if isinstance(exc, CallFailure):
        return exc

    description = f"{type(exc).__name__}: {exc}"

    if isinstance(exc, _CONNECTION_ERRORS):
        return TransientCallFailure(description)

    status = getattr(exc, "status_code", None)
    if isinstance(status, int):
        if status in _TRANSIENT_STATUS_CODES or status >= 500:
            return TransientCallFailure(description, status_code=status)
        return PermanentCallFailure(description, status_code=status)

    return PermanentCallFailure(description)


class ProviderEndpoint:
    """Adapts an `LLMProvider` to the role-level `ModelEndpoint` interface."""

    def __init__(self, provider: LLMProvider) -> None:
        self._provider = provider
        self.model = provider.model

    async def generate(
        self,
        role: Role,
        prompt: RolePrompt,
        sampling: SamplingConfig,
    ) -> LLMResponse:
        try:
            response = await self._provider.complete(
                messages=[{"role": "user", "content": prompt.user}],
                system=prompt.system,
                temperature=sampling.temperature,
                max_tokens=sampling.max_tokens,
                seed=sampling.seed,
            )
        except Exception as exc:
            failure = classify_provider_error(exc)
            logger.debug(
                "%s endpoint (%s) raised %s -> %s",
                role.value, self.model, type(exc).__name__,
                "transient" if failure.transient else "permanent",
            )
            raise failure from exc

        if not response.content.strip():
            # An empty completion is usually a provider-side hiccup
            raise TransientCallFailure(
                f"{self.model} returned an empty completion"
            )
        return response


# ---------------------------------------------------------------------------
# Factories
# ---------------------------------------------------------------------------

_KNOWN_PROVIDER_TYPES = {"anthropic", "openai_compatible"}


def parse_provider_id(
    provider_id: str,
) -> tuple[str, str, str | None]:
    """
    Parse a provider_id string into (provider_type, model, base_url).

    Formats supported:
        "anthropic/claude-sonnet-4-6"
            → ("anthropic", "claude-sonnet-4-6", None)
        "openai_compatible/gpt-4.1"
            → ("openai_compatible", "gpt-4.1", None)
        "openai_compatible/sonar-pro@https://api.perplexity.ai"
            → ("openai_compatible", "sonar-pro", "https://api.perplexity.ai")

    Raises:
        ValueError: If the format is unrecognisable or provider type unknown.
    """
    if "/" not in provider_id:
        raise ValueError(
            f"Invalid provider_id '{provider_id}'. "
            "Expected format: 'provider_type/model' or "
            "'provider_type/model@base_url'"
        )

    provider_type, rest = provider_id.split("/", 1)

    base_url: str | None = None
    if "@" in rest:
        model, base_url = rest.split("@", 1)
    else:
        model = rest

    if provider_type not in _KNOWN_PROVIDER_TYPES:
        raise ValueError(
            f"Unknown provider type '{provider_type}'. "
            f"Supported types: {sorted(_KNOWN_PROVIDER_TYPES)}"
        )
    if not model:
        raise ValueError(f"Invalid provider_id '{provider_id}': empty model name")

    return provider_type, model, base_url


def create_provider_from_id(
    provider_id: str,
    api_key: str,
    timeout: float | None = None,
) -> AnthropicProvider | OpenAICompatibleProvider:
    """
    Create a fresh provider instance from a provider id string.

    Raises:
        ValueError: If provider_id is invalid or the API key is missing.
    """
    provider_type, model, base_url = parse_provider_id(provider_id)

    if provider_type == "anthropic":
        return AnthropicProvider(api_key=api_key, model=model, timeout=timeout)

    return OpenAICompatibleProvider(
        api_key=api_key, model=model, base_url=base_url, timeout=timeout,
    )


def build_role_endpoints(settings: Settings) -> dict[Role, ProviderEndpoint]:
    """
    Build the four role endpoints from settings.

    Key resolution per role: the role's own key, then the shared key of the
    provider type (ANTHROPIC_API_KEY / OPENAI_API_KEY).
    """
    endpoints: dict[Role, ProviderEndpoint] = {}
    for role in Role:
        provider_id: str = getattr(settings, f"{role.value}_provider")
        provider_type, _, _ = parse_provider_id(provider_id)
        shared_key = (
            settings.anthropic_api_key
            if provider_type == "anthropic"
            else settings.openai_api_key
        )
        api_key = getattr(settings, f"{role.value}_api_key") or shared_key
        provider = create_provider_from_id(
            provider_id, api_key=api_key, timeout=settings.remote_call_timeout_s,
        )
        endpoints[role] = ProviderEndpoint(provider)
        logger.info("Bound role %s to %s", role.value, provider_id)
    return endpoints
