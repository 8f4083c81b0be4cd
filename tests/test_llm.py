# =============================================================================
# Unit Tests: Model Endpoints
# =============================================================================
#
# Provider request shaping, SDK error classification and role endpoint
# construction. SDK clients are replaced with AsyncMock; no network calls.
# =============================================================================

from __future__ import annotations

import asyncio
from types import SimpleNamespace
from unittest.mock import AsyncMock

import anthropic
import httpx
import openai
import pytest

from consensus_engine.config import Settings
from consensus_engine.errors import PermanentCallFailure, TransientCallFailure
from consensus_engine.models.records import Role
from consensus_engine.services.llm import (
    AnthropicProvider,
    LLMResponse,
    OpenAICompatibleProvider,
    ProviderEndpoint,
    RolePrompt,
    SamplingConfig,
    build_role_endpoints,
    classify_provider_error,
    parse_provider_id,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


_REQUEST = httpx.Request("POST", "https://api.example.com/v1/chat/completions")


def _status_error(cls, status: int):
    return cls("error", response=httpx.Response(status, request=_REQUEST), body=None)


def _anthropic_message(text: str = "claude says"):
    return SimpleNamespace(
        content=[SimpleNamespace(type="text", text=text)],
        model="claude-sonnet-4-6",
        usage=SimpleNamespace(input_tokens=10, output_tokens=5),
    )


def _openai_completion(text: str = "gpt says"):
    return SimpleNamespace(
        choices=[SimpleNamespace(message=SimpleNamespace(content=text))],
        model="gpt-4.1",
        usage=SimpleNamespace(prompt_tokens=12, completion_tokens=6),
    )


# ---------------------------------------------------------------------------
# Test: Provider ID Parsing
# ---------------------------------------------------------------------------


class TestParseProviderId:
    def test_anthropic(self):
        assert parse_provider_id("anthropic/claude-sonnet-4-6") == (
            "anthropic", "claude-sonnet-4-6", None,
        )

    def test_openai_compatible_with_base_url(self):
        assert parse_provider_id("openai_compatible/sonar-pro@https://api.perplexity.ai") == (
            "openai_compatible", "sonar-pro", "https://api.perplexity.ai",
        )

    def test_missing_slash_rejected(self):
        with pytest.raises(ValueError):
            parse_provider_id("gpt-4.1")

    def test_unknown_type_rejected(self):
        with pytest.raises(ValueError):
            parse_provider_id("cohere/command-r")

    def test_empty_model_rejected(self):
        with pytest.raises(ValueError):
            parse_provider_id("anthropic/")


# ---------------------------------------------------------------------------
# Test: Providers
# ---------------------------------------------------------------------------


class TestAnthropicProvider:
    def test_missing_key_raises(self):
        with pytest.raises(ValueError):
            AnthropicProvider(api_key="", model="claude-sonnet-4-6")

    def test_system_prompt_and_zero_temperature(self):
        provider = AnthropicProvider(api_key="test-key", model="claude-sonnet-4-6")
        provider._client.messages.create = AsyncMock(return_value=_anthropic_message())

        response = _run(provider.complete(
            messages=[{"role": "user", "content": "hi"}],
            system="be precise",
            temperature=0.0,
            max_tokens=100,
            seed=42,
        ))

        kwargs = provider._client.messages.create.call_args.kwargs
        assert kwargs["system"] == "be precise"
        assert kwargs["temperature"] == 0.0
        assert kwargs["max_tokens"] == 100
        assert "seed" not in kwargs
        assert response.content == "claude says"
        assert response.input_tokens == 10


class TestOpenAICompatibleProvider:
    def test_system_message_seed_and_zero_temperature(self):
        provider = OpenAICompatibleProvider(api_key="test-key", model="gpt-4.1")
        provider._client.chat.completions.create = AsyncMock(
            return_value=_openai_completion(),
        )

        response = _run(provider.complete(
            messages=[{"role": "user", "content": "hi"}],
            system="be precise",
            temperature=0.0,
            seed=42,
        ))

        kwargs = provider._client.chat.completions.create.call_args.kwargs
        assert kwargs["messages"][0] == {"role": "system", "content": "be precise"}
        assert kwargs["temperature"] == 0.0
        assert kwargs["seed"] == 42
        assert response.content == "gpt says"
        assert response.output_tokens == 6

    def test_none_content_becomes_empty_string(self):
        provider = OpenAICompatibleProvider(api_key="test-key", model="gpt-4.1")
        provider._client.chat.completions.create = AsyncMock(
            return_value=_openai_completion(text=None),
        )
        response = _run(provider.complete(messages=[{"role": "user", "content": "hi"}]))
        assert response.content == ""


# ---------------------------------------------------------------------------
# Test: Error Classification
# ---------------------------------------------------------------------------


class TestClassifyProviderError:
    @pytest.mark.parametrize(
        "exc",
        [
            openai.APIConnectionError(request=_REQUEST),
            openai.APITimeoutError(request=_REQUEST),
            anthropic.APIConnectionError(request=_REQUEST),
            TimeoutError("slow"),
            _status_error(openai.RateLimitError, 429),
            _status_error(anthropic.RateLimitError, 429),
            _status_error(openai.InternalServerError, 503),
        ],
    )
    def test_transient(self, exc):
        assert classify_provider_error(exc).transient

    @pytest.mark.parametrize(
        "exc",
        [
            _status_error(openai.AuthenticationError, 401),
            _status_error(anthropic.AuthenticationError, 401),
            _status_error(openai.BadRequestError, 400),
            _status_error(openai.NotFoundError, 404),
            RuntimeError("unexpected"),
        ],
    )
    def test_permanent(self, exc):
        failure = classify_provider_error(exc)
        assert isinstance(failure, PermanentCallFailure)

    def test_status_code_kept(self):
        failure = classify_provider_error(_status_error(openai.RateLimitError, 429))
        assert failure.status_code == 429


# ---------------------------------------------------------------------------
# Test: ProviderEndpoint
# ---------------------------------------------------------------------------


class TestProviderEndpoint:
    def _endpoint(self, **complete_kwargs):
        provider = SimpleNamespace(model="fake", complete=AsyncMock(**complete_kwargs))
        return ProviderEndpoint(provider), provider

    def test_forwards_prompt_and_sampling(self):
        endpoint, provider = self._endpoint(
            return_value=LLMResponse("text", "fake", 1, 1),
        )
        sampling = SamplingConfig(temperature=0.0, seed=9, max_tokens=50)

        _run(endpoint.generate(Role.STRATEGIC, RolePrompt("sys", "usr"), sampling))

        kwargs = provider.complete.call_args.kwargs
        assert kwargs["system"] == "sys"
        assert kwargs["messages"] == [{"role": "user", "content": "usr"}]
        assert kwargs["temperature"] == 0.0
        assert kwargs["seed"] == 9
        assert kwargs["max_tokens"] == 50

    def test_sdk_error_is_classified(self):
        endpoint, _ = self._endpoint(side_effect=_status_error(openai.RateLimitError, 429))
        with pytest.raises(TransientCallFailure):
            _run(endpoint.generate(Role.STRATEGIC, RolePrompt("s", "u"), SamplingConfig()))

    def test_empty_completion_is_transient(self):
        endpoint, _ = self._endpoint(return_value=LLMResponse("  ", "fake", 1, 0))
        with pytest.raises(TransientCallFailure):
            _run(endpoint.generate(Role.STRATEGIC, RolePrompt("s", "u"), SamplingConfig()))


# ---------------------------------------------------------------------------
# Test: Role Endpoints From Settings
# ---------------------------------------------------------------------------


class TestBuildRoleEndpoints:
    def test_one_endpoint_per_role(self):
        settings = Settings(openai_api_key="sk-test", anthropic_api_key="ak-test")
        endpoints = build_role_endpoints(settings)

        assert set(endpoints) == set(Role)
        assert endpoints[Role.OPERATIONAL].model == "claude-sonnet-4-6"
        assert endpoints[Role.VALIDATION].model == "sonar-pro"

    def test_role_key_overrides_shared_key(self):
        settings = Settings(
            openai_api_key="",
            anthropic_api_key="ak-test",
            quantitative_api_key="q-key",
            strategic_api_key="s-key",
            validation_api_key="v-key",
        )
        endpoints = build_role_endpoints(settings)
        assert len(endpoints) == 4

    def test_missing_key_raises(self):
        settings = Settings(openai_api_key="", anthropic_api_key="")
        with pytest.raises(ValueError):
            build_role_endpoints(settings)


class TestSamplingConfig:
    def test_reproducible_requires_zero_temperature_and_seed(self):
        assert SamplingConfig(temperature=0.0, seed=1).reproducible
        assert not SamplingConfig(temperature=0.0, seed=None).reproducible
        assert not SamplingConfig(temperature=0.7, seed=1).reproducible
