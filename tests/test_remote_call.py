# =============================================================================
# Unit Tests: Remote Call Wrapper
# =============================================================================
#
# Retry classification, backoff schedule, attempt timeouts and sampling
# pass-through, using scripted endpoints and a recording sleep.
# =============================================================================

from __future__ import annotations

import asyncio

import pytest

from consensus_engine.errors import (
    PermanentCallFailure,
    RemoteCallFailed,
    TransientCallFailure,
)
from consensus_engine.models.records import Role
from consensus_engine.services.llm import LLMResponse, RolePrompt, SamplingConfig
from consensus_engine.services.remote_call import (
    RemoteCallResult,
    RemoteCallWrapper,
    RetryPolicy,
)


def _run(coro):
    """Helper to run async functions in sync tests."""
    return asyncio.run(coro)


PROMPT = RolePrompt(system="sys", user="user")


class ScriptedEndpoint:
    """Raises or returns the scripted outcomes in order."""

    def __init__(self, *outcomes, model: str = "fake-model") -> None:
        self.model = model
        self._outcomes = list(outcomes)
        self.calls: list[tuple[Role, RolePrompt, SamplingConfig]] = []

    async def generate(self, role, prompt, sampling):
        self.calls.append((role, prompt, sampling))
        outcome = self._outcomes.pop(0)
        if isinstance(outcome, BaseException):
            raise outcome
        if outcome == "hang":
            await asyncio.sleep(10)
        return LLMResponse(content=outcome, model=self.model, input_tokens=1, output_tokens=1)


class RecordingSleep:
    def __init__(self) -> None:
        self.delays: list[float] = []

    async def __call__(self, delay: float) -> None:
        self.delays.append(delay)


def _wrapper(endpoint, policy=None, sampling=None, sleep=None):
    return RemoteCallWrapper(
        {Role.QUANTITATIVE: endpoint},
        policy=policy or RetryPolicy(max_attempts=3, base_delay_s=1.0, max_delay_s=8.0),
        sampling=sampling,
        sleep=sleep or RecordingSleep(),
    )


class TestRetryPolicy:
    def test_delays_grow_and_cap(self):
        policy = RetryPolicy(max_attempts=6, base_delay_s=1.0, max_delay_s=5.0, multiplier=2.0)
        assert [policy.delay_after(n) for n in range(1, 6)] == [1.0, 2.0, 4.0, 5.0, 5.0]

    def test_invalid_attempts_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_from_settings(self):
        from consensus_engine.config import Settings

        s = Settings(remote_max_attempts=5, remote_base_delay_s=0.5, remote_call_timeout_s=30)
        policy = RetryPolicy.from_settings(s)
        assert policy.max_attempts == 5
        assert policy.base_delay_s == 0.5
        assert policy.attempt_timeout_s == 30


class TestRemoteCallWrapper:
    def test_success_first_attempt(self):
        endpoint = ScriptedEndpoint("analysis")
        result = _run(_wrapper(endpoint).invoke(Role.QUANTITATIVE, PROMPT))

        assert isinstance(result, RemoteCallResult)
        assert result.succeeded
        assert result.content == "analysis"
        assert result.attempts == 1
        assert result.model == "fake-model"

    def test_transient_failures_are_retried(self):
        sleep = RecordingSleep()
        endpoint = ScriptedEndpoint(
            TransientCallFailure("rate limited", status_code=429),
            TransientCallFailure("503"),
            "ok",
        )
        result = _run(_wrapper(endpoint, sleep=sleep).invoke(Role.QUANTITATIVE, PROMPT))

        assert result.content == "ok"
        assert result.attempts == 3
        assert sleep.delays == [1.0, 2.0]

    def test_permanent_failure_is_not_retried(self):
        sleep = RecordingSleep()
        endpoint = ScriptedEndpoint(PermanentCallFailure("401 unauthorized", status_code=401), "ok")

        with pytest.raises(RemoteCallFailed) as exc_info:
            _run(_wrapper(endpoint, sleep=sleep).invoke(Role.QUANTITATIVE, PROMPT))

        assert exc_info.value.attempts == 1
        assert exc_info.value.role is Role.QUANTITATIVE
        assert isinstance(exc_info.value.last_error, PermanentCallFailure)
        assert len(endpoint.calls) == 1
        assert sleep.delays == []

    def test_unknown_exception_is_permanent(self):
        endpoint = ScriptedEndpoint(KeyError("boom"), "ok")
        with pytest.raises(RemoteCallFailed) as exc_info:
            _run(_wrapper(endpoint).invoke(Role.QUANTITATIVE, PROMPT))
        assert exc_info.value.attempts == 1

    def test_exhaustion_raises_with_attempt_count(self):
        sleep = RecordingSleep()
        endpoint = ScriptedEndpoint(*[TransientCallFailure("timeout")] * 3)

        with pytest.raises(RemoteCallFailed) as exc_info:
            _run(_wrapper(endpoint, sleep=sleep).invoke(Role.QUANTITATIVE, PROMPT))

        assert exc_info.value.attempts == 3
        assert "timeout" in str(exc_info.value.last_error)
        # No sleep after the last attempt
        assert sleep.delays == [1.0, 2.0]

    def test_attempt_timeout_counts_as_transient(self):
        policy = RetryPolicy(max_attempts=2, base_delay_s=0.0, attempt_timeout_s=0.01)
        endpoint = ScriptedEndpoint("hang", "recovered")

        result = _run(_wrapper(endpoint, policy=policy).invoke(Role.QUANTITATIVE, PROMPT))

        assert result.content == "recovered"
        assert result.attempts == 2

    def test_sampling_passed_through_unchanged(self):
        sampling = SamplingConfig(temperature=0.0, seed=7, max_tokens=256)
        endpoint = ScriptedEndpoint("ok")
        _run(_wrapper(endpoint, sampling=sampling).invoke(Role.QUANTITATIVE, PROMPT))

        role, prompt, seen = endpoint.calls[0]
        assert role is Role.QUANTITATIVE
        assert prompt == PROMPT
        assert seen == sampling

    def test_unbound_role_fails(self):
        wrapper = _wrapper(ScriptedEndpoint("ok"))
        with pytest.raises(RemoteCallFailed):
            _run(wrapper.invoke(Role.STRATEGIC, PROMPT))

    def test_cancellation_propagates(self):
        endpoint = ScriptedEndpoint("hang")
        wrapper = _wrapper(endpoint, policy=RetryPolicy(attempt_timeout_s=None))

        async def scenario():
            task = asyncio.create_task(wrapper.invoke(Role.QUANTITATIVE, PROMPT))
            await asyncio.sleep(0.01)
            task.cancel()
            with pytest.raises(asyncio.CancelledError):
                await task

        _run(scenario())
        assert len(endpoint.calls) == 1

    def test_failure_converts_to_result(self):
        failure = RemoteCallFailed(Role.VALIDATION, TransientCallFailure("503"), 3, elapsed_ms=40)
        result = RemoteCallResult.from_failure(failure, "sonar-pro")
        assert not result.succeeded
        assert result.error == "503"
        assert result.attempts == 3
        assert result.model == "sonar-pro"
