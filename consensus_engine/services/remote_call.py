# =============================================================================
# Remote Call Wrapper: Bounded Retry Around Model Endpoints
# =============================================================================
#
# Every role call goes through `RemoteCallWrapper.invoke()`. The wrapper owns
# three concerns and nothing else:
#   1. Per-attempt timeout (asyncio.wait_for)
#   2. Transient/permanent classification (retry only the former)
#   3. Capped exponential backoff between attempts
#
# DESIGN DECISION: Hand-rolled retry loop, not an SDK's built-in retries.
# Provider clients are created with `max_retries=0`, so there is exactly one
# place where attempts are counted and the count lands on the record.
#
# DESIGN DECISION: Injected `sleep`.
# Tests pass a recording coroutine so backoff schedules can be asserted
# without waiting.
#
# CANCELLATION: `asyncio.CancelledError` is a BaseException and is never
# caught here. When the coordinator cancels a phase on its deadline, the
# in-flight attempt (or backoff sleep) unwinds immediately.
# =============================================================================

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass
from typing import TYPE_CHECKING

from consensus_engine.errors import (
    CallFailure,
    PermanentCallFailure,
    RemoteCallFailed,
    TransientCallFailure,
)
from consensus_engine.models.records import Role
from consensus_engine.services.llm import ModelEndpoint, RolePrompt, SamplingConfig

if TYPE_CHECKING:
    from consensus_engine.config import Settings

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class RetryPolicy:
    """Attempt budget and backoff schedule for one role call."""

    max_attempts: int = 3
    base_delay_s: float = 1.0
    max_delay_s: float = 8.0
    multiplier: float = 2.0
    attempt_timeout_s: float | None = 120.0

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_s < 0 or self.max_delay_s < 0:
            raise ValueError("delays must be non-negative")
        if self.multiplier < 1:
            raise ValueError("multiplier must be >= 1")

    @classmethod
    def from_settings(cls, settings: Settings) -> RetryPolicy:
        return cls(
            max_attempts=settings.remote_max_attempts,
            base_delay_s=settings.remote_base_delay_s,
            max_delay_s=settings.remote_max_delay_s,
            multiplier=settings.remote_backoff_multiplier,
            attempt_timeout_s=settings.remote_call_timeout_s,
        )

    def delay_after(self, attempt: int) -> float:
        """Delay before attempt `attempt + 1` (attempts are 1-indexed)."""
        return min(self.base_delay_s * self.multiplier ** (attempt - 1), self.max_delay_s)


@dataclass(frozen=True)
class RemoteCallResult:
    """Outcome of one role call as seen by the coordinator."""

    role: Role
    model: str
    content: str | None = None
    error: str | None = None
    attempts: int = 0
    elapsed_ms: int = 0

    @property
    def succeeded(self) -> bool:
        return self.error is None and self.content is not None

    @classmethod
    def from_failure(cls, failure: RemoteCallFailed, model: str) -> RemoteCallResult:
        return cls(
            role=failure.role,
            model=model,
            error=str(failure.last_error),
            attempts=failure.attempts,
            elapsed_ms=failure.elapsed_ms,
        )


class RemoteCallWrapper:
    """
    Invokes a role's endpoint with bounded retries.

    Usage:
        wrapper = RemoteCallWrapper(endpoints, RetryPolicy.from_settings(s),
                                    SamplingConfig.from_settings(s))
        result = await wrapper.invoke(Role.STRATEGIC, prompt)
    """

    def __init__(
        self,
        endpoints: Mapping[Role, ModelEndpoint],
        policy: RetryPolicy | None = None,
        sampling: SamplingConfig | None = None,
        sleep: Callable[[float], Awaitable[object]] = asyncio.sleep,
    ) -> None:
        self._endpoints = dict(endpoints)
        self.policy = policy or RetryPolicy()
        self.sampling = sampling or SamplingConfig()
        self._sleep = sleep

    def model_for(self, role: Role) -> str:
        endpoint = self._endpoints.get(role)
        return getattr(endpoint, "model", "unknown") if endpoint else "unbound"

    async def invoke(self, role: Role, payload: RolePrompt) -> RemoteCallResult:
        """
        Call the endpoint bound to `role`.

        Returns:
            RemoteCallResult with content set.

        Raises:
            RemoteCallFailed: On a permanent failure (after one attempt) or
                once `max_attempts` transient failures have been seen.
        """
        endpoint = self._endpoints.get(role)
        started = time.perf_counter()

        if endpoint is None:
            raise RemoteCallFailed(
                role, PermanentCallFailure(f"no endpoint bound to role {role.value}"), 1,
            )

        last_error: CallFailure | None = None
        for attempt in range(1, self.policy.max_attempts + 1):
            try:
                response = await asyncio.wait_for(
                    endpoint.generate(role, payload, self.sampling),
                    timeout=self.policy.attempt_timeout_s,
                )
            except TimeoutError:
                last_error = TransientCallFailure(
                    f"attempt timed out after {self.policy.attempt_timeout_s}s"
                )
            except CallFailure as exc:
                last_error = exc
            except Exception as exc:
                # Unknown failures from an endpoint are not retried
                last_error = PermanentCallFailure(f"{type(exc).__name__}: {exc}")
            else:
                elapsed_ms = int((time.perf_counter() - started) * 1000)
                logger.info(
                    "%s call succeeded (model=%s, attempt=%d, %dms)",
                    role.value, response.model, attempt, elapsed_ms,
                )
                return RemoteCallResult(
                    role=role,
                    model=response.model or self.model_for(role),
                    content=response.content,
                    attempts=attempt,
                    elapsed_ms=elapsed_ms,
                )

            if not last_error.transient:
                logger.warning(
                    "%s call failed permanently on attempt %d: %s",
                    role.value, attempt, last_error,
                )
                break

            if attempt < self.policy.max_attempts:
                delay = self.policy.delay_after(attempt)
                logger.warning(
                    "%s attempt %d/%d failed (%s), retrying in %.1fs",
                    role.value, attempt, self.policy.max_attempts, last_error, delay,
                )
                await self._sleep(delay)
            else:
                logger.error(
                    "%s call exhausted %d attempts: %s",
                    role.value, attempt, last_error,
                )

        elapsed_ms = int((time.perf_counter() - started) * 1000)
        raise RemoteCallFailed(role, last_error, attempt, elapsed_ms=elapsed_ms)
