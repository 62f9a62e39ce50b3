"""Tenacity-powered retry helpers."""

from __future__ import annotations

from collections.abc import Awaitable, Callable
from typing import ParamSpec, TypeVar

import logfire
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.exceptions import AgentError

P = ParamSpec("P")
T = TypeVar("T")

RETRYABLE_ERRORS: tuple[type[BaseException], ...] = (AgentError, ConnectionError, TimeoutError)


def _log_retry(retry_state: RetryCallState) -> None:
    exception = retry_state.outcome.exception() if retry_state.outcome else None
    logfire.warning(
        "Retrying operation",
        attempt=retry_state.attempt_number,
        error=str(exception) if exception else None,
    )


async def retry_async(
    func: Callable[P, Awaitable[T]],
    *args: P.args,
    attempts: int = 3,
    base_delay: float = 0.5,
    max_delay: float = 8.0,
    **kwargs: P.kwargs,
) -> T:
    """Run an async callable, retrying transient failures with exponential backoff.

    Args:
        func: Coroutine function to call
        attempts: Total attempts including the first one
        base_delay: Delay before the first retry, doubled per attempt
        max_delay: Upper bound for a single backoff delay

    Returns:
        Whatever ``func`` returns on its first successful attempt
    """

    retry_policy = AsyncRetrying(
        stop=stop_after_attempt(max(1, attempts)),
        wait=wait_exponential(multiplier=base_delay, min=base_delay, max=max_delay),
        retry=retry_if_exception_type(RETRYABLE_ERRORS),
        before_sleep=_log_retry,
        reraise=True,
    )

    async for attempt in retry_policy:
        with attempt:
            return await func(*args, **kwargs)

    raise AssertionError("retry_async exhausted without result")  # pragma: no cover
