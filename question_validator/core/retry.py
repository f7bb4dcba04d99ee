"""Bounded retry with exponential back-off for store writes.

``retry_async`` calls *operation* (any zero-argument callable returning an
awaitable, a plain ``lambda`` included) and awaits the result, up to
``policy.max_attempts`` times.  Between attempts it sleeps
``base_delay_s * 2 ** (attempt - 1)`` seconds (or a flat ``base_delay_s``
when ``exponential=False``) and notifies the optional
``on_retry(attempt, exc)`` observer.  When every attempt fails, the last
attempt's exception propagates unchanged.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
    wait_fixed,
)

T = TypeVar("T")

RetryObserver = Callable[[int, BaseException], None]


@dataclass(frozen=True)
class RetryPolicy:
    max_attempts: int = 3
    base_delay_s: float = 5.0
    exponential: bool = True
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay_s < 0:
            raise ValueError("base_delay_s must be >= 0")

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after failed *attempt* (1-based)."""
        if not self.exponential:
            return self.base_delay_s
        return self.base_delay_s * (2 ** (attempt - 1))


async def retry_async(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    context: str = "Operation",
    on_retry: RetryObserver | None = None,
    logger: logging.Logger | None = None,
) -> T:
    log = logger or logging.getLogger(__name__)

    if policy.exponential:
        wait = wait_exponential(multiplier=policy.base_delay_s, exp_base=2, min=0)
    else:
        wait = wait_fixed(policy.base_delay_s)

    def _before_sleep(state: RetryCallState) -> None:
        exc = state.outcome.exception() if state.outcome is not None else None
        delay = state.next_action.sleep if state.next_action is not None else 0.0
        log.warning(
            "%s failed (attempt %d/%d), retrying in %.2fs: %s",
            context,
            state.attempt_number,
            policy.max_attempts,
            delay,
            exc,
        )
        if on_retry is not None and exc is not None:
            on_retry(state.attempt_number, exc)

    retrying = AsyncRetrying(
        stop=stop_after_attempt(policy.max_attempts),
        wait=wait,
        retry=retry_if_exception_type(policy.retry_on),
        before_sleep=_before_sleep,
        reraise=True,
    )
    try:
        async for attempt in retrying:
            with attempt:
                return await operation()
    except policy.retry_on as exc:
        log.error("%s failed after %d attempts: %s", context, policy.max_attempts, exc)
        raise
