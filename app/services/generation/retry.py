from __future__ import annotations

import asyncio
import logging
from typing import Any, Awaitable, Callable, List, Optional, TypeVar

from tenacity import (
    AsyncRetrying,
    RetryCallState,
    retry_if_exception,
    stop_after_attempt,
    wait_incrementing,
)

from app.core.exceptions import GenerationAttemptError
from app.schemas.generation import RetryAttempt

logger = logging.getLogger(__name__)

T = TypeVar("T")


def is_retryable(error: BaseException) -> bool:
    """Transient provider/parse failures are retried; credentials and unknowns are fatal."""
    return isinstance(error, GenerationAttemptError) and error.retryable


class RetryPolicy:
    """
    Bounded retry with linear back-off around one provider call.

    Attempt ``n`` is followed by a ``n * base_delay`` wait. Exhausting
    ``max_attempts`` re-raises the last error unchanged. Back-off suspends
    only the calling task, and cancelling that task aborts the loop.
    """

    def __init__(self, max_attempts: int = 2, base_delay: float = 1.0,
                 sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self._sleep = sleep

    async def call(self, attempt_fn: Callable[[], Awaitable[T]], label: str = "call",
                   attempts: Optional[List[RetryAttempt]] = None) -> T:
        """
        Run ``attempt_fn`` until it succeeds, fails fatally, or attempts run out.

        Args:
            attempt_fn: Zero-argument coroutine factory; called once per attempt.
            label: Name used in log lines (usually the provider name).
            attempts: Optional list that receives one RetryAttempt per failed attempt.
        """
        log = attempts if attempts is not None else []

        def _before_sleep(retry_state: RetryCallState) -> None:
            error = retry_state.outcome.exception()
            delay = retry_state.next_action.sleep if retry_state.next_action else 0.0
            log.append(RetryAttempt(attempt=retry_state.attempt_number, delay=delay, error=str(error)))
            logger.warning(
                f"[{label}] Attempt {retry_state.attempt_number}/{self.max_attempts} failed "
                f"({getattr(error, 'kind', type(error).__name__)}). Retrying in {delay:.1f}s"
            )

        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_incrementing(start=self.base_delay, increment=self.base_delay),
            retry=retry_if_exception(is_retryable),
            before_sleep=_before_sleep,
            sleep=self._sleep,
            reraise=True,
        )

        try:
            async for attempt in retrying:
                with attempt:
                    return await attempt_fn()
        except GenerationAttemptError as e:
            log.append(RetryAttempt(attempt=len(log) + 1, delay=0.0, error=str(e)))
            raise
        # Unreachable: reraise=True always re-raises the final error
        raise RuntimeError(f"[{label}] retry loop exited without a result")
