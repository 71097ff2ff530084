"""Bounded retry with exponential backoff and jitter.

:class:`RetryStrategy` executes an async thunk, re-issuing it when the
raised error is classified as retryable.  Policies are plain values so each
call site can pick its own budget (interactive streaming calls use the
stricter :data:`STREAMING_POLICY`).
"""

from __future__ import annotations

import asyncio
import random
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import TypeVar

from .errors import PipelineError, ValidationError

T = TypeVar("T")

RetryCallback = Callable[[int, PipelineError, float], None]


@dataclass(frozen=True)
class RetryPolicy:
    """Retry budget and backoff shape.

    ``max_attempts`` counts the first call, so ``3`` means at most two
    retries.  ``validation_retries`` is how many times a
    :class:`ValidationError` may be retried within one :meth:`RetryStrategy.run`.
    """

    max_attempts: int = 3
    base_delay: float = 1.0
    max_delay: float = 10.0
    factor: float = 2.0
    jitter: float = 0.25
    validation_retries: int = 1

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be >= 1")
        if self.base_delay < 0 or self.max_delay < 0:
            raise ValueError("delays must be >= 0")
        if self.factor < 1:
            raise ValueError("factor must be >= 1")


DEFAULT_POLICY = RetryPolicy()
STREAMING_POLICY = RetryPolicy(max_attempts=2, base_delay=0.5, max_delay=4.0)
# Same-prompt re-issue after a schema failure: immediate, once.
VALIDATION_POLICY = RetryPolicy(max_attempts=2, base_delay=0.0, max_delay=0.0, jitter=0.0)


class RetryStrategy:
    """Runs a thunk with bounded retries.

    Args:
        policy: Retry budget and backoff shape.
        retry_on: Error types eligible for retry.  An error outside these
            types, or one whose ``retryable`` flag is ``False``, is re-raised
            immediately.
        sleep: Awaitable sleep function (injectable for tests).
        rng: Random source for jitter (injectable for deterministic tests).
    """

    def __init__(
        self,
        policy: RetryPolicy = DEFAULT_POLICY,
        retry_on: tuple[type[PipelineError], ...] = (PipelineError,),
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        rng: random.Random | None = None,
    ) -> None:
        self.policy = policy
        self.retry_on = retry_on
        self._sleep = sleep
        self._rng = rng or random.Random()

    # ------------------------------------------------------------------
    # Classification & backoff
    # ------------------------------------------------------------------

    def is_retryable(self, exc: BaseException) -> bool:
        """Return ``True`` if *exc* may succeed when the call is re-issued."""
        if not isinstance(exc, PipelineError):
            return False
        if not isinstance(exc, self.retry_on):
            return False
        return exc.retryable

    def delays(self) -> Iterator[float]:
        """Yield the ``max_attempts - 1`` backoff delays, in seconds.

        Each delay is exponential with multiplicative jitter, capped at
        ``max_delay`` and never smaller than the previous one.
        """
        p = self.policy
        previous = 0.0
        for n in range(p.max_attempts - 1):
            raw = p.base_delay * (p.factor ** n)
            jittered = raw * (1.0 + p.jitter * self._rng.random())
            delay = max(previous, min(p.max_delay, jittered))
            previous = delay
            yield delay

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(
        self,
        thunk: Callable[[], Awaitable[T]],
        on_retry: RetryCallback | None = None,
    ) -> T:
        """Call *thunk* until it succeeds, a fatal error occurs or the budget is spent.

        The last error is re-raised unchanged.  ``attempts`` is set to the
        number of calls made only for errors in ``retry_on``; other errors
        keep the count their own layer recorded.
        """
        delays = self.delays()
        validation_failures = 0
        attempt = 0
        while True:
            attempt += 1
            try:
                return await thunk()
            except PipelineError as exc:
                if not isinstance(exc, self.retry_on):
                    raise
                exc.attempts = attempt
                if not self.is_retryable(exc) or attempt >= self.policy.max_attempts:
                    raise
                if isinstance(exc, ValidationError):
                    validation_failures += 1
                    if validation_failures > self.policy.validation_retries:
                        raise
                delay = next(delays)
                if on_retry is not None:
                    on_retry(attempt, exc, delay)
                if delay > 0:
                    await self._sleep(delay)
