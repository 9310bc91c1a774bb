"""Timeout and retry helpers for the scheduler's blocking store calls and sink deliveries.

Usage Example:
    ```python
    from ceremonybot.async_utils import AsyncOrchestrator, RetryPolicy

    orchestrator = AsyncOrchestrator(default_timeout=10.0)

    # Bound an awaitable (e.g. an async sink delivery)
    await orchestrator.run_with_timeout(sink.deliver(n), timeout=5.0, label="webhook")

    # Durable write in a worker thread, retried on StoreUnavailable
    policy = RetryPolicy(retries=3, initial_delay=0.5, retry_on=(StoreUnavailable,))
    await orchestrator.retry_blocking(store.save_notification, n, policy=policy)
    ```
"""

from __future__ import annotations

import asyncio
import logging
from collections import Counter
from collections.abc import Awaitable, Callable, Iterator
from dataclasses import dataclass
from typing import Any, Optional, TypeVar

from .exceptions import CeremonyBotError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class AsyncOrchestratorError(CeremonyBotError):
    """Base class for timeout and retry failures."""


class AsyncTimeoutError(AsyncOrchestratorError):
    """An awaited operation did not finish within its time budget."""


class AsyncRetryExhaustedError(AsyncOrchestratorError):
    """Every attempt allowed by a RetryPolicy failed; ``__cause__`` holds the last error."""


@dataclass(frozen=True)
class RetryPolicy:
    """Exponential backoff schedule for a retried operation.

    ``retries`` counts attempts after the first one, so ``retries=0`` means a
    single try. Only exceptions matching ``retry_on`` are retried; anything
    else propagates immediately.
    """

    retries: int = 3
    initial_delay: float = 0.5
    multiplier: float = 2.0
    max_delay: float = 30.0
    retry_on: tuple[type[BaseException], ...] = (Exception,)

    @property
    def attempts(self) -> int:
        return self.retries + 1

    def delays(self) -> Iterator[float]:
        """Sleep before each retry: initial_delay, then scaled by multiplier up to max_delay."""
        delay = self.initial_delay
        for _ in range(self.retries):
            yield delay
            delay = min(delay * self.multiplier, self.max_delay)


class AsyncOrchestrator:
    """Runs labelled operations with timeouts or retries and counts the outcomes."""

    def __init__(self, default_timeout: float = 30.0) -> None:
        self.default_timeout = default_timeout
        self._stats: Counter[str] = Counter()

    async def run_with_timeout(
        self,
        aw: Awaitable[T],
        timeout: Optional[float] = None,
        *,
        label: str = "operation",
        raise_on_timeout: bool = True,
    ) -> Optional[T]:
        """Await ``aw``, cancelling it once ``timeout`` seconds have passed.

        Returns:
            The result, or None after a timeout when ``raise_on_timeout`` is False

        Raises:
            AsyncTimeoutError: on timeout when ``raise_on_timeout`` is True
        """
        budget = self.default_timeout if timeout is None else timeout
        try:
            result = await asyncio.wait_for(aw, timeout=budget)
        except asyncio.TimeoutError as e:
            self._stats["timeouts"] += 1
            logger.warning("%s timed out after %.2fs", label, budget)
            if raise_on_timeout:
                raise AsyncTimeoutError(f"{label} exceeded {budget}s") from e
            return None
        self._stats["completed"] += 1
        return result

    async def run_blocking(self, func: Callable[..., T], *args: Any) -> T:
        """Call a blocking function in the default executor."""
        return await asyncio.to_thread(func, *args)

    async def retry_blocking(
        self,
        func: Callable[..., T],
        *args: Any,
        policy: RetryPolicy,
        label: Optional[str] = None,
    ) -> T:
        """Call a blocking function in a worker thread, retrying per ``policy``.

        Raises:
            AsyncRetryExhaustedError: when all attempts failed with retryable errors
        """
        name = label or getattr(func, "__name__", "operation")
        delays = policy.delays()
        attempt = 0
        while True:
            attempt += 1
            try:
                result = await asyncio.to_thread(func, *args)
            except policy.retry_on as e:
                delay = next(delays, None)
                if delay is None:
                    self._stats["exhausted"] += 1
                    logger.error("%s failed after %d attempts: %s", name, attempt, e)
                    raise AsyncRetryExhaustedError(
                        f"{name} failed after {attempt} attempts"
                    ) from e
                self._stats["retries"] += 1
                logger.warning(
                    "%s attempt %d/%d failed (%s); retrying in %.2fs",
                    name,
                    attempt,
                    policy.attempts,
                    e,
                    delay,
                )
                await asyncio.sleep(delay)
                continue
            if attempt > 1:
                logger.info("%s succeeded on attempt %d", name, attempt)
            self._stats["completed"] += 1
            return result

    def get_health_stats(self) -> dict[str, int]:
        """Counters: completed, timeouts, retries, exhausted."""
        return {key: self._stats[key] for key in ("completed", "timeouts", "retries", "exhausted")}
