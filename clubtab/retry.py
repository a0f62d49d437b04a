"""Bounded retry with backoff around backend persistence calls."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable
from typing import TypeVar

from clubtab.clock import Clock, SystemClock
from clubtab.config import RETRY_BASE_DELAY_SECONDS, RETRY_EXPONENTIAL, RETRY_MAX_ATTEMPTS
from clubtab.errors import BackendError, TerminalBackendError, TransientBackendError

logger = logging.getLogger(__name__)

T = TypeVar("T")


class RetryPolicy:
    """
    Run an async operation, retrying transient backend failures.

    Between attempts the policy waits ``base_delay * 2**attempt`` seconds (or a
    flat ``base_delay``) and calls ``invalidate`` so the next attempt does not
    reuse a poisoned connection or cached response. Terminal failures are
    raised at once; after the last attempt the last error is raised. The
    policy never touches order state.
    """

    def __init__(
        self,
        max_attempts: int = RETRY_MAX_ATTEMPTS,
        base_delay: float = RETRY_BASE_DELAY_SECONDS,
        exponential: bool = RETRY_EXPONENTIAL,
        *,
        clock: Clock | None = None,
        invalidate: Callable[[], Awaitable[None]] | None = None,
    ) -> None:
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.base_delay = base_delay
        self.exponential = exponential
        self._clock = clock or SystemClock()
        self._invalidate = invalidate

    def delay_for(self, attempt: int) -> float:
        """Seconds to wait after the zero-based ``attempt`` failed."""
        if self.exponential:
            return self.base_delay * (2**attempt)
        return self.base_delay

    async def run(self, operation: Callable[[], Awaitable[T]], *, description: str = "backend call") -> T:
        attempt = 0
        while True:
            try:
                logger.debug("%s: attempt %d/%d", description, attempt + 1, self.max_attempts)
                return await operation()
            except TerminalBackendError as exc:
                logger.warning("%s: terminal failure, not retrying: %s", description, exc)
                raise
            except TransientBackendError as exc:
                logger.warning("%s: attempt %d/%d failed: %s", description, attempt + 1, self.max_attempts, exc)
                if attempt + 1 >= self.max_attempts:
                    raise
            wait = self.delay_for(attempt)
            logger.debug("%s: waiting %.1fs before next attempt", description, wait)
            await self._clock.sleep(wait)
            await self._invalidate_cache(description)
            attempt += 1

    async def _invalidate_cache(self, description: str) -> None:
        if self._invalidate is None:
            return
        try:
            await self._invalidate()
        except BackendError as exc:
            # The retry itself will surface a still-broken connection.
            logger.warning("%s: cache invalidation failed: %s", description, exc)
