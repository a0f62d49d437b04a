"""Tests for the retry policy around backend calls."""

import asyncio
from datetime import datetime

import pytest

from clubtab.clock import ManualClock
from clubtab.errors import TerminalBackendError, TransientBackendError
from clubtab.retry import RetryPolicy


class FlakyOperation:
    """Fails with the queued errors, then returns ``result``."""

    def __init__(self, *errors, result="ok"):
        self.errors = list(errors)
        self.result = result
        self.calls = 0

    async def __call__(self):
        self.calls += 1
        if self.errors:
            raise self.errors.pop(0)
        return self.result


class Invalidator:
    def __init__(self):
        self.count = 0

    async def __call__(self):
        self.count += 1


@pytest.fixture
def clock():
    return ManualClock(datetime(2025, 3, 22, 21, 0))


class TestRetryPolicy:
    def test_rejects_zero_attempts(self):
        with pytest.raises(ValueError):
            RetryPolicy(max_attempts=0)

    def test_delays(self):
        assert [RetryPolicy(base_delay=1.0).delay_for(n) for n in range(3)] == [1.0, 2.0, 4.0]
        assert RetryPolicy(base_delay=1.5, exponential=False).delay_for(2) == 1.5

    @pytest.mark.asyncio
    async def test_success_first_time(self, clock):
        operation = FlakyOperation()
        policy = RetryPolicy(clock=clock)
        assert await policy.run(operation) == "ok"
        assert operation.calls == 1

    @pytest.mark.asyncio
    async def test_backs_off_and_invalidates_between_attempts(self, clock):
        operation = FlakyOperation(TransientBackendError("down"), TransientBackendError("down"))
        invalidate = Invalidator()
        policy = RetryPolicy(max_attempts=3, base_delay=1.0, clock=clock, invalidate=invalidate)
        task = asyncio.create_task(policy.run(operation))

        await clock.advance(0)
        assert operation.calls == 1
        await clock.advance(0.9)
        assert operation.calls == 1
        await clock.advance(0.1)
        assert operation.calls == 2
        assert invalidate.count == 1

        # Second wait doubles.
        await clock.advance(1.9)
        assert operation.calls == 2
        await clock.advance(0.1)
        assert await task == "ok"
        assert operation.calls == 3
        assert invalidate.count == 2

    @pytest.mark.asyncio
    async def test_terminal_error_is_not_retried(self, clock):
        operation = FlakyOperation(TerminalBackendError("bad request", status=400))
        invalidate = Invalidator()
        policy = RetryPolicy(max_attempts=3, base_delay=0.0, clock=clock, invalidate=invalidate)
        with pytest.raises(TerminalBackendError):
            await policy.run(operation)
        assert operation.calls == 1
        assert invalidate.count == 0

    @pytest.mark.asyncio
    async def test_single_attempt_does_not_wait(self, clock):
        error = TransientBackendError("down")
        operation = FlakyOperation(error)
        invalidate = Invalidator()
        policy = RetryPolicy(max_attempts=1, base_delay=5.0, clock=clock, invalidate=invalidate)
        with pytest.raises(TransientBackendError) as excinfo:
            await policy.run(operation)
        assert excinfo.value is error
        assert invalidate.count == 0
        assert clock.pending_sleepers == 0

    @pytest.mark.asyncio
    async def test_exhaustion_raises_last_error(self, clock):
        errors = [TransientBackendError(f"down {n}") for n in range(3)]
        operation = FlakyOperation(*errors)
        invalidate = Invalidator()
        policy = RetryPolicy(max_attempts=3, base_delay=0.0, clock=clock, invalidate=invalidate)
        with pytest.raises(TransientBackendError) as excinfo:
            await policy.run(operation)
        assert excinfo.value is errors[-1]
        assert operation.calls == 3
        # No invalidation after the final attempt.
        assert invalidate.count == 2

    @pytest.mark.asyncio
    async def test_other_exceptions_propagate(self, clock):
        operation = FlakyOperation(RuntimeError("bug"))
        with pytest.raises(RuntimeError):
            await RetryPolicy(clock=clock).run(operation)
        assert operation.calls == 1
