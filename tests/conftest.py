"""Shared fixtures: virtual clock, in-memory backend and an engine wired to both."""

from __future__ import annotations

from datetime import datetime

import pytest

from clubtab.clock import ManualClock
from clubtab.engine import OrderSyncEngine
from clubtab.pending import PendingUpdateLedger
from clubtab.retry import RetryPolicy
from fakes import FakeBackend, make_row

PENDING_TTL = 10.0


@pytest.fixture
def clock() -> ManualClock:
    # Saturday evening, inside business day 2025-03-22.
    return ManualClock(datetime(2025, 3, 22, 21, 0))


@pytest.fixture
def backend() -> FakeBackend:
    return FakeBackend([make_row("order-1", 1), make_row("order-2", 2, table_num=5, start_time="20:30")])


@pytest.fixture
def retry(clock: ManualClock, backend: FakeBackend) -> RetryPolicy:
    # Zero delay: retries happen without advancing the virtual clock.
    return RetryPolicy(max_attempts=3, base_delay=0.0, clock=clock, invalidate=backend.invalidate_cache)


@pytest.fixture
def engine(backend: FakeBackend, clock: ManualClock, retry: RetryPolicy) -> OrderSyncEngine:
    return OrderSyncEngine(
        backend,
        clock=clock,
        retry=retry,
        ledger=PendingUpdateLedger(ttl_seconds=PENDING_TTL),
        poll_interval=5.0,
    )
