"""In-memory backend double for engine tests."""

from __future__ import annotations

import asyncio
import copy
from datetime import datetime
from typing import Any

from clubtab.backend import ChangeCallback, Unsubscribe


def make_row(order_id: str, order_number: int, **overrides: Any) -> dict[str, Any]:
    row: dict[str, Any] = {
        "id": order_id,
        "order_number": order_number,
        "table_type": "カウンター",
        "table_num": order_number,
        "guests": 2,
        "start_time": "20:00",
        "end_time": "21:00",
        "duration": "1:00",
        "customer_name": None,
        "catch_casts": [],
        "referral_casts": [],
        "extensions": [],
        "menus": [],
        "cast_drinks": [],
        "bottles": [],
        "foods": [],
        "drink_type": "standard",
        "drink_price": 3000,
        "karaoke_count": 0,
        "note": None,
        "total_amount": 0,
        "status": "active",
        "payment_method": None,
        "payment_details": None,
        "created_at": "2025-03-22T20:00:00",
        "updated_at": "2025-03-22T20:00:00",
    }
    row.update(overrides)
    return row


class FakeBackend:
    """
    Orders table kept in a dict.

    ``fail(method, *errors)`` queues exceptions raised by the next calls to
    ``method``. ``hold(method)`` returns an event that the next calls to
    ``method`` wait on, to keep a call in flight.
    """

    def __init__(self, rows: list[dict[str, Any]] | None = None, *, push: bool = True) -> None:
        self.rows: dict[str, dict[str, Any]] = {row["id"]: dict(row) for row in rows or []}
        self.calls: list[tuple[Any, ...]] = []
        self.invalidations = 0
        self.push = push
        self._failures: dict[str, list[Exception]] = {}
        self._gates: dict[str, asyncio.Event] = {}
        self._subscribers: list[ChangeCallback] = []

    def fail(self, method: str, *errors: Exception) -> None:
        self._failures.setdefault(method, []).extend(errors)

    def hold(self, method: str) -> asyncio.Event:
        gate = asyncio.Event()
        self._gates[method] = gate
        return gate

    def set_server(self, order_id: str, **values: Any) -> None:
        self.rows[order_id].update(values)

    async def _enter(self, method: str, *args: Any) -> None:
        self.calls.append((method, *args))
        gate = self._gates.get(method)
        if gate is not None:
            await gate.wait()
            self._gates.pop(method, None)
        queue = self._failures.get(method)
        if queue:
            raise queue.pop(0)

    def call_names(self) -> list[str]:
        return [call[0] for call in self.calls]

    async def fetch_all(self) -> list[dict[str, Any]]:
        rows = copy.deepcopy(list(self.rows.values()))
        await self._enter("fetch_all")
        return rows

    async def fetch_completed_between(self, start: datetime, end: datetime) -> list[dict[str, Any]]:
        await self._enter("fetch_completed_between", start, end)
        return [
            copy.deepcopy(row)
            for row in self.rows.values()
            if row.get("status") == "completed"
            and start <= datetime.fromisoformat(row["created_at"]) < end
        ]

    async def insert(self, row: dict[str, Any]) -> None:
        await self._enter("insert", row)
        stored = dict(row)
        stored.setdefault("created_at", "2025-03-22T21:00:00")
        stored.setdefault("updated_at", stored["created_at"])
        self.rows[row["id"]] = stored

    async def update(self, order_id: str, values: dict[str, Any]) -> None:
        await self._enter("update", order_id, values)
        if order_id in self.rows:
            self.rows[order_id].update(values)

    async def delete(self, order_id: str) -> None:
        await self._enter("delete", order_id)
        self.rows.pop(order_id, None)

    async def delete_all(self) -> None:
        await self._enter("delete_all")
        self.rows.clear()

    def subscribe(self, callback: ChangeCallback) -> Unsubscribe | None:
        if not self.push:
            return None
        self._subscribers.append(callback)

        def _unsubscribe() -> None:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

        return _unsubscribe

    @property
    def subscriber_count(self) -> int:
        return len(self._subscribers)

    async def notify(self) -> None:
        for callback in list(self._subscribers):
            await callback()

    async def invalidate_cache(self) -> None:
        self.invalidations += 1
