"""Tests for merging backend fetches into the local collections."""

import asyncio
from dataclasses import replace

import pytest

from clubtab.errors import TransientBackendError
from clubtab.models import Order, TempBottle
from fakes import make_row


def _ids(orders):
    return [order.id for order in orders]


class TestReconcile:
    @pytest.mark.asyncio
    async def test_first_sync_loads_backend(self, engine):
        snapshot = await engine.reconcile()
        assert _ids(snapshot.active) == ["order-1", "order-2"]
        assert snapshot.last_order_number == 2
        assert engine.snapshot is snapshot

    @pytest.mark.asyncio
    async def test_repeated_sync_is_stable(self, engine):
        first = await engine.reconcile()
        second = await engine.reconcile()
        assert second == first

    @pytest.mark.asyncio
    async def test_rows_are_partitioned_by_status(self, engine, backend):
        backend.set_server("order-2", status="deleted")
        backend.rows["done"] = make_row("done", 3, status="completed")
        await engine.reconcile()
        assert _ids(engine.active_orders) == ["order-1", "done"]
        assert _ids(engine.trash_orders) == ["order-2"]

    @pytest.mark.asyncio
    async def test_backend_wins_without_pending_edit(self, engine, backend):
        await engine.reconcile()
        backend.set_server("order-1", note="from another terminal")
        await engine.reconcile()
        assert engine.get("order-1").note == "from another terminal"

    @pytest.mark.asyncio
    async def test_order_number_never_goes_down(self, engine, backend):
        await engine.reconcile()
        del backend.rows["order-2"]
        await engine.reconcile()
        assert _ids(engine.active_orders) == ["order-1"]
        assert engine.last_order_number == 2
        assert (await engine.create(Order(id="n"))).order_number == 3

    @pytest.mark.asyncio
    async def test_malformed_rows_are_skipped(self, engine, backend):
        backend.rows["broken"] = {"order_number": 99, "status": "active"}
        await engine.reconcile()
        assert _ids(engine.active_orders) == ["order-1", "order-2"]
        assert engine.last_order_number == 2

    @pytest.mark.asyncio
    async def test_failed_fetch_keeps_current_list(self, engine, backend):
        before = await engine.reconcile()
        backend.fail("fetch_all", TransientBackendError("offline"))
        assert await engine.reconcile() is None
        assert engine.snapshot is before


class TestPendingEdits:
    @pytest.mark.asyncio
    async def test_in_flight_edit_beats_stale_fetch(self, engine, backend, clock):
        await engine.reconcile()
        gate = backend.hold("update")
        task = asyncio.create_task(engine.update(replace(engine.get("order-1"), note="x")))
        await clock.advance(0)

        backend.set_server("order-1", note="y")
        await engine.reconcile()
        assert engine.get("order-1").note == "x"

        gate.set()
        await task
        assert backend.rows["order-1"]["note"] == "x"
        await engine.reconcile()
        assert engine.get("order-1").note == "x"

    @pytest.mark.asyncio
    async def test_backend_wins_once_entry_expires(self, engine, backend, clock):
        await engine.reconcile()
        gate = backend.hold("update")
        task = asyncio.create_task(engine.update(replace(engine.get("order-1"), note="x")))
        await clock.advance(0)
        backend.set_server("order-1", note="y")

        await clock.advance(11)
        await engine.reconcile()
        assert engine.get("order-1").note == "y"

        gate.set()
        await task

    @pytest.mark.asyncio
    async def test_in_flight_delete_stays_in_trash(self, engine, backend, clock):
        await engine.reconcile()
        gate = backend.hold("update")
        task = asyncio.create_task(engine.delete("order-1"))
        await clock.advance(0)

        await engine.reconcile()
        assert _ids(engine.trash_orders) == ["order-1"]
        assert _ids(engine.active_orders) == ["order-2"]

        gate.set()
        await task

    @pytest.mark.asyncio
    async def test_in_flight_create_survives_sync(self, engine, backend, clock):
        await engine.reconcile()
        gate = backend.hold("insert")
        task = asyncio.create_task(engine.create(Order(id="new", table_num=8)))
        await clock.advance(0)

        await engine.reconcile()
        assert "new" in _ids(engine.active_orders)

        gate.set()
        created = await task
        await engine.reconcile()
        assert _ids(engine.active_orders) == ["order-1", "order-2", "new"]
        assert engine.get("new").order_number == created.order_number == 3

    @pytest.mark.asyncio
    async def test_transient_fields_are_kept(self, engine, backend):
        await engine.reconcile()
        await engine.update(replace(engine.get("order-1"), temp_bottle=TempBottle(name="Moet", price="20000")))
        backend.set_server("order-1", temp_bottle=None, note="server note")
        await engine.reconcile()
        order = engine.get("order-1")
        assert order.temp_bottle == TempBottle(name="Moet", price="20000")
        assert order.note == "server note"


class TestStaleResults:
    @pytest.mark.asyncio
    async def test_superseded_sync_is_discarded(self, engine, backend, clock):
        gate = backend.hold("fetch_all")
        older = asyncio.create_task(engine.reconcile())
        await clock.advance(0)
        backend.set_server("order-1", note="newer")
        newer = asyncio.create_task(engine.reconcile())
        await clock.advance(0)

        gate.set()
        assert await older is None
        snapshot = await newer
        assert snapshot is not None
        assert engine.get("order-1").note == "newer"

    @pytest.mark.asyncio
    async def test_result_after_close_is_discarded(self, engine, backend, clock):
        gate = backend.hold("fetch_all")
        task = asyncio.create_task(engine.reconcile())
        await clock.advance(0)
        await engine.close()
        gate.set()
        assert await task is None
        assert engine.active_orders == ()

    @pytest.mark.asyncio
    async def test_purged_order_never_comes_back(self, engine, backend):
        await engine.reconcile()
        await engine.delete("order-2")
        purged_row = dict(backend.rows["order-2"])
        await engine.purge("order-2")

        # A lagging read still returns the row.
        backend.rows["order-2"] = purged_row
        await engine.reconcile()
        assert engine.get("order-2") is None
        assert "order-2" not in _ids(engine.trash_orders)
        assert "order-2" not in _ids(engine.active_orders)

    @pytest.mark.asyncio
    async def test_push_event_triggers_sync(self, engine, backend):
        await engine.start()
        backend.set_server("order-1", note="pushed")
        await backend.notify()
        assert engine.get("order-1").note == "pushed"
        await engine.close()
        assert backend.subscriber_count == 0


class TestWritesDuringFetch:
    """A fetch issued before a write settled must not undo that write."""

    @pytest.mark.asyncio
    async def test_confirmed_update_survives_older_fetch(self, engine, backend, clock):
        await engine.reconcile()
        gate = backend.hold("fetch_all")
        sync = asyncio.create_task(engine.reconcile())
        await clock.advance(0)

        await engine.update(replace(engine.get("order-1"), note="x"))
        assert backend.rows["order-1"]["note"] == "x"

        gate.set()
        assert await sync is None
        assert engine.get("order-1").note == "x"

    @pytest.mark.asyncio
    async def test_confirmed_create_survives_older_fetch(self, engine, backend, clock):
        await engine.reconcile()
        gate = backend.hold("fetch_all")
        sync = asyncio.create_task(engine.reconcile())
        await clock.advance(0)

        created = await engine.create(Order(id="new"))

        gate.set()
        assert await sync is None
        assert engine.get("new") == created
        assert _ids(engine.active_orders) == ["order-1", "order-2", "new"]

        await engine.reconcile()
        assert _ids(engine.active_orders) == ["order-1", "order-2", "new"]

    @pytest.mark.asyncio
    async def test_confirmed_restore_survives_older_fetch(self, engine, backend, clock):
        await engine.reconcile()
        await engine.delete("order-1")
        gate = backend.hold("fetch_all")
        sync = asyncio.create_task(engine.reconcile())
        await clock.advance(0)

        await engine.restore("order-1")

        gate.set()
        assert await sync is None
        assert engine.get("order-1").status == "active"
        assert engine.trash_orders == ()

