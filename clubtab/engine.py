"""
Order synchronization engine.

``OrderSyncEngine`` owns the authoritative active and trash collections.
Mutations are applied locally first, then persisted through ``RetryPolicy``;
while a write is in flight its fields are pinned in the
``PendingUpdateLedger`` so a concurrent reconciliation cannot clobber them.
Reconciliation re-fetches the whole table on every push event or poll tick and
merges it with the ledger.

Every state change swaps in a new immutable ``OrderSnapshot``; listeners and
readers never see a collection mid-update.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Awaitable, Callable, Iterable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any

from clubtab.backend import OrderBackend, Unsubscribe
from clubtab.business_hours import business_date_of, day_end, day_start
from clubtab.clock import Clock, SystemClock
from clubtab.config import BUSINESS_DATE_CHECK_SECONDS, poll_interval_seconds
from clubtab.errors import (
    BackendError,
    EngineClosedError,
    InvalidTimeError,
    InvalidTransitionError,
    OrderNotFoundError,
)
from clubtab.models import (
    ACTIVE,
    COMPLETED,
    DELETED,
    Order,
    OrderStatus,
    PaymentDetails,
    PaymentMethod,
    diff_fields,
    keep_transient_fields,
    new_order_id,
)
from clubtab.pending import PendingUpdateLedger
from clubtab.persistence import LocalOrderCache
from clubtab.pricing import finalize_total
from clubtab.retry import RetryPolicy
from clubtab.rows import order_from_row, order_to_row
from clubtab.timers import BusinessDateWatcher, PollTimer, ResetTimer
from clubtab.timeutil import parse_time, parse_timestamp

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OrderSnapshot:
    """One consistent view of the engine state."""

    active: tuple[Order, ...] = ()
    trash: tuple[Order, ...] = ()
    last_order_number: int = 0

    def find(self, order_id: str) -> Order | None:
        for order in self.active + self.trash:
            if order.id == order_id:
                return order
        return None


Listener = Callable[[OrderSnapshot], None]


def _find(orders: Iterable[Order], order_id: str) -> Order | None:
    return next((order for order in orders if order.id == order_id), None)


def _without(orders: tuple[Order, ...], order_id: str) -> tuple[Order, ...]:
    return tuple(order for order in orders if order.id != order_id)


def _swap(orders: tuple[Order, ...], updated: Order) -> tuple[Order, ...]:
    return tuple(updated if order.id == updated.id else order for order in orders)


def _max_number(*collections: Iterable[Order]) -> int:
    return max((order.order_number for orders in collections for order in orders), default=0)


class OrderSyncEngine:
    """Optimistic order store kept in step with the backend."""

    def __init__(
        self,
        backend: OrderBackend,
        *,
        clock: Clock | None = None,
        cache: LocalOrderCache | None = None,
        retry: RetryPolicy | None = None,
        ledger: PendingUpdateLedger | None = None,
        poll_interval: float | None = None,
        on_business_date_change: Callable[[str], Awaitable[object]] | None = None,
    ) -> None:
        self._backend = backend
        self._clock = clock or SystemClock()
        self._cache = cache
        self._retry = retry or RetryPolicy(clock=self._clock, invalidate=backend.invalidate_cache)
        self._ledger = ledger or PendingUpdateLedger()
        self._poll_interval = poll_interval if poll_interval is not None else poll_interval_seconds()
        self._on_business_date_change = on_business_date_change

        self._snapshot = OrderSnapshot()
        self._listeners: tuple[Listener, ...] = ()
        self._creating: Mapping[str, Order] = {}
        self._purged: frozenset[str] = frozenset()
        self._alive = True
        self._started = False
        self._reconcile_generation = 0
        self._unsubscribe_push: Unsubscribe | None = None
        self._timers: list[PollTimer | ResetTimer | BusinessDateWatcher] = []

    # -- reads ---------------------------------------------------------

    @property
    def snapshot(self) -> OrderSnapshot:
        return self._snapshot

    @property
    def active_orders(self) -> tuple[Order, ...]:
        return self._snapshot.active

    @property
    def trash_orders(self) -> tuple[Order, ...]:
        return self._snapshot.trash

    @property
    def last_order_number(self) -> int:
        return self._snapshot.last_order_number

    @property
    def closed(self) -> bool:
        return not self._alive

    def pending_order_ids(self) -> frozenset[str]:
        """Orders whose local edits are currently shielded from reconciliation."""
        now = self._clock.now()
        return frozenset(order_id for order_id in self._ledger.entries if self._ledger.get(order_id, now))

    def get(self, order_id: str) -> Order | None:
        return self._snapshot.find(order_id)

    def sorted_active(self, now: datetime | None = None) -> list[Order]:
        """Active-status orders by business-day start time, then order number."""
        now = now or self._clock.now()

        def _key(order: Order) -> tuple[int, datetime, int]:
            try:
                return (0, parse_time(order.start_time, now), order.order_number)
            except InvalidTimeError:
                return (1, datetime.max, order.order_number)

        return sorted((o for o in self._snapshot.active if o.status == ACTIVE), key=_key)

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        """Call ``listener`` with every new snapshot; returns the unsubscribe function."""
        self._listeners = self._listeners + (listener,)

        def _unsubscribe() -> None:
            self._listeners = tuple(item for item in self._listeners if item is not listener)

        return _unsubscribe

    # -- lifecycle -----------------------------------------------------

    def hydrate(self) -> bool:
        """Load the local cache so a (possibly stale) list is usable before the first sync."""
        if self._cache is None:
            return False
        try:
            cached = self._cache.load_snapshot()
        except sqlite3.Error:
            logger.exception("Could not read local order cache at %s", self._cache.db_path)
            return False
        self._commit(
            OrderSnapshot(
                active=tuple(cached.active),
                trash=tuple(cached.trash),
                last_order_number=max(
                    self._snapshot.last_order_number,
                    cached.last_order_number,
                    _max_number(cached.active, cached.trash),
                ),
            ),
            mirror=False,
        )
        logger.info(
            "Hydrated %d active and %d trashed orders from cache (saved %s)",
            len(cached.active),
            len(cached.trash),
            cached.saved_at,
        )
        return True

    async def start(self, *, poll: bool | None = None) -> None:
        """
        Hydrate, sync once, then follow the backend.

        The poll timer runs when ``poll`` is true, or when it is left as None
        and the backend offers no push channel.
        """
        self._ensure_open()
        if self._started:
            return
        self._started = True
        self.hydrate()
        await self.reconcile()

        self._unsubscribe_push = self._backend.subscribe(self._on_backend_change)
        if poll or (poll is None and self._unsubscribe_push is None):
            logger.info("Polling orders every %.0fs", self._poll_interval)
            self._timers.append(PollTimer(self.reconcile, self._poll_interval, self._clock))
        self._timers.append(ResetTimer(self._on_reset_time, self._clock))
        if self._on_business_date_change is not None:
            self._timers.append(
                BusinessDateWatcher(self._on_business_date_change, BUSINESS_DATE_CHECK_SECONDS, self._clock)
            )
        for timer in self._timers:
            timer.start()

    async def close(self) -> None:
        """Tear down the push subscription and timers; later results are discarded."""
        if not self._alive:
            return
        self._alive = False
        if self._unsubscribe_push is not None:
            self._unsubscribe_push()
            self._unsubscribe_push = None
        timers, self._timers = self._timers, []
        for timer in timers:
            await timer.stop()
        self._listeners = ()
        logger.info("Order engine closed")

    async def _on_backend_change(self) -> None:
        if self._alive:
            await self.reconcile()

    async def _on_reset_time(self) -> None:
        self.reset()
        await self.reconcile()

    # -- mutations -----------------------------------------------------

    async def create(self, order: Order) -> Order:
        """Number the order, show it at once, then insert it; undone if the insert fails."""
        self._ensure_open()
        order_id = order.id or new_order_id()
        if self._snapshot.find(order_id) is not None:
            raise ValueError(f"order {order_id} already exists")

        number = self._snapshot.last_order_number + 1
        created = replace(order, id=order_id, order_number=number, status=ACTIVE)
        self._creating = {**self._creating, order_id: created}
        self._commit_collections(active=self._snapshot.active + (created,), last_order_number=number)
        logger.info("Order %d created for table %s-%s", number, created.table_type, created.table_num)

        row = order_to_row(created)
        try:
            await self._retry.run(lambda: self._backend.insert(row), description=f"create order {number}")
        except BackendError:
            logger.error("Order %d could not be saved; removing it", number)
            self._rollback_create(created)
            raise
        finally:
            self._creating = {key: value for key, value in self._creating.items() if key != order_id}
            self._supersede_syncs()
        return created

    def _rollback_create(self, created: Order) -> None:
        active = _without(self._snapshot.active, created.id)
        last = self._snapshot.last_order_number
        if last == created.order_number:
            # Only hand the number back when no later create took the next one.
            last = max(created.order_number - 1, _max_number(active, self._snapshot.trash))
        self._commit_collections(active=active, last_order_number=last)

    async def update(self, order: Order) -> Order:
        """
        Apply an edited copy of an active order.

        Only the changed fields are sent. On failure they stay pinned locally
        until the pending entry expires, after which the backend value wins.
        """
        self._ensure_open()
        current = _find(self._snapshot.active, order.id)
        if current is None:
            raise OrderNotFoundError(order.id)
        changes = diff_fields(current, order)
        if not changes:
            return current
        if "status" in changes:
            raise InvalidTransitionError("status changes go through delete/restore/complete/reopen")

        updated = replace(current, **changes)
        self._commit_collections(active=_swap(self._snapshot.active, updated))
        entry = self._ledger.record(order.id, changes, self._clock.now())

        payload = order_to_row(updated, changes)
        try:
            await self._retry.run(
                lambda: self._backend.update(order.id, payload),
                description=f"update order {current.order_number}",
            )
        except BackendError:
            logger.error(
                "Update of order %d failed; %s stay local until the pending entry expires",
                current.order_number,
                ", ".join(sorted(changes)),
            )
            raise
        finally:
            self._supersede_syncs()
        self._ledger.discard(order.id, entry)
        return updated

    async def delete(self, order_id: str) -> None:
        """Move an order to the trash."""
        self._ensure_open()
        order = _find(self._snapshot.active, order_id)
        if order is None:
            return
        self._commit_collections(
            active=_without(self._snapshot.active, order_id),
            trash=self._snapshot.trash + (replace(order, status=DELETED),),
        )
        await self._persist_status(order, DELETED, rollback=lambda: self._back_to_active(order, order.status))

    async def restore(self, order_id: str) -> None:
        """Bring a trashed order back as active."""
        self._ensure_open()
        order = _find(self._snapshot.trash, order_id)
        if order is None:
            return
        self._commit_collections(
            trash=_without(self._snapshot.trash, order_id),
            active=self._snapshot.active + (replace(order, status=ACTIVE),),
        )
        await self._persist_status(order, ACTIVE, rollback=lambda: self._back_to_trash(order))

    async def _persist_status(self, order: Order, status: OrderStatus, rollback: Callable[[], None]) -> None:
        entry = self._ledger.record(order.id, {"status": status}, self._clock.now())
        try:
            await self._retry.run(
                lambda: self._backend.update(order.id, {"status": status}),
                description=f"mark order {order.order_number} {status}",
            )
        except BackendError:
            logger.error("Could not mark order %d %s; rolling back", order.order_number, status)
            self._ledger.discard(order.id, entry)
            rollback()
            raise
        finally:
            self._supersede_syncs()
        self._ledger.discard(order.id, entry)

    def _back_to_active(self, original: Order, status: OrderStatus) -> None:
        current = _find(self._snapshot.trash, original.id) or original
        active = _without(self._snapshot.active, original.id) + (replace(current, status=status),)
        self._commit_collections(active=active, trash=_without(self._snapshot.trash, original.id))

    def _back_to_trash(self, original: Order) -> None:
        current = _find(self._snapshot.active, original.id) or original
        trash = _without(self._snapshot.trash, original.id) + (replace(current, status=DELETED),)
        self._commit_collections(trash=trash, active=_without(self._snapshot.active, original.id))

    async def purge(self, order_id: str) -> None:
        """Permanently remove a trashed order. A failed purge leaves it in the trash."""
        self._ensure_open()
        order = _find(self._snapshot.trash, order_id)
        if order is None:
            return
        self._purged = self._purged | {order_id}
        self._commit_collections(trash=_without(self._snapshot.trash, order_id))
        try:
            await self._retry.run(
                lambda: self._backend.delete(order_id),
                description=f"purge order {order.order_number}",
            )
        except BackendError:
            logger.error("Purge of order %d failed; keeping it in the trash", order.order_number)
            self._purged = self._purged - {order_id}
            if _find(self._snapshot.trash, order_id) is None:
                self._commit_collections(trash=self._snapshot.trash + (order,))
            raise
        finally:
            self._supersede_syncs()
        self._ledger.discard(order_id)
        logger.info("Order %d purged", order.order_number)

    async def complete(
        self,
        order_id: str,
        payment_method: PaymentMethod,
        payment_details: PaymentDetails,
    ) -> Order | None:
        """Close the tab, freezing ``total_amount`` at the finalized price for ``payment_method``."""
        self._ensure_open()
        order = _find(self._snapshot.active, order_id)
        if order is None:
            return None
        if order.status != ACTIVE:
            raise InvalidTransitionError(f"order {order.order_number} is {order.status}, not active")
        completed = replace(
            order,
            status=COMPLETED,
            payment_method=payment_method,
            payment_details=payment_details,
            total_amount=finalize_total(order, payment_method, payment_details),
        )
        await self._transition(order, completed, description=f"complete order {order.order_number}")
        logger.info("Order %d completed: %s %d", order.order_number, payment_method, completed.total_amount)
        return completed

    async def reopen(self, order_id: str) -> Order | None:
        """Return a completed order to active, allowed only within its own business day."""
        self._ensure_open()
        order = _find(self._snapshot.active, order_id)
        if order is None:
            return None
        if order.status != COMPLETED:
            raise InvalidTransitionError(f"order {order.order_number} is {order.status}, not completed")
        now = self._clock.now()
        order_day = self._business_date_of_order(order, now)
        if order_day != business_date_of(now):
            raise InvalidTransitionError(
                f"order {order.order_number} belongs to business day {order_day}; it can no longer be reopened"
            )
        reopened = replace(order, status=ACTIVE, payment_method=None, payment_details=None)
        await self._transition(order, reopened, description=f"reopen order {order.order_number}")
        return reopened

    @staticmethod
    def _business_date_of_order(order: Order, now: datetime) -> str:
        created = parse_timestamp(order.created_at)
        if created is not None:
            return business_date_of(created)
        try:
            return business_date_of(parse_time(order.start_time, now))
        except InvalidTimeError as exc:
            raise InvalidTransitionError(f"order {order.order_number} has no usable start time") from exc

    async def _transition(self, original: Order, target: Order, *, description: str) -> None:
        changes = diff_fields(original, target)
        self._commit_collections(active=_swap(self._snapshot.active, target))
        entry = self._ledger.record(original.id, changes, self._clock.now())
        payload = order_to_row(target, changes)
        try:
            await self._retry.run(lambda: self._backend.update(original.id, payload), description=description)
        except BackendError:
            logger.error("%s failed; rolling back", description)
            self._ledger.discard(original.id, entry)
            current = _find(self._snapshot.active, original.id)
            if current is not None:
                restored = replace(current, **{name: getattr(original, name) for name in changes})
                self._commit_collections(active=_swap(self._snapshot.active, restored))
            raise
        finally:
            self._supersede_syncs()
        self._ledger.discard(original.id, entry)

    async def load_orders_by_date(self, business_date: str) -> tuple[Order, ...]:
        """Show the completed orders of a past business day next to the current active ones."""
        self._ensure_open()
        start, end = day_start(business_date), day_end(business_date)
        rows = await self._retry.run(
            lambda: self._backend.fetch_completed_between(start, end),
            description=f"load orders for {business_date}",
        )
        history = tuple(self._decode_rows(rows))
        logger.info("Loaded %d completed orders for business day %s", len(history), business_date)

        self._supersede_syncs()
        history_ids = {order.id for order in history}
        active = tuple(o for o in self._snapshot.active if o.status == ACTIVE and o.id not in history_ids)
        self._commit_collections(
            active=active + history,
            last_order_number=max(self._snapshot.last_order_number, _max_number(history)),
        )
        return history

    async def delete_all(self) -> None:
        """Remove every order row from the backend and empty the local collections."""
        self._ensure_open()
        await self._retry.run(self._backend.delete_all, description="delete all orders")
        self._supersede_syncs()
        self._ledger.clear()
        self._commit_collections(active=(), trash=())
        logger.warning("All orders deleted")

    def reset(self) -> None:
        """Start a fresh session: empty collections, ledger, numbering and local cache."""
        logger.info("Resetting order engine state")
        self._ledger.clear()
        self._creating = {}
        self._purged = frozenset()
        self._supersede_syncs()
        self._commit(OrderSnapshot(), mirror=False)
        if self._cache is not None:
            try:
                self._cache.clear()
            except sqlite3.Error:
                logger.exception("Could not clear local order cache")

    # -- reconciliation ------------------------------------------------

    async def reconcile(self) -> OrderSnapshot | None:
        """
        Merge a full fetch of the backend into the local collections.

        Returns the new snapshot, or None when the fetch failed (the previous
        snapshot stays in place) or the result was superseded by a newer
        reconciliation, by a write that settled while the fetch was in flight,
        or by ``close()``.
        """
        if not self._alive:
            return None
        self._reconcile_generation += 1
        generation = self._reconcile_generation
        try:
            rows = await self._backend.fetch_all()
        except BackendError as exc:
            logger.warning("Order sync failed; keeping the current list: %s", exc)
            return None
        if not self._alive or generation != self._reconcile_generation:
            logger.debug("Discarding superseded order sync")
            return None

        snapshot = self._merge(rows, self._clock.now())
        self._commit(snapshot)
        logger.debug(
            "Synced %d active and %d trashed orders (pending: %d)",
            len(snapshot.active),
            len(snapshot.trash),
            len(self._ledger),
        )
        return snapshot

    def _merge(self, rows: Iterable[Mapping[str, Any]], now: datetime) -> OrderSnapshot:
        self._ledger.prune(now)
        previous = {order.id: order for order in self._snapshot.active + self._snapshot.trash}
        active: list[Order] = []
        trash: list[Order] = []
        seen: set[str] = set()

        for fetched in self._decode_rows(rows):
            if fetched.id in self._purged or fetched.id in seen:
                continue
            seen.add(fetched.id)
            pending = self._ledger.get(fetched.id, now)
            if pending is not None:
                merged = replace(fetched, **pending.fields)
            elif fetched.id in previous:
                merged = keep_transient_fields(fetched, previous[fetched.id])
            else:
                merged = fetched
            (trash if merged.status == DELETED else active).append(merged)

        # Creates still in flight are not on the server yet.
        active.extend(order for order_id, order in self._creating.items() if order_id not in seen)

        return OrderSnapshot(
            active=tuple(active),
            trash=tuple(trash),
            last_order_number=max(self._snapshot.last_order_number, _max_number(active, trash)),
        )

    @staticmethod
    def _decode_rows(rows: Iterable[Mapping[str, Any]]) -> Iterable[Order]:
        for row in rows:
            try:
                yield order_from_row(row)
            except ValueError as exc:
                logger.warning("Skipping malformed order row: %s", exc)

    # -- state plumbing ------------------------------------------------

    def _ensure_open(self) -> None:
        if not self._alive:
            raise EngineClosedError("order engine is closed")

    def _supersede_syncs(self) -> None:
        # A fetch issued before this point may predate a confirmed write or a rollback.
        self._reconcile_generation += 1

    def _commit_collections(
        self,
        *,
        active: tuple[Order, ...] | None = None,
        trash: tuple[Order, ...] | None = None,
        last_order_number: int | None = None,
    ) -> None:
        current = self._snapshot
        self._commit(
            OrderSnapshot(
                active=current.active if active is None else active,
                trash=current.trash if trash is None else trash,
                last_order_number=current.last_order_number if last_order_number is None else last_order_number,
            )
        )

    def _commit(self, snapshot: OrderSnapshot, *, mirror: bool = True) -> None:
        if not self._alive:
            logger.debug("Engine closed; dropping state change")
            return
        self._snapshot = snapshot
        if mirror and self._cache is not None:
            try:
                self._cache.save_snapshot(snapshot.active, snapshot.trash, snapshot.last_order_number)
            except sqlite3.Error:
                logger.exception("Could not mirror orders to the local cache")
        for listener in self._listeners:
            try:
                listener(snapshot)
            except Exception:
                logger.exception("Order listener %r failed", listener)
