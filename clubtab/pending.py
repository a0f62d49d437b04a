"""Ledger of local edits that are not yet confirmed by the backend."""

from __future__ import annotations

import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import datetime, timedelta
from types import MappingProxyType

from clubtab.config import PENDING_UPDATE_TTL_SECONDS

logger = logging.getLogger(__name__)


@dataclass(frozen=True, eq=False)
class PendingUpdate:
    """Fields edited locally on one order, and when the edit was applied."""

    fields: Mapping[str, object]
    created_at: datetime

    def is_expired(self, now: datetime, ttl: timedelta) -> bool:
        return now - self.created_at > ttl


class PendingUpdateLedger:
    """
    Map of order id -> ``PendingUpdate``.

    While an entry is younger than the TTL, reconciliation overlays its fields
    on the fetched row. The mapping is swapped wholesale on every change, so a
    reader holding ``entries`` never sees a half-applied edit.
    """

    def __init__(self, ttl_seconds: float = PENDING_UPDATE_TTL_SECONDS) -> None:
        self.ttl = timedelta(seconds=ttl_seconds)
        self._entries: Mapping[str, PendingUpdate] = MappingProxyType({})

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, order_id: object) -> bool:
        return order_id in self._entries

    @property
    def entries(self) -> Mapping[str, PendingUpdate]:
        return self._entries

    def record(self, order_id: str, changes: Mapping[str, object], now: datetime) -> PendingUpdate:
        """
        Pin ``changes`` for ``order_id`` starting at ``now``.

        Fields of a still-live entry for the same order are kept, so two quick
        edits to different fields stay pinned together.
        """
        merged: dict[str, object] = {}
        existing = self._entries.get(order_id)
        if existing is not None and not existing.is_expired(now, self.ttl):
            merged.update(existing.fields)
        merged.update(changes)
        entry = PendingUpdate(fields=MappingProxyType(merged), created_at=now)
        self._swap({**self._entries, order_id: entry})
        logger.debug("Pending update recorded for order %s: %s", order_id, sorted(merged))
        return entry

    def discard(self, order_id: str, entry: PendingUpdate | None = None) -> None:
        """Drop the entry for ``order_id``; with ``entry`` given, only if it is still the current one."""
        current = self._entries.get(order_id)
        if current is None or (entry is not None and current is not entry):
            return
        self._swap({key: value for key, value in self._entries.items() if key != order_id})
        logger.debug("Pending update cleared for order %s", order_id)

    def get(self, order_id: str, now: datetime) -> PendingUpdate | None:
        """Return the live entry for ``order_id``, or None when absent or expired."""
        entry = self._entries.get(order_id)
        if entry is None or entry.is_expired(now, self.ttl):
            return None
        return entry

    def prune(self, now: datetime) -> list[str]:
        """Drop expired entries and return their order ids."""
        expired = [key for key, entry in self._entries.items() if entry.is_expired(now, self.ttl)]
        if expired:
            self._swap({key: value for key, value in self._entries.items() if key not in expired})
            logger.info("Pending updates expired without confirmation: %s", ", ".join(expired))
        return expired

    def clear(self, order_ids: Iterable[str] | None = None) -> None:
        if order_ids is None:
            self._swap({})
            return
        dropped = set(order_ids)
        self._swap({key: value for key, value in self._entries.items() if key not in dropped})

    def _swap(self, entries: dict[str, PendingUpdate]) -> None:
        self._entries = MappingProxyType(entries)
