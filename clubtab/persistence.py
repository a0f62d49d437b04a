"""SQLite mirror of the order collections, read back on startup."""

from __future__ import annotations

import json
import logging
import sqlite3
from collections.abc import Iterable, Iterator
from contextlib import closing, contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path

from clubtab.config import DB_PATH
from clubtab.models import Order
from clubtab.rows import order_from_row, order_to_row

logger = logging.getLogger(__name__)

ACTIVE_COLLECTION = "active"
TRASH_COLLECTION = "trash"


@dataclass(frozen=True)
class CachedSnapshot:
    """Collections and order-number high-water mark as last mirrored."""

    active: list[Order]
    trash: list[Order]
    last_order_number: int
    saved_at: str | None = None


def _utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class LocalOrderCache:
    """Durable client-side copy of the engine state."""

    def __init__(self, db_path: str | Path = DB_PATH) -> None:
        self.db_path = Path(db_path)
        self._schema_ready = False

    @contextmanager
    def _connect(self) -> Iterator[sqlite3.Connection]:
        """Open a connection, creating the schema on first use, and close it afterwards."""
        self.db_path.parent.mkdir(parents=True, exist_ok=True)
        with closing(sqlite3.connect(self.db_path)) as conn:
            if not self._schema_ready:
                self.bootstrap_schema(conn)
            yield conn

    def bootstrap_schema(self, conn: sqlite3.Connection) -> None:
        """Create cache schema if it does not already exist."""
        conn.executescript(
            """
            CREATE TABLE IF NOT EXISTS cached_orders (
                id TEXT PRIMARY KEY,
                collection TEXT NOT NULL,
                position INTEGER NOT NULL,
                payload TEXT NOT NULL
            );

            CREATE TABLE IF NOT EXISTS cache_meta (
                key TEXT PRIMARY KEY,
                value TEXT NOT NULL
            );

            CREATE INDEX IF NOT EXISTS idx_cached_orders_collection_position
                ON cached_orders(collection, position);
            """
        )
        self._schema_ready = True

    def save_snapshot(self, active: Iterable[Order], trash: Iterable[Order], last_order_number: int) -> None:
        """Replace the cached collections in one transaction."""
        rows = [
            (order.id, collection, idx, json.dumps(order_to_row(order, include_timestamps=True), ensure_ascii=False))
            for collection, orders in ((ACTIVE_COLLECTION, active), (TRASH_COLLECTION, trash))
            for idx, order in enumerate(orders)
        ]
        with self._connect() as conn, conn:
            conn.execute("DELETE FROM cached_orders")
            conn.executemany(
                "INSERT OR REPLACE INTO cached_orders (id, collection, position, payload) VALUES (?, ?, ?, ?)",
                rows,
            )
            conn.executemany(
                "INSERT OR REPLACE INTO cache_meta (key, value) VALUES (?, ?)",
                [("last_order_number", str(int(last_order_number))), ("saved_at", _utc_now_iso())],
            )

    def load_snapshot(self) -> CachedSnapshot:
        """Read the cached collections; unreadable entries are skipped."""
        with self._connect() as conn:
            order_rows = conn.execute(
                "SELECT id, collection, payload FROM cached_orders ORDER BY collection, position"
            ).fetchall()
            meta = dict(conn.execute("SELECT key, value FROM cache_meta").fetchall())

        active: list[Order] = []
        trash: list[Order] = []
        for order_id, collection, payload in order_rows:
            try:
                order = order_from_row(json.loads(payload))
            except ValueError as exc:
                logger.warning("Skipping unreadable cached order %s: %s", order_id, exc)
                continue
            (trash if collection == TRASH_COLLECTION else active).append(order)

        try:
            last_order_number = int(meta.get("last_order_number", 0))
        except ValueError:
            last_order_number = 0
        return CachedSnapshot(
            active=active,
            trash=trash,
            last_order_number=last_order_number,
            saved_at=meta.get("saved_at"),
        )

    def clear(self) -> None:
        with self._connect() as conn, conn:
            conn.execute("DELETE FROM cached_orders")
            conn.execute("DELETE FROM cache_meta")
