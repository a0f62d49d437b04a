"""Command-line entry point for clubtab."""

from __future__ import annotations

import argparse
import asyncio
import logging
from datetime import datetime

from rich.console import Console
from rich.table import Table

from clubtab.backend import RestOrderBackend
from clubtab.business_hours import business_day_info
from clubtab.clock import SystemClock
from clubtab.config import DB_PATH
from clubtab.engine import OrderSnapshot, OrderSyncEngine
from clubtab.logging_config import configure_logging
from clubtab.persistence import LocalOrderCache
from clubtab.rendering import format_order_label, seating_order

logger = logging.getLogger(__name__)

console = Console()


def print_business_day(instant: datetime) -> None:
    table = Table(title="Business day", show_header=False)
    for key, value in business_day_info(instant).items():
        table.add_row(key, str(value))
    console.print(table)


def print_orders(snapshot: OrderSnapshot, now: datetime) -> None:
    active = seating_order([order for order in snapshot.active if order.status == "active"])
    console.rule(f"{len(active)} active / {len(snapshot.trash)} in trash  (last #{snapshot.last_order_number})")
    if not active:
        console.print("(no active orders)", style="dim")
    for order in active:
        console.print(format_order_label(order, now))


async def watch(*, once: bool, poll: bool | None) -> None:
    clock = SystemClock()
    backend = RestOrderBackend()
    engine = OrderSyncEngine(backend, clock=clock, cache=LocalOrderCache(DB_PATH))
    try:
        if once:
            engine.hydrate()
            await engine.reconcile()
            print_orders(engine.snapshot, clock.now())
            return
        engine.subscribe(lambda snapshot: print_orders(snapshot, clock.now()))
        await engine.start(poll=poll)
        await asyncio.Event().wait()
    finally:
        await engine.close()
        await backend.aclose()


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(prog="clubtab", description="Order sync and business-day tools")
    parser.add_argument("--log-level", default=None, help="logging level (default from CLUBTAB_LOG_LEVEL)")
    sub = parser.add_subparsers(dest="command", required=True)

    info = sub.add_parser("info", help="show the business day for an instant")
    info.add_argument("--at", type=datetime.fromisoformat, default=None, help="ISO local time (default: now)")

    watch_cmd = sub.add_parser("watch", help="sync orders from the backend and print them")
    watch_cmd.add_argument("--once", action="store_true", help="sync once and exit")
    watch_cmd.add_argument("--poll", action="store_true", default=None, help="poll even if push is available")
    return parser


def main(argv: list[str] | None = None) -> int:
    args = build_parser().parse_args(argv)
    if args.log_level:
        configure_logging(args.log_level)
    else:
        configure_logging()

    if args.command == "info":
        print_business_day(args.at or SystemClock().now())
        return 0

    try:
        asyncio.run(watch(once=args.once, poll=args.poll))
    except KeyboardInterrupt:
        logger.info("Stopped")
    return 0


if __name__ == "__main__":
    raise SystemExit(main())
