"""Rendering helpers for countdowns and order rows."""

from __future__ import annotations

from datetime import datetime

from rich.text import Text

from clubtab.models import TABLE_COUNTER, Order
from clubtab.pricing import total_with_service
from clubtab.timeutil import is_overtime, is_within, remaining

WARN_MINUTES = 30
URGENT_MINUTES = 10


def badge_style(table_type: str) -> str:
    """Return a consistent badge style for table types."""
    if table_type == TABLE_COUNTER:
        return "bold #0b1f0f on #f0a040"
    return "bold #ffffff on #2f6db5"


def table_badge(table_type: str) -> str:
    return "C" if table_type == TABLE_COUNTER else "B"


def countdown_style(value: str) -> str:
    if is_overtime(value) or is_within(value, URGENT_MINUTES):
        return "bold #ffffff on #b23a48"
    if is_within(value, WARN_MINUTES):
        return "bold #ffd75f"
    return "#5fbf72"


def format_countdown(end_time: str | None, now: datetime) -> Text:
    """Render "(left H:MM)" or "(over H:MM)" for an end time."""
    value = remaining(end_time, now)
    label = f"(over {value[1:]})" if is_overtime(value) else f"(left {value})"
    return Text(label, style=countdown_style(value))


def format_order_label(order: Order, now: datetime) -> Text:
    """Render a one-line summary of an active order with its countdown."""
    text = Text()
    text.append(f"#{order.order_number:>3} ")
    text.append(f"{table_badge(order.table_type)}{order.table_num}", style=badge_style(order.table_type))
    text.append(f" {order.guests}p {order.start_time}-{order.end_time} ")
    text.append_text(format_countdown(order.end_time, now))
    if order.customer_name:
        text.append(f" {order.customer_name}", style="italic")
    text.append(f"  ¥{total_with_service(order):,}", style="dim")
    return text


def seating_order(orders: list[Order]) -> list[Order]:
    """Counter seats first, then by table number."""
    return sorted(orders, key=lambda order: (order.table_type != TABLE_COUNTER, order.table_num))
