"""Charge arithmetic for an order and the single point where a payment freezes its total."""

from __future__ import annotations

import math

from clubtab.config import CASH_ROUNDING_UNIT, KARAOKE_UNIT_PRICE, SERVICE_CHARGE_RATE
from clubtab.models import Order, PaymentDetails, PaymentMethod

_CASH_METHODS = frozenset({"cash", "partial_cash"})
_CARD_FEE_METHODS = frozenset({"card", "partial_cash"})


def drink_total(order: Order) -> int:
    """Set price per guest plus every extension's price; zero when no set was chosen."""
    if not order.drink_price:
        return 0
    return order.guests * order.drink_price + sum(ext.price for ext in order.extensions)


def subtotal(order: Order) -> int:
    return (
        drink_total(order)
        + sum(drink.price for drink in order.cast_drinks)
        + sum(bottle.price for bottle in order.bottles)
        + sum(food.price * food.quantity for food in order.foods)
        + order.karaoke_count * KARAOKE_UNIT_PRICE
    )


def service_charge(amount: int) -> int:
    return math.floor(amount * SERVICE_CHARGE_RATE)


def total_with_service(order: Order) -> int:
    amount = subtotal(order)
    return amount + service_charge(amount)


def finalize_total(order: Order, method: PaymentMethod, details: PaymentDetails) -> int:
    """
    Amount charged when ``order`` is paid with ``method``.

    Cash and partial-cash payments are rounded down to the cash unit; card and
    partial-cash payments then carry the card fee when one applies.
    """
    amount = total_with_service(order)
    if method in _CASH_METHODS:
        amount = amount // CASH_ROUNDING_UNIT * CASH_ROUNDING_UNIT
    if method in _CARD_FEE_METHODS and details.has_card_fee:
        amount += details.card_fee or 0
    return amount
