"""Domain models for clubtab."""

from __future__ import annotations

from dataclasses import dataclass, field, fields, replace
from typing import Literal
from uuid import uuid4

OrderStatus = Literal["active", "completed", "deleted"]
PaymentMethod = Literal["cash", "card", "electronic", "partial_cash"]

ACTIVE: OrderStatus = "active"
COMPLETED: OrderStatus = "completed"
DELETED: OrderStatus = "deleted"
ORDER_STATUSES: frozenset[str] = frozenset({ACTIVE, COMPLETED, DELETED})
PAYMENT_METHODS: frozenset[str] = frozenset({"cash", "card", "electronic", "partial_cash"})

TABLE_COUNTER = "カウンター"
TABLE_BOX = "ボックス"

# Input buffers of the add-item forms; never authoritative on the server.
TRANSIENT_FIELDS: tuple[str, ...] = ("temp_cast_drink", "temp_bottle", "temp_food")

# Fields a local edit may never change.
_IDENTITY_FIELDS = frozenset({"id", "created_at", "updated_at"})


@dataclass(frozen=True)
class Extension:
    """A time extension: pushes the end time out and adds to the drink charge."""

    id: int
    count: int = 1
    end_time: str = ""
    guests: int = 0
    unit_price: int = 0
    price: int = 0
    total_price: int = 0


@dataclass(frozen=True)
class MenuLine:
    id: int
    name: str = ""
    price: int = 0


@dataclass(frozen=True)
class CastDrink:
    """Drinks bought for a cast member."""

    id: int
    cast: str = ""
    count: int = 0
    price: int = 0
    display: str | None = None


@dataclass(frozen=True)
class Bottle:
    id: int
    name: str = ""
    price: int = 0
    main_casts: tuple[str, ...] = ()
    help_casts: tuple[str, ...] = ()
    note: str | None = None


@dataclass(frozen=True)
class Food:
    id: int
    name: str = ""
    price: int = 0
    quantity: int = 1


@dataclass(frozen=True)
class PaymentDetails:
    """Split of a payment across methods, plus an optional card fee."""

    has_card_fee: bool = False
    cash_amount: int | None = None
    card_amount: int | None = None
    electronic_amount: int | None = None
    card_fee: int | None = None


@dataclass(frozen=True)
class TempCastDrink:
    cast: str = ""
    count: str = "1"


@dataclass(frozen=True)
class TempBottle:
    name: str = ""
    price: str = ""


@dataclass(frozen=True)
class TempFood:
    name: str = ""
    price: str = ""


@dataclass(frozen=True)
class Order:
    """
    A table's tab.

    Orders are immutable; every edit produces a new instance via
    ``dataclasses.replace`` so readers only ever see whole orders.
    """

    id: str
    order_number: int = 0
    table_type: str = TABLE_COUNTER
    table_num: int = 0
    guests: int = 0
    start_time: str = ""
    end_time: str = ""
    duration: str = ""
    customer_name: str = ""
    catch_casts: tuple[str, ...] = ()
    referral_casts: tuple[str, ...] = ()
    extensions: tuple[Extension, ...] = ()
    menus: tuple[MenuLine, ...] = ()
    cast_drinks: tuple[CastDrink, ...] = ()
    bottles: tuple[Bottle, ...] = ()
    foods: tuple[Food, ...] = ()
    drink_type: str = ""
    drink_price: int = 0
    karaoke_count: int = 0
    note: str = ""
    total_amount: int = 0
    status: OrderStatus = ACTIVE
    payment_method: PaymentMethod | None = None
    payment_details: PaymentDetails | None = None
    temp_cast_drink: TempCastDrink = field(default_factory=TempCastDrink)
    temp_bottle: TempBottle = field(default_factory=TempBottle)
    temp_food: TempFood = field(default_factory=TempFood)
    created_at: str | None = None
    updated_at: str | None = None


def new_order_id() -> str:
    return str(uuid4())


def diff_fields(before: Order, after: Order) -> dict[str, object]:
    """Return the editable fields whose values differ between two versions of an order."""
    changes: dict[str, object] = {}
    for f in fields(Order):
        if f.name in _IDENTITY_FIELDS:
            continue
        value = getattr(after, f.name)
        if getattr(before, f.name) != value:
            changes[f.name] = value
    return changes


def keep_transient_fields(fetched: Order, local: Order) -> Order:
    """Carry the local copy's form buffers over onto a freshly fetched order."""
    carried = {
        name: getattr(local, name)
        for name in TRANSIENT_FIELDS
        if getattr(local, name) != getattr(fetched, name)
    }
    if not carried:
        return fetched
    return replace(fetched, **carried)
