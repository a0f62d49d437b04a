"""
Mapping between backend order rows and ``Order`` models.

Row columns are snake_case; the JSON records nested inside list columns
(extensions, bottles, ...) keep the camelCase keys the rows have always been
written with. Decoding is tolerant: a null, absent or mistyped value falls
back to the field default instead of rejecting the row.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any, TypeVar

from clubtab.models import (
    ACTIVE,
    ORDER_STATUSES,
    PAYMENT_METHODS,
    Bottle,
    CastDrink,
    Extension,
    Food,
    MenuLine,
    Order,
    PaymentDetails,
    TempBottle,
    TempCastDrink,
    TempFood,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

Row = dict[str, Any]


def _as_int(value: Any, default: int = 0) -> int:
    if value is None or isinstance(value, bool):
        return default
    try:
        return int(value)
    except (TypeError, ValueError):
        try:
            return int(float(value))
        except (TypeError, ValueError):
            return default


def _as_optional_int(value: Any) -> int | None:
    if value is None:
        return None
    return _as_int(value)


def _as_str(value: Any, default: str = "") -> str:
    if value is None:
        return default
    return str(value)


def _as_str_tuple(value: Any) -> tuple[str, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(str(item) for item in value if item is not None)


def _as_records(value: Any, decode: Callable[[Mapping[str, Any]], T]) -> tuple[T, ...]:
    if not isinstance(value, (list, tuple)):
        return ()
    return tuple(decode(item) for item in value if isinstance(item, Mapping))


def _as_mapping(value: Any) -> Mapping[str, Any]:
    return value if isinstance(value, Mapping) else {}


def extension_from_json(data: Mapping[str, Any]) -> Extension:
    return Extension(
        id=_as_int(data.get("id")),
        count=_as_int(data.get("count"), 1),
        end_time=_as_str(data.get("endTime")),
        guests=_as_int(data.get("guests")),
        unit_price=_as_int(data.get("unitPrice")),
        price=_as_int(data.get("price")),
        total_price=_as_int(data.get("totalPrice")),
    )


def extension_to_json(ext: Extension) -> Row:
    return {
        "id": ext.id,
        "count": ext.count,
        "endTime": ext.end_time,
        "guests": ext.guests,
        "unitPrice": ext.unit_price,
        "price": ext.price,
        "totalPrice": ext.total_price,
    }


def menu_from_json(data: Mapping[str, Any]) -> MenuLine:
    return MenuLine(id=_as_int(data.get("id")), name=_as_str(data.get("name")), price=_as_int(data.get("price")))


def menu_to_json(menu: MenuLine) -> Row:
    return {"id": menu.id, "name": menu.name, "price": menu.price}


def cast_drink_from_json(data: Mapping[str, Any]) -> CastDrink:
    display = data.get("display")
    return CastDrink(
        id=_as_int(data.get("id")),
        cast=_as_str(data.get("cast")),
        count=_as_int(data.get("count")),
        price=_as_int(data.get("price")),
        display=None if display is None else str(display),
    )


def cast_drink_to_json(drink: CastDrink) -> Row:
    data: Row = {"id": drink.id, "cast": drink.cast, "count": drink.count, "price": drink.price}
    if drink.display is not None:
        data["display"] = drink.display
    return data


def bottle_from_json(data: Mapping[str, Any]) -> Bottle:
    note = data.get("note")
    return Bottle(
        id=_as_int(data.get("id")),
        name=_as_str(data.get("name")),
        price=_as_int(data.get("price")),
        main_casts=_as_str_tuple(data.get("mainCasts")),
        help_casts=_as_str_tuple(data.get("helpCasts")),
        note=None if note is None else str(note),
    )


def bottle_to_json(bottle: Bottle) -> Row:
    data: Row = {
        "id": bottle.id,
        "name": bottle.name,
        "price": bottle.price,
        "mainCasts": list(bottle.main_casts),
        "helpCasts": list(bottle.help_casts),
    }
    if bottle.note is not None:
        data["note"] = bottle.note
    return data


def food_from_json(data: Mapping[str, Any]) -> Food:
    return Food(
        id=_as_int(data.get("id")),
        name=_as_str(data.get("name")),
        price=_as_int(data.get("price")),
        quantity=_as_int(data.get("quantity"), 1),
    )


def food_to_json(food: Food) -> Row:
    return {"id": food.id, "name": food.name, "price": food.price, "quantity": food.quantity}


def payment_details_from_json(value: Any) -> PaymentDetails | None:
    if not isinstance(value, Mapping):
        return None
    return PaymentDetails(
        has_card_fee=bool(value.get("hasCardFee", False)),
        cash_amount=_as_optional_int(value.get("cashAmount")),
        card_amount=_as_optional_int(value.get("cardAmount")),
        electronic_amount=_as_optional_int(value.get("electronicAmount")),
        card_fee=_as_optional_int(value.get("cardFee")),
    )


def payment_details_to_json(details: PaymentDetails | None) -> Row | None:
    if details is None:
        return None
    data: Row = {"hasCardFee": details.has_card_fee}
    for key, value in (
        ("cashAmount", details.cash_amount),
        ("cardAmount", details.card_amount),
        ("electronicAmount", details.electronic_amount),
        ("cardFee", details.card_fee),
    ):
        if value is not None:
            data[key] = value
    return data


def order_from_row(row: Mapping[str, Any]) -> Order:
    """Decode a backend row. Raises ``ValueError`` only when the row has no id."""
    order_id = row.get("id")
    if not order_id:
        raise ValueError(f"order row without id: order_number={row.get('order_number')!r}")

    status = _as_str(row.get("status"), ACTIVE)
    if status not in ORDER_STATUSES:
        logger.warning("Order %s has unknown status %r; treating as active", order_id, status)
        status = ACTIVE
    payment_method = row.get("payment_method")
    if payment_method not in PAYMENT_METHODS:
        payment_method = None

    temp_cast_drink = _as_mapping(row.get("temp_cast_drink"))
    temp_bottle = _as_mapping(row.get("temp_bottle"))
    temp_food = _as_mapping(row.get("temp_food"))

    return Order(
        id=str(order_id),
        order_number=_as_int(row.get("order_number")),
        table_type=_as_str(row.get("table_type")),
        table_num=_as_int(row.get("table_num")),
        guests=_as_int(row.get("guests")),
        start_time=_as_str(row.get("start_time")),
        end_time=_as_str(row.get("end_time")),
        duration=_as_str(row.get("duration")),
        customer_name=_as_str(row.get("customer_name")),
        catch_casts=_as_str_tuple(row.get("catch_casts")),
        referral_casts=_as_str_tuple(row.get("referral_casts")),
        extensions=_as_records(row.get("extensions"), extension_from_json),
        menus=_as_records(row.get("menus"), menu_from_json),
        cast_drinks=_as_records(row.get("cast_drinks"), cast_drink_from_json),
        bottles=_as_records(row.get("bottles"), bottle_from_json),
        foods=_as_records(row.get("foods"), food_from_json),
        drink_type=_as_str(row.get("drink_type")),
        drink_price=_as_int(row.get("drink_price")),
        karaoke_count=_as_int(row.get("karaoke_count")),
        note=_as_str(row.get("note")),
        total_amount=_as_int(row.get("total_amount")),
        status=status,  # type: ignore[arg-type]
        payment_method=payment_method,
        payment_details=payment_details_from_json(row.get("payment_details")),
        temp_cast_drink=TempCastDrink(
            cast=_as_str(temp_cast_drink.get("cast")),
            count=_as_str(temp_cast_drink.get("count"), "1"),
        ),
        temp_bottle=TempBottle(name=_as_str(temp_bottle.get("name")), price=_as_str(temp_bottle.get("price"))),
        temp_food=TempFood(name=_as_str(temp_food.get("name")), price=_as_str(temp_food.get("price"))),
        created_at=row.get("created_at"),
        updated_at=row.get("updated_at"),
    )


_COLUMN_ENCODERS: dict[str, Callable[[Order], Any]] = {
    "id": lambda o: o.id,
    "order_number": lambda o: o.order_number,
    "table_type": lambda o: o.table_type,
    "table_num": lambda o: o.table_num,
    "guests": lambda o: o.guests,
    "start_time": lambda o: o.start_time,
    "end_time": lambda o: o.end_time,
    "duration": lambda o: o.duration,
    "customer_name": lambda o: o.customer_name or None,
    "catch_casts": lambda o: list(o.catch_casts),
    "referral_casts": lambda o: list(o.referral_casts),
    "extensions": lambda o: [extension_to_json(ext) for ext in o.extensions],
    "menus": lambda o: [menu_to_json(menu) for menu in o.menus],
    "cast_drinks": lambda o: [cast_drink_to_json(drink) for drink in o.cast_drinks],
    "bottles": lambda o: [bottle_to_json(bottle) for bottle in o.bottles],
    "foods": lambda o: [food_to_json(food) for food in o.foods],
    "drink_type": lambda o: o.drink_type,
    "drink_price": lambda o: o.drink_price,
    "karaoke_count": lambda o: o.karaoke_count,
    "note": lambda o: o.note or None,
    "total_amount": lambda o: o.total_amount,
    "status": lambda o: o.status,
    "payment_method": lambda o: o.payment_method,
    "payment_details": lambda o: payment_details_to_json(o.payment_details),
    "temp_cast_drink": lambda o: {"cast": o.temp_cast_drink.cast, "count": o.temp_cast_drink.count},
    "temp_bottle": lambda o: {"name": o.temp_bottle.name, "price": o.temp_bottle.price},
    "temp_food": lambda o: {"name": o.temp_food.name, "price": o.temp_food.price},
}

_TIMESTAMP_COLUMNS = ("created_at", "updated_at")


def order_to_row(order: Order, columns: Iterable[str] | None = None, *, include_timestamps: bool = False) -> Row:
    """
    Encode an order as a backend row.

    ``columns`` restricts the payload to the given fields (partial updates).
    Server-assigned timestamps are only written when ``include_timestamps``
    is set, which the local cache uses to keep them across restarts.
    """
    names = list(_COLUMN_ENCODERS) if columns is None else [name for name in columns if name in _COLUMN_ENCODERS]
    row = {name: _COLUMN_ENCODERS[name](order) for name in names}
    if include_timestamps:
        for name in _TIMESTAMP_COLUMNS:
            row[name] = getattr(order, name)
    return row
