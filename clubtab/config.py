"""Runtime configuration defaults for the order engine, local cache and backend."""

from __future__ import annotations

import os

DB_PATH = os.environ.get("CLUBTAB_DB_PATH", "data/clubtab.db")

BACKEND_URL = os.environ.get("CLUBTAB_BACKEND_URL", "")
BACKEND_KEY = os.environ.get("CLUBTAB_BACKEND_KEY", "")
BACKEND_TIMEOUT_SECONDS = 10.0
ORDERS_TABLE = "orders"

# "mobile" clients poll faster because their push channel is unreliable.
CLIENT_CLASS = os.environ.get("CLUBTAB_CLIENT_CLASS", "desktop")
LOG_LEVEL = os.environ.get("CLUBTAB_LOG_LEVEL", "INFO")

# Business day runs 19:00 -> 09:00 the next calendar day.
BUSINESS_START = (19, 0)
BUSINESS_END = (9, 0)
RESET_TIME = (17, 0)
RESET_FALLBACK_TIME = (17, 5)
RESET_WINDOW_SECONDS = 60

PENDING_UPDATE_TTL_SECONDS = 10.0

RETRY_MAX_ATTEMPTS = 3
RETRY_BASE_DELAY_SECONDS = 1.0
RETRY_EXPONENTIAL = True

POLL_INTERVAL_MOBILE_SECONDS = 5.0
POLL_INTERVAL_DESKTOP_SECONDS = 10.0
BUSINESS_DATE_CHECK_SECONDS = 60.0

KARAOKE_UNIT_PRICE = 200
SERVICE_CHARGE_RATE = 0.15
CASH_ROUNDING_UNIT = 100


def poll_interval_seconds(client_class: str | None = None) -> float:
    """Return the fallback poll interval for a client class."""
    if (client_class or CLIENT_CLASS) == "mobile":
        return POLL_INTERVAL_MOBILE_SECONDS
    return POLL_INTERVAL_DESKTOP_SECONDS
