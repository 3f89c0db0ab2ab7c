# backend/fulfillment/config.py
from __future__ import annotations
import os


def _int_env(name: str, default: int) -> int:
    raw = os.environ.get(name)
    if raw is None or not raw.strip():
        return default
    return int(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/fulfillment.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///fulfillment.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Carrier row representing the in-house courier service.
    # Any local home-delivery method is pinned to this carrier.
    LOCAL_COURIER_CARRIER_ID = _int_env("LOCAL_COURIER_CARRIER_ID", 32)

    # Upper bound for the cartera pending/handover listings
    CASH_LISTING_LIMIT = _int_env("CASH_LISTING_LIMIT", 500)

    # Order listing pagination cap
    ORDER_PAGE_LIMIT_MAX = _int_env("ORDER_PAGE_LIMIT_MAX", 100)

    # Local deliveries under this total must collect the delivery fee
    # when shipping is paid on delivery (contraentrega)
    LOCAL_DELIVERY_FEE_THRESHOLD_CENTS = _int_env("LOCAL_DELIVERY_FEE_THRESHOLD_CENTS", 15_000_000)

    # "null" (default), "log" or "memory" (tests)
    EVENT_SINK = os.environ.get("EVENT_SINK", "null")

    CORS_ALLOWED_ORIGINS = [
        origin.strip()
        for origin in os.environ.get(
            "CORS_ALLOWED_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000,http://localhost:5173,http://127.0.0.1:5173",
        ).split(",")
        if origin.strip()
    ]
