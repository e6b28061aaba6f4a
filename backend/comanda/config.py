# backend/comanda/config.py
from __future__ import annotations
import os


def _env_int(name: str, default: int) -> int:
    raw = os.environ.get(name)
    return int(raw) if raw not in (None, "") else default


def _env_float(name: str, default: float) -> float:
    raw = os.environ.get(name)
    return float(raw) if raw not in (None, "") else default


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw in (None, ""):
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored next to the backend by default
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL",  # optional alternative location
        "sqlite:///comanda.sqlite3",  # default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False
    SQLALCHEMY_ENGINE_OPTIONS: dict = {}

    # Business day rolls over at this local hour, not at midnight.
    # Orders taken at 01:30 belong to the previous day's service.
    BUSINESS_DAY_CUTOFF_HOUR = _env_int("BUSINESS_DAY_CUTOFF_HOUR", 6)
    # IANA zone name used to evaluate "local time of day"
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "UTC")

    # Payments may exceed the order total by this fraction (tips, rounding)
    OVERPAYMENT_TOLERANCE = _env_float("OVERPAYMENT_TOLERANCE", 0.10)
    MAX_PAYMENTS_PER_REQUEST = _env_int("MAX_PAYMENTS_PER_REQUEST", 10)
    MIN_PAYMENT_CENTS = _env_int("MIN_PAYMENT_CENTS", 1)
    # Reject CASH payments when the cashier has no open shift
    REQUIRE_OPEN_SHIFT_FOR_CASH = _env_bool("REQUIRE_OPEN_SHIFT_FOR_CASH", False)

    # Warn (never block) when a day's order counter passes this value
    ORDER_NUMBER_WARN_THRESHOLD = _env_int("ORDER_NUMBER_WARN_THRESHOLD", 9999)

    # Transient contention handling (deadlock, lock wait timeout, busy database)
    TRANSACTION_RETRY_ATTEMPTS = _env_int("TRANSACTION_RETRY_ATTEMPTS", 3)
    TRANSACTION_RETRY_BACKOFF = _env_float("TRANSACTION_RETRY_BACKOFF", 0.05)

    # Idempotency store: "memory", "redis" or "none"
    IDEMPOTENCY_BACKEND = os.environ.get("IDEMPOTENCY_BACKEND", "memory")
    IDEMPOTENCY_TTL_SECONDS = _env_int("IDEMPOTENCY_TTL_SECONDS", 300)
    IDEMPOTENCY_MAX_ENTRIES = _env_int("IDEMPOTENCY_MAX_ENTRIES", 10000)
    REDIS_URL = os.environ.get("REDIS_URL", "redis://localhost:6379/0")

    # Flask app logger level
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
    # Comma-separated origins allowed to call the API from a browser
    CORS_ALLOWED_ORIGINS = tuple(
        origin.strip()
        for origin in os.environ.get("CORS_ALLOWED_ORIGINS", "").split(",")
        if origin.strip()
    )
