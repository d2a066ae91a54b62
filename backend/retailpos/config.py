# backend/retailpos/config.py
from __future__ import annotations
import json
import os


def _env_bool(name: str, default: bool) -> bool:
    value = os.environ.get(name)
    if value is None:
        return default
    return value.strip().lower() in ("1", "true", "yes", "on")


def _env_tokens() -> dict:
    # API_TOKENS='{"token": {"user_id": 1, "branch_id": 1, "role": "cashier"}}'
    raw = os.environ.get("API_TOKENS")
    if not raw:
        return {}
    return json.loads(raw)


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")

    # SQLite DB stored in backend/instance/retailpos.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///retailpos.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")

    # Identity is resolved by an external collaborator. IDENTITY_RESOLVER may be
    # set to a callable(token) -> dict | None; otherwise API_TOKENS is consulted.
    IDENTITY_RESOLVER = None
    API_TOKENS = _env_tokens()

    # Hold/resume
    HOLD_TTL_HOURS = int(os.environ.get("HOLD_TTL_HOURS", "4"))
    ENFORCE_HOLD_EXPIRY = _env_bool("ENFORCE_HOLD_EXPIRY", True)

    # Happy hour band: "promotion" reads start_time/end_time from the promotion
    # (falling back to the defaults below), "fixed" always uses the defaults.
    HAPPY_HOUR_SOURCE = os.environ.get("HAPPY_HOUR_SOURCE", "promotion")
    HAPPY_HOUR_DEFAULT_START = os.environ.get("HAPPY_HOUR_DEFAULT_START", "11:00")
    HAPPY_HOUR_DEFAULT_END = os.environ.get("HAPPY_HOUR_DEFAULT_END", "14:00")

    # When on, the resolver skips promotions whose non-empty product/branch
    # sets exclude the line. Off: percentage/fixed gate on the active window only.
    PROMOTION_SCOPE_ENFORCED = _env_bool("PROMOTION_SCOPE_ENFORCED", False)

    # Wall-clock zone for time-of-day rules; stored datetimes stay UTC
    BUSINESS_TIMEZONE = os.environ.get("BUSINESS_TIMEZONE", "UTC")

    # Refunds: cap approved + completed refunds at the transaction total
    REFUND_ENFORCE_TOTAL = _env_bool("REFUND_ENFORCE_TOTAL", True)

    # Decrement branch stock in the same DB transaction as the sale
    STOCK_TRACKING_ENABLED = _env_bool("STOCK_TRACKING_ENABLED", True)

    DEFAULT_LIST_LIMIT = 100
