from __future__ import annotations
from datetime import datetime
from retailpos.time_utils import parse_iso_datetime, parse_hhmm
from retailpos.models.promotions import PERCENT_TYPES, PROMOTION_TYPES, PROMO_BUY_X_GET_Y

from dataclasses import dataclass
from typing import Any

from sqlalchemy import JSON, Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta


# Maximum money amount: $9,999,999.99 (999,999,999 cents)
# This prevents database overflow issues and nonsensical prices
MAX_PRICE_CENTS = 999_999_999

# 100% expressed in basis points
MAX_PERCENT_BPS = 10_000


class ServiceError(Exception):
    """Base for errors surfaced to API callers as structured failures."""
    code = "INTERNAL_ERROR"
    status_code = 500

    def __init__(self, message: str, *, code: str | None = None, details: dict | None = None):
        super().__init__(message)
        if code:
            self.code = code
        self.details = details or {}

    def to_dict(self) -> dict:
        return {
            "success": False,
            "error": str(self),
            "code": self.code,
            "details": self.details,
        }


class ValidationError(ServiceError, ValueError):
    """400-level input problem."""
    code = "VALIDATION_ERROR"
    status_code = 400


class NotFoundError(ServiceError, LookupError):
    """404-level missing entity."""
    code = "NOT_FOUND"
    status_code = 404


class ConflictError(ServiceError, ValueError):
    """409-level business rule conflict (e.g., holding a completed sale)."""
    code = "STATE_CONFLICT"
    status_code = 409


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required for POST
    """
    writable_fields: set[str]
    required_on_create: set[str] = None  # type: ignore


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def coerce_int(key: str, value: Any) -> int:
    """Strict integer coercion: rejects bools, floats and scientific notation."""
    # Already an int (but not bool which is a subclass of int)
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    # String input - must be plain digits (with optional leading minus)
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped:
            raise ValidationError(f"{key} must be an integer", details={"field": key})
        # Reject scientific notation (e.g., "1e15", "1E10")
        if 'e' in stripped.lower():
            raise ValidationError(
                f"{key} must be a plain integer (scientific notation not allowed)",
                details={"field": key},
            )
        # Reject decimal points (e.g., "12.5")
        if '.' in stripped:
            raise ValidationError(f"{key} must be an integer (no decimals)", details={"field": key})
        try:
            return int(stripped)
        except ValueError:
            raise ValidationError(f"{key} must be an integer", details={"field": key})
    # Reject floats explicitly
    if isinstance(value, float):
        raise ValidationError(f"{key} must be an integer, not a decimal", details={"field": key})
    raise ValidationError(f"{key} must be an integer", details={"field": key})


def _coerce_int_list(key: str, value: Any) -> list[int]:
    if not isinstance(value, (list, tuple)):
        raise ValidationError(f"{key} must be a list of integers", details={"field": key})
    return [coerce_int(key, v) for v in value]


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        return coerce_int(col.key, value)

    # Booleans
    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        if isinstance(value, str) and value.strip().lower() in ("true", "false"):
            return value.strip().lower() == "true"
        raise ValidationError(f"{col.key} must be a boolean", details={"field": col.key})

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value, end_of_day=col.key.startswith("end"))
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", details={"field": col.key})
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime", details={"field": col.key})
            return dt
        raise ValidationError(f"{col.key} must be a datetime", details={"field": col.key})

    # JSON columns hold id lists in this schema
    if isinstance(coltype, JSON):
        return _coerce_int_list(col.key, value)

    # Strings / Text
    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    # Default: leave as-is
    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.

    partial=False: create semantics (enforce required_on_create)
    partial=True: patch semantics (validate only provided keys)
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(
                f"Missing required fields: {', '.join(missing)}",
                details={"missing": missing},
            )

    cols = _columns_by_key(model)

    # Reject unknown / non-writable fields
    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}", details={"field": k})
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}", details={"field": k})

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        # NULL handling
        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null", details={"field": k})
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        # Blank string check for non-nullable text fields
        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank", details={"field": k})

        # Max length check for String(n)
        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}", details={"field": k})

        patch[k] = val

    return patch


def enforce_rules_promotion(promo: dict) -> None:
    """
    Business rules for a promotion that are not captured by column metadata.
    Called with the merged (existing + patch) values.
    """
    promo_type = promo.get("promo_type")
    if promo_type not in PROMOTION_TYPES:
        raise ValidationError(
            f"promo_type must be one of: {', '.join(PROMOTION_TYPES)}",
            details={"field": "promo_type"},
        )

    value = promo.get("discount_value")
    if value is None or value <= 0:
        raise ValidationError("discount_value must be > 0", details={"field": "discount_value"})
    if promo_type in PERCENT_TYPES and value > MAX_PERCENT_BPS:
        raise ValidationError(
            f"discount_value is in basis points and cannot exceed {MAX_PERCENT_BPS}",
            details={"field": "discount_value"},
        )
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"discount_value cannot exceed {MAX_PRICE_CENTS}", details={"field": "discount_value"})

    start, end = promo.get("start_date"), promo.get("end_date")
    if start is not None and end is not None and start > end:
        raise ValidationError("start_date must be on or before end_date", details={"field": "end_date"})

    if promo_type == PROMO_BUY_X_GET_Y:
        buy = promo.get("buy_quantity")
        if buy is None or buy <= 0:
            raise ValidationError("buy_quantity must be > 0 for buy_x_get_y", details={"field": "buy_quantity"})

    for key in ("start_time", "end_time"):
        try:
            parse_hhmm(promo.get(key))
        except ValueError:
            raise ValidationError(f"{key} must be HH:MM", details={"field": key})

    if promo.get("priority") is None:
        raise ValidationError("priority cannot be null", details={"field": "priority"})


def require_positive_int(data: dict, key: str) -> int:
    if key not in data or data[key] is None:
        raise ValidationError(f"{key} is required", details={"field": key})
    value = coerce_int(key, data[key])
    if value <= 0:
        raise ValidationError(f"{key} must be > 0", details={"field": key})
    return value


def optional_int(data: dict, key: str) -> int | None:
    if data.get(key) is None:
        return None
    return coerce_int(key, data[key])


def require_cents(data: dict, key: str, *, default: int | None = None, positive: bool = False) -> int:
    """Money fields are integer cents, 0 <= value <= MAX_PRICE_CENTS."""
    if data.get(key) is None:
        if default is None:
            raise ValidationError(f"{key} is required", details={"field": key})
        return default
    value = coerce_int(key, data[key])
    if value < 0 or (positive and value == 0):
        bound = "> 0" if positive else ">= 0"
        raise ValidationError(f"{key} must be {bound}", details={"field": key})
    if value > MAX_PRICE_CENTS:
        raise ValidationError(f"{key} cannot exceed {MAX_PRICE_CENTS}", details={"field": key})
    return value
