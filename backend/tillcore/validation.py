from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from sqlalchemy import Boolean, Integer, Numeric, String, Text
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationFailed


# Largest amount accepted for any single money field (Numeric(14, 3))
MAX_MONEY = Decimal("99999999999.999")


def _fail(field: str, message: str) -> ValidationFailed:
    return ValidationFailed(f"{field} {message}", details={field: message})


@dataclass(frozen=True)
class ModelValidationPolicy:
    """
    Central policy layer:
    - writable_fields: what clients are allowed to set (security boundary)
    - required_on_create: fields required on create
    """
    writable_fields: frozenset[str]
    required_on_create: frozenset[str] = frozenset()


def _columns_by_key(model: DeclarativeMeta) -> dict[str, Any]:
    mapper = model.__mapper__
    return {c.key: c for c in mapper.columns}


def parse_money(
    value: Any,
    field: str,
    *,
    allow_zero: bool = True,
    allow_negative: bool = False,
) -> Decimal:
    """Coerce JSON numbers/strings to Decimal. Floats go through str() to keep their printed value."""
    if value is None or isinstance(value, bool):
        raise _fail(field, "must be a number")
    try:
        amount = Decimal(str(value).strip())
    except (InvalidOperation, ValueError):
        raise _fail(field, "must be a number")
    if not amount.is_finite():
        raise _fail(field, "must be a number")
    if amount < 0 and not allow_negative:
        raise _fail(field, "cannot be negative")
    if amount == 0 and not allow_zero:
        raise _fail(field, "must be positive")
    if abs(amount) > MAX_MONEY:
        raise _fail(field, f"cannot exceed {MAX_MONEY}")
    return amount


def parse_quantity(value: Any, field: str = "quantity") -> int:
    """Positive integer quantity. Rejects floats, booleans and scientific notation."""
    if isinstance(value, bool):
        raise _fail(field, "must be an integer")
    if isinstance(value, int):
        qty = value
    elif isinstance(value, str):
        stripped = value.strip()
        if not stripped or "e" in stripped.lower() or "." in stripped:
            raise _fail(field, "must be an integer")
        try:
            qty = int(stripped)
        except ValueError:
            raise _fail(field, "must be an integer")
    else:
        raise _fail(field, "must be an integer")
    if qty <= 0:
        raise _fail(field, "must be positive")
    return qty


def parse_choice(value: Any, field: str, choices: Iterable[str]) -> str:
    allowed = list(choices)
    if not isinstance(value, str) or value.strip().upper() not in allowed:
        raise _fail(field, f"must be one of {', '.join(allowed)}")
    return value.strip().upper()


def require_text(value: Any, field: str, *, max_length: int = 255) -> str:
    if not isinstance(value, str) or not value.strip():
        raise _fail(field, "is required")
    text = value.strip()
    if len(text) > max_length:
        raise _fail(field, f"exceeds max length {max_length}")
    return text


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    if isinstance(coltype, Integer):
        if isinstance(value, bool) or not isinstance(value, int):
            raise _fail(col.key, "must be an integer")
        return value

    if isinstance(coltype, Numeric):
        return parse_money(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        return bool(value)

    if isinstance(coltype, (String, Text)):
        return str(value).strip()

    return value


def validate_payload(
    *,
    model: DeclarativeMeta,
    payload: dict | None,
    policy: ModelValidationPolicy,
    partial: bool,
) -> dict:
    """
    Validates + normalizes incoming JSON against:
    - SQLAlchemy column metadata (nullable, type, String length)
    - a policy allowlist (writable_fields)
    - required_on_create (if partial=False)
    Returns a cleaned patch dict with only writable fields.
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationFailed("Invalid JSON payload")

    if not partial:
        missing = sorted(f for f in policy.required_on_create if f not in payload)
        if missing:
            raise ValidationFailed(
                f"Missing required fields: {', '.join(missing)}",
                details={f: "is required" for f in missing},
            )

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields or k not in cols:
            raise _fail(k, "is not allowed")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise _fail(k, "cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable and val == "":
            raise _fail(k, "cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise _fail(k, f"exceeds max length {col.type.length}")

        patch[k] = val

    return patch


def require_json_object(payload: Any) -> dict:
    if not isinstance(payload, dict):
        raise ValidationFailed("Request body must be a JSON object")
    return payload


def parse_id(value: Any, field: str, *, required: bool = True) -> int | None:
    if value is None:
        if required:
            raise _fail(field, "is required")
        return None
    if isinstance(value, bool) or not isinstance(value, int) or value <= 0:
        raise _fail(field, "must be a positive integer")
    return value
