from __future__ import annotations
from datetime import datetime
import re

from dataclasses import dataclass
from typing import Any

from sqlalchemy import Boolean, Integer, String, Text, DateTime
from sqlalchemy.orm import DeclarativeMeta

from .errors import ValidationError
from .time_utils import parse_iso_datetime, start_of_day, utcnow


MIN_BOOKING_QUANTITY = 1
MAX_BOOKING_QUANTITY = 3
MAX_PAGE_SIZE = 100
MAX_ADJUSTMENT_MAGNITUDE = 100_000

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[^@\s]+$")
NAME_RE = re.compile(r"^[a-zA-Z\s'-]+$")
USER_ID_RE = re.compile(r"^[a-zA-Z0-9_-]+$")
INDIAN_MOBILE_RE = re.compile(r"^[6-9]\d{9}$")
UPI_TXN_RE = re.compile(r"^[A-Za-z0-9_-]+$")
HEX_TOKEN_RE = re.compile(r"^[a-fA-F0-9]+$")


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


def _coerce_value(col, value: Any):
    coltype = col.type

    if value is None:
        return None

    # Integers - strict validation to reject floats and scientific notation
    if isinstance(coltype, Integer):
        return to_int(value, col.key)

    if isinstance(coltype, Boolean):
        if isinstance(value, bool):
            return value
        raise ValidationError(f"{col.key} must be true or false")

    # Datetimes (accept ISO-8601 strings; normalize to UTC)
    if isinstance(coltype, DateTime):
        if isinstance(value, datetime):
            return value
        if isinstance(value, str):
            try:
                dt = parse_iso_datetime(value)
            except ValueError:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            if dt is None:
                raise ValidationError(f"{col.key} must be an ISO-8601 datetime")
            return dt
        raise ValidationError(f"{col.key} must be a datetime")

    if isinstance(coltype, (String, Text)):
        return sanitize_text(str(value))

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
    """
    if payload is None:
        payload = {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")

    required = policy.required_on_create or set()
    if not partial:
        missing = sorted(f for f in required if f not in payload)
        if missing:
            raise ValidationError(f"Missing required fields: {', '.join(missing)}")

    cols = _columns_by_key(model)

    for k in payload.keys():
        if k not in policy.writable_fields:
            raise ValidationError(f"Field not allowed: {k}")
        if k not in cols:
            raise ValidationError(f"Unknown field: {k}")

    patch: dict = {}

    for k, raw in payload.items():
        col = cols[k]

        if raw is None:
            if not col.nullable:
                raise ValidationError(f"{k} cannot be null")
            patch[k] = None
            continue

        val = _coerce_value(col, raw)

        if isinstance(col.type, (String, Text)) and not col.nullable:
            if isinstance(val, str) and val == "":
                raise ValidationError(f"{k} cannot be blank")

        if isinstance(col.type, String) and col.type.length and isinstance(val, str):
            if len(val) > col.type.length:
                raise ValidationError(f"{k} exceeds max length {col.type.length}")

        patch[k] = val

    return patch


# =============================================================================
# FIELD VALIDATORS
# =============================================================================

def sanitize_text(value: str) -> str:
    """Trim and strip markup-ish characters from free text."""
    cleaned = value.strip().replace("<", "").replace(">", "")
    return re.sub(r"javascript:", "", cleaned, flags=re.IGNORECASE)


def to_int(value: Any, field: str) -> int:
    if isinstance(value, bool):
        raise ValidationError(f"{field} must be an integer")
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        raise ValidationError(f"{field} must be an integer, not a decimal")
    if isinstance(value, str):
        stripped = value.strip()
        if not stripped or not re.fullmatch(r"-?\d+", stripped):
            raise ValidationError(f"{field} must be an integer")
        return int(stripped)
    raise ValidationError(f"{field} must be an integer")


def require_text(data: dict, field: str, *, min_len: int = 1, max_len: int = 255) -> str:
    raw = data.get(field)
    if raw is None or not isinstance(raw, str) or not raw.strip():
        raise ValidationError(f"{field} is required")
    value = sanitize_text(raw)
    if len(value) < min_len:
        raise ValidationError(f"{field} must be at least {min_len} characters")
    if len(value) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return value


def optional_text(data: dict, field: str, *, max_len: int = 500) -> str | None:
    raw = data.get(field)
    if raw is None:
        return None
    if not isinstance(raw, str):
        raise ValidationError(f"{field} must be a string")
    value = sanitize_text(raw)
    if len(value) > max_len:
        raise ValidationError(f"{field} must be at most {max_len} characters")
    return value or None


def validate_email(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Email is required")
    email = value.strip().lower()
    if len(email) > 254 or not EMAIL_RE.match(email):
        raise ValidationError("Invalid email format")
    return email


def validate_name(value: Any, field: str = "name") -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError(f"{field} is required")
    name = sanitize_text(value)
    if len(name) < 2 or len(name) > 100:
        raise ValidationError(f"{field} must be between 2 and 100 characters")
    if not NAME_RE.match(name):
        raise ValidationError(f"{field} can only contain letters, spaces, hyphens, and apostrophes")
    return name


def validate_user_handle(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("user_id is required")
    handle = value.strip().lower()
    if len(handle) < 3 or len(handle) > 50:
        raise ValidationError("user_id must be between 3 and 50 characters")
    if not USER_ID_RE.match(handle):
        raise ValidationError("user_id can only contain letters, numbers, hyphens, and underscores")
    return handle


def validate_phone(value: Any, field: str = "phone") -> str:
    """Normalize +91 / spaces / hyphens down to the 10 digit mobile number."""
    if value is None or not str(value).strip():
        raise ValidationError(f"{field} is required")
    digits = re.sub(r"\D", "", str(value))[-10:]
    if not INDIAN_MOBILE_RE.match(digits):
        raise ValidationError(f"Invalid {field} number format")
    return digits


def validate_address(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("address is required")
    address = sanitize_text(value)
    if len(address) < 5 or len(address) > 500:
        raise ValidationError("address must be between 5 and 500 characters")
    return address


def validate_quantity(value: Any) -> int:
    quantity = to_int(value, "quantity")
    if quantity < MIN_BOOKING_QUANTITY:
        raise ValidationError(f"Minimum quantity is {MIN_BOOKING_QUANTITY}")
    if quantity > MAX_BOOKING_QUANTITY:
        raise ValidationError(f"Maximum quantity is {MAX_BOOKING_QUANTITY}")
    return quantity


def validate_choice(value: Any, choices, field: str) -> str:
    if not isinstance(value, str) or value.strip().upper() not in choices:
        raise ValidationError(f"{field} must be one of: {', '.join(sorted(choices))}")
    return value.strip().upper()


def validate_upi_txn_id(value: Any) -> str:
    if not isinstance(value, str) or len(value.strip()) < 6:
        raise ValidationError("Valid UPI transaction ID is required (minimum 6 characters)")
    txn = value.strip()
    if len(txn) > 50:
        raise ValidationError("UPI transaction ID is too long")
    if not UPI_TXN_RE.match(txn):
        raise ValidationError("UPI transaction ID contains invalid characters")
    return txn


def validate_token(value: Any) -> str:
    if not isinstance(value, str) or not value.strip():
        raise ValidationError("Token is required")
    token = value.strip()
    if len(token) < 32 or len(token) > 128 or not HEX_TOKEN_RE.match(token):
        raise ValidationError("Invalid token format")
    return token


def validate_future_date(value: Any, field: str = "expected_date") -> datetime | None:
    """Accepts an ISO date/datetime no earlier than today (UTC)."""
    if value in (None, ""):
        return None
    if not isinstance(value, str):
        raise ValidationError(f"{field} must be an ISO-8601 date")
    try:
        parsed = parse_iso_datetime(value)
    except ValueError:
        raise ValidationError(f"{field} must be an ISO-8601 date")
    if parsed is None:
        return None
    if parsed < start_of_day(utcnow()):
        raise ValidationError(f"{field} cannot be in the past")
    return parsed


def parse_pagination(args) -> tuple[int, int]:
    """Read ?page=&limit= with bounds (page >= 1, 1 <= limit <= MAX_PAGE_SIZE)."""
    page = to_int(args.get("page", "1"), "page")
    limit = to_int(args.get("limit", "10"), "limit")
    if page < 1:
        raise ValidationError("page must be >= 1")
    if limit < 1 or limit > MAX_PAGE_SIZE:
        raise ValidationError(f"limit must be between 1 and {MAX_PAGE_SIZE}")
    return page, limit


def pagination_meta(page: int, limit: int, total: int) -> dict:
    total_pages = (total + limit - 1) // limit if total else 0
    return {
        "page": page,
        "limit": limit,
        "total": total,
        "total_pages": total_pages,
        "has_next": page * limit < total,
        "has_prev": page > 1,
    }


def get_json_body(request) -> dict:
    payload = request.get_json(silent=True)
    if payload is None:
        return {}
    if not isinstance(payload, dict):
        raise ValidationError("Invalid JSON payload")
    return payload
