# Overview: Service-layer operations for agency settings (UPI collection id, cylinder price).

from __future__ import annotations

import re

from flask import current_app

from ..errors import ValidationError
from ..extensions import db
from ..models import SystemSettings
from ..models.settings import DEFAULT_SETTINGS_ID
from ..validation import ModelValidationPolicy, to_int, validate_payload

UPI_ID_RE = re.compile(r"^[a-zA-Z0-9._-]{2,256}@[a-zA-Z][a-zA-Z0-9.-]{1,64}$")
MAX_PRICE_PER_CYLINDER = 100_000

SETTINGS_POLICY = ModelValidationPolicy(
    writable_fields={"upi_id", "upi_qr_image_url", "price_per_cylinder"},
)


def get_settings_row() -> SystemSettings | None:
    return db.session.get(SystemSettings, DEFAULT_SETTINGS_ID)


def ensure_settings_row() -> SystemSettings:
    """Create the singleton from config defaults if it does not exist. Does not commit."""
    row = get_settings_row()
    if row is None:
        row = SystemSettings(
            id=DEFAULT_SETTINGS_ID,
            upi_id=current_app.config.get("ADMIN_UPI_ID") or None,
            price_per_cylinder=int(current_app.config.get("PRICE_PER_CYLINDER", 1100)),
        )
        db.session.add(row)
        db.session.flush()
    return row


def get_settings() -> dict:
    """Effective settings; config values fill in until an admin saves a row."""
    row = get_settings_row()
    if row is None:
        return {
            "upi_id": current_app.config.get("ADMIN_UPI_ID") or None,
            "upi_qr_image_url": None,
            "price_per_cylinder": int(current_app.config.get("PRICE_PER_CYLINDER", 1100)),
            "updated_at": None,
        }
    data = row.to_dict()
    if not data["upi_id"]:
        data["upi_id"] = current_app.config.get("ADMIN_UPI_ID") or None
    return data


def get_price_per_cylinder() -> int:
    return int(get_settings()["price_per_cylinder"])


def update_settings(payload: dict) -> dict:
    patch = validate_payload(model=SystemSettings, payload=payload, policy=SETTINGS_POLICY, partial=True)
    if not patch:
        raise ValidationError("No fields to update")

    if "price_per_cylinder" in patch:
        price = to_int(patch["price_per_cylinder"], "price_per_cylinder")
        if price < 1 or price > MAX_PRICE_PER_CYLINDER:
            raise ValidationError(f"price_per_cylinder must be between 1 and {MAX_PRICE_PER_CYLINDER}")
        patch["price_per_cylinder"] = price

    if patch.get("upi_id") and not UPI_ID_RE.match(patch["upi_id"]):
        raise ValidationError("Invalid UPI ID format")

    qr = patch.get("upi_qr_image_url")
    if qr and not qr.startswith(("https://", "http://", "/")):
        raise ValidationError("upi_qr_image_url must be an http(s) URL or an absolute path")

    row = ensure_settings_row()
    for key, value in patch.items():
        setattr(row, key, value)
    db.session.commit()
    return get_settings()
