# Overview: Flask API routes for agency settings; public read, admin update.

# backend/gasbook/routes/settings.py
from flask import Blueprint, request

from ..decorators import require_admin, require_auth
from ..errors import ok
from ..services import settings_service
from ..validation import get_json_body

settings_bp = Blueprint("settings", __name__, url_prefix="/api/settings")


@settings_bp.get("")
def get_settings():
    """UPI id, QR image and price per cylinder. Public so the booking form can render."""
    return ok(settings_service.get_settings())


@settings_bp.put("")
@require_auth
@require_admin
def update_settings():
    return ok(settings_service.update_settings(get_json_body(request)), message="Settings updated")
