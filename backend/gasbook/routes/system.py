# Overview: Flask API routes for system operations; health check, CSRF token issue and admin dashboard.

# backend/gasbook/routes/system.py
"""
System endpoints.

- GET /api/health: database connectivity plus version info (no auth)
- GET /api/csrf-token: issue a token for the X-CSRF-Token header (no auth)
- GET /api/admin/dashboard: aggregated admin stats
"""

import os
import time

from flask import Blueprint, current_app
from sqlalchemy import text

from ..decorators import require_admin, require_auth
from ..errors import ok
from ..extensions import db
from ..services import stats_service
from ..services.csrf_service import CSRF_HEADER_NAME, get_csrf
from ..time_utils import to_utc_z, utcnow

system_bp = Blueprint("system", __name__, url_prefix="/api")


def check_database_health() -> dict:
    start_time = time.time()
    try:
        db.session.execute(text("SELECT 1"))
        elapsed_ms = (time.time() - start_time) * 1000
        return {"status": "healthy", "latency_ms": round(elapsed_ms, 2)}
    except Exception:
        db.session.rollback()
        elapsed_ms = (time.time() - start_time) * 1000
        current_app.logger.exception("Database health check failed")
        return {"status": "unhealthy", "latency_ms": round(elapsed_ms, 2), "error": "Database error"}


@system_bp.get("/health")
def health():
    """
    Health check for load balancers.

    Returns 200 when the database answers, 503 otherwise.
    """
    database = check_database_health()
    healthy = database["status"] == "healthy"
    body = {
        "success": healthy,
        "data": {
            "status": "healthy" if healthy else "unhealthy",
            "timestamp": to_utc_z(utcnow()),
            "environment": current_app.config.get("ENVIRONMENT"),
            "version": os.environ.get("APP_VERSION", "dev"),
            "checks": {"database": database},
        },
    }
    return body, 200 if healthy else 503


@system_bp.get("/csrf-token")
def csrf_token():
    token = get_csrf().issue()
    return ok({"csrf_token": token, "header": CSRF_HEADER_NAME})


@system_bp.get("/admin/dashboard")
@require_auth
@require_admin
def admin_dashboard():
    return ok(stats_service.dashboard())
