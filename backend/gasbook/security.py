# Overview: Response security headers and CORS for the JSON API.

"""
Security headers added to every response:
- X-Content-Type-Options: nosniff
- X-Frame-Options: DENY
- Referrer-Policy / Permissions-Policy
- Content-Security-Policy: the API only ever returns JSON
- Strict-Transport-Security: production only (HTTPS terminates upstream)
- Cache-Control: no-store on /api responses
"""

from flask import request

from .services.csrf_service import CSRF_HEADER_NAME

CSP_POLICY = "; ".join([
    "default-src 'none'",
    "frame-ancestors 'none'",
    "base-uri 'none'",
    "form-action 'self'",
])

PERMISSIONS_POLICY = ", ".join([
    "accelerometer=()",
    "camera=()",
    "geolocation=()",
    "gyroscope=()",
    "microphone=()",
    "payment=()",
    "usb=()",
])


def register_security_headers(app) -> None:
    allowed_origins = set(app.config.get("ALLOWED_ORIGINS") or [])
    is_production = app.config.get("ENVIRONMENT") == "production"

    @app.after_request
    def add_security_headers(response):
        response.headers.setdefault("X-Content-Type-Options", "nosniff")
        response.headers.setdefault("X-Frame-Options", "DENY")
        response.headers.setdefault("Referrer-Policy", "strict-origin-when-cross-origin")
        response.headers.setdefault("Permissions-Policy", PERMISSIONS_POLICY)
        response.headers.setdefault("Content-Security-Policy", CSP_POLICY)
        if is_production:
            response.headers.setdefault("Strict-Transport-Security", "max-age=31536000; includeSubDomains")
        if request.path.startswith("/api"):
            response.headers.setdefault("Cache-Control", "no-store")
        return response

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Allow-Headers"] = f"Authorization, Content-Type, {CSRF_HEADER_NAME}"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PUT,DELETE,PATCH,OPTIONS"
        return response
