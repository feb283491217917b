# Overview: Typed application errors and the JSON response envelope.

"""
Error taxonomy and response envelope.

Every API response has the shape {success, data?, message?, error?}.
Services raise the typed errors below BEFORE any write; the handlers
registered in register_error_handlers() turn them into the envelope.

    ValidationError          400  malformed or out-of-range input
    AuthenticationError      401  no / expired session
    AuthorizationError       403  authenticated but wrong role
    NotFoundError            404
    ConflictError            409  state precondition violated
    RateLimitError           429
    ServiceUnavailableError  503  datastore unavailable

SECURITY: Unexpected exceptions are logged with a traceback but the
client only ever sees a generic message outside DEBUG.
"""

from __future__ import annotations

from flask import jsonify, current_app
from sqlalchemy.exc import SQLAlchemyError
from werkzeug.exceptions import HTTPException


class AppError(Exception):
    status_code = 500
    error_code = "INTERNAL_ERROR"

    def __init__(self, message: str | None = None, *, details: dict | None = None):
        super().__init__(message or self.__class__.__doc__ or self.error_code)
        self.message = message or (self.__class__.__doc__ or self.error_code).strip()
        self.details = details


class ValidationError(AppError):
    """Invalid input"""
    status_code = 400
    error_code = "VALIDATION_ERROR"


class InvalidTransitionError(ValidationError):
    """Status transition not allowed"""
    error_code = "INVALID_TRANSITION"


class AuthenticationError(AppError):
    """Authentication required"""
    status_code = 401
    error_code = "AUTHENTICATION_ERROR"


class AuthorizationError(AppError):
    """Access denied"""
    status_code = 403
    error_code = "AUTHORIZATION_ERROR"


class NotFoundError(AppError):
    """Resource not found"""
    status_code = 404
    error_code = "NOT_FOUND"


class ConflictError(AppError):
    """Request conflicts with current state"""
    status_code = 409
    error_code = "CONFLICT"


class RateLimitError(AppError):
    """Too many requests"""
    status_code = 429
    error_code = "RATE_LIMIT_EXCEEDED"

    def __init__(self, message: str | None = None, *, retry_after: int | None = None):
        super().__init__(message)
        self.retry_after = retry_after


class ServiceUnavailableError(AppError):
    """Service temporarily unavailable"""
    status_code = 503
    error_code = "SERVICE_UNAVAILABLE"


def ok(data=None, message: str | None = None, status: int = 200):
    body = {"success": True}
    if data is not None:
        body["data"] = data
    if message:
        body["message"] = message
    return jsonify(body), status


def error_body(error_code: str, message: str, details: dict | None = None) -> dict:
    body = {"success": False, "error": error_code, "message": message}
    if details:
        body["details"] = details
    return body


def register_error_handlers(app) -> None:
    """Map the taxonomy onto HTTP responses."""

    @app.errorhandler(AppError)
    def handle_app_error(exc: AppError):
        response = jsonify(error_body(exc.error_code, exc.message, exc.details))
        response.status_code = exc.status_code
        if isinstance(exc, RateLimitError) and exc.retry_after:
            response.headers["Retry-After"] = str(exc.retry_after)
        return response

    @app.errorhandler(HTTPException)
    def handle_http_error(exc: HTTPException):
        code = {
            400: "BAD_REQUEST",
            401: "AUTHENTICATION_ERROR",
            403: "AUTHORIZATION_ERROR",
            404: "NOT_FOUND",
            405: "METHOD_NOT_ALLOWED",
            415: "UNSUPPORTED_MEDIA_TYPE",
        }.get(exc.code or 500, "HTTP_ERROR")
        response = jsonify(error_body(code, exc.description or exc.name))
        response.status_code = exc.code or 500
        return response

    @app.errorhandler(SQLAlchemyError)
    def handle_db_error(exc: SQLAlchemyError):
        from .extensions import db

        db.session.rollback()
        current_app.logger.exception("Database error")
        response = jsonify(error_body("SERVICE_UNAVAILABLE", "Database temporarily unavailable"))
        response.status_code = 503
        return response

    @app.errorhandler(Exception)
    def handle_unexpected(exc: Exception):
        current_app.logger.exception("Unhandled error")
        message = str(exc) if current_app.debug else "Internal server error"
        response = jsonify(error_body("INTERNAL_ERROR", message))
        response.status_code = 500
        return response
