# Overview: Request decorators for API routes; authentication, admin gate, rate limiting and CSRF.

from functools import wraps
from flask import request, g, current_app

from .errors import AuthenticationError, AuthorizationError, RateLimitError
from .services import session_service
from .services.csrf_service import CSRF_HEADER_NAME, PROTECTED_METHODS, get_csrf
from .services.rate_limit_service import client_identifier, get_rate_limiter


def _bearer_token() -> str | None:
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        return None
    token = auth_header.split(" ", 1)[1].strip()
    return token or None


def require_auth(f):
    """
    Require a valid bearer session.

    Sets the following Flask g attributes:
    - g.current_user: The authenticated User object
    - g.session_context: The full SessionContext object
    - g.session_token: The plaintext bearer token (for logout)

    SECURITY: 401 if the header is missing, the token is invalid, expired,
    idle too long, or the account has been deactivated.
    """
    @wraps(f)
    def decorated_function(*args, **kwargs):
        token = _bearer_token()
        if not token:
            raise AuthenticationError("Authentication required")

        context = session_service.validate_session(token)
        if not context:
            raise AuthenticationError("Invalid or expired token")

        g.current_user = context.user
        g.session_context = context
        g.session_token = token
        return f(*args, **kwargs)

    return decorated_function


def require_admin(f):
    """Authenticated ADMIN only. Apply below @require_auth."""
    @wraps(f)
    def decorated_function(*args, **kwargs):
        user = getattr(g, "current_user", None)
        if user is None:
            raise AuthenticationError("Authentication required")
        if not user.is_admin:
            raise AuthorizationError("Admin access required")
        return f(*args, **kwargs)

    return decorated_function


def check_rate_limit(policy: str) -> None:
    """Raise RateLimitError when the client is over `policy`. No-op when disabled."""
    if not current_app.config.get("RATE_LIMIT_ENABLED", True):
        return
    result = get_rate_limiter().check(policy, client_identifier(request))
    if not result.allowed:
        raise RateLimitError(
            "Too many requests. Please try again later.",
            retry_after=result.retry_after,
        )


def check_csrf() -> None:
    """Require a live X-CSRF-Token on state-changing methods. No-op when disabled."""
    if not current_app.config.get("CSRF_ENABLED", True) or request.method not in PROTECTED_METHODS:
        return
    if not get_csrf().validate(request.headers.get(CSRF_HEADER_NAME)):
        current_app.logger.warning("CSRF check failed for %s %s", request.method, request.path)
        raise AuthorizationError("Invalid or missing CSRF token")


def rate_limit(policy: str):
    """
    Throttle a route by policy + client IP, on top of the general API limit.

    Over the limit -> 429 with Retry-After.
    """
    def decorator(f):
        @wraps(f)
        def decorated_function(*args, **kwargs):
            check_rate_limit(policy)
            return f(*args, **kwargs)

        return decorated_function
    return decorator


def register_request_guards(app) -> None:
    """General rate limit and CSRF check for every /api request."""

    @app.before_request
    def api_guards():
        if not request.path.startswith("/api") or request.method == "OPTIONS":
            return None
        check_rate_limit("general")
        check_csrf()
        return None
