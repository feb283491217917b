# backend/gasbook/config.py
from __future__ import annotations
import os


def _env_bool(name: str, default: bool) -> bool:
    raw = os.environ.get(name)
    if raw is None:
        return default
    return raw.strip().lower() in ("1", "true", "yes", "on")


class Config:
    # Optional "SECRET_KEY", with default dev key
    SECRET_KEY = os.environ.get("SECRET_KEY", "dev-secret-key-change-me")
    ENVIRONMENT = os.environ.get("ENVIRONMENT", "development").lower()
    LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO").upper()

    # SQLite DB stored in backend/instance/gasbook.sqlite3
    SQLALCHEMY_DATABASE_URI = os.environ.get(
        "DATABASE_URL", #optional alternative location
        "sqlite:///gasbook.sqlite3", #default local location
    )
    SQLALCHEMY_TRACK_MODIFICATIONS = False

    # Business defaults (SystemSettings row overrides the price once saved)
    ADMIN_UPI_ID = os.environ.get("ADMIN_UPI_ID", "")
    PRICE_PER_CYLINDER = int(os.environ.get("PRICE_PER_CYLINDER", "1100"))
    DEFAULT_ANNUAL_QUOTA = int(os.environ.get("DEFAULT_ANNUAL_QUOTA", "12"))
    LOW_STOCK_THRESHOLD = int(os.environ.get("LOW_STOCK_THRESHOLD", "10"))
    REQUIRE_EMAIL_VERIFICATION = _env_bool("REQUIRE_EMAIL_VERIFICATION", True)
    # bcrypt cost factor; tests lower it
    BCRYPT_ROUNDS = int(os.environ.get("BCRYPT_ROUNDS", "12"))
    APP_BASE_URL = os.environ.get("APP_BASE_URL", "http://localhost:3000")

    # Outbound mail
    MAIL_ENABLED = _env_bool("MAIL_ENABLED", False)
    MAIL_SYNC = _env_bool("MAIL_SYNC", False)
    MAIL_MAX_ATTEMPTS = int(os.environ.get("MAIL_MAX_ATTEMPTS", "1"))
    MAIL_FROM = os.environ.get("MAIL_FROM", "Gas Agency <no-reply@gasagency.local>")
    SMTP_HOST = os.environ.get("SMTP_HOST", "localhost")
    SMTP_PORT = int(os.environ.get("SMTP_PORT", "587"))
    SMTP_USERNAME = os.environ.get("SMTP_USERNAME", "")
    SMTP_PASSWORD = os.environ.get("SMTP_PASSWORD", "")
    SMTP_USE_TLS = _env_bool("SMTP_USE_TLS", True)
    SMTP_TIMEOUT_SECONDS = int(os.environ.get("SMTP_TIMEOUT_SECONDS", "15"))

    # Request throttling and CSRF; memory:// is only correct for a single process
    RATE_LIMIT_ENABLED = _env_bool("RATE_LIMIT_ENABLED", True)
    RATE_LIMIT_STORAGE_URL = os.environ.get("RATE_LIMIT_STORAGE_URL", "memory://")
    CSRF_ENABLED = _env_bool("CSRF_ENABLED", True)
    CSRF_TOKEN_TTL_SECONDS = int(os.environ.get("CSRF_TOKEN_TTL_SECONDS", "3600"))

    ALLOWED_ORIGINS = [
        o.strip()
        for o in os.environ.get(
            "ALLOWED_ORIGINS",
            "http://localhost:3000,http://127.0.0.1:3000",
        ).split(",")
        if o.strip()
    ]
