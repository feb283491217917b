# backend/gasbook/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate, outbox


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before extensions bind to the database URI
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)
    outbox.init_app(app)

    from .services import csrf_service, rate_limit_service
    rate_limit_service.init_app(app)
    csrf_service.init_app(app)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .errors import register_error_handlers
    from .decorators import register_request_guards
    from .security import register_security_headers
    register_error_handlers(app)
    register_request_guards(app)
    register_security_headers(app)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.auth import auth_bp
    from .routes.user import user_bp
    from .routes.bookings import bookings_bp
    from .routes.payments import payments_bp
    from .routes.contacts import contacts_bp
    from .routes.settings import settings_bp
    from .routes.admin_users import admin_users_bp
    from .routes.admin_bookings import admin_bookings_bp
    from .routes.admin_inventory import admin_inventory_bp
    from .routes.admin_deliveries import admin_deliveries_bp
    from .routes.admin_contacts import admin_contacts_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(auth_bp)
    app.register_blueprint(user_bp)
    app.register_blueprint(bookings_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(contacts_bp)
    app.register_blueprint(settings_bp)
    app.register_blueprint(admin_users_bp)
    app.register_blueprint(admin_bookings_bp)
    app.register_blueprint(admin_inventory_bp)
    app.register_blueprint(admin_deliveries_bp)
    app.register_blueprint(admin_contacts_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
