# backend/orderflow/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate



def create_app(config_overrides: dict | None = None, notifier=None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    # Overrides must land before db.init_app; engines are built from config there
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    from .services.notification_service import LoggingNotifier, install_notifier
    install_notifier(app, notifier or LoggingNotifier())

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.lines import lines_bp, suggestions_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(lines_bp)
    app.register_blueprint(suggestions_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
