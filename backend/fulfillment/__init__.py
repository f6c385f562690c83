# backend/fulfillment/__init__.py
import logging

from flask import Flask

from .config import Config
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        # Must be applied before db.init_app, which binds the engine
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Lifecycle reactions (package.ready -> order packaged, transport -> package/order/return)
    from .events import connect_handlers
    connect_handlers()

    # Register blueprints
    from .routes.system import system_bp
    from .routes.inventory import inventory_bp
    from .routes.orders import orders_bp
    from .routes.packages import packages_bp
    from .routes.transports import transports_bp
    from .routes.returns import returns_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(packages_bp)
    app.register_blueprint(transports_bp)
    app.register_blueprint(returns_bp)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app
