# backend/tillcore/__init__.py
import logging

from flask import Flask, jsonify
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import TillError
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    level = logging.getLevelName(str(app.config.get("LOG_LEVEL", "INFO")).upper())
    if not isinstance(level, int):
        level = logging.INFO
    app.logger.setLevel(level)
    logging.getLogger("tillcore").setLevel(level)

    # Initialize extensions
    db.init_app(app)
    migrate.init_app(app, db)

    # Import models so Alembic can discover metadata reliably
    from . import models  # noqa: F401

    # Payment gateway adapter, shared by every request
    from .services.context import GATEWAY_EXTENSION_KEY
    from .services.tap_gateway import TapGateway
    app.extensions[GATEWAY_EXTENSION_KEY] = TapGateway.from_config(app.config)

    # Register blueprints
    from .routes.system import system_bp
    from .routes.orders import orders_bp
    from .routes.payments import payments_bp
    from .routes.shifts import shifts_bp
    from .routes.inventory import inventory_bp
    from .routes.webhooks import webhooks_bp

    app.register_blueprint(system_bp)
    app.register_blueprint(orders_bp)
    app.register_blueprint(payments_bp)
    app.register_blueprint(shifts_bp)
    app.register_blueprint(inventory_bp)
    app.register_blueprint(webhooks_bp)

    register_error_handlers(app)

    # Register CLI commands
    from .cli import register_commands
    register_commands(app)

    return app


def register_error_handlers(app: Flask) -> None:
    """JSON bodies for errors that escape a route (unknown URLs, wrong methods, stray TillErrors)."""

    @app.errorhandler(TillError)
    def handle_till_error(e: TillError):
        return jsonify(e.to_dict()), e.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(e: HTTPException):
        return jsonify({"error": e.description or e.name}), e.code
