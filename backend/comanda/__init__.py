# backend/comanda/__init__.py
import logging

from flask import Flask, request
from werkzeug.exceptions import HTTPException

from .config import Config
from .errors import ApiError
from .extensions import db, migrate


def create_app(config_overrides: dict | None = None) -> Flask:
    """
    Application factory.

    config_overrides are applied on top of Config before any extension
    reads the configuration (tests pass their database URI and business
    day settings this way).
    """
    app = Flask(__name__, instance_relative_config=True)
    app.config.from_object(Config)
    if config_overrides:
        app.config.update(config_overrides)

    app.logger.setLevel(getattr(logging, str(app.config.get("LOG_LEVEL", "INFO")).upper(), logging.INFO))

    # Extensions, then the idempotency store chosen by IDEMPOTENCY_BACKEND
    db.init_app(app)
    migrate.init_app(app, db)

    from . import idempotency
    idempotency.init_app(app)

    # Models must be imported before Alembic autogenerate reads the metadata
    from . import models  # noqa: F401

    from .routes.auth import auth_bp
    from .routes.inventory import inventory_bp
    from .routes.orders import orders_bp
    from .routes.shifts import shifts_bp
    from .routes.system import system_bp

    for blueprint in (system_bp, auth_bp, orders_bp, shifts_bp, inventory_bp):
        app.register_blueprint(blueprint)

    _register_error_handlers(app)

    allowed_origins = set(app.config.get("CORS_ALLOWED_ORIGINS") or ())

    @app.after_request
    def add_cors_headers(response):
        # Terminals running the web POS on another origin
        origin = request.headers.get("Origin")
        if origin and origin in allowed_origins:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type, X-Idempotency-Key"
            response.headers["Access-Control-Allow-Methods"] = "GET,POST,PATCH,OPTIONS"
            response.headers["Access-Control-Expose-Headers"] = "Idempotent-Replay"
        return response

    from .cli import register_commands
    register_commands(app)

    return app


def _register_error_handlers(app: Flask) -> None:
    """Same {"error": {...}} body for routing errors as for service errors."""

    @app.errorhandler(ApiError)
    def handle_api_error(exc: ApiError):
        return {"error": exc.to_dict()}, exc.status_code

    @app.errorhandler(HTTPException)
    def handle_http_exception(exc: HTTPException):
        code = (exc.name or "error").upper().replace(" ", "_")
        return {"error": {"code": code, "message": exc.description}}, exc.code
