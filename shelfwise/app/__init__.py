"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, so tests can build isolated
         app instances and `flask` CLI commands work without a server.

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Set the log level from LOG_LEVEL
  3. Initialise extensions (SQLAlchemy, mailer) and tune SQLite engines
  4. Register all route blueprints under /api/v1, plus /health
  5. Register global error handlers (the single boundary for unexpected errors)
  6. Add CORS headers (credentials allowed, for the refresh cookie)
  7. Register CLI commands

Note on model imports:
  All model modules are imported inside create_app() so that SQLAlchemy's
  metadata is complete before create_all() or Alembic inspects it.
"""

from __future__ import annotations

import os
import traceback

from flask import Flask, jsonify, request
from marshmallow import ValidationError
from werkzeug.exceptions import HTTPException

from shelfwise.config import config_by_name, validate_production_config


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str | None = None) -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Defaults to $FLASK_ENV, then "development".
    """
    config_name = config_name or os.getenv("FLASK_ENV", "development")

    app = Flask(__name__)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    app.logger.setLevel(app.config.get("LOG_LEVEL", "INFO"))

    # ── Extensions ─────────────────────────────────────────────────────────
    from shelfwise.app.extensions import configure_sqlite_engine, db, mailer
    db.init_app(app)
    mailer.init_app(app)

    with app.app_context():
        from shelfwise.app.models import (  # noqa: F401
            book,
            borrowing,
            password_reset_token,
            refresh_token,
            registration_otp,
            user,
        )
        configure_sqlite_engine(db.engine)

    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    from shelfwise.app.commands import register_commands
    register_commands(app)

    return app


def _register_blueprints(app: Flask) -> None:
    """
    Registers all route blueprints under the /api/v1 prefix.

    Route files only specify paths relative to their resource ("" and
    "/<int:id>").
    """
    from shelfwise.app.routes.auth import auth_bp
    from shelfwise.app.routes.books import books_bp
    from shelfwise.app.routes.borrowings import borrowings_bp
    from shelfwise.app.routes.users import users_bp

    app.register_blueprint(auth_bp,       url_prefix="/api/v1/auth")
    app.register_blueprint(books_bp,      url_prefix="/api/v1/books")
    app.register_blueprint(borrowings_bp, url_prefix="/api/v1/borrowings")
    app.register_blueprint(users_bp,      url_prefix="/api/v1/users")

    @app.route("/health", methods=["GET"])
    def health():
        return jsonify({"status": "ok"}), 200


def _flatten_messages(messages, prefix: str = "") -> list[dict]:
    """
    Turns marshmallow's nested messages into [{"path", "message"}].

    {"tags": {0: ["Too long."]}} → [{"path": "tags.0", "message": "Too long."}]
    """
    details: list[dict] = []
    if isinstance(messages, dict):
        for key, value in messages.items():
            path = prefix if key == "_schema" else (f"{prefix}.{key}" if prefix else str(key))
            details.extend(_flatten_messages(value, path))
    elif isinstance(messages, (list, tuple)):
        for item in messages:
            details.extend(_flatten_messages(item, prefix))
    else:
        details.append({"path": prefix, "message": str(messages)})
    return details


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → {"error", "code"[, "field"]} with the error's status
      ValidationError → 400 {"error", "code", "details": [{path, message}]}
      HTTPException   → {"error", "code": "HTTP_<status>"} (404, 405, bad JSON)
      Exception       → 500 INTERNAL_ERROR; traceback logged, never returned
    """
    from shelfwise.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        return jsonify({
            "error": "Validation failed",
            "code": ErrorCode.VALIDATION_FAILED,
            "details": _flatten_messages(error.messages),
        }), 400

    @app.errorhandler(HTTPException)
    def handle_http_exception(error: HTTPException):
        return jsonify({
            "error": error.description,
            "code": f"HTTP_{error.code}",
        }), error.code

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        app.logger.error(
            "Unhandled exception on %s %s: %s\n%s",
            request.method,
            request.path,
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": "An unexpected error occurred. Please try again later.",
            "code": ErrorCode.INTERNAL_ERROR,
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers with credentials, so a browser client on another
    origin can send the refresh cookie.

    Allowed origins come from CORS_ORIGINS (comma-separated). In DEBUG or
    TESTING any origin is reflected.
    """
    allowed = {
        origin.strip()
        for origin in app.config.get("CORS_ORIGINS", "").split(",")
        if origin.strip()
    }

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if not origin:
            return response

        allow_any = bool(app.config.get("DEBUG") or app.config.get("TESTING"))
        if allow_any or origin in allowed:
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, PUT, DELETE, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Authorization, Content-Type"
            response.headers["Access-Control-Expose-Headers"] = "X-Total-Count, Link"

        return response

