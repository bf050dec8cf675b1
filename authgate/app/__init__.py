"""
app/__init__.py — Flask application factory.

Pattern: create_app(config_name) creates and returns a configured Flask app.
         Nothing is initialised at import time, which enables:
           - Multiple isolated test app instances
           - Alembic to import the models without starting the server

Responsibilities:
  1. Load configuration from config_by_name[config_name]
  2. Configure logging before anything touches app.logger
  3. Initialise SQLAlchemy and the per-app services: identity provider
     client, cookie codec (one key for the life of the process), renewal gate
  4. Install the request filter chain (token refresh runs before every view)
  5. Register blueprints, error handlers and CORS headers
"""

from __future__ import annotations

import traceback
from datetime import date, datetime

from flask import Flask, jsonify, request
from flask.json.provider import DefaultJSONProvider
from marshmallow import ValidationError

from authgate.config import config_by_name, validate_production_config


# ── Custom JSON provider ───────────────────────────────────────────────────
# Flask's default provider renders datetimes as RFC 822 strings. Profiles
# carry created_at, and the frontend expects ISO-8601.

class IsoDateJSONProvider(DefaultJSONProvider):
    """
    Extends Flask's default JSON provider to serialise dates as ISO-8601.

    Example: datetime(2026, 1, 1, tzinfo=utc) → "2026-01-01T00:00:00+00:00"
    """

    def default(self, o):
        if isinstance(o, (datetime, date)):
            return o.isoformat()
        return super().default(o)


# ── Application factory ────────────────────────────────────────────────────

def create_app(config_name: str = "development") -> Flask:
    """
    Creates and returns a configured Flask application instance.

    Args:
        config_name: One of "development", "testing", "production".
                     Resolved via config_by_name in config.py.

    Returns:
        A fully configured Flask app ready to serve requests.
    """
    app = Flask(__name__)
    app.json_provider_class = IsoDateJSONProvider
    app.json = IsoDateJSONProvider(app)

    # ── Configuration ──────────────────────────────────────────────────────
    config_class = config_by_name.get(config_name, config_by_name["development"])
    app.config.from_object(config_class)

    if config_name == "production":
        validate_production_config(app)  # raises ValueError if misconfigured

    from authgate.app.log_config import configure_logging
    configure_logging(app)

    # ── Extensions ─────────────────────────────────────────────────────────
    # Import here (not at module top) to avoid circular imports.
    from authgate.app.extensions import db
    db.init_app(app)

    # Import all models so that SQLAlchemy's MetaData is populated for
    # create_all() and Alembic autogenerate.
    with app.app_context():
        from authgate.app.models import (  # noqa: F401
            refresh_token,
            session,
            user,
        )

    _init_services(app)
    _register_filters(app)
    _register_blueprints(app)
    _register_error_handlers(app)
    _register_cors(app)

    return app


def _init_services(app: Flask) -> None:
    """
    Builds the process-lifetime services and stores them on app.extensions.

    The cookie key comes from SID_COOKIE_KEY when set; otherwise one is
    generated here, once. It is written back into app.config so every part
    of the app sees the same key.
    """
    from authgate.app.extensions import COOKIE_CODEC_KEY, IDENTITY_PROVIDER_KEY, RENEWAL_GATE_KEY
    from authgate.app.services.cookie_codec import SessionCookieCodec, generate_key
    from authgate.app.services.identity_provider import GoogleOAuthClient
    from authgate.app.services.renewal_gate import RenewalGate

    if not app.config.get("SID_COOKIE_KEY"):
        app.config["SID_COOKIE_KEY"] = generate_key()
        app.logger.warning(
            "SID_COOKIE_KEY not set; generated a key for this process. "
            "Sessions will not survive a restart."
        )

    app.extensions[COOKIE_CODEC_KEY] = SessionCookieCodec.from_config(app.config)
    app.extensions[IDENTITY_PROVIDER_KEY] = GoogleOAuthClient.from_config(app.config)
    app.extensions[RENEWAL_GATE_KEY] = RenewalGate(handoff_ttl=app.config["RENEWAL_HANDOFF_TTL"])


def _register_filters(app: Flask) -> None:
    """
    Installs the ordered request filters. Order matters: a filter sees the
    context as left by every filter before it.
    """
    from authgate.app.middleware.pipeline import FilterChain
    from authgate.app.middleware.token_refresh import TokenRefreshFilter

    chain = FilterChain([
        TokenRefreshFilter(),
    ])
    chain.init_app(app)
    app.extensions["filter_chain"] = chain


def _register_blueprints(app: Flask) -> None:
    from authgate.app.routes.auth import auth_bp
    from authgate.app.routes.protected import health_bp, protected_bp

    app.register_blueprint(auth_bp,      url_prefix="/auth")
    app.register_blueprint(protected_bp, url_prefix="/protected")
    app.register_blueprint(health_bp)


def _register_error_handlers(app: Flask) -> None:
    """
    Registers global error handlers.

    Handlers:
      AppError        → structured JSON error envelope with the correct HTTP status
                        (covers UpstreamAuthError, StoreError, Unauthorized,
                        MissingExpiryError)
      ValidationError → marshmallow schema errors as MISSING_FIELD /
                        INVALID_FIELD responses (400)
      Exception       → generic INTERNAL_ERROR (500); traceback logged

    Stack traces never leave the server.
    """
    from authgate.app.errors import AppError, ErrorCode

    @app.errorhandler(AppError)
    def handle_app_error(error: AppError):
        """Routes never catch AppError — they let it propagate here."""
        return jsonify(error.to_dict()), error.http_status

    @app.errorhandler(ValidationError)
    def handle_validation_error(error: ValidationError):
        """Returns the FIRST field error only: one error, not many."""
        messages = error.messages

        field = None
        raw_message = "Invalid input."
        code = ErrorCode.INVALID_FIELD

        if isinstance(messages, dict):
            for field_name, field_errors in messages.items():
                field = field_name if field_name != "_schema" else None
                if isinstance(field_errors, list):
                    raw_message = field_errors[0] if field_errors else "Invalid value."
                else:
                    raw_message = str(field_errors)
                if str(raw_message).startswith("Missing data for required field"):
                    code = ErrorCode.MISSING_FIELD
                break

        response_body = {"error": {"code": code, "message": raw_message}}
        if field is not None:
            response_body["error"]["field"] = field
        return jsonify(response_body), 400

    @app.errorhandler(Exception)
    def handle_unexpected_error(error: Exception):
        # Let Flask render HTTP errors (404, 405, ...) as usual.
        from werkzeug.exceptions import HTTPException
        if isinstance(error, HTTPException):
            return error

        app.logger.error(
            "Unhandled exception: %s\n%s",
            str(error),
            traceback.format_exc(),
        )
        return jsonify({
            "error": {
                "code": ErrorCode.INTERNAL_ERROR,
                "message": "An unexpected error occurred. Please try again later.",
            }
        }), 500


def _register_cors(app: Flask) -> None:
    """
    Adds CORS headers for the browser frontend.

    The session travels in a cookie, so the frontend origin must be named
    explicitly (no "*") and credentials allowed. In DEBUG/TESTING any
    requesting origin is reflected to ease local development.
    """

    @app.after_request
    def add_cors_headers(response):
        origin = request.headers.get("Origin")
        if not origin:
            return response

        allow_any = bool(app.config.get("DEBUG") or app.config.get("TESTING"))
        if allow_any or origin == app.config.get("FRONTEND_URL"):
            response.headers["Access-Control-Allow-Origin"] = origin
            response.headers["Access-Control-Allow-Credentials"] = "true"
            response.headers["Vary"] = "Origin"
            response.headers["Access-Control-Allow-Methods"] = "GET, POST, OPTIONS"
            response.headers["Access-Control-Allow-Headers"] = "Content-Type"

        return response
