"""
routes/protected.py — landing page behind the session, plus a liveness check.

GET /protected is where the callback redirects after sign-in. Resource
endpoints elsewhere follow the same pattern: decorate with @require_session
and read g.user.
"""

from __future__ import annotations

from flask import Blueprint, g, jsonify

from authgate.app.middleware.session_extractor import require_session

protected_bp = Blueprint("protected", __name__)
health_bp = Blueprint("health", __name__)


@protected_bp.route("", methods=["GET"])
@require_session
def landing():
    """GET /protected — Greets the signed-in user. (Session required.)"""
    return jsonify({"data": {"email": g.user.email, "name": g.user.name}, "warnings": []}), 200


@health_bp.route("/health", methods=["GET"])
def health():
    """GET /health — Liveness check. Never touches the database or the provider."""
    return jsonify({"status": "ok"}), 200
