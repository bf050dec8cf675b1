"""
routes/auth.py — Authentication route handlers.

Layer rules:
  - Parse the query string with the appropriate schema
  - Call the session service / credential store
  - Return the standard response envelope: {"data": {...}, "warnings": []}
    (the callback answers with a redirect instead)

AppError propagates to the global error handler in app/__init__.py — routes
never catch it.

Endpoints (url_prefix=/auth):
  GET    /auth/login             → 200  provider authorization URL
  GET    /auth/google_callback   → 302  sets `sid`, redirects to LOGIN_REDIRECT_PATH
  GET    /auth/validate          → 200  caller's profile          (session required)
  POST   /auth/logout            → 200  deletes session + refresh token, clears `sid`
"""

from __future__ import annotations

from flask import Blueprint, current_app, g, jsonify, redirect, request

from authgate.app.errors import UpstreamAuthError
from authgate.app.extensions import db, get_cookie_codec, get_identity_provider
from authgate.app.middleware.session_extractor import require_session
from authgate.app.schemas.auth_schema import CallbackQuerySchema, ProviderErrorSchema, UserProfileSchema
from authgate.app.services import credential_store as store
from authgate.app.services import session_service
from authgate.app.services.cookie_codec import clear_session_cookie_kwargs, session_cookie_kwargs

auth_bp = Blueprint("auth", __name__)


@auth_bp.route("/login", methods=["GET"])
def login():
    """GET /auth/login — Return the provider consent URL. (No auth required.)"""
    url = get_identity_provider().build_authorization_url()
    return jsonify({"data": {"url": url}, "warnings": []}), 200


@auth_bp.route("/google_callback", methods=["GET"])
def google_callback():
    """GET /auth/google_callback — Complete the code flow and start a session."""
    provider_error = ProviderErrorSchema().load(request.args)
    if provider_error["error"]:
        current_app.logger.info("provider returned error on callback: %s", provider_error["error"])
        raise UpstreamAuthError("Sign-in was cancelled or refused by the identity provider.")

    query = CallbackQuerySchema().load(request.args)
    result = session_service.provision_login(
        get_identity_provider(),
        query["code"],
        session=db.session,
        session_ceiling=current_app.config["ACCESS_SESSION_MAX_LIFETIME"],
        refresh_lifetime=current_app.config["REFRESH_TOKEN_LIFETIME"],
    )
    current_app.logger.info(
        "user %s signed in (renewable=%s, session valid until %s)",
        result.user_id,
        result.renewable,
        result.expires_at.isoformat(),
    )

    response = redirect(current_app.config["LOGIN_REDIRECT_PATH"], code=302)
    cookie = get_cookie_codec().encode(result.handle.value)
    response.set_cookie(**session_cookie_kwargs(current_app.config, cookie))
    return response


@auth_bp.route("/validate", methods=["GET"])
@require_session
def validate():
    """GET /auth/validate — Return the caller's profile. (Session required.)"""
    return jsonify({"data": UserProfileSchema().dump(g.user), "warnings": []}), 200


@auth_bp.route("/logout", methods=["POST"])
@require_session
def logout():
    """POST /auth/logout — End the session everywhere. (Session required.)"""
    user_id = g.user.id
    store.delete_session(user_id, session=db.session)
    store.delete_refresh_token(user_id, session=db.session)
    current_app.logger.info("user %s signed out", user_id)

    response = jsonify({"data": {"message": "Logged out successfully."}, "warnings": []})
    response.set_cookie(**clear_session_cookie_kwargs(current_app.config))
    return response, 200
