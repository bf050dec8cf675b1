"""
middleware/token_refresh.py — silent renewal of expired sessions.

Runs before every request, public or protected:

  no cookie / undecodable cookie  → pass through (ANONYMOUS)
  session row not found           → adopt the handle that replaced it, if a
                                    concurrent request in this process just
                                    renewed it (RENEWED); else pass through
                                    (ANONYMOUS)
  now < expires_at                → pass through (VALID)
  expired                         → renew with the stored refresh token:
      refresh token missing/expired, provider failure,
      no lifetime reported, store failure
                                  → pass through (EXPIRED); the extractor
                                    rejects it on protected routes
      success                     → RENEWED: the new handle replaces the old
                                    one in the request context and in the
                                    inbound Cookie header, and the new `sid`
                                    is added to the outgoing response.

This filter never aborts a request and never raises: public routes keep
working through identity-provider or database outages.
"""

from __future__ import annotations

from typing import Optional

from flask import Response, current_app, request
from werkzeug.http import dump_cookie, parse_cookie

from authgate.app.errors import MissingExpiryError, StoreError, UpstreamAuthError
from authgate.app.extensions import db, get_cookie_codec, get_identity_provider, get_renewal_gate
from authgate.app.middleware.context import RequestContext, SessionState
from authgate.app.middleware.pipeline import RequestFilter
from authgate.app.services import credential_store as store
from authgate.app.services import session_service
from authgate.app.services.cookie_codec import SESSION_COOKIE_NAME, session_cookie_kwargs


def _rewrite_inbound_cookie(value: str) -> None:
    """
    Replace `sid` in the WSGI Cookie header so anything that reads
    request.cookies later in this request sees the renewed value.
    """
    cookies = parse_cookie(request.environ.get("HTTP_COOKIE", ""))
    pairs = [(k, v) for k, v in cookies.items(multi=True) if k != SESSION_COOKIE_NAME]
    pairs.append((SESSION_COOKIE_NAME, value))
    # parse_cookie unquoted the values; dump_cookie quotes them again where needed.
    request.environ["HTTP_COOKIE"] = "; ".join(dump_cookie(k, v, path=None) for k, v in pairs)
    # request.cookies is cached on first access; drop it so it is re-parsed.
    request.__dict__.pop("cookies", None)


def _sets_session_cookie(response: Response) -> bool:
    return any(
        header.startswith(f"{SESSION_COOKIE_NAME}=")
        for header in response.headers.getlist("Set-Cookie")
    )


class TokenRefreshFilter(RequestFilter):

    name = "token_refresh"

    def before_request(self, ctx: RequestContext) -> Optional[Response]:
        if ctx.handle is None:
            return None

        log = current_app.logger
        try:
            record = store.find_session_by_handle(ctx.handle, session=db.session)
        except StoreError:
            log.warning("session lookup failed; continuing as anonymous")
            return None

        if record is None:
            return self._adopt_replaced(ctx)

        ctx.user_id = record.user_id
        if not record.is_expired(session_service.utcnow()):
            ctx.state = SessionState.VALID
            return None

        ctx.state = SessionState.EXPIRED
        try:
            renewed = session_service.renew_session(
                record,
                get_identity_provider(),
                session=db.session,
                gate=get_renewal_gate(),
                session_ceiling=current_app.config["ACCESS_SESSION_MAX_LIFETIME"],
            )
        except UpstreamAuthError as exc:
            log.info("session renewal refused for user %s: %s", record.user_id, exc.message)
            return None
        except MissingExpiryError:
            log.warning("session renewal for user %s skipped: provider reported no lifetime", record.user_id)
            return None
        except StoreError:
            log.warning("session renewal for user %s failed in the store", record.user_id)
            return None

        if renewed is None:
            log.info("session for user %s expired and is not renewable", record.user_id)
            return None

        self._apply(ctx, renewed)
        return None

    def after_request(self, ctx: RequestContext, response: Response) -> Response:
        # A handler that set `sid` itself (logout) wins over the renewal.
        if ctx.renewed_cookie and not _sets_session_cookie(response):
            response.set_cookie(**session_cookie_kwargs(current_app.config, ctx.renewed_cookie))
        return response

    def _adopt_replaced(self, ctx: RequestContext) -> None:
        """The handle matches no row: it may have just been renewed by a concurrent request."""
        log = current_app.logger
        try:
            renewed = session_service.adopt_replaced(
                ctx.handle,
                session=db.session,
                gate=get_renewal_gate(),
            )
        except StoreError:
            log.warning("session lookup failed; continuing as anonymous")
            return None

        if renewed is None:
            log.debug("cookie does not match any session; continuing as anonymous")
            return None

        ctx.user_id = renewed.user_id
        self._apply(ctx, renewed)
        return None

    @staticmethod
    def _apply(ctx: RequestContext, renewed: session_service.RenewedSession) -> None:
        ctx.handle = renewed.handle.value
        ctx.state = SessionState.RENEWED
        ctx.renewed_cookie = get_cookie_codec().encode(renewed.handle.value)
        _rewrite_inbound_cookie(ctx.renewed_cookie)
        current_app.logger.info(
            "session %s for user %s, valid until %s",
            "adopted" if renewed.adopted else "renewed",
            renewed.user_id,
            renewed.expires_at.isoformat(),
        )
