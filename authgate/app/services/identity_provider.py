"""
services/identity_provider.py — typed client for the Google OAuth2 endpoints.

Operations:
  - build_authorization_url  (no network)
  - exchange_code            POST token endpoint, grant_type=authorization_code
  - exchange_refresh_token   POST token endpoint, grant_type=refresh_token
  - fetch_profile            GET OpenID userinfo with the access token as bearer

Failure surface:
  UpstreamTransportError — connection error, timeout, unreadable body
  UpstreamRejectedError  — status >= 400, or a body missing required fields
Both subclass UpstreamAuthError so callers can treat them alike.

The client holds no per-user state. The underlying requests.Session is only
used for connection pooling and is safe to share across worker threads for
these simple calls. Every call carries an explicit timeout.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Dict, Iterable, Optional
from urllib.parse import quote, urlencode

import requests

from authgate.app.errors import UpstreamRejectedError, UpstreamTransportError

logger = logging.getLogger(__name__)

AUTHORIZATION_ENDPOINT = "https://accounts.google.com/o/oauth2/v2/auth"
TOKEN_ENDPOINT = "https://oauth2.googleapis.com/token"
USERINFO_ENDPOINT = "https://openidconnect.googleapis.com/v1/userinfo"

DEFAULT_SCOPES = ("openid", "profile", "email")


@dataclass(frozen=True)
class TokenSet:
    access_token: str
    refresh_token: Optional[str] = None
    expires_in: Optional[int] = None  # seconds, as reported by the provider

    def __repr__(self) -> str:
        return (
            f"TokenSet(access_token=<redacted>, "
            f"refresh_token={'<redacted>' if self.refresh_token else None}, "
            f"expires_in={self.expires_in})"
        )


@dataclass(frozen=True)
class ProviderProfile:
    email: str
    name: str


def _parse_expires_in(raw: Any) -> Optional[int]:
    if raw is None or raw == "":
        return None
    try:
        secs = int(raw)
    except (TypeError, ValueError):
        return None
    return secs if secs > 0 else None


class GoogleOAuthClient:

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        redirect_uri: str,
        *,
        timeout: float = 10.0,
        http: Optional[requests.Session] = None,
        authorization_endpoint: str = AUTHORIZATION_ENDPOINT,
        token_endpoint: str = TOKEN_ENDPOINT,
        userinfo_endpoint: str = USERINFO_ENDPOINT,
    ) -> None:
        self.client_id = client_id
        self._client_secret = client_secret
        self.redirect_uri = redirect_uri
        self.timeout = timeout
        self._http = http or requests.Session()
        self.authorization_endpoint = authorization_endpoint
        self.token_endpoint = token_endpoint
        self.userinfo_endpoint = userinfo_endpoint

    @classmethod
    def from_config(cls, config) -> "GoogleOAuthClient":
        return cls(
            client_id=config["GOOGLE_OAUTH_CLIENT_ID"],
            client_secret=config["GOOGLE_OAUTH_CLIENT_SECRET"],
            redirect_uri=config["OAUTH_REDIRECT_URI"],
            timeout=float(config.get("OAUTH_PROVIDER_TIMEOUT", 10)),
        )

    # ── Authorization URL ──────────────────────────────────────────────────

    def build_authorization_url(
        self,
        client_id: Optional[str] = None,
        redirect_uri: Optional[str] = None,
        scopes: Optional[Iterable[str]] = None,
    ) -> str:
        """
        Build the consent-screen URL.

        access_type=offline + prompt=consent make Google return a refresh
        token on every code exchange, not only on the first consent.
        """
        params = {
            "access_type": "offline",
            "prompt": "consent",
            "scope": " ".join(scopes or DEFAULT_SCOPES),
            "client_id": client_id or self.client_id,
            "response_type": "code",
            "redirect_uri": redirect_uri or self.redirect_uri,
        }
        # quote_via keeps spaces as %20 in the scope list.
        return f"{self.authorization_endpoint}?{urlencode(params, quote_via=quote)}"

    # ── Token endpoint ─────────────────────────────────────────────────────

    def exchange_code(self, code: str) -> TokenSet:
        data = self._post_token({
            "grant_type": "authorization_code",
            "code": code,
            "redirect_uri": self.redirect_uri,
        })
        return self._token_set(data)

    def exchange_refresh_token(self, refresh_secret: str) -> TokenSet:
        data = self._post_token({
            "grant_type": "refresh_token",
            "refresh_token": refresh_secret,
        })
        token = self._token_set(data)
        # Google does not rotate refresh tokens; ignore one if it appears.
        return TokenSet(access_token=token.access_token, expires_in=token.expires_in)

    # ── Userinfo ───────────────────────────────────────────────────────────

    def fetch_profile(self, access_token: str) -> ProviderProfile:
        try:
            r = self._http.get(
                self.userinfo_endpoint,
                headers={"Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as exc:
            logger.warning("userinfo request failed: %s", type(exc).__name__)
            raise UpstreamTransportError("The identity provider could not be reached.") from exc

        data = self._json_body(r, what="userinfo")
        email = str(data.get("email") or "").strip()
        if not email:
            raise UpstreamRejectedError("The identity provider did not return an email address.")
        name = str(data.get("name") or "").strip() or email.split("@", 1)[0]
        return ProviderProfile(email=email, name=name)

    # ── Internals ──────────────────────────────────────────────────────────

    def _post_token(self, payload: Dict[str, str]) -> Dict[str, Any]:
        body = {
            "client_id": self.client_id,
            "client_secret": self._client_secret,
            **payload,
        }
        try:
            r = self._http.post(self.token_endpoint, data=body, timeout=self.timeout)
        except requests.RequestException as exc:
            logger.warning(
                "token request failed (grant_type=%s): %s",
                payload.get("grant_type"),
                type(exc).__name__,
            )
            raise UpstreamTransportError("The identity provider could not be reached.") from exc
        return self._json_body(r, what=f"token ({payload.get('grant_type')})")

    @staticmethod
    def _json_body(r: requests.Response, *, what: str) -> Dict[str, Any]:
        if r.status_code >= 400:
            # Avoid leaking sensitive info; include minimal context.
            logger.info("%s rejected by provider (status=%s)", what, r.status_code)
            raise UpstreamRejectedError(
                f"The identity provider rejected the {what.split(' ')[0]} request.",
                status_code=r.status_code,
            )
        try:
            data = r.json()
        except ValueError as exc:
            raise UpstreamTransportError(f"Unreadable {what} response from the identity provider.") from exc
        if not isinstance(data, dict):
            raise UpstreamTransportError(f"Unreadable {what} response from the identity provider.")
        return data

    @staticmethod
    def _token_set(data: Dict[str, Any]) -> TokenSet:
        access_token = str(data.get("access_token") or "")
        if not access_token:
            raise UpstreamRejectedError("The identity provider did not issue an access token.")
        refresh_token = data.get("refresh_token") or None
        return TokenSet(
            access_token=access_token,
            refresh_token=str(refresh_token) if refresh_token else None,
            expires_in=_parse_expires_in(data.get("expires_in")),
        )
