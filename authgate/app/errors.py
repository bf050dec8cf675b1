"""
errors.py — AppError base class, the auth error taxonomy and the error code registry.

Every error returned by the authgate API uses a code defined here.
Do not raise strings or generic exceptions from service or route code.

Rules:
  - Error codes are a versioned contract. They do not change once published.
  - Error messages are human-readable prose. They may be improved at any time.
  - Provider and store failures inside the refresh filter are never raised to
    the client; they degrade the request to anonymous (see middleware/).
"""

from __future__ import annotations


class AppError(Exception):

    def __init__(
            self,
            code: str,
            message: str,
            http_status: int,
            field: str | None = None,
    ) -> None:
        super().__init__(message)
        self.code        = code
        self.message     = message
        self.http_status = http_status
        self.field       = field  # which request field caused the error

    def to_dict(self) -> dict:
        payload = {
            "code":    self.code,
            "message": self.message,
        }
        if self.field is not None:
            payload["field"] = self.field
        return {"error": payload}

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(code={self.code!r}, "
            f"http_status={self.http_status}, "
            f"message={self.message!r})"
        )


# ── Error Code Registry ────────────────────────────────────────────────────
#
# IMPORTANT: these are the string values sent in the API response.
# Do not rename them without a major version bump.
# ──────────────────────────────────────────────────────────────────────────

class ErrorCode:

    # ── Schema / Input Errors (400) ────────────────────────────────────────
    MISSING_FIELD              = "MISSING_FIELD"
    INVALID_FIELD              = "INVALID_FIELD"

    # ── Auth Errors (401) ──────────────────────────────────────────────────
    UNAUTHORIZED               = "UNAUTHORIZED"
    UPSTREAM_AUTH_FAILED       = "UPSTREAM_AUTH_FAILED"

    # ── Upstream contract violations (502) ─────────────────────────────────
    PROVIDER_EXPIRY_MISSING    = "PROVIDER_EXPIRY_MISSING"

    # ── System Errors (500) ────────────────────────────────────────────────
    STORE_UNAVAILABLE          = "STORE_UNAVAILABLE"
    INTERNAL_ERROR             = "INTERNAL_ERROR"


# ── Taxonomy ───────────────────────────────────────────────────────────────

class UpstreamAuthError(AppError):
    """The identity provider rejected a code/refresh token, or could not be reached."""

    def __init__(self, message: str = "The identity provider rejected the request.") -> None:
        super().__init__(ErrorCode.UPSTREAM_AUTH_FAILED, message, 401)


class UpstreamTransportError(UpstreamAuthError):
    """Connection error, timeout, or an unreadable response body."""


class UpstreamRejectedError(UpstreamAuthError):
    """
    The provider answered, but refused: HTTP status >= 400 or a response
    missing required fields.
    """

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


class StoreError(AppError):
    """Database unavailable or a constraint violation."""

    def __init__(self, message: str = "The credential store is unavailable.") -> None:
        super().__init__(ErrorCode.STORE_UNAVAILABLE, message, 500)


class Unauthorized(AppError):
    """No cookie, an undecodable cookie, or no live session behind it."""

    def __init__(self, message: str = "Authentication required. Sign in to continue.") -> None:
        super().__init__(ErrorCode.UNAUTHORIZED, message, 401)


class MissingExpiryError(AppError):
    """The provider issued an access token without reporting its lifetime."""

    def __init__(self, message: str = "The identity provider did not report a token lifetime.") -> None:
        super().__init__(ErrorCode.PROVIDER_EXPIRY_MISSING, message, 502)
