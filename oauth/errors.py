"""Exceptions raised by the authorization server core.

The HTTP layer turns these into JSON error bodies (token, authorize and
register endpoints) or small HTML pages (the IdP callback).
"""

from typing import Optional


class OAuthError(Exception):
    """An RFC 6749 error with its HTTP status."""

    def __init__(self, error: str, description: Optional[str] = None, status_code: int = 400):
        super().__init__(description or error)
        self.error = error
        self.description = description
        self.status_code = status_code

    def to_payload(self) -> dict:
        payload = {"error": self.error}
        if self.description:
            payload["error_description"] = self.description
        return payload


class CallbackError(Exception):
    """The IdP callback cannot continue (IdP error, bad or stale state)."""

    def __init__(self, message: str, status_code: int = 400):
        super().__init__(message)
        self.message = message
        self.status_code = status_code


class AccessDeniedError(CallbackError):
    """The resolved identity is not on the allowlist."""

    def __init__(self, email: str):
        super().__init__("Access denied", status_code=403)
        self.email = email


class UpstreamError(Exception):
    """The IdP token exchange or userinfo lookup failed."""
