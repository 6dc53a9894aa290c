"""In-memory OAuth records.

Every record answers ``is_expired(now)`` so the stores can treat them
uniformly. Records never outlive the process.
"""

import time
from dataclasses import dataclass, field

# Lifetimes (seconds)
PENDING_AUTHORIZATION_TTL = 10 * 60
AUTHORIZATION_CODE_TTL = 5 * 60
ACCESS_TOKEN_TTL = 60 * 60
SWEEP_INTERVAL = 5 * 60


@dataclass(frozen=True)
class RegisteredClient:
    """A client created through dynamic client registration."""

    client_id: str
    client_secret: str
    redirect_uris: tuple[str, ...]
    client_name: str = "unknown"

    def is_expired(self, now: float) -> bool:
        return False


@dataclass(frozen=True)
class PendingAuthorization:
    """An /oauth/authorize request waiting for the IdP callback.

    Keyed by the anti-forgery token sent to the IdP as ``state``.
    """

    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str
    client_state: str = ""
    created_at: float = field(default_factory=time.time)

    def is_expired(self, now: float) -> bool:
        return now - self.created_at > PENDING_AUTHORIZATION_TTL


@dataclass(frozen=True)
class AuthorizationCode:
    """Single-use code bound to a PKCE challenge and a verified email."""

    client_id: str
    redirect_uri: str
    code_challenge: str
    code_challenge_method: str
    email: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class AccessToken:
    client_id: str
    email: str
    expires_at: float

    def is_expired(self, now: float) -> bool:
        return now > self.expires_at


@dataclass(frozen=True)
class RefreshToken:
    """Refresh tokens don't expire; they live until the process exits."""

    client_id: str
    email: str

    def is_expired(self, now: float) -> bool:
        return False
