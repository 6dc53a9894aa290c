"""Upstream identity provider (Google) client.

The broker sends end users to Google and gets back a Google authorization
code. This module turns that code into a verified email address.

The ``id_token`` returned with the token response is decoded with PyJWT
*without* signature verification. It only ever comes from Google's token
endpoint over TLS, in reply to our own confidential request.
"""

import logging
from dataclasses import dataclass
from typing import Optional
from urllib.parse import urlencode

import httpx
import jwt

from oauth.errors import UpstreamError

logger = logging.getLogger(__name__)

GOOGLE_AUTHORIZE_URL = "https://accounts.google.com/o/oauth2/v2/auth"
GOOGLE_TOKEN_URL = "https://oauth2.googleapis.com/token"
GOOGLE_USERINFO_URL = "https://www.googleapis.com/oauth2/v2/userinfo"
GOOGLE_SCOPE = "openid email"


@dataclass(frozen=True)
class UpstreamIdentity:
    email: str


class GoogleIdentityClient:
    """Confidential OAuth client for the upstream IdP."""

    def __init__(
        self,
        client_id: str,
        client_secret: str,
        *,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 10.0,
    ):
        self.client_id = client_id
        self._client_secret = client_secret
        self._transport = transport
        self._timeout = timeout

    def authorization_url(self, state: str, redirect_uri: str) -> str:
        """Build the Google consent URL for one pending authorization."""
        params = {
            "client_id": self.client_id,
            "redirect_uri": redirect_uri,
            "response_type": "code",
            "scope": GOOGLE_SCOPE,
            "state": state,
            "access_type": "offline",
            "prompt": "consent",
        }
        return f"{GOOGLE_AUTHORIZE_URL}?{urlencode(params)}"

    async def exchange(self, code: str, redirect_uri: str) -> UpstreamIdentity:
        """Exchange a Google authorization code for the user's email.

        Raises:
            UpstreamError: if Google rejects the code or no email can be resolved.
        """
        try:
            async with httpx.AsyncClient(timeout=self._timeout, transport=self._transport) as client:
                response = await client.post(
                    GOOGLE_TOKEN_URL,
                    data={
                        "code": code,
                        "client_id": self.client_id,
                        "client_secret": self._client_secret,
                        "redirect_uri": redirect_uri,
                        "grant_type": "authorization_code",
                    },
                )
                if not response.is_success:
                    raise UpstreamError(
                        f"token exchange failed: {response.status_code} {response.text[:200]}"
                    )
                data = response.json()
                if not isinstance(data, dict):
                    raise UpstreamError("token exchange failed: response is not a JSON object")

                email = _email_from_id_token(data.get("id_token"))
                if email:
                    return UpstreamIdentity(email=email)

                access_token = data.get("access_token")
                if not access_token:
                    raise UpstreamError("token exchange failed: no id_token or access_token returned")

                # Fallback: userinfo endpoint
                user_response = await client.get(
                    GOOGLE_USERINFO_URL,
                    headers={"Authorization": f"Bearer {access_token}"},
                )
                if not user_response.is_success:
                    raise UpstreamError(f"userinfo lookup failed: {user_response.status_code}")
                user_info = user_response.json()
                if not isinstance(user_info, dict):
                    raise UpstreamError("userinfo lookup failed: response is not a JSON object")
                email = user_info.get("email")
        except httpx.HTTPError as e:
            raise UpstreamError(f"token exchange failed: {e}") from e
        except ValueError as e:
            # Non-JSON body from Google
            raise UpstreamError(f"token exchange failed: invalid response ({e})") from e

        if not email or not isinstance(email, str):
            raise UpstreamError("userinfo response has no email")
        return UpstreamIdentity(email=email)


def _email_from_id_token(id_token: Optional[str]) -> Optional[str]:
    if not id_token:
        return None
    try:
        claims = jwt.decode(id_token, options={"verify_signature": False})
    except jwt.InvalidTokenError as e:
        logger.debug(f"[OAUTH] Could not decode id_token, falling back to userinfo: {e}")
        return None
    email = claims.get("email")
    return email if isinstance(email, str) else None
