"""Authorization server core.

HTTP-agnostic logic behind the OAuth endpoints. To MCP clients the broker
is a full authorization server; end users actually sign in with Google,
the resulting email is checked against the allowlist, and the broker then
issues its *own* authorization codes and opaque tokens.

Flow:
    /oauth/authorize  -> begin_authorization()    pending record, redirect to Google
    /oauth/callback   -> complete_authorization() Google code -> email -> our code
    /oauth/token      -> exchange_token()         our code / refresh token -> access token
    protected routes  -> authenticate()           access token -> AccessToken record

Nothing in exchange_token() awaits, so taking a code out of its store and
validating it happens in one uninterrupted step on the event loop.
"""

import hmac
import logging
import secrets
from typing import Optional
from urllib.parse import parse_qsl, urlencode, urlsplit, urlunsplit

from oauth.errors import AccessDeniedError, CallbackError, OAuthError, UpstreamError
from oauth.models import (
    ACCESS_TOKEN_TTL,
    AUTHORIZATION_CODE_TTL,
    AccessToken,
    AuthorizationCode,
    PendingAuthorization,
    RefreshToken,
    RegisteredClient,
)
from oauth.pkce import SUPPORTED_METHODS, verify_code_verifier
from oauth.schemas import TokenRequest, TokenResponse
from oauth.stores import OAuthStores
from oauth.upstream import GoogleIdentityClient

logger = logging.getLogger(__name__)

GRANT_TYPES = ("authorization_code", "refresh_token")


def _new_token() -> str:
    return secrets.token_urlsafe(32)


def _append_query(url: str, params: dict) -> str:
    parts = urlsplit(url)
    query = parse_qsl(parts.query, keep_blank_values=True) + list(params.items())
    return urlunsplit(parts._replace(query=urlencode(query)))


class AuthorizationServer:
    """OAuth 2.0 authorization server that delegates sign-in to Google."""

    def __init__(
        self,
        server_url: str,
        stores: OAuthStores,
        identity_client: GoogleIdentityClient,
        allowed_emails: Optional[frozenset[str]] = None,
    ):
        self.server_url = server_url.rstrip("/")
        self.stores = stores
        self.identity_client = identity_client
        self.allowed_emails = allowed_emails

    @property
    def callback_url(self) -> str:
        return f"{self.server_url}/oauth/callback"

    # ============== Discovery ==============

    def protected_resource_metadata(self) -> dict:
        """RFC 9728 metadata: we are the only authorization server."""
        return {
            "resource": self.server_url,
            "authorization_servers": [self.server_url],
            "bearer_methods_supported": ["header"],
        }

    def authorization_server_metadata(self) -> dict:
        """RFC 8414 metadata."""
        return {
            "issuer": self.server_url,
            "authorization_endpoint": f"{self.server_url}/oauth/authorize",
            "token_endpoint": f"{self.server_url}/oauth/token",
            "registration_endpoint": f"{self.server_url}/oauth/register",
            "response_types_supported": ["code"],
            "response_modes_supported": ["query"],
            "grant_types_supported": list(GRANT_TYPES),
            "code_challenge_methods_supported": list(SUPPORTED_METHODS),
            "token_endpoint_auth_methods_supported": ["none", "client_secret_post"],
        }

    # ============== Client Registration ==============

    def register_client(self, client_name: Optional[str], redirect_uris) -> RegisteredClient:
        """Dynamic client registration (RFC 7591). Open to anyone."""
        if (
            not isinstance(redirect_uris, list)
            or not redirect_uris
            or not all(isinstance(uri, str) and uri for uri in redirect_uris)
        ):
            raise OAuthError("invalid_client_metadata", "redirect_uris required")

        client = RegisteredClient(
            client_id=_new_token(),
            client_secret=_new_token(),
            redirect_uris=tuple(redirect_uris),
            client_name=client_name or "unknown",
        )
        self.stores.clients.put(client.client_id, client)
        logger.info(f"[OAUTH] Registered client: {client.client_name} ({client.client_id})")
        return client

    def get_client(self, client_id: str) -> Optional[RegisteredClient]:
        return self.stores.clients.get(client_id)

    # ============== Authorization Flow ==============

    def begin_authorization(
        self,
        response_type: Optional[str],
        client_id: Optional[str],
        redirect_uri: Optional[str],
        code_challenge: Optional[str],
        code_challenge_method: Optional[str],
        state: Optional[str] = None,
    ) -> str:
        """Record the request and return the Google URL to redirect to.

        Registered and unregistered (public) clients are both accepted; PKCE
        is mandatory for everyone.
        """
        if response_type != "code":
            raise OAuthError("unsupported_response_type")
        if not client_id or not redirect_uri:
            raise OAuthError("invalid_request", "client_id and redirect_uri required")
        if not code_challenge or code_challenge_method not in SUPPORTED_METHODS:
            raise OAuthError("invalid_request", "PKCE with S256 required")

        client = self.get_client(client_id)
        if client and redirect_uri not in client.redirect_uris:
            raise OAuthError("invalid_request", "redirect_uri not registered for this client")

        google_state = _new_token()
        self.stores.pending_authorizations.put(
            google_state,
            PendingAuthorization(
                client_id=client_id,
                redirect_uri=redirect_uri,
                code_challenge=code_challenge,
                code_challenge_method=code_challenge_method,
                client_state=state or "",
                created_at=self.stores.clock(),
            ),
        )
        logger.info(f"[OAUTH] Authorization started for client {client_id}")
        return self.identity_client.authorization_url(google_state, self.callback_url)

    async def complete_authorization(
        self,
        code: Optional[str],
        state: Optional[str],
        error: Optional[str] = None,
    ) -> str:
        """Handle Google's redirect and return the URL to send the user back to.

        Raises:
            CallbackError: IdP reported an error, or the state is unknown/expired.
            AccessDeniedError: the email is not on the allowlist.
            UpstreamError: Google rejected the code.
        """
        if error:
            logger.warning(f"[OAUTH] IdP returned error: {error}")
            raise CallbackError(f"OAuth error: {error}")

        # Consume the pending request before awaiting anything
        pending = self.stores.pending_authorizations.take(state) if state else None
        if pending is None:
            raise CallbackError("Invalid or expired state parameter")
        if not code:
            raise CallbackError("Missing authorization code")

        try:
            identity = await self.identity_client.exchange(code, self.callback_url)
        except UpstreamError:
            logger.exception("[OAUTH] Google token exchange failed")
            raise

        email = identity.email
        logger.info(f"[OAUTH] Google auth successful for: {email}")

        if not self.is_allowed(email):
            logger.warning(f"[OAUTH] Rejected: {email} not in ALLOWED_EMAILS")
            raise AccessDeniedError(email)

        our_code = _new_token()
        self.stores.authorization_codes.put(
            our_code,
            AuthorizationCode(
                client_id=pending.client_id,
                redirect_uri=pending.redirect_uri,
                code_challenge=pending.code_challenge,
                code_challenge_method=pending.code_challenge_method,
                email=email,
                expires_at=self.stores.clock() + AUTHORIZATION_CODE_TTL,
            ),
        )

        params = {"code": our_code}
        if pending.client_state:
            params["state"] = pending.client_state
        return _append_query(pending.redirect_uri, params)

    def is_allowed(self, email: str) -> bool:
        """Open mode when no allowlist is configured."""
        if self.allowed_emails is None:
            return True
        return email in self.allowed_emails

    # ============== Token Endpoint ==============

    def exchange_token(self, request: TokenRequest) -> TokenResponse:
        """Token endpoint: authorization_code and refresh_token grants."""
        if not request.client_id:
            raise OAuthError("invalid_request", "client_id required")

        # Registered (confidential) clients must present their secret.
        # Unregistered (public) clients rely on PKCE alone.
        client = self.get_client(request.client_id)
        if client and not hmac.compare_digest(
            client.client_secret.encode(), (request.client_secret or "").encode()
        ):
            logger.info(f"[TOKEN] Client secret mismatch for {request.client_id}")
            raise OAuthError("invalid_client", status_code=401)

        if request.grant_type == "authorization_code":
            return self._exchange_authorization_code(request)
        if request.grant_type == "refresh_token":
            return self._exchange_refresh_token(request)
        raise OAuthError("unsupported_grant_type")

    def _exchange_authorization_code(self, request: TokenRequest) -> TokenResponse:
        # Single use: the code is gone from here on, whatever happens below
        auth_code = self.stores.authorization_codes.take(request.code) if request.code else None
        if auth_code is None:
            raise OAuthError("invalid_grant", "Invalid or expired code")

        if auth_code.client_id != request.client_id or auth_code.redirect_uri != request.redirect_uri:
            raise OAuthError("invalid_grant", "Client/redirect mismatch")

        if not verify_code_verifier(request.code_verifier, auth_code.code_challenge):
            raise OAuthError("invalid_grant", "PKCE verification failed")

        access_token = self._issue_access_token(auth_code.client_id, auth_code.email)
        refresh_token = _new_token()
        self.stores.refresh_tokens.put(
            refresh_token, RefreshToken(client_id=auth_code.client_id, email=auth_code.email)
        )
        logger.info(f"[TOKEN] Issued tokens for: {auth_code.email}")

        return TokenResponse(
            access_token=access_token,
            expires_in=ACCESS_TOKEN_TTL,
            refresh_token=refresh_token,
        )

    def _exchange_refresh_token(self, request: TokenRequest) -> TokenResponse:
        stored = self.stores.refresh_tokens.get(request.refresh_token) if request.refresh_token else None
        if stored is None or stored.client_id != request.client_id:
            raise OAuthError("invalid_grant", "Invalid refresh token")

        access_token = self._issue_access_token(stored.client_id, stored.email)
        logger.info(f"[TOKEN] Refreshed token for: {stored.email}")
        return TokenResponse(access_token=access_token, expires_in=ACCESS_TOKEN_TTL)

    def _issue_access_token(self, client_id: str, email: str) -> str:
        token = _new_token()
        self.stores.access_tokens.put(
            token,
            AccessToken(
                client_id=client_id,
                email=email,
                expires_at=self.stores.clock() + ACCESS_TOKEN_TTL,
            ),
        )
        return token

    # ============== Bearer Validation ==============

    def authenticate(self, token: str) -> Optional[AccessToken]:
        """Return the live access token record, or None."""
        if not token:
            return None
        return self.stores.access_tokens.get(token)
