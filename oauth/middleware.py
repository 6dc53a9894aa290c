"""OAuth middleware for MCP endpoints.

Validates Bearer tokens issued by our own token endpoint. Every failure
(no header, malformed header, unknown token, expired token) produces the
same 401 body so callers can't tell the cases apart.

Identity is exposed to downstream handlers as ``request.state.identity``;
no per-identity authorization happens here, the allowlist was already
enforced when the token was issued.
"""

import logging

from fastapi import Request
from fastapi.responses import JSONResponse
from starlette.middleware.base import BaseHTTPMiddleware

from oauth.service import AuthorizationServer

logger = logging.getLogger(__name__)


class BearerAuthMiddleware(BaseHTTPMiddleware):
    """Middleware to validate OAuth Bearer tokens for protected routes."""

    def __init__(self, app, server: AuthorizationServer):
        super().__init__(app)
        self.server = server

    def unauthorized(self) -> JSONResponse:
        """Return 401 with WWW-Authenticate header pointing to resource metadata (RFC 9728)."""
        return JSONResponse(
            {"error": "Unauthorized"},
            status_code=401,
            headers={
                "WWW-Authenticate": (
                    f'Bearer resource_metadata="{self.server.server_url}/.well-known/oauth-protected-resource"'
                )
            },
        )

    async def dispatch(self, request: Request, call_next):
        auth_header = request.headers.get("Authorization", "")
        if not auth_header.startswith("Bearer "):
            logger.info("[AUTH] Request rejected: no Bearer token")
            return self.unauthorized()

        token = auth_header[7:].strip()
        stored = self.server.authenticate(token)
        if stored is None:
            logger.info("[AUTH] Request rejected: invalid or expired token")
            return self.unauthorized()

        request.state.identity = stored.email
        request.state.client_id = stored.client_id
        logger.debug(f"[AUTH] Request authorized: {stored.email}")
        return await call_next(request)
