"""MCP OAuth broker.

This server:
- Acts as an OAuth 2.0 authorization server for MCP clients (oauth/)
- Delegates the actual sign-in to Google and enforces ALLOWED_EMAILS
- Issues its own short-lived access tokens
- Serves the MCP endpoint (/mcp) behind Bearer token enforcement
- Exposes Bill.com vendor and bill tools (tools.py, billcom.py)

With MCP_TRANSPORT=stdio the tools are served over stdio instead, with no
HTTP server and no OAuth.

All OAuth state is in memory; a restart invalidates every client and token.
"""
import asyncio
import logging
import time
from contextlib import asynccontextmanager
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware
from starlette.middleware import Middleware

from billcom import BillComClient
from config import Config, load_config
from oauth.endpoints import router as oauth_router
from oauth.middleware import BearerAuthMiddleware
from oauth.service import AuthorizationServer
from oauth.stores import Clock, OAuthStores
from oauth.upstream import GoogleIdentityClient

logger = logging.getLogger(__name__)

VERSION = "0.1.0"


def build_billcom_client(config: Config) -> Optional[BillComClient]:
    settings = config.billcom_settings()
    if settings is None:
        logger.warning("[STARTUP] BILLCOM_* not fully set: vendor and bill tools are disabled")
        return None
    logger.info(f"[STARTUP] Bill.com API: {settings.base_url}")
    return BillComClient(settings)


def create_app(
    config: Config,
    *,
    stores: Optional[OAuthStores] = None,
    identity_client: Optional[GoogleIdentityClient] = None,
    billcom_client: Optional[BillComClient] = None,
    clock: Optional[Clock] = None,
) -> FastAPI:
    """Build the FastAPI app.

    Stores, the Google client and the Bill.com client can be injected (tests
    do); otherwise they are created from ``config``. ``clock`` only applies
    to stores created here.
    """
    from tools import configure_billcom, mcp

    configure_billcom(billcom_client or build_billcom_client(config))

    oauth_enabled = config.oauth_enabled() or identity_client is not None

    auth_server: Optional[AuthorizationServer] = None
    if oauth_enabled:
        if stores is None:
            stores = OAuthStores(clock=clock or time.time)
        if identity_client is None:
            identity_client = GoogleIdentityClient(config.google_client_id, config.google_client_secret)
        auth_server = AuthorizationServer(
            server_url=config.server_url,
            stores=stores,
            identity_client=identity_client,
            allowed_emails=config.allowed_emails,
        )

    # ============== Streamable HTTP MCP App ==============
    # MCP tools imported from tools.py
    mcp_http_app = mcp.http_app(
        path="/",  # Route at root of mounted app
        transport="streamable-http",
        middleware=[Middleware(BearerAuthMiddleware, server=auth_server)] if auth_server else [],
    )

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        sweeper = asyncio.create_task(stores.run_sweeper()) if auth_server else None
        try:
            # Required for FastMCP task group initialization
            async with mcp_http_app.lifespan(app):
                yield
        finally:
            if sweeper:
                sweeper.cancel()

    app = FastAPI(
        title="MCP OAuth Broker",
        description="MCP server protected by an OAuth 2.0 authorization server that delegates sign-in to Google",
        version=VERSION,
        lifespan=lifespan,
    )
    app.state.oauth = auth_server

    # Add CORS middleware for browser-based MCP client access
    app.add_middleware(
        CORSMiddleware,
        allow_origins=["*"],
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
        expose_headers=["WWW-Authenticate", "Mcp-Session-Id"],
    )

    app.mount("/mcp", mcp_http_app)

    if auth_server:
        app.include_router(oauth_router)
        logger.info(f"[STARTUP] OAuth enabled, issuer: {config.server_url}")
        if config.allowed_emails is None:
            logger.warning("[STARTUP] ALLOWED_EMAILS not set: any Google account can sign in")
    else:
        logger.warning("[STARTUP] OAuth disabled (no GOOGLE_CLIENT_ID/GOOGLE_CLIENT_SECRET), /mcp is unprotected")

    @app.get("/health")
    async def health_check():
        """Health check endpoint."""
        return {"status": "healthy", "service": "mcp-oauth-broker", "oauth_enabled": oauth_enabled}

    @app.get("/")
    async def root():
        """Root endpoint with server info."""
        response = {
            "name": "MCP OAuth Broker",
            "version": VERSION,
            "endpoints": {"streamable_http": "/mcp"},
            "oauth_enabled": oauth_enabled,
        }
        if oauth_enabled:
            response["oauth"] = {
                "protected_resource": f"{config.server_url}/.well-known/oauth-protected-resource",
                "authorization_server": f"{config.server_url}/.well-known/oauth-authorization-server",
            }
        return response

    return app


def run() -> None:
    """Console entry point."""
    import uvicorn

    from logging_config import setup_logging

    # .env is a local override; real deployments set the environment directly
    env_file = Path(".env")
    if env_file.exists():
        load_dotenv(env_file)

    config = load_config()
    setup_logging(level=config.log_level, fmt=config.log_format)

    if config.mcp_transport == "stdio":
        from tools import configure_billcom, mcp

        configure_billcom(build_billcom_client(config))
        logger.info("[STARTUP] Serving MCP over stdio")
        mcp.run(transport="stdio")
        return

    logger.info(f"[STARTUP] SERVER_URL: {config.server_url}")

    app = create_app(config)
    uvicorn.run(app, host=config.host, port=config.port, log_config=None)


if __name__ == "__main__":
    run()
