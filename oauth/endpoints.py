"""OAuth 2.0 endpoints for MCP server authentication.

This module contains all OAuth-related endpoints:
- Discovery metadata (/.well-known/*)
- Client registration (/oauth/register)
- Authorization flow (/oauth/authorize, /oauth/callback)
- Token endpoint (/oauth/token)

Handlers get the AuthorizationServer from ``app.state.oauth`` through the
``get_auth_server`` dependency; there is no module-level state.
"""

import html
import logging
from typing import Optional

from fastapi import APIRouter, Depends, Form, Request
from fastapi.responses import HTMLResponse, JSONResponse, RedirectResponse
from pydantic import ValidationError

from oauth.errors import CallbackError, OAuthError, UpstreamError
from oauth.schemas import ClientRegistrationRequest, ClientRegistrationResponse, TokenRequest
from oauth.service import AuthorizationServer
from oauth.templates import ERROR_PAGE, TITLES

logger = logging.getLogger(__name__)

# Router for OAuth endpoints
router = APIRouter(tags=["oauth"])

# RFC 6749 §5.1
NO_STORE_HEADERS = {"Cache-Control": "no-store", "Pragma": "no-cache"}


def get_auth_server(request: Request) -> AuthorizationServer:
    return request.app.state.oauth


def error_response(exc: OAuthError, headers: Optional[dict] = None) -> JSONResponse:
    return JSONResponse(exc.to_payload(), status_code=exc.status_code, headers=headers)


def error_page(message: str, status_code: int) -> HTMLResponse:
    title = TITLES.get(status_code, "Error")
    return HTMLResponse(
        ERROR_PAGE.format(title=title, message=html.escape(message)),
        status_code=status_code,
    )


# ============== OAuth 2.0 Discovery Endpoints ==============

@router.get("/.well-known/oauth-protected-resource")
async def oauth_protected_resource(server: AuthorizationServer = Depends(get_auth_server)):
    """OAuth 2.0 Protected Resource Metadata (RFC 9728)."""
    return server.protected_resource_metadata()


@router.get("/.well-known/oauth-authorization-server")
async def oauth_authorization_server(server: AuthorizationServer = Depends(get_auth_server)):
    """OAuth 2.0 Authorization Server Metadata (RFC 8414)."""
    return server.authorization_server_metadata()


# ============== Client Registration ==============

@router.post("/oauth/register")
async def register_client(request: Request, server: AuthorizationServer = Depends(get_auth_server)):
    """OAuth 2.0 Dynamic Client Registration (RFC 7591)."""
    try:
        body = ClientRegistrationRequest.model_validate(await request.json())
    except (ValueError, ValidationError):
        # ValueError covers an unparsable JSON body
        return error_response(OAuthError("invalid_client_metadata", "redirect_uris required"))

    try:
        client = server.register_client(body.client_name, body.redirect_uris)
    except OAuthError as e:
        return error_response(e)

    response = ClientRegistrationResponse(
        client_id=client.client_id,
        client_secret=client.client_secret,
        client_name=client.client_name,
        redirect_uris=list(client.redirect_uris),
    )
    return JSONResponse(response.model_dump(), status_code=201, headers=NO_STORE_HEADERS)


# ============== Authorization Flow ==============

@router.get("/oauth/authorize")
async def authorize(
    response_type: Optional[str] = None,
    client_id: Optional[str] = None,
    redirect_uri: Optional[str] = None,
    code_challenge: Optional[str] = None,
    code_challenge_method: Optional[str] = None,
    state: Optional[str] = None,
    server: AuthorizationServer = Depends(get_auth_server),
):
    """OAuth 2.0 Authorization Endpoint - redirects to Google."""
    try:
        google_url = server.begin_authorization(
            response_type=response_type,
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=code_challenge,
            code_challenge_method=code_challenge_method,
            state=state,
        )
    except OAuthError as e:
        logger.info(f"[OAUTH] Authorize rejected: {e.error}")
        return error_response(e)

    return RedirectResponse(url=google_url, status_code=302)


@router.get("/oauth/callback")
async def callback(
    code: Optional[str] = None,
    state: Optional[str] = None,
    error: Optional[str] = None,
    server: AuthorizationServer = Depends(get_auth_server),
):
    """Google redirects here; we mint our own code and go back to the client."""
    try:
        redirect_url = await server.complete_authorization(code=code, state=state, error=error)
    except CallbackError as e:
        return error_page(e.message, e.status_code)
    except UpstreamError:
        return error_page("Authentication failed", 500)

    return RedirectResponse(url=redirect_url, status_code=302)


# ============== Token Endpoint ==============

@router.post("/oauth/token")
async def token(
    request: Request,
    grant_type: Optional[str] = Form(None),
    code: Optional[str] = Form(None),
    redirect_uri: Optional[str] = Form(None),
    client_id: Optional[str] = Form(None),
    client_secret: Optional[str] = Form(None),
    code_verifier: Optional[str] = Form(None),
    refresh_token: Optional[str] = Form(None),
    server: AuthorizationServer = Depends(get_auth_server),
):
    """OAuth 2.0 Token Endpoint."""
    try:
        if grant_type is None and request.headers.get("content-type", "").startswith("application/json"):
            # Some clients post JSON instead of a form
            token_request = TokenRequest.model_validate(await request.json())
        else:
            token_request = TokenRequest(
                grant_type=grant_type,
                code=code,
                redirect_uri=redirect_uri,
                client_id=client_id,
                client_secret=client_secret,
                code_verifier=code_verifier,
                refresh_token=refresh_token,
            )
    except (ValueError, ValidationError):
        return error_response(OAuthError("invalid_request"), headers=NO_STORE_HEADERS)

    logger.debug(f"[TOKEN] grant_type: {token_request.grant_type}, client_id: {token_request.client_id}")

    try:
        response = server.exchange_token(token_request)
    except OAuthError as e:
        logger.info(f"[TOKEN] Rejected ({e.error}): {e.description or ''}")
        return error_response(e, headers=NO_STORE_HEADERS)

    return JSONResponse(response.model_dump(exclude_none=True), headers=NO_STORE_HEADERS)
