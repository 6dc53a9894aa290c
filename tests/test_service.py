"""
Tests for the authorization server core (no HTTP layer).

Coverage:
* authorize validation and the redirect handed to Google
* callback: IdP errors, stale/replayed state, upstream failure, allowlist
* token endpoint: client auth, single-use codes, PKCE, refresh grant
* access token lifetime boundaries
"""

from __future__ import annotations

import pytest

from oauth.errors import AccessDeniedError, CallbackError, OAuthError, UpstreamError
from oauth.models import ACCESS_TOKEN_TTL, AUTHORIZATION_CODE_TTL, PENDING_AUTHORIZATION_TTL
from oauth.schemas import TokenRequest
from oauth.service import AuthorizationServer

from helpers import CHALLENGE, CLIENT_REDIRECT, SERVER_URL, VERIFIER, query_params


def _authorize(server: AuthorizationServer, **overrides) -> str:
    params = {
        "response_type": "code",
        "client_id": "public-client",
        "redirect_uri": CLIENT_REDIRECT,
        "code_challenge": CHALLENGE,
        "code_challenge_method": "S256",
        "state": "xyz",
    }
    params.update(overrides)
    return server.begin_authorization(**params)


def _code_request(code: str, **overrides) -> TokenRequest:
    fields = {
        "grant_type": "authorization_code",
        "client_id": "public-client",
        "code": code,
        "redirect_uri": CLIENT_REDIRECT,
        "code_verifier": VERIFIER,
    }
    fields.update(overrides)
    return TokenRequest(**fields)


# --------------------------------------------------------------------------- #
# registration                                                                #
# --------------------------------------------------------------------------- #
def test_register_client_generates_unique_credentials(server) -> None:
    first = server.register_client("Claude", [CLIENT_REDIRECT])
    second = server.register_client(None, [CLIENT_REDIRECT])

    assert first.client_id != second.client_id
    assert first.client_secret != second.client_secret
    assert first.client_id != first.client_secret
    assert second.client_name == "unknown"
    assert server.get_client(first.client_id) == first


@pytest.mark.parametrize("redirect_uris", [None, [], "https://client.example/cb", [1]])
def test_register_client_rejects_bad_redirect_uris(server, stores, redirect_uris) -> None:
    with pytest.raises(OAuthError) as exc_info:
        server.register_client("bad", redirect_uris)
    assert exc_info.value.error == "invalid_client_metadata"
    assert len(stores.clients) == 0


# --------------------------------------------------------------------------- #
# authorize                                                                   #
# --------------------------------------------------------------------------- #
def test_authorize_creates_one_pending_record_and_hides_client_params(server, stores) -> None:
    google_url = _authorize(server)

    assert len(stores.pending_authorizations) == 1
    params = query_params(google_url)
    assert params["client_id"] == "google-client-id"
    assert params["redirect_uri"] == f"{SERVER_URL}/oauth/callback"
    assert params["scope"] == "openid email"
    assert params["access_type"] == "offline"
    assert params["prompt"] == "consent"
    # the caller's own parameters never reach Google
    assert params["state"] not in ("xyz", "public-client", CLIENT_REDIRECT)
    assert "public-client" not in google_url
    assert CHALLENGE not in google_url
    assert "client.example" not in google_url

    pending = stores.pending_authorizations.get(params["state"])
    assert pending.client_id == "public-client"
    assert pending.client_state == "xyz"


@pytest.mark.parametrize(
    "overrides, error",
    [
        ({"response_type": "token"}, "unsupported_response_type"),
        ({"response_type": None}, "unsupported_response_type"),
        ({"client_id": None}, "invalid_request"),
        ({"redirect_uri": ""}, "invalid_request"),
        ({"code_challenge": None}, "invalid_request"),
        ({"code_challenge_method": "plain"}, "invalid_request"),
        ({"code_challenge_method": None}, "invalid_request"),
    ],
)
def test_authorize_rejects_invalid_requests_without_state(server, stores, overrides, error) -> None:
    with pytest.raises(OAuthError) as exc_info:
        _authorize(server, **overrides)
    assert exc_info.value.error == error
    assert exc_info.value.status_code == 400
    assert len(stores.pending_authorizations) == 0


def test_authorize_rejects_unregistered_redirect_for_registered_client(server, stores) -> None:
    client = server.register_client("Claude", [CLIENT_REDIRECT])
    with pytest.raises(OAuthError) as exc_info:
        _authorize(server, client_id=client.client_id, redirect_uri="https://evil.example/cb")
    assert exc_info.value.error == "invalid_request"
    assert len(stores.pending_authorizations) == 0


# --------------------------------------------------------------------------- #
# callback                                                                    #
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_callback_redirects_with_new_code_and_client_state(server, stores, google) -> None:
    google_state = query_params(_authorize(server))["state"]

    redirect = await server.complete_authorization(code="google-code", state=google_state)

    assert redirect.startswith(CLIENT_REDIRECT + "?")
    params = query_params(redirect)
    assert params["state"] == "xyz"
    assert params["code"] != "google-code"
    code = stores.authorization_codes.get(params["code"])
    assert code.email == "a@x.com"
    assert code.client_id == "public-client"
    assert code.expires_at == stores.clock() + AUTHORIZATION_CODE_TTL
    assert len(stores.pending_authorizations) == 0


@pytest.mark.asyncio
async def test_callback_omits_state_when_client_sent_none(server) -> None:
    google_state = query_params(_authorize(server, state=None))["state"]
    redirect = await server.complete_authorization(code="google-code", state=google_state)
    assert "state" not in query_params(redirect)


@pytest.mark.asyncio
async def test_callback_preserves_existing_redirect_query(server) -> None:
    google_state = query_params(_authorize(server, redirect_uri="https://client.example/cb?tenant=7"))["state"]
    redirect = await server.complete_authorization(code="google-code", state=google_state)
    params = query_params(redirect)
    assert params["tenant"] == "7"
    assert "code" in params


@pytest.mark.asyncio
async def test_callback_idp_error(server, google) -> None:
    with pytest.raises(CallbackError) as exc_info:
        await server.complete_authorization(code=None, state="whatever", error="access_denied")
    assert exc_info.value.status_code == 400
    assert "access_denied" in exc_info.value.message
    assert google.requests == []


@pytest.mark.asyncio
async def test_callback_unknown_state(server) -> None:
    with pytest.raises(CallbackError, match="Invalid or expired state"):
        await server.complete_authorization(code="google-code", state="forged")


@pytest.mark.asyncio
async def test_callback_state_is_single_use(server, stores) -> None:
    google_state = query_params(_authorize(server))["state"]
    await server.complete_authorization(code="google-code", state=google_state)

    with pytest.raises(CallbackError):
        await server.complete_authorization(code="google-code", state=google_state)
    assert len(stores.authorization_codes) == 1


@pytest.mark.asyncio
async def test_callback_expired_state(server, clock, google) -> None:
    google_state = query_params(_authorize(server))["state"]
    clock.advance(PENDING_AUTHORIZATION_TTL + 1)

    with pytest.raises(CallbackError, match="Invalid or expired state"):
        await server.complete_authorization(code="google-code", state=google_state)
    assert google.requests == []


@pytest.mark.asyncio
async def test_callback_state_swept_mid_flow(server, stores) -> None:
    google_state = query_params(_authorize(server))["state"]
    stores.pending_authorizations.delete(google_state)

    with pytest.raises(CallbackError):
        await server.complete_authorization(code="google-code", state=google_state)


@pytest.mark.asyncio
async def test_callback_upstream_failure_consumes_state(server, stores, google) -> None:
    google.token_status = 400
    google_state = query_params(_authorize(server))["state"]

    with pytest.raises(UpstreamError):
        await server.complete_authorization(code="bad-code", state=google_state)
    assert len(stores.pending_authorizations) == 0
    assert len(stores.authorization_codes) == 0


@pytest.mark.asyncio
async def test_allowlist_rejects_other_identities(stores, identity_client, google) -> None:
    server = AuthorizationServer(SERVER_URL, stores, identity_client, allowed_emails=frozenset({"a@x.com"}))
    google.email = "b@x.com"
    google_state = query_params(_authorize(server))["state"]

    with pytest.raises(AccessDeniedError) as exc_info:
        await server.complete_authorization(code="google-code", state=google_state)
    assert exc_info.value.status_code == 403
    assert exc_info.value.message == "Access denied"
    assert len(stores.authorization_codes) == 0


@pytest.mark.asyncio
async def test_allowlist_accepts_listed_identity(stores, identity_client) -> None:
    server = AuthorizationServer(SERVER_URL, stores, identity_client, allowed_emails=frozenset({"a@x.com"}))
    google_state = query_params(_authorize(server))["state"]
    await server.complete_authorization(code="google-code", state=google_state)
    assert len(stores.authorization_codes) == 1


def test_open_mode_accepts_everyone(server) -> None:
    assert server.is_allowed("anyone@anywhere.example") is True


# --------------------------------------------------------------------------- #
# token: authorization_code                                                   #
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_code_exchange_issues_tokens(server, stores, issue_code) -> None:
    code = await issue_code()

    response = server.exchange_token(_code_request(code))

    assert response.token_type == "Bearer"
    assert response.expires_in == 3600
    assert response.refresh_token
    access = server.authenticate(response.access_token)
    assert access.email == "a@x.com"
    assert access.client_id == "public-client"
    refresh = stores.refresh_tokens.get(response.refresh_token)
    assert refresh.email == "a@x.com"


@pytest.mark.asyncio
async def test_code_is_single_use(server, issue_code) -> None:
    code = await issue_code()
    server.exchange_token(_code_request(code))

    with pytest.raises(OAuthError) as exc_info:
        server.exchange_token(_code_request(code))
    assert exc_info.value.error == "invalid_grant"


@pytest.mark.asyncio
async def test_wrong_verifier_fails_and_consumes_code(server, stores, issue_code) -> None:
    code = await issue_code()

    with pytest.raises(OAuthError) as exc_info:
        server.exchange_token(_code_request(code, code_verifier="some-other-verifier-value"))
    assert exc_info.value.error == "invalid_grant"
    assert exc_info.value.description == "PKCE verification failed"

    # the right verifier no longer helps: the code is gone
    with pytest.raises(OAuthError):
        server.exchange_token(_code_request(code))
    assert len(stores.authorization_codes) == 0


@pytest.mark.asyncio
async def test_missing_verifier_fails(server, issue_code) -> None:
    code = await issue_code()
    with pytest.raises(OAuthError) as exc_info:
        server.exchange_token(_code_request(code, code_verifier=None))
    assert exc_info.value.error == "invalid_grant"


@pytest.mark.asyncio
async def test_non_ascii_challenge_fails_verification(server, issue_code) -> None:
    code = await issue_code(challenge="défi")
    with pytest.raises(OAuthError) as exc_info:
        server.exchange_token(_code_request(code))
    assert exc_info.value.error == "invalid_grant"
    assert exc_info.value.description == "PKCE verification failed"


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "overrides",
    [{"redirect_uri": "https://client.example/other"}, {"client_id": "another-client"}],
)
async def test_code_bound_to_client_and_redirect(server, issue_code, overrides) -> None:
    code = await issue_code()
    with pytest.raises(OAuthError) as exc_info:
        server.exchange_token(_code_request(code, **overrides))
    assert exc_info.value.error == "invalid_grant"


@pytest.mark.asyncio
async def test_expired_code_is_rejected(server, clock, issue_code) -> None:
    code = await issue_code()
    clock.advance(AUTHORIZATION_CODE_TTL + 1)
    with pytest.raises(OAuthError) as exc_info:
        server.exchange_token(_code_request(code))
    assert exc_info.value.error == "invalid_grant"


def test_unknown_or_missing_code(server) -> None:
    for code in ("never-issued", None):
        with pytest.raises(OAuthError) as exc_info:
            server.exchange_token(_code_request(code))
        assert exc_info.value.error == "invalid_grant"


def test_missing_client_id(server) -> None:
    with pytest.raises(OAuthError) as exc_info:
        server.exchange_token(TokenRequest(grant_type="authorization_code", code="x"))
    assert exc_info.value.error == "invalid_request"


def test_unsupported_grant_type(server) -> None:
    with pytest.raises(OAuthError) as exc_info:
        server.exchange_token(TokenRequest(grant_type="password", client_id="public-client"))
    assert exc_info.value.error == "unsupported_grant_type"


# --------------------------------------------------------------------------- #
# token: confidential clients                                                 #
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_registered_client_must_present_secret(server, stores, issue_code) -> None:
    client = server.register_client("Claude", [CLIENT_REDIRECT])
    code = await issue_code(client_id=client.client_id)

    for secret in (None, "wrong-secret"):
        with pytest.raises(OAuthError) as exc_info:
            server.exchange_token(_code_request(code, client_id=client.client_id, client_secret=secret))
        assert exc_info.value.error == "invalid_client"
        assert exc_info.value.status_code == 401

    # client authentication failed before the code was looked at
    assert len(stores.authorization_codes) == 1
    response = server.exchange_token(
        _code_request(code, client_id=client.client_id, client_secret=client.client_secret)
    )
    assert response.access_token


# --------------------------------------------------------------------------- #
# token: refresh_token                                                        #
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_refresh_issues_new_access_tokens_without_rotation(server, stores, issue_code) -> None:
    first = server.exchange_token(_code_request(await issue_code()))
    refresh = TokenRequest(
        grant_type="refresh_token", client_id="public-client", refresh_token=first.refresh_token
    )

    second = server.exchange_token(refresh)
    third = server.exchange_token(refresh)

    assert second.refresh_token is None
    assert len({first.access_token, second.access_token, third.access_token}) == 3
    for token in (first.access_token, second.access_token, third.access_token):
        assert server.authenticate(token).email == "a@x.com"
    assert stores.refresh_tokens.get(first.refresh_token) is not None


@pytest.mark.asyncio
async def test_refresh_rejects_foreign_or_unknown_token(server, issue_code) -> None:
    issued = server.exchange_token(_code_request(await issue_code()))

    for request in (
        TokenRequest(grant_type="refresh_token", client_id="someone-else", refresh_token=issued.refresh_token),
        TokenRequest(grant_type="refresh_token", client_id="public-client", refresh_token="nope"),
        TokenRequest(grant_type="refresh_token", client_id="public-client"),
    ):
        with pytest.raises(OAuthError) as exc_info:
            server.exchange_token(request)
        assert exc_info.value.error == "invalid_grant"


@pytest.mark.asyncio
async def test_refresh_token_survives_long_after_access_token(server, clock, issue_code) -> None:
    issued = server.exchange_token(_code_request(await issue_code()))
    clock.advance(30 * 24 * 3600)

    assert server.authenticate(issued.access_token) is None
    refreshed = server.exchange_token(
        TokenRequest(grant_type="refresh_token", client_id="public-client", refresh_token=issued.refresh_token)
    )
    assert server.authenticate(refreshed.access_token) is not None


# --------------------------------------------------------------------------- #
# access token lifetime                                                       #
# --------------------------------------------------------------------------- #
@pytest.mark.asyncio
async def test_access_token_lifetime_boundary(server, clock, issue_code) -> None:
    issued = server.exchange_token(_code_request(await issue_code()))

    clock.advance(ACCESS_TOKEN_TTL - 1)
    assert server.authenticate(issued.access_token) is not None
    clock.advance(2)
    assert server.authenticate(issued.access_token) is None


def test_authenticate_rejects_empty_and_unknown(server) -> None:
    assert server.authenticate("") is None
    assert server.authenticate("unknown") is None
