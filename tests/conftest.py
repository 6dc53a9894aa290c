"""Shared fixtures: a controllable clock and a fake Google IdP."""

from __future__ import annotations

import httpx
import jwt
import pytest
from fastapi.testclient import TestClient

from config import Config
from main import create_app
from oauth.service import AuthorizationServer
from oauth.stores import OAuthStores
from oauth.upstream import GoogleIdentityClient

from helpers import CHALLENGE, CLIENT_REDIRECT, SERVER_URL, query_params

_ID_TOKEN_KEY = "fake-google-signing-key-not-checked-by-the-broker"


class FakeClock:
    """Callable clock frozen at *now* until advanced."""

    def __init__(self, now: float = 1_700_000_000.0) -> None:
        self.now = now

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class FakeGoogle:
    """httpx handler imitating Google's token and userinfo endpoints."""

    def __init__(self, email: str = "a@x.com") -> None:
        self.email = email
        self.include_id_token = True
        self.token_status = 200
        self.userinfo_status = 200
        self.token_body = None
        self.requests: list[httpx.Request] = []

    def handler(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        if request.url.host == "oauth2.googleapis.com" and request.url.path == "/token":
            if self.token_status != 200:
                return httpx.Response(self.token_status, json={"error": "invalid_grant"})
            if self.token_body is not None:
                return httpx.Response(200, json=self.token_body)
            body = {"access_token": "google-access-token", "expires_in": 3599, "token_type": "Bearer"}
            if self.include_id_token:
                body["id_token"] = jwt.encode(
                    {"email": self.email, "sub": "1234567890"}, _ID_TOKEN_KEY, algorithm="HS256"
                )
            return httpx.Response(200, json=body)
        if request.url.path == "/oauth2/v2/userinfo":
            if self.userinfo_status != 200:
                return httpx.Response(self.userinfo_status, json={"error": "unauthorized"})
            return httpx.Response(200, json={"email": self.email, "verified_email": True})
        return httpx.Response(404)


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def google() -> FakeGoogle:
    return FakeGoogle()


@pytest.fixture()
def stores(clock: FakeClock) -> OAuthStores:
    return OAuthStores(clock=clock)


@pytest.fixture()
def identity_client(google: FakeGoogle) -> GoogleIdentityClient:
    return GoogleIdentityClient(
        "google-client-id",
        "google-client-secret",
        transport=httpx.MockTransport(google.handler),
    )


@pytest.fixture()
def server(stores: OAuthStores, identity_client: GoogleIdentityClient) -> AuthorizationServer:
    return AuthorizationServer(SERVER_URL, stores, identity_client)


@pytest.fixture()
def issue_code(server: AuthorizationServer):
    """Run authorize + callback and return our authorization code."""

    async def _issue(
        client_id: str = "public-client",
        redirect_uri: str = CLIENT_REDIRECT,
        challenge: str = CHALLENGE,
        state: str | None = "xyz",
    ) -> str:
        google_url = server.begin_authorization(
            response_type="code",
            client_id=client_id,
            redirect_uri=redirect_uri,
            code_challenge=challenge,
            code_challenge_method="S256",
            state=state,
        )
        google_state = query_params(google_url)["state"]
        redirect = await server.complete_authorization(code="google-code", state=google_state)
        return query_params(redirect)["code"]

    return _issue


@pytest.fixture()
def make_client(stores: OAuthStores, identity_client: GoogleIdentityClient):
    """Return a factory building a TestClient for the full app."""

    def _make(**env: str) -> TestClient:
        config = Config({"SERVER_URL": SERVER_URL, **env})
        app = create_app(config, stores=stores, identity_client=identity_client)
        return TestClient(app, follow_redirects=False)

    return _make


@pytest.fixture()
def client(make_client) -> TestClient:
    return make_client()
