"""Async client for the Bill.com v3 API used by the MCP tools.

Bill.com authenticates with a session id obtained from ``/login``. Sessions
are refreshed after ``SESSION_MAX_AGE`` seconds, and a request that comes
back 401 logs in again and is retried exactly once.

Credentials and session ids are never logged.
"""

import logging
import time
from dataclasses import dataclass
from typing import Any, Callable, Mapping, Optional
from urllib.parse import quote

import httpx

logger = logging.getLogger(__name__)

SESSION_MAX_AGE = 30 * 60
DEFAULT_PAGE_SIZE = 20


class BillComError(Exception):
    """Raised when Bill.com rejects a request or cannot be reached."""

    def __init__(self, message: str, status_code: Optional[int] = None, body: Optional[str] = None):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.body = body


@dataclass(frozen=True)
class BillComSettings:
    base_url: str
    username: str
    password: str
    organization_id: str
    dev_key: str


class BillComClient:
    """Session-authenticated Bill.com client."""

    def __init__(
        self,
        settings: BillComSettings,
        transport: Optional[httpx.AsyncBaseTransport] = None,
        timeout: float = 30.0,
        clock: Callable[[], float] = time.time,
    ):
        self.settings = settings
        self._transport = transport
        self._timeout = timeout
        self._clock = clock
        self._session_id: Optional[str] = None
        self._login_time = 0.0

    def _session_is_fresh(self) -> bool:
        return self._session_id is not None and self._clock() - self._login_time <= SESSION_MAX_AGE

    async def _login(self, client: httpx.AsyncClient) -> None:
        response = await client.post(
            "/login",
            json={
                "username": self.settings.username,
                "password": self.settings.password,
                "organizationId": self.settings.organization_id,
                "devKey": self.settings.dev_key,
            },
        )
        if not response.is_success:
            raise BillComError(f"Login failed: {response.status_code}", response.status_code, response.text)

        data = _decode(response)
        session_id = data.get("sessionId") if isinstance(data, dict) else None
        if not session_id or not isinstance(session_id, str):
            raise BillComError("Login failed: no sessionId in response", response.status_code)

        self._session_id = session_id
        self._login_time = self._clock()
        logger.info("[BILLCOM] Logged in, session obtained")

    def _auth_headers(self) -> dict:
        return {"devKey": self.settings.dev_key, "sessionId": self._session_id or ""}

    async def request(
        self,
        method: str,
        path: str,
        json: Any = None,
        params: Optional[Mapping[str, Any]] = None,
    ) -> Any:
        """Send an authenticated request and return the decoded JSON body.

        Raises:
            BillComError: on a non-success status, a transport failure or a
                body that is not JSON.
        """
        try:
            async with httpx.AsyncClient(
                base_url=self.settings.base_url.rstrip("/"),
                timeout=self._timeout,
                transport=self._transport,
            ) as client:
                if not self._session_is_fresh():
                    await self._login(client)

                response = await client.request(
                    method, path, json=json, params=params, headers=self._auth_headers()
                )
                if response.status_code == 401:
                    logger.info("[BILLCOM] Session expired, re-authenticating")
                    await self._login(client)
                    response = await client.request(
                        method, path, json=json, params=params, headers=self._auth_headers()
                    )
        except httpx.HTTPError as e:
            raise BillComError(f"Bill.com request failed: {e}") from e

        if not response.is_success:
            text = response.text
            logger.warning(f"[BILLCOM] {method} {path} returned {response.status_code}")
            raise BillComError(f"API error {response.status_code}: {text[:200]}", response.status_code, text)
        return _decode(response)

    # --- Vendors ---

    async def list_vendors(self, start: int = 0, max_results: int = DEFAULT_PAGE_SIZE) -> Any:
        return await self.request("GET", "/vendors", params={"start": start, "max": max_results})

    async def get_vendor(self, vendor_id: str) -> Any:
        return await self.request("GET", f"/vendors/{quote(vendor_id, safe='')}")

    async def create_vendor(self, data: Mapping[str, Any]) -> Any:
        return await self.request("POST", "/vendors", json=dict(data))

    # --- Bills ---

    async def list_bills(self, start: int = 0, max_results: int = DEFAULT_PAGE_SIZE) -> Any:
        return await self.request("GET", "/bills", params={"start": start, "max": max_results})

    async def get_bill(self, bill_id: str) -> Any:
        return await self.request("GET", f"/bills/{quote(bill_id, safe='')}")

    async def create_bill(self, data: Mapping[str, Any]) -> Any:
        return await self.request("POST", "/bills", json=dict(data))


def _decode(response: httpx.Response) -> Any:
    try:
        return response.json()
    except ValueError as e:
        raise BillComError(f"Bill.com returned invalid JSON ({response.status_code})", response.status_code) from e
