"""Config management for the OAuth broker.

All settings come from the environment (``main.py`` loads ``.env`` first).
"""
import os
from typing import Mapping, Optional

from billcom import BillComSettings

BILLCOM_KEYS = (
    "BILLCOM_API_BASE_URL",
    "BILLCOM_USERNAME",
    "BILLCOM_PASSWORD",
    "BILLCOM_ORGANIZATION_ID",
    "BILLCOM_DEV_KEY",
)


def parse_allowed_emails(value: Optional[str]) -> Optional[frozenset[str]]:
    """Parse ``ALLOWED_EMAILS`` (comma separated). Unset or blank means open access."""
    if not value or not value.strip():
        return None
    emails = frozenset(e.strip() for e in value.split(",") if e.strip())
    return emails or None


class Config:
    """Configuration container."""

    def __init__(self, data: dict = None):
        self.data = data or {}

    @property
    def host(self) -> str:
        return self.data.get("HOST") or "0.0.0.0"

    @property
    def port(self) -> int:
        return int(self.data.get("PORT") or "8080")

    @property
    def server_url(self) -> str:
        url = self.data.get("SERVER_URL") or f"http://localhost:{self.port}"
        return url.rstrip("/")

    @property
    def google_client_id(self) -> Optional[str]:
        return self.data.get("GOOGLE_CLIENT_ID") or None

    @property
    def google_client_secret(self) -> Optional[str]:
        return self.data.get("GOOGLE_CLIENT_SECRET") or None

    @property
    def allowed_emails(self) -> Optional[frozenset[str]]:
        return parse_allowed_emails(self.data.get("ALLOWED_EMAILS"))

    @property
    def log_level(self) -> str:
        return (self.data.get("LOG_LEVEL") or "INFO").upper()

    @property
    def log_format(self) -> str:
        return (self.data.get("LOG_FORMAT") or "plain").lower()

    @property
    def mcp_transport(self) -> str:
        return (self.data.get("MCP_TRANSPORT") or "streamable-http").lower()

    def oauth_enabled(self) -> bool:
        """OAuth is on only when both Google credentials are present."""
        return bool(self.google_client_id and self.google_client_secret)

    def billcom_settings(self) -> Optional[BillComSettings]:
        """Bill.com credentials, or None unless every BILLCOM_* variable is set."""
        values = [self.data.get(key) for key in BILLCOM_KEYS]
        if not all(values):
            return None
        base_url, username, password, organization_id, dev_key = values
        return BillComSettings(
            base_url=base_url.rstrip("/"),
            username=username,
            password=password,
            organization_id=organization_id,
            dev_key=dev_key,
        )


CONFIG_KEYS = (
    "HOST",
    "PORT",
    "SERVER_URL",
    "GOOGLE_CLIENT_ID",
    "GOOGLE_CLIENT_SECRET",
    "ALLOWED_EMAILS",
    "LOG_LEVEL",
    "LOG_FORMAT",
    "MCP_TRANSPORT",
) + BILLCOM_KEYS


def load_config(environ: Mapping[str, str] = None) -> Config:
    """Load config from the environment (or the given mapping)."""
    environ = os.environ if environ is None else environ
    return Config({key: environ[key] for key in CONFIG_KEYS if key in environ})
