"""Test helpers shared across modules."""

from __future__ import annotations

import base64
import hashlib
from urllib.parse import parse_qs, urlparse


def s256(verifier: str) -> str:
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def query_params(url: str) -> dict[str, str]:
    return {k: v[0] for k, v in parse_qs(urlparse(url).query).items()}


SERVER_URL = "https://broker.example"
CLIENT_REDIRECT = "https://client.example/cb"
VERIFIER = "dBjftJeZ4CVP-mJ92K9DHeO2kRjRK9zkLQwvXBaBtT8"
CHALLENGE = s256(VERIFIER)
