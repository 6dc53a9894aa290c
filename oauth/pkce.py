"""PKCE (RFC 7636) helpers.

Only the S256 method is supported. Verifiers and challenges are never logged.
"""

import base64
import hashlib
import hmac
from typing import Optional

SUPPORTED_METHODS = ("S256",)


def code_challenge_s256(verifier: str) -> str:
    """Return the base64url-encoded SHA-256 of ``verifier`` without padding."""
    digest = hashlib.sha256(verifier.encode("ascii")).digest()
    return base64.urlsafe_b64encode(digest).rstrip(b"=").decode("ascii")


def verify_code_verifier(verifier: Optional[str], challenge: str) -> bool:
    """Check ``verifier`` against a stored S256 ``challenge``.

    A missing verifier always fails.
    """
    if not verifier or not challenge:
        return False
    try:
        expected = code_challenge_s256(verifier)
    except UnicodeEncodeError:
        return False
    return hmac.compare_digest(expected.encode("ascii"), challenge.encode("utf-8"))
