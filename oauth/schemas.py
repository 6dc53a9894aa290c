"""Request/response schemas for the OAuth endpoints.

Bodies are validated here before any store is touched.
"""

from typing import Optional

from pydantic import BaseModel, Field, StrictStr


class ClientRegistrationRequest(BaseModel):
    """RFC 7591 registration body (only the fields we honour)."""

    client_name: Optional[StrictStr] = None
    redirect_uris: list[StrictStr] = Field(min_length=1)


class ClientRegistrationResponse(BaseModel):
    client_id: str
    client_secret: str
    client_name: str
    redirect_uris: list[str]


class TokenRequest(BaseModel):
    """Token endpoint parameters for both supported grants."""

    grant_type: Optional[str] = None
    client_id: Optional[str] = None
    client_secret: Optional[str] = None
    # authorization_code
    code: Optional[str] = None
    redirect_uri: Optional[str] = None
    code_verifier: Optional[str] = None
    # refresh_token
    refresh_token: Optional[str] = None


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "Bearer"
    expires_in: int
    refresh_token: Optional[str] = None
