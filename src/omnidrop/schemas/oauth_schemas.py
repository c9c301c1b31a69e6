from datetime import datetime
from typing import List

from pydantic import BaseModel, ConfigDict, Field


class TokenRequest(BaseModel):
    """Client-credentials grant parameters, from a JSON or form body."""

    grant_type: str = ""
    client_id: str = ""
    client_secret: str = ""

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "grant_type": "client_credentials",
                    "client_id": "svc-a",
                    "client_secret": "a_very_secret_value",
                }
            ]
        }
    )


class AccessTokenResponse(BaseModel):
    access_token: str = Field(..., description="The signed bearer token")
    token_type: str = Field("Bearer", description="Type of the token")
    expires_in: int = Field(..., description="Seconds until the token expires")
    scope: str = Field(..., description="Space-separated granted scopes")

    model_config = ConfigDict(
        json_schema_extra={
            "examples": [
                {
                    "access_token": "eyJhbGciOiJIUzI1NiIsInR5cCI6IkpXVCJ9...",
                    "token_type": "Bearer",
                    "expires_in": 86400,
                    "scope": "tasks:write files:write",
                }
            ]
        }
    )


class OAuthErrorResponse(BaseModel):
    """RFC 6749 section 5.2 error body."""

    error: str
    error_description: str


class TokenClaims(BaseModel):
    """Verified contents of a bearer token, attached to the request."""

    client_id: str
    scopes: List[str] = Field(default_factory=list)
    issuer: str = ""
    subject: str = ""
    issued_at: datetime
    expires_at: datetime
    token_id: str = ""

    model_config = ConfigDict(frozen=True)
