from datetime import datetime
from typing import Any, List, Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator


class OAuthClient(BaseModel):
    """A machine client allowed to use the client-credentials grant."""

    client_id: str = Field(..., min_length=1, description="Unique client identifier")
    name: str = Field("", description="Human-friendly client name")
    client_secret_hash: str = Field(..., min_length=1, description="bcrypt hash of the secret")
    scopes: List[str] = Field(default_factory=list)
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    disabled: bool = False

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("scopes", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v


class RegistryDocument(BaseModel):
    """Top-level shape of the registry file."""

    clients: List[OAuthClient] = Field(default_factory=list)

    model_config = ConfigDict(extra="ignore")

    @field_validator("clients", mode="before")
    @classmethod
    def none_as_empty(cls, v: Any) -> Any:
        return [] if v is None else v
