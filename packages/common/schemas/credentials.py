"""
Connector credential schema (one row per user per provider)
"""
from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator


class CredentialStatus(str, Enum):
    """Persisted credential status"""
    ACTIVE = "active"
    REAUTH_REQUIRED = "reauth_required"


class Credential(BaseModel):
    """
    OAuth credential for an upstream read connector.

    Invariants (checked on construction):
    - an access token always has an expiry
    - reauth_required never carries an access token
    """
    model_config = ConfigDict(frozen=True)

    user_id: str
    provider: str
    refresh_token: Optional[str] = Field(None, description="Long-lived; None once revoked")
    access_token: Optional[str] = Field(None, description="Short-lived bearer token")
    access_token_expires_at: Optional[datetime] = None
    granted_scopes: List[str] = Field(default_factory=list)
    status: CredentialStatus = CredentialStatus.ACTIVE
    updated_at: Optional[datetime] = None
    version: int = Field(0, description="Row version read from storage; 0 for a credential not yet stored")

    @model_validator(mode="after")
    def check_token_invariants(self):
        if self.access_token and self.access_token_expires_at is None:
            raise ValueError("access_token requires access_token_expires_at")
        if self.status == CredentialStatus.REAUTH_REQUIRED and self.access_token:
            raise ValueError("reauth_required credentials cannot hold an access_token")
        return self


class TokenGrant(BaseModel):
    """Tokens returned by an upstream token endpoint"""
    model_config = ConfigDict(frozen=True)

    access_token: str
    expires_at: datetime
    refresh_token: Optional[str] = None
    granted_scopes: List[str] = Field(default_factory=list)
