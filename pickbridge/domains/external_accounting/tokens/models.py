from datetime import datetime
from enum import Enum
from typing import Optional

from pydantic import BaseModel, Field

from ..base.types import ProviderKind


class TokenStatus(str, Enum):
    VALID = "VALID"
    EXPIRED = "EXPIRED"
    NO_TOKEN = "NO_TOKEN"
    ERROR = "ERROR"


class TokenStatusResult(BaseModel):
    """Token health for a company, computed without calling the provider."""

    status: TokenStatus
    provider: Optional[ProviderKind] = None
    access_token_expires_at: Optional[datetime] = None
    refresh_token_expires_at: Optional[datetime] = None
    reauth_required: bool = Field(
        False, description="True when only a new OAuth flow can restore access"
    )
    message: Optional[str] = None


class RevokeResult(BaseModel):
    """Outcome of disconnecting a company from its provider."""

    company_id: str
    provider: Optional[ProviderKind] = None
    remote_revoked: bool = Field(
        False, description="Whether the provider confirmed the revocation"
    )
    error: Optional[str] = Field(None, description="Remote revocation failure, if any")
    revoked_at: datetime
