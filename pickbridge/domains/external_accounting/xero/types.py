# pickbridge/domains/external_accounting/xero/types.py
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class XeroToken(BaseModel):
    """Xero OAuth2 token as stored for a company. Times are epoch seconds."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., description="Access token for API calls")
    refresh_token: str = Field(..., description="Refresh token for token renewal")
    token_type: str = Field(default="Bearer", description="Token type")
    expires_at: int = Field(..., description="Access token expiry, epoch seconds")
    tenant_id: Optional[str] = Field(None, description="Connected Xero tenant ID")
    id_token: Optional[str] = None
    scope: Optional[str] = Field(None, description="Granted scopes")
    created_at: int = Field(..., description="Issue time, epoch seconds")


class XeroTokenResponse(BaseModel):
    """Response from Xero token endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str = Field(..., description="Access token for API calls")
    refresh_token: str = Field(..., description="Refresh token for token renewal")
    expires_in: int = Field(..., description="Token lifetime in seconds")
    token_type: str = Field(default="Bearer", description="Token type")
    id_token: Optional[str] = None
    scope: Optional[str] = Field(None, description="Granted scopes")


class XeroTenantInfo(BaseModel):
    """Information about a Xero tenant from connections endpoint."""

    model_config = ConfigDict(extra="ignore")

    id: str = Field(..., description="Connection UUID")
    tenantId: str = Field(..., description="Xero tenant ID")
    tenantName: Optional[str] = Field(None, description="Organization name in Xero")
    tenantType: Optional[str] = Field(None, description="ORGANISATION or PRACTICE")
    createdDateUtc: Optional[datetime] = None
    updatedDateUtc: Optional[datetime] = None
