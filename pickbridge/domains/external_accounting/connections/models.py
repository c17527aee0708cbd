# pickbridge/domains/external_accounting/connections/models.py
from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from ..base.models import CompanyRecord
from ..base.types import ProviderKind
from ..tokens.models import TokenStatus, TokenStatusResult


class ConnectionAuthUrlResponse(BaseModel):
    """Response model for OAuth authorization URL generation."""

    auth_url: str = Field(..., description="Provider OAuth authorization URL")
    expires_at: datetime = Field(..., description="When the state token expires")
    company_id: str = Field(..., description="Company ID")
    provider: ProviderKind


class OAuthCallbackParams(BaseModel):
    """Query parameters from a provider OAuth callback."""

    code: Optional[str] = Field(None, description="OAuth authorization code")
    state: Optional[str] = Field(None, description="JWT state token")
    realmId: Optional[str] = Field(None, description="QuickBooks company id")
    error: Optional[str] = Field(None, description="Error code if authorization failed")
    error_description: Optional[str] = Field(None, description="Error description")

    def provider_params(self) -> Dict[str, str]:
        return {k: v for k, v in self.model_dump().items() if v is not None}


class OAuthStatePayload(BaseModel):
    """JWT payload for OAuth state token."""

    company_id: str = Field(..., description="Company ID")
    user_id: str = Field(..., description="User ID")
    provider: ProviderKind
    csrf_token: str = Field(..., description="CSRF protection token")
    issued_at: datetime = Field(..., description="Token issue time")
    expires_at: datetime = Field(..., description="Token expiry time")


class ConnectionResponse(BaseModel):
    """Response model for successful connection."""

    message: str = Field(..., description="Success message")
    connected_at: datetime = Field(..., description="When connection was established")
    company_id: str
    provider: ProviderKind
    tenant_id: str = Field(..., description="Realm id or Xero tenant id")
    tenant_name: str = Field(..., description="Connected organisation name")
    provider_switched: bool = Field(
        False, description="True when another provider was replaced"
    )


class ConnectionStatus(BaseModel):
    """Response model for a company's accounting connection status."""

    connected: bool = Field(..., description="Whether a provider is connected")
    provider: Optional[ProviderKind] = None
    tenant_id: Optional[str] = None
    token_status: TokenStatus = TokenStatus.NO_TOKEN
    access_token_expires_at: Optional[datetime] = None
    reauth_required: bool = False
    sync_enabled: bool = False
    last_synced_at: Optional[datetime] = None

    @classmethod
    def build(
        cls, company: CompanyRecord, token_status: TokenStatusResult
    ) -> "ConnectionStatus":
        return cls(
            connected=company.provider is not None
            and token_status.status in (TokenStatus.VALID, TokenStatus.EXPIRED)
            and not token_status.reauth_required,
            provider=company.provider,
            tenant_id=company.tenant_id,
            token_status=token_status.status,
            access_token_expires_at=token_status.access_token_expires_at,
            reauth_required=token_status.reauth_required,
            sync_enabled=company.sync_enabled,
            last_synced_at=company.last_synced_at,
        )
