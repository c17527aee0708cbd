"""QuickBooks Online token and payload shapes, kept in Intuit's field names."""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field


class QboToken(BaseModel):
    """
    Intuit OAuth2 token as stored for a company.

    `created_at` is epoch milliseconds; the two expiries are relative seconds
    from that instant.
    """

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = Field(3600, description="Access token lifetime in seconds")
    x_refresh_token_expires_in: int = Field(
        8726400, description="Refresh token lifetime in seconds"
    )
    realmId: str = Field(..., description="QuickBooks company (realm) id")
    id_token: Optional[str] = None
    created_at: int = Field(..., description="Issue time in epoch milliseconds")


class QboTokenResponse(BaseModel):
    """Response from the Intuit token endpoint."""

    model_config = ConfigDict(extra="ignore")

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    expires_in: int = 3600
    x_refresh_token_expires_in: int = 8726400
    id_token: Optional[str] = None


class QboUserInfo(BaseModel):
    """Intuit OpenID userinfo response."""

    model_config = ConfigDict(extra="ignore")

    givenName: Optional[str] = None
    familyName: Optional[str] = None
    email: Optional[str] = None
