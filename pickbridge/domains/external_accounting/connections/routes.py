import logging
from typing import Union
from urllib.parse import urlencode

from fastapi import APIRouter, Depends
from fastapi.responses import RedirectResponse

from pickbridge.core.settings import settings
from pickbridge.shared.exceptions import BaseHTTPException

from ..base.types import ProviderKind
from ..container import IntegrationServices, get_integrations
from ..tokens.models import RevokeResult
from .models import (
    ConnectionAuthUrlResponse,
    ConnectionResponse,
    ConnectionStatus,
    OAuthCallbackParams,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/integrations", tags=["integrations"])


@router.get("/{company_id}/connect/{provider}", response_model=ConnectionAuthUrlResponse)
async def start_connection(
    company_id: str,
    provider: ProviderKind,
    user_id: str,
    services: IntegrationServices = Depends(get_integrations),
) -> ConnectionAuthUrlResponse:
    """Get the provider authorization URL for a company."""
    return await services.connections.start_connection(company_id, provider, user_id)


@router.get(
    "/callback/{provider}",
    response_model=None,
)
async def oauth_callback(
    provider: ProviderKind,
    params: OAuthCallbackParams = Depends(),
    services: IntegrationServices = Depends(get_integrations),
) -> Union[ConnectionResponse, RedirectResponse]:
    """
    OAuth redirect target.

    Redirects to the frontend when FRONTEND_URL is configured, otherwise
    returns the connection result as JSON.
    """
    if not settings.FRONTEND_URL:
        return await services.connections.complete_connection(provider, params)

    try:
        result = await services.connections.complete_connection(provider, params)
    except BaseHTTPException as e:
        logger.error(f"{provider.value} OAuth callback failed: {e}")
        query = urlencode({"provider": provider.value, "error": str(e)})
        return RedirectResponse(f"{settings.FRONTEND_URL}/integrations?{query}")

    query = urlencode(
        {
            "provider": provider.value,
            "connected": "true",
            "company_id": result.company_id,
        }
    )
    return RedirectResponse(f"{settings.FRONTEND_URL}/integrations?{query}")


@router.get("/{company_id}/connection", response_model=ConnectionStatus)
async def get_connection_status(
    company_id: str,
    services: IntegrationServices = Depends(get_integrations),
) -> ConnectionStatus:
    return await services.connections.get_connection_status(company_id)


@router.delete("/{company_id}/connection", response_model=RevokeResult)
async def disconnect(
    company_id: str,
    services: IntegrationServices = Depends(get_integrations),
) -> RevokeResult:
    """Revoke the provider authorisation and forget the stored token."""
    return await services.connections.disconnect(company_id)
