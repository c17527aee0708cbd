# pickbridge/domains/external_accounting/connections/service.py
import logging
import secrets
from datetime import datetime, timedelta, timezone

import jwt

from pickbridge.core.settings import settings
from pickbridge.shared.exceptions import (
    CompanyNotFoundError,
    IntegrationAuthenticationError,
    IntegrationConnectionError,
)

from ..base.factory import ProviderRegistry
from ..base.store import BaseIntegrationStore
from ..base.types import FailureCause, ProviderCallError, ProviderKind
from ..tokens.manager import TokenLifecycleManager
from ..tokens.models import RevokeResult
from .models import (
    ConnectionAuthUrlResponse,
    ConnectionResponse,
    ConnectionStatus,
    OAuthCallbackParams,
    OAuthStatePayload,
)

logger = logging.getLogger(__name__)

STATE_TOKEN_TTL = timedelta(minutes=30)


class ConnectionService:
    """Service for connecting companies to an accounting provider over OAuth."""

    def __init__(
        self,
        store: BaseIntegrationStore,
        registry: ProviderRegistry,
        tokens: TokenLifecycleManager,
    ):
        self.store = store
        self.registry = registry
        self.tokens = tokens

    async def start_connection(
        self, company_id: str, provider: ProviderKind, user_id: str
    ) -> ConnectionAuthUrlResponse:
        """
        Start the OAuth connection process for a company.

        Args:
            company_id: Company ID
            provider: Provider to connect
            user_id: ID of the user initiating connection

        Returns:
            ConnectionAuthUrlResponse with authorization URL and expiry

        Raises:
            CompanyNotFoundError: If the company does not exist
        """
        if await self.store.get_company(company_id) is None:
            raise CompanyNotFoundError()

        adapter = self.registry.get(provider)
        expires_at = datetime.now(timezone.utc) + STATE_TOKEN_TTL
        state_token = self._generate_state_token(company_id, user_id, adapter.kind, expires_at)

        return ConnectionAuthUrlResponse(
            auth_url=adapter.build_auth_url(state_token),
            expires_at=expires_at,
            company_id=company_id,
            provider=adapter.kind,
        )

    async def complete_connection(
        self, provider: ProviderKind, callback_params: OAuthCallbackParams
    ) -> ConnectionResponse:
        """
        Complete the OAuth connection using the callback parameters.

        Switching from another provider clears the company's external ids.

        Raises:
            IntegrationAuthenticationError: For OAuth flow errors
            IntegrationConnectionError: For connection failures
        """
        if callback_params.error:
            error_desc = callback_params.error_description or callback_params.error
            raise IntegrationAuthenticationError(
                f"OAuth authorization failed: {error_desc}"
            )

        if not callback_params.code or not callback_params.state:
            raise IntegrationAuthenticationError("Missing required OAuth parameters")

        state_payload = self._validate_state_token(callback_params.state)
        provider = ProviderKind(provider)
        if state_payload.provider != provider:
            raise IntegrationAuthenticationError(
                "OAuth state was issued for a different provider"
            )

        company_id = state_payload.company_id
        company = await self.store.get_company(company_id)
        if company is None:
            raise CompanyNotFoundError()

        adapter = self.registry.get(provider)
        try:
            token = await adapter.exchange_code(
                callback_params.code, callback_params.provider_params()
            )
        except ProviderCallError as e:
            if e.cause == FailureCause.TRANSIENT and e.status_code is None:
                raise IntegrationConnectionError(f"Token exchange request failed: {e}")
            raise IntegrationAuthenticationError(f"Token exchange failed: {e}")

        try:
            company_info = await adapter.fetch_company_info(token)
        except ProviderCallError as e:
            raise IntegrationConnectionError(f"Failed to get company info: {e}")

        switched = company.provider is not None and company.provider != provider
        await self.store.set_company_provider(company_id, provider, company_info.tenant_id)
        await self.tokens.store_new_token(company_id, provider, token)

        if switched:
            logger.info(
                f"Company {company_id} switched from {company.provider.value} "
                f"to {provider.value}; external ids cleared"
            )
        logger.info(
            f"Company {company_id} connected to {provider.value} "
            f"'{company_info.company_name}'"
        )

        return ConnectionResponse(
            message=f"{provider.value} connection established successfully",
            connected_at=datetime.now(timezone.utc),
            company_id=company_id,
            provider=provider,
            tenant_id=company_info.tenant_id,
            tenant_name=company_info.company_name,
            provider_switched=switched,
        )

    async def disconnect(self, company_id: str) -> RevokeResult:
        return await self.tokens.revoke(company_id)

    async def get_connection_status(self, company_id: str) -> ConnectionStatus:
        company = await self.store.get_company(company_id)
        if company is None:
            raise CompanyNotFoundError()

        token_status = await self.tokens.get_token_status(company_id)
        return ConnectionStatus.build(company, token_status)

    def _generate_state_token(
        self,
        company_id: str,
        user_id: str,
        provider: ProviderKind,
        expires_at: datetime,
    ) -> str:
        """Generate JWT state token for OAuth flow."""
        if not settings.jwt_secret:
            raise IntegrationAuthenticationError("JWT secret not configured")

        payload = OAuthStatePayload(
            company_id=company_id,
            user_id=user_id,
            provider=provider,
            csrf_token=secrets.token_urlsafe(32),
            issued_at=datetime.now(timezone.utc),
            expires_at=expires_at,
        )

        return jwt.encode(
            payload.model_dump(mode="json"),
            settings.jwt_secret,
            algorithm="HS256",
        )

    def _validate_state_token(self, token: str) -> OAuthStatePayload:
        """Validate and decode JWT state token."""
        if not settings.jwt_secret:
            raise IntegrationAuthenticationError("JWT secret not configured")

        try:
            payload = jwt.decode(token, settings.jwt_secret, algorithms=["HS256"])
        except jwt.InvalidTokenError as e:
            raise IntegrationAuthenticationError(f"Invalid OAuth state token: {e}")

        state_payload = OAuthStatePayload(**payload)
        if datetime.now(timezone.utc) > state_payload.expires_at:
            raise IntegrationAuthenticationError("OAuth session expired")
        return state_payload
