# pickbridge/domains/external_accounting/tokens/manager.py
import asyncio
import logging
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, Optional, Tuple

from pydantic import ValidationError

from pickbridge.core.encryption import TokenDecryptionError
from pickbridge.shared.exceptions import (
    CompanyNotFoundError,
    ReAuthRequiredError,
    TransientIntegrationError,
)

from ..base.adapter import BaseProviderAdapter
from ..base.client import ProviderClient
from ..base.factory import ProviderRegistry
from ..base.store import BaseIntegrationStore
from ..base.types import FailureCause, ProviderCallError, ProviderKind
from .models import RevokeResult, TokenStatus, TokenStatusResult
from .store import TokenStore

logger = logging.getLogger(__name__)

# Access tokens are treated as expired this long before their real expiry
EXPIRY_BUFFER = timedelta(minutes=5)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class TokenLifecycleManager:
    """
    Hands out provider clients bound to a valid access token.

    Refreshes ahead of expiry, classifies refresh failures into "the user must
    reconnect" versus "try again later", and handles disconnects. Refreshes for
    the same company are coalesced within the process by a per-company lock.
    """

    def __init__(
        self,
        store: BaseIntegrationStore,
        registry: ProviderRegistry,
        token_store: Optional[TokenStore] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.registry = registry
        self.token_store = token_store or TokenStore(store)
        self.clock = clock
        self._refresh_locks: Dict[str, asyncio.Lock] = {}
        # Callers holding or waiting on each company's lock
        self._lock_users: Dict[str, int] = {}

    async def get_usable_client(self, company_id: str) -> ProviderClient:
        """
        Get a client bound to a non-expired access token for the company.

        Args:
            company_id: Company ID

        Returns:
            ProviderClient for the company's active provider

        Raises:
            ReAuthRequiredError: No usable credentials; the user must reconnect
            TransientIntegrationError: Refresh failed for a retryable reason
        """
        provider, adapter, token = await self._load(company_id)

        if self._is_access_valid(adapter, token):
            return ProviderClient(adapter, token, company_id)

        lock = self._refresh_locks.setdefault(company_id, asyncio.Lock())
        self._lock_users[company_id] = self._lock_users.get(company_id, 0) + 1
        try:
            async with lock:
                # Another caller may have refreshed while we waited
                provider, adapter, token = await self._load(company_id)
                if self._is_access_valid(adapter, token):
                    return ProviderClient(adapter, token, company_id)

                refresh_expires_at = adapter.refresh_token_expires_at(token)
                if refresh_expires_at is not None and refresh_expires_at <= self.clock():
                    logger.warning(
                        f"{provider.value} refresh token expired for company {company_id}"
                    )
                    raise ReAuthRequiredError(provider.value, company_id)

                refreshed = await self._refresh(company_id, provider, adapter, token)
                await self.token_store.save(
                    company_id, provider, refreshed, adapter.tenant_id(refreshed)
                )
                return ProviderClient(adapter, refreshed, company_id)
        finally:
            self._release_refresh_lock(company_id)

    async def store_new_token(
        self, company_id: str, provider: ProviderKind, token: Any
    ) -> None:
        """Persist a token obtained from a completed OAuth flow."""
        adapter = self.registry.get(provider)
        await self.token_store.save(company_id, provider, token, adapter.tenant_id(token))

    async def revoke(self, company_id: str) -> RevokeResult:
        """
        Disconnect a company from its provider.

        Remote revocation is best-effort; the local token is always deleted and
        the company's active provider cleared.

        Raises:
            CompanyNotFoundError: If the company does not exist
        """
        company = await self.store.get_company(company_id)
        if company is None:
            raise CompanyNotFoundError()

        remote_revoked = False
        error: Optional[str] = None
        provider = company.provider

        try:
            if provider is not None:
                try:
                    _, adapter, token = await self._load(company_id)
                    await adapter.revoke(token)
                    remote_revoked = True
                except (ProviderCallError, ReAuthRequiredError) as e:
                    error = str(e)
                    logger.warning(
                        f"Failed to revoke {provider.value} token for company "
                        f"{company_id}: {error}"
                    )
        finally:
            await self.token_store.delete(company_id)
            await self.store.clear_company_provider(company_id)

        logger.info(f"Disconnected company {company_id} from {provider}")
        return RevokeResult(
            company_id=company_id,
            provider=provider,
            remote_revoked=remote_revoked,
            error=error,
            revoked_at=self.clock(),
        )

    async def check_reauth_required(self, company_id: str) -> bool:
        """True when only a new OAuth flow can restore access for the company."""
        try:
            await self.get_usable_client(company_id)
        except ReAuthRequiredError:
            return True
        except TransientIntegrationError as e:
            logger.warning(f"Re-auth check for company {company_id} inconclusive: {e}")
        return False

    async def get_token_status(self, company_id: str) -> TokenStatusResult:
        """Inspect the stored token without calling the provider."""
        company = await self.store.get_company(company_id)
        if company is None or company.provider is None:
            return TokenStatusResult(status=TokenStatus.NO_TOKEN, reauth_required=True)

        try:
            loaded = await self.token_store.load(company_id)
        except TokenDecryptionError as e:
            return TokenStatusResult(
                status=TokenStatus.ERROR,
                provider=company.provider,
                reauth_required=True,
                message=str(e),
            )

        if loaded is None:
            return TokenStatusResult(
                status=TokenStatus.NO_TOKEN,
                provider=company.provider,
                reauth_required=True,
            )
        if loaded.provider != company.provider:
            return TokenStatusResult(
                status=TokenStatus.ERROR,
                provider=company.provider,
                reauth_required=True,
                message=f"Stored token belongs to {loaded.provider.value}",
            )

        adapter = self.registry.get(company.provider)
        try:
            token = adapter.parse_token(loaded.data)
        except ValidationError as e:
            return TokenStatusResult(
                status=TokenStatus.ERROR,
                provider=company.provider,
                reauth_required=True,
                message=f"Stored token is malformed: {e.error_count()} invalid fields",
            )
        access_expires_at = adapter.access_token_expires_at(token)
        refresh_expires_at = adapter.refresh_token_expires_at(token)
        refresh_expired = (
            refresh_expires_at is not None and refresh_expires_at <= self.clock()
        )

        return TokenStatusResult(
            status=(
                TokenStatus.VALID
                if self._is_access_valid(adapter, token)
                else TokenStatus.EXPIRED
            ),
            provider=company.provider,
            access_token_expires_at=access_expires_at,
            refresh_token_expires_at=refresh_expires_at,
            reauth_required=refresh_expired,
        )

    def _is_access_valid(self, adapter: BaseProviderAdapter, token: Any) -> bool:
        return adapter.access_token_expires_at(token) > self.clock() + EXPIRY_BUFFER

    async def _load(
        self, company_id: str
    ) -> Tuple[ProviderKind, BaseProviderAdapter, Any]:
        company = await self.store.get_company(company_id)
        if company is None or company.provider is None:
            raise ReAuthRequiredError(
                None, company_id, "No accounting provider is connected"
            )

        provider = company.provider
        try:
            loaded = await self.token_store.load(company_id)
        except TokenDecryptionError:
            logger.error(f"Stored token for company {company_id} is unreadable")
            raise ReAuthRequiredError(provider.value, company_id)

        if loaded is None or loaded.provider != provider:
            raise ReAuthRequiredError(provider.value, company_id)

        adapter = self.registry.get(provider)
        try:
            token = adapter.parse_token(loaded.data)
        except ValidationError:
            logger.error(f"Stored {provider.value} token for company {company_id} is malformed")
            raise ReAuthRequiredError(provider.value, company_id)
        return provider, adapter, token

    def _release_refresh_lock(self, company_id: str) -> None:
        remaining = self._lock_users.get(company_id, 1) - 1
        if remaining > 0:
            self._lock_users[company_id] = remaining
            return
        self._lock_users.pop(company_id, None)
        self._refresh_locks.pop(company_id, None)

    async def _refresh(
        self,
        company_id: str,
        provider: ProviderKind,
        adapter: BaseProviderAdapter,
        token: Any,
    ) -> Any:
        try:
            return await adapter.refresh(token)
        except ProviderCallError as e:
            if e.cause == FailureCause.REVOKED:
                logger.warning(
                    f"{provider.value} refresh token revoked for company "
                    f"{company_id}: {e.message}"
                )
                raise ReAuthRequiredError(provider.value, company_id) from e

            logger.error(
                f"Transient {provider.value} refresh failure for company "
                f"{company_id}: {e.message}"
            )
            raise TransientIntegrationError(
                f"Could not refresh {provider.value} token: {e.message}",
                retry_after=e.retry_after,
            ) from e
