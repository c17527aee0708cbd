"""
Provider capability interface.

Each accounting provider implements this once. The interface carries no shared
behaviour; token handling, pagination and document rendering are entirely
provider-specific.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import Any, Dict, Generic, List, Optional, TypeVar

from pydantic import BaseModel

from pickbridge.shared.exceptions import IntegrationValidationError

from .types import (
    Cursor,
    EstimateDraft,
    OAuthUserInfo,
    Page,
    ProviderKind,
    RemoteCategory,
    RemoteCompanyInfo,
    RemoteCustomer,
    RemoteDocumentRef,
    RemoteItem,
)

TokenT = TypeVar("TokenT", bound=BaseModel)


class BaseProviderAdapter(ABC, Generic[TokenT]):
    """Abstract capability interface for an accounting provider."""

    kind: ProviderKind
    # Whether item listings honour Cursor.category_ids
    supports_categories: bool = False

    # OAuth
    @abstractmethod
    def build_auth_url(self, state: str) -> str:
        """Build the provider authorization URL carrying the given state."""

    @abstractmethod
    async def exchange_code(self, code: str, callback_params: Dict[str, str]) -> TokenT:
        """
        Exchange an authorization code for a token.

        Args:
            code: Authorization code from the callback
            callback_params: All callback query parameters (QuickBooks sends realmId)

        Raises:
            ProviderCallError: Token endpoint rejected the request
        """

    @abstractmethod
    async def refresh(self, token: TokenT) -> TokenT:
        """Refresh an access token. `invalid_grant` is tagged REVOKED."""

    @abstractmethod
    async def revoke(self, token: TokenT) -> None:
        """Revoke the refresh token at the provider."""

    @abstractmethod
    async def fetch_user_info(self, token: TokenT) -> OAuthUserInfo:
        """Fetch the OpenID profile of the authorizing user."""

    @abstractmethod
    async def fetch_company_info(self, token: TokenT) -> RemoteCompanyInfo:
        """Fetch the organisation/realm the token is bound to."""

    # Token inspection
    @abstractmethod
    def parse_token(self, data: Dict[str, Any]) -> TokenT:
        """Load a provider-native token from its stored JSON form."""

    @abstractmethod
    def access_token_expires_at(self, token: TokenT) -> datetime:
        """Absolute UTC expiry of the access token."""

    @abstractmethod
    def refresh_token_expires_at(self, token: TokenT) -> Optional[datetime]:
        """Absolute UTC expiry of the refresh token, if the provider reports one."""

    @abstractmethod
    def tenant_id(self, token: TokenT) -> Optional[str]:
        """Remote tenant (realm id / Xero tenant id) the token is bound to."""

    # Data
    @abstractmethod
    def first_cursor(self, page_size: int) -> Cursor:
        """Cursor for the first page of a listing."""

    @abstractmethod
    async def fetch_items_page(self, token: TokenT, cursor: Cursor) -> Page[RemoteItem]:
        """Fetch one page of items."""

    @abstractmethod
    async def fetch_customers_page(
        self, token: TokenT, cursor: Cursor
    ) -> Page[RemoteCustomer]:
        """Fetch one page of customers/contacts."""

    async def list_categories(self, token: TokenT) -> List[RemoteCategory]:
        """
        List item categories. Only providers with `supports_categories` have them.

        Raises:
            IntegrationValidationError: The provider has no item categories
        """
        raise IntegrationValidationError(
            f"{self.kind.value} does not support item categories"
        )

    def validate_draft(self, draft: EstimateDraft) -> None:
        """
        Reject a draft this provider cannot accept. Makes no network calls.

        Raises:
            IntegrationValidationError: The draft cannot be rendered for this provider
        """

    @abstractmethod
    async def create_estimate(
        self, token: TokenT, draft: EstimateDraft
    ) -> RemoteDocumentRef:
        """Create an estimate (QuickBooks) or quote (Xero)."""

    @abstractmethod
    async def aclose(self) -> None:
        """Release the adapter's HTTP client."""
