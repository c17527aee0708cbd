"""
Persistence contract for the integration core.

The core never talks to the database directly; it goes through a
BaseIntegrationStore. PrismaIntegrationStore is the production implementation.
"""

from abc import ABC, abstractmethod
from datetime import datetime
from typing import List, Optional

from .models import (
    CompanyRecord,
    ConversionRecord,
    ConversionRecordData,
    CustomerFields,
    ProductFields,
    ProductRecord,
    StoredToken,
    UpsertOutcome,
)
from .types import ProviderKind


class BaseIntegrationStore(ABC):
    """Abstract persistence operations used by sync, tokens and finalization."""

    # Companies
    @abstractmethod
    async def get_company(self, company_id: str) -> Optional[CompanyRecord]:
        pass

    @abstractmethod
    async def list_connected_companies(self) -> List[CompanyRecord]:
        """Companies with an active provider, sync-enabled or not."""
        pass

    @abstractmethod
    async def set_company_provider(
        self, company_id: str, provider: ProviderKind, tenant_id: Optional[str]
    ) -> CompanyRecord:
        """
        Make `provider` the company's active provider.

        When the provider or tenant changes, external ids on the company's
        products and customers are cleared.
        """
        pass

    @abstractmethod
    async def clear_company_provider(self, company_id: str) -> None:
        pass

    @abstractmethod
    async def mark_company_synced(self, company_id: str, synced_at: datetime) -> None:
        pass

    # Tokens
    @abstractmethod
    async def get_token(self, company_id: str) -> Optional[StoredToken]:
        pass

    @abstractmethod
    async def save_token(
        self,
        company_id: str,
        provider: ProviderKind,
        ciphertext: str,
        tenant_id: Optional[str] = None,
    ) -> None:
        """Create or overwrite the company's token row in full."""
        pass

    @abstractmethod
    async def delete_token(self, company_id: str) -> None:
        pass

    # Catalogue
    @abstractmethod
    async def upsert_product(
        self, company_id: str, external_id: str, fields: ProductFields
    ) -> UpsertOutcome:
        """
        Match by external id, then by SKU within the company.

        A match is updated and gets the external id backfilled; otherwise a
        new product is inserted.

        Raises:
            ValueError: The SKU belongs to a product linked to another external id
        """
        pass

    @abstractmethod
    async def upsert_customer(
        self, company_id: str, external_id: str, fields: CustomerFields
    ) -> UpsertOutcome:
        """Match by external id, then by unlinked display name."""
        pass

    @abstractmethod
    async def list_match_candidates(self, company_id: str) -> List[ProductRecord]:
        """Non-archived products of the company."""
        pass

    # Conversion audit
    @abstractmethod
    async def upsert_conversion_record(
        self, company_id: str, local_order_number: str, data: ConversionRecordData
    ) -> ConversionRecord:
        pass

    @abstractmethod
    async def list_conversion_records(
        self, company_id: str, limit: int = 50
    ) -> List[ConversionRecord]:
        """Most recently updated first."""
        pass
