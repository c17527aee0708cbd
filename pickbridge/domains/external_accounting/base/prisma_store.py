# pickbridge/domains/external_accounting/base/prisma_store.py
from __future__ import annotations

import logging
from datetime import datetime
from typing import TYPE_CHECKING, Any, Dict, List, Optional

from .models import (
    CompanyRecord,
    ConversionRecord,
    ConversionRecordData,
    ConversionStatus,
    CustomerFields,
    ProductFields,
    ProductRecord,
    StoredToken,
    UpsertOutcome,
)
from .store import BaseIntegrationStore
from .types import ProviderKind

if TYPE_CHECKING:
    from prisma import Prisma

logger = logging.getLogger(__name__)


class PrismaIntegrationStore(BaseIntegrationStore):
    """BaseIntegrationStore over the Prisma client."""

    def __init__(self, db: Prisma):
        self.db = db

    # Companies
    async def get_company(self, company_id: str) -> Optional[CompanyRecord]:
        company = await self.db.company.find_unique(where={"id": company_id})
        return self._to_company(company) if company else None

    async def list_connected_companies(self) -> List[CompanyRecord]:
        companies = await self.db.company.find_many(
            where={"accountingProvider": {"in": [p.value for p in ProviderKind]}},
            order={"createdAt": "asc"},
        )
        return [self._to_company(c) for c in companies]

    async def set_company_provider(
        self, company_id: str, provider: ProviderKind, tenant_id: Optional[str]
    ) -> CompanyRecord:
        async with self.db.tx() as tx:
            company = await tx.company.find_unique(where={"id": company_id})
            current = self._to_company(company) if company else None

            if current is not None and self._link_changes(current, provider, tenant_id):
                products = await tx.product.update_many(
                    where={"companyId": company_id}, data={"externalItemId": None}
                )
                customers = await tx.customer.update_many(
                    where={"companyId": company_id}, data={"externalCustomerId": None}
                )
                logger.info(
                    f"Cleared external ids on {products} products and {customers} "
                    f"customers for company {company_id}"
                )

            updated = await tx.company.update(
                where={"id": company_id},
                data={
                    "accountingProvider": provider.value,
                    "providerTenantId": tenant_id,
                },
            )
        return self._to_company(updated)

    async def clear_company_provider(self, company_id: str) -> None:
        # Tenant id is kept so a later reconnect can tell whether links still hold
        await self.db.company.update(
            where={"id": company_id}, data={"accountingProvider": None}
        )

    async def mark_company_synced(self, company_id: str, synced_at: datetime) -> None:
        await self.db.company.update(
            where={"id": company_id}, data={"lastSyncedAt": synced_at}
        )

    # Tokens
    async def get_token(self, company_id: str) -> Optional[StoredToken]:
        token = await self.db.providertoken.find_unique(where={"companyId": company_id})
        if token is None:
            return None
        return StoredToken(
            company_id=token.companyId,
            provider=ProviderKind(token.provider),
            ciphertext=token.ciphertext,
            tenant_id=token.tenantId,
            updated_at=token.updatedAt,
        )

    async def save_token(
        self,
        company_id: str,
        provider: ProviderKind,
        ciphertext: str,
        tenant_id: Optional[str] = None,
    ) -> None:
        data = {
            "provider": provider.value,
            "ciphertext": ciphertext,
            "tenantId": tenant_id,
        }
        await self.db.providertoken.upsert(
            where={"companyId": company_id},
            data={"create": {"companyId": company_id, **data}, "update": data},
        )

    async def delete_token(self, company_id: str) -> None:
        await self.db.providertoken.delete_many(where={"companyId": company_id})

    # Catalogue
    async def upsert_product(
        self, company_id: str, external_id: str, fields: ProductFields
    ) -> UpsertOutcome:
        existing = await self.db.product.find_first(
            where={"companyId": company_id, "externalItemId": external_id},
            order={"isArchived": "asc"},
        )

        if existing is None and fields.sku:
            by_sku = await self.db.product.find_first(
                where={"companyId": company_id, "sku": fields.sku}
            )
            if by_sku is not None:
                if by_sku.externalItemId and by_sku.externalItemId != external_id:
                    raise ValueError(
                        f"SKU {fields.sku} already linked to item {by_sku.externalItemId}"
                    )
                existing = by_sku

        data = self._product_data(fields)
        data["externalItemId"] = external_id

        if existing is not None:
            await self.db.product.update(where={"id": existing.id}, data=data)
            return UpsertOutcome.UPDATED

        await self.db.product.create(data={"companyId": company_id, **data})
        return UpsertOutcome.CREATED

    async def upsert_customer(
        self, company_id: str, external_id: str, fields: CustomerFields
    ) -> UpsertOutcome:
        existing = await self.db.customer.find_first(
            where={"companyId": company_id, "externalCustomerId": external_id},
            order={"isArchived": "asc"},
        )
        if existing is None:
            existing = await self.db.customer.find_first(
                where={
                    "companyId": company_id,
                    "displayName": fields.display_name,
                    "externalCustomerId": None,
                }
            )

        data = {
            "displayName": fields.display_name,
            "isArchived": fields.is_archived,
            "externalCustomerId": external_id,
        }

        if existing is not None:
            await self.db.customer.update(where={"id": existing.id}, data=data)
            return UpsertOutcome.UPDATED

        await self.db.customer.create(data={"companyId": company_id, **data})
        return UpsertOutcome.CREATED

    async def list_match_candidates(self, company_id: str) -> List[ProductRecord]:
        products = await self.db.product.find_many(
            where={"companyId": company_id, "isArchived": False}
        )
        return [
            ProductRecord(
                id=p.id,
                company_id=p.companyId,
                external_item_id=p.externalItemId,
                name=p.name,
                sku=p.sku,
                barcode=p.barcode,
                price=p.price,
                quantity_on_hand=p.quantityOnHand,
                tax_code_ref=p.taxCodeRef,
                category=p.category,
                is_archived=p.isArchived,
            )
            for p in products
        ]

    # Conversion audit
    async def upsert_conversion_record(
        self, company_id: str, local_order_number: str, data: ConversionRecordData
    ) -> ConversionRecord:
        values = {
            "status": data.status.value,
            "remoteDocumentId": data.remote_document_id,
            "remoteDocumentNumber": data.remote_document_number,
            "remoteUrl": data.remote_url,
            "errorMessage": data.error_message,
        }
        record = await self.db.conversionrecord.upsert(
            where={
                "companyId_localOrderNumber": {
                    "companyId": company_id,
                    "localOrderNumber": local_order_number,
                }
            },
            data={
                "create": {
                    "companyId": company_id,
                    "localOrderNumber": local_order_number,
                    **values,
                },
                "update": values,
            },
        )
        return self._to_conversion(record)

    async def list_conversion_records(
        self, company_id: str, limit: int = 50
    ) -> List[ConversionRecord]:
        records = await self.db.conversionrecord.find_many(
            where={"companyId": company_id},
            order={"updatedAt": "desc"},
            take=limit,
        )
        return [self._to_conversion(r) for r in records]

    # Mapping
    @staticmethod
    def _link_changes(
        current: CompanyRecord, provider: ProviderKind, tenant_id: Optional[str]
    ) -> bool:
        if current.provider is not None and current.provider != provider:
            return True
        return current.tenant_id is not None and current.tenant_id != tenant_id

    @staticmethod
    def _product_data(fields: ProductFields) -> Dict[str, Any]:
        data: Dict[str, Any] = {
            "name": fields.name,
            "sku": fields.sku,
            "price": fields.price,
            "quantityOnHand": fields.quantity_on_hand,
            "taxCodeRef": fields.tax_code_ref,
            "category": fields.category,
            "isArchived": fields.is_archived,
        }
        if fields.barcode is not None:
            data["barcode"] = fields.barcode
        return data

    @staticmethod
    def _to_company(company: Any) -> CompanyRecord:
        return CompanyRecord(
            id=company.id,
            name=company.name,
            provider=(
                ProviderKind(company.accountingProvider)
                if company.accountingProvider
                else None
            ),
            tenant_id=company.providerTenantId,
            sync_enabled=company.syncEnabled,
            last_synced_at=company.lastSyncedAt,
        )

    @staticmethod
    def _to_conversion(record: Any) -> ConversionRecord:
        return ConversionRecord(
            company_id=record.companyId,
            local_order_number=record.localOrderNumber,
            status=ConversionStatus(record.status),
            remote_document_id=record.remoteDocumentId,
            remote_document_number=record.remoteDocumentNumber,
            remote_url=record.remoteUrl,
            error_message=record.errorMessage,
            created_at=record.createdAt,
            updated_at=record.updatedAt,
        )
