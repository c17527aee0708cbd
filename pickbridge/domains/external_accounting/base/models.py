from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Dict, List, Optional

from pydantic import BaseModel, Field

from .types import ProviderKind


class UpsertOutcome(str, Enum):
    CREATED = "created"
    UPDATED = "updated"


class ConversionStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class CompanyRecord(BaseModel):
    """Company as seen by the integration core."""

    id: str
    name: Optional[str] = None
    provider: Optional[ProviderKind] = None
    tenant_id: Optional[str] = None
    sync_enabled: bool = True
    last_synced_at: Optional[datetime] = None


class StoredToken(BaseModel):
    """Token row as persisted: provider tag plus ciphertext only."""

    company_id: str
    provider: ProviderKind
    ciphertext: str
    tenant_id: Optional[str] = None
    updated_at: Optional[datetime] = None


class ProductFields(BaseModel):
    """Mutable product fields written by reconciliation."""

    name: str
    sku: Optional[str] = None
    barcode: Optional[str] = None
    price: Decimal = Decimal("0")
    quantity_on_hand: Decimal = Decimal("0")
    tax_code_ref: Optional[str] = None
    category: Optional[str] = None
    is_archived: bool = False


class ProductRecord(ProductFields):
    id: int
    company_id: str
    external_item_id: Optional[str] = None


class CustomerFields(BaseModel):
    display_name: str
    is_archived: bool = False


class CustomerRecord(CustomerFields):
    id: int
    company_id: str
    external_customer_id: Optional[str] = None


class ConversionRecordData(BaseModel):
    """Outcome of one finalization attempt, as written to the audit table."""

    status: ConversionStatus
    remote_document_id: Optional[str] = None
    remote_document_number: Optional[str] = None
    remote_url: Optional[str] = None
    error_message: Optional[str] = None


class ConversionRecord(ConversionRecordData):
    company_id: str
    local_order_number: str
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class ResourceSyncCounts(BaseModel):
    """Per-resource reconciliation counters."""

    total: int = 0
    created: int = 0
    updated: int = 0
    errored: int = 0
    pages: int = 0
    completed: bool = False


class SyncResult(BaseModel):
    """Result of one company's sync run."""

    company_id: str
    success: bool
    total: int = 0
    created: int = 0
    updated: int = 0
    errored: int = 0
    duration_seconds: float = 0.0
    errors: List[str] = Field(default_factory=list)
    resources: Dict[str, ResourceSyncCounts] = Field(default_factory=dict)
    cancelled: bool = False
    reauth_required: bool = False
    skipped: bool = False
    skip_reason: Optional[str] = None
    error: Optional[str] = None
    last_synced_at: Optional[datetime] = None

    @classmethod
    def skipped_run(cls, company_id: str, reason: str) -> "SyncResult":
        return cls(company_id=company_id, success=True, skipped=True, skip_reason=reason)

    @classmethod
    def failed_run(
        cls,
        company_id: str,
        error: str,
        duration_seconds: float = 0.0,
        reauth_required: bool = False,
    ) -> "SyncResult":
        return cls(
            company_id=company_id,
            success=False,
            duration_seconds=duration_seconds,
            errors=[error],
            error=error,
            reauth_required=reauth_required,
        )
