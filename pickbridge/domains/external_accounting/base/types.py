"""Provider-neutral type definitions for external accounting integrations."""

from datetime import date
from decimal import Decimal
from enum import Enum
from typing import Generic, List, Optional, Tuple, TypeVar

from pydantic import BaseModel, ConfigDict, Field, field_validator

RecordT = TypeVar("RecordT")


class ProviderKind(str, Enum):
    """Supported accounting providers."""

    QUICKBOOKS = "quickbooks"
    XERO = "xero"


class FailureCause(str, Enum):
    """Why a provider call failed, as recognised at the adapter boundary."""

    REVOKED = "revoked"
    TRANSIENT = "transient"
    DOCUMENT_FAULT = "document_fault"


class ProviderCallError(Exception):
    """
    A failed provider call, tagged with its cause.

    Adapters raise this for every non-2xx response or transport failure. They
    only tag the cause; the token manager and the finalization service decide
    what the caller sees.
    """

    def __init__(
        self,
        provider: ProviderKind,
        cause: FailureCause,
        message: str,
        status_code: Optional[int] = None,
        error_code: Optional[str] = None,
        retry_after: Optional[float] = None,
    ) -> None:
        super().__init__(message)
        self.provider = provider
        self.cause = cause
        self.message = message
        self.status_code = status_code
        self.error_code = error_code
        self.retry_after = retry_after


# Pagination
class Cursor(BaseModel):
    """
    Opaque pagination position.

    For QuickBooks `position` is the 1-based STARTPOSITION; for Xero it is the
    1-based page number. Either way the adapter that issued the cursor is the
    only thing that interprets it.
    """

    model_config = ConfigDict(frozen=True)

    provider: ProviderKind
    position: int = Field(..., ge=1)
    page_size: int = Field(..., ge=1)
    anchor: Optional[str] = Field(
        None, description="Id of the first record on the page that issued this cursor"
    )
    category_ids: Tuple[str, ...] = Field(
        default=(), description="Restrict item listings to these parent categories"
    )


class Page(BaseModel, Generic[RecordT]):
    """One page of remote records and the cursor for the next page."""

    records: List[RecordT] = Field(default_factory=list)
    next_cursor: Optional[Cursor] = Field(
        None, description="None once the remote set is exhausted"
    )


# Remote records, normalized
class RemoteItem(BaseModel):
    """Remote product/item normalized across providers."""

    external_id: Optional[str] = Field(None, description="Provider item identifier")
    name: Optional[str] = None
    sku: Optional[str] = None
    price: Decimal = Decimal("0")
    quantity_on_hand: Decimal = Decimal("0")
    tax_code_ref: Optional[str] = None
    category: Optional[str] = None
    is_archived: bool = False


class RemoteCategory(BaseModel):
    """Item category (QuickBooks `Type = 'Category'` items)."""

    external_id: str
    name: str
    fully_qualified_name: Optional[str] = None
    is_active: bool = True


class RemoteCustomer(BaseModel):
    """Remote customer/contact normalized across providers."""

    external_id: Optional[str] = Field(None, description="Provider customer id")
    display_name: Optional[str] = None
    is_archived: bool = False


class OAuthUserInfo(BaseModel):
    """User identity returned by the provider's OpenID endpoint."""

    given_name: Optional[str] = None
    family_name: Optional[str] = None
    email: Optional[str] = None


class RemoteCompanyInfo(BaseModel):
    """The accounting organisation a token is bound to."""

    company_name: str
    tenant_id: str


# Estimate / quote documents
class EstimateLine(BaseModel):
    """A single priced line on an estimate."""

    external_item_id: str = Field(..., description="Provider item identifier")
    sku: Optional[str] = Field(None, description="Item code, required by Xero")
    description: str
    quantity: Decimal = Field(..., gt=0)
    unit_price: Decimal = Field(..., ge=0)
    tax_code_ref: Optional[str] = None

    @property
    def amount(self) -> Decimal:
        return self.quantity * self.unit_price


class EstimateDraft(BaseModel):
    """Provider-neutral estimate, rendered into a provider payload by adapters."""

    customer_external_id: str
    doc_number: str
    txn_date: date
    memo: Optional[str] = None
    private_note: Optional[str] = None
    lines: List[EstimateLine]

    @field_validator("lines")
    @classmethod
    def validate_lines(cls, v: List[EstimateLine]) -> List[EstimateLine]:
        """Validate at least one line is provided."""
        if not v:
            raise ValueError("At least one line is required")
        return v

    @property
    def total(self) -> Decimal:
        return sum((line.amount for line in self.lines), Decimal("0"))


class RemoteDocumentRef(BaseModel):
    """Reference to a document created at the provider."""

    document_id: str
    document_number: Optional[str] = None
    url: Optional[str] = None
