from datetime import date
from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, Field


class LocalOrderLine(BaseModel):
    """A staged order line. Validated by the finalization service, not here."""

    external_item_id: Optional[str] = Field(None, description="Provider item id")
    sku: Optional[str] = None
    description: str = ""
    quantity: Decimal = Decimal("0")
    unit_price: Decimal = Decimal("0")
    tax_code_ref: Optional[str] = None


class LocalOrder(BaseModel):
    """A staged order awaiting conversion into a remote estimate."""

    order_number: Optional[str] = Field(None, description="Local order number")
    customer_external_id: Optional[str] = Field(
        None, description="Provider customer id"
    )
    customer_name: Optional[str] = None
    txn_date: Optional[date] = None
    note: Optional[str] = Field(None, description="Memo shown to the customer")
    lines: List[LocalOrderLine] = Field(default_factory=list)


class ConversionOutcome(BaseModel):
    """Result of finalizing one order."""

    company_id: str
    order_number: Optional[str] = None
    success: bool
    retryable: bool = False
    remote_document_id: Optional[str] = None
    remote_document_number: Optional[str] = None
    remote_url: Optional[str] = None
    error: Optional[str] = None


class FinalizationBatchResult(BaseModel):
    """Result of finalizing a batch of orders for one company."""

    company_id: str
    outcomes: List[ConversionOutcome] = Field(default_factory=list)
    succeeded: int = 0
    failed: int = 0
    reauth_required: bool = False
    not_attempted: List[str] = Field(
        default_factory=list,
        description="Order numbers skipped after the batch was stopped",
    )


class ImportedLine(BaseModel):
    """A line parsed from a free-text items description."""

    quantity: int = 1
    product_name: str
    original_text: str


class MatchedLine(ImportedLine):
    """An imported line with the best-matching local product, if any."""

    matched: bool = False
    product_id: Optional[int] = None
    sku: Optional[str] = None
    barcode: Optional[str] = None
    price: Decimal = Decimal("0")
    external_item_id: Optional[str] = None
    tax_code_ref: Optional[str] = None
    score: float = 0.0
