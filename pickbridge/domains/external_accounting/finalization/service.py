# pickbridge/domains/external_accounting/finalization/service.py
import logging
from datetime import date
from typing import List, Optional

from pickbridge.shared.exceptions import (
    IntegrationValidationError,
    ReAuthRequiredError,
    RemoteDocumentFaultError,
    TransientIntegrationError,
)

from ..base.models import ConversionRecord, ConversionRecordData, ConversionStatus
from ..base.store import BaseIntegrationStore
from ..base.types import (
    EstimateDraft,
    EstimateLine,
    FailureCause,
    ProviderCallError,
    RemoteDocumentRef,
)
from ..tokens.manager import TokenLifecycleManager
from .models import ConversionOutcome, FinalizationBatchResult, LocalOrder

logger = logging.getLogger(__name__)


class FinalizationService:
    """Converts staged local orders into provider estimates (QuickBooks) or quotes (Xero)."""

    def __init__(self, store: BaseIntegrationStore, tokens: TokenLifecycleManager):
        self.store = store
        self.tokens = tokens

    async def finalize_order(self, company_id: str, order: LocalOrder) -> ConversionOutcome:
        """
        Create the remote estimate for an order and record the conversion.

        A ConversionRecord is upserted for every attempt that has an order
        number, successful or not.

        Args:
            company_id: Company ID
            order: The staged order

        Returns:
            ConversionOutcome; a transient provider failure is returned with
            success=False and retryable=True rather than raised

        Raises:
            IntegrationValidationError: The order cannot be sent as-is
            ReAuthRequiredError: The company must reconnect its provider
            RemoteDocumentFaultError: The provider rejected the document
        """
        try:
            draft = self._build_draft(order)
            await self._validate_for_provider(company_id, draft)
            client = await self.tokens.get_usable_client(company_id)
            document = await self._create_document(client, draft)
        except (
            IntegrationValidationError,
            ReAuthRequiredError,
            RemoteDocumentFaultError,
        ) as e:
            await self._record_failure(company_id, order.order_number, str(e))
            raise
        except TransientIntegrationError as e:
            await self._record_failure(company_id, order.order_number, str(e))
            logger.warning(
                f"Order {order.order_number} for company {company_id} not finalized, "
                f"retryable: {e}"
            )
            return ConversionOutcome(
                company_id=company_id,
                order_number=order.order_number,
                success=False,
                retryable=True,
                error=str(e),
            )

        await self.store.upsert_conversion_record(
            company_id,
            order.order_number,
            ConversionRecordData(
                status=ConversionStatus.SUCCESS,
                remote_document_id=document.document_id,
                remote_document_number=document.document_number,
                remote_url=document.url,
            ),
        )
        logger.info(
            f"Order {order.order_number} for company {company_id} finalized as "
            f"{client.provider.value} document {document.document_id}"
        )

        return ConversionOutcome(
            company_id=company_id,
            order_number=order.order_number,
            success=True,
            remote_document_id=document.document_id,
            remote_document_number=document.document_number,
            remote_url=document.url,
        )

    async def finalize_orders(
        self, company_id: str, orders: List[LocalOrder]
    ) -> FinalizationBatchResult:
        """Finalize orders one by one. A re-auth failure stops the batch."""
        batch = FinalizationBatchResult(company_id=company_id)

        for index, order in enumerate(orders):
            try:
                outcome = await self.finalize_order(company_id, order)
            except ReAuthRequiredError as e:
                batch.outcomes.append(
                    ConversionOutcome(
                        company_id=company_id,
                        order_number=order.order_number,
                        success=False,
                        error=str(e),
                    )
                )
                batch.failed += 1
                batch.reauth_required = True
                batch.not_attempted = [
                    o.order_number or "" for o in orders[index + 1 :]
                ]
                logger.warning(
                    f"Finalization batch for company {company_id} stopped: re-auth required"
                )
                break
            except (IntegrationValidationError, RemoteDocumentFaultError) as e:
                outcome = ConversionOutcome(
                    company_id=company_id,
                    order_number=order.order_number,
                    success=False,
                    error=str(e),
                )

            batch.outcomes.append(outcome)
            if outcome.success:
                batch.succeeded += 1
            else:
                batch.failed += 1

        return batch

    async def get_conversion_history(
        self, company_id: str, limit: int = 50
    ) -> List[ConversionRecord]:
        return await self.store.list_conversion_records(company_id, limit)

    def _build_draft(self, order: LocalOrder) -> EstimateDraft:
        if not order.order_number or not order.order_number.strip():
            raise IntegrationValidationError("Order number is required")
        if not order.customer_external_id:
            raise IntegrationValidationError(
                f"Order {order.order_number}: customer is not linked to the accounting provider"
            )
        if not order.lines:
            raise IntegrationValidationError(f"Order {order.order_number} has no lines")

        lines = []
        for number, line in enumerate(order.lines, start=1):
            label = line.description or line.sku or f"line {number}"
            if not line.external_item_id:
                raise IntegrationValidationError(
                    f"Order {order.order_number}: '{label}' is not linked to a provider item"
                )
            if line.quantity <= 0:
                raise IntegrationValidationError(
                    f"Order {order.order_number}: '{label}' must have a positive quantity"
                )
            if line.unit_price < 0:
                raise IntegrationValidationError(
                    f"Order {order.order_number}: '{label}' has a negative price"
                )

            lines.append(
                EstimateLine(
                    external_item_id=line.external_item_id,
                    sku=line.sku,
                    description=line.description or label,
                    quantity=line.quantity,
                    unit_price=line.unit_price,
                    tax_code_ref=line.tax_code_ref,
                )
            )

        return EstimateDraft(
            customer_external_id=order.customer_external_id,
            doc_number=order.order_number,
            txn_date=order.txn_date or date.today(),
            memo=order.note or f"Imported order {order.order_number}",
            private_note=f"Imported from pickbridge, order {order.order_number}",
            lines=lines,
        )

    async def _validate_for_provider(self, company_id: str, draft: EstimateDraft) -> None:
        # Runs before the token manager, which may refresh over the network
        company = await self.store.get_company(company_id)
        if company is None or company.provider is None:
            return
        self.tokens.registry.get(company.provider).validate_draft(draft)

    async def _create_document(self, client, draft: EstimateDraft) -> RemoteDocumentRef:
        try:
            return await client.create_estimate(draft)
        except ProviderCallError as e:
            if e.cause == FailureCause.DOCUMENT_FAULT:
                raise RemoteDocumentFaultError(e.error_code, e.message) from e
            if e.cause == FailureCause.REVOKED:
                raise ReAuthRequiredError(client.provider.value, client.company_id) from e
            raise TransientIntegrationError(
                f"{client.provider.value} estimate request failed: {e.message}",
                retry_after=e.retry_after,
            ) from e

    async def _record_failure(
        self, company_id: str, order_number: Optional[str], message: str
    ) -> None:
        if not order_number:
            return
        await self.store.upsert_conversion_record(
            company_id,
            order_number,
            ConversionRecordData(status=ConversionStatus.FAILED, error_message=message),
        )
