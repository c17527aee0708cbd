# pickbridge/domains/external_accounting/sync/reconciliation.py
import asyncio
import logging
import time
from datetime import datetime
from typing import Awaitable, Callable, List, Optional, Sequence, Tuple

from pickbridge.core.settings import settings
from pickbridge.shared.exceptions import (
    IntegrationValidationError,
    ReAuthRequiredError,
    TransientIntegrationError,
)

from ..base.client import ProviderClient
from ..base.models import (
    CustomerFields,
    ProductFields,
    ResourceSyncCounts,
    SyncResult,
    UpsertOutcome,
)
from ..base.store import BaseIntegrationStore
from ..base.types import (
    Cursor,
    FailureCause,
    Page,
    ProviderCallError,
    RemoteCategory,
    RemoteCustomer,
    RemoteItem,
)
from ..tokens.manager import TokenLifecycleManager, utc_now

logger = logging.getLogger(__name__)

MIN_PAGE_SIZE = 100
MAX_PAGE_SIZE = 1000


class SkippedRecordError(ValueError):
    """A remote record that cannot be reconciled as delivered."""


class ReconciliationEngine:
    """
    Pulls a company's customers and items from its provider into local tables.

    Pages are fetched one at a time and each page is persisted before the next
    is requested. Upserts are idempotent: matching is by external id first,
    then by natural key (SKU for items, display name for customers).
    """

    def __init__(
        self,
        store: BaseIntegrationStore,
        tokens: TokenLifecycleManager,
        page_size: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.tokens = tokens
        self.page_size = max(
            MIN_PAGE_SIZE, min(MAX_PAGE_SIZE, page_size or settings.SYNC_PAGE_SIZE)
        )
        self.clock = clock

    async def sync_company(
        self,
        company_id: str,
        cancel_event: Optional[asyncio.Event] = None,
        category_ids: Optional[Sequence[str]] = None,
    ) -> SyncResult:
        """
        Reconcile customers, then products, for one company.

        Args:
            company_id: Company ID
            cancel_event: Checked before every page fetch
            category_ids: Sync only products under these categories. Customers
                are not touched and last_synced_at is not advanced.

        Returns:
            SyncResult with per-resource counts and collected errors

        Raises:
            ReAuthRequiredError: Credentials are unusable or were revoked mid-run
            TransientIntegrationError: A usable client could not be obtained
            IntegrationValidationError: The provider has no item categories
        """
        start_time = time.time()
        categories = tuple(
            dict.fromkeys(c.strip() for c in category_ids or () if c.strip())
        )
        client = await self.tokens.get_usable_client(company_id)
        if categories and not client.adapter.supports_categories:
            raise IntegrationValidationError(
                f"{client.provider.value} does not support category-filtered sync"
            )

        scope = f", categories {', '.join(categories)}" if categories else ""
        logger.info(
            f"Starting {client.provider.value} sync for company {company_id} "
            f"(page size {self.page_size}{scope})"
        )

        result = SyncResult(company_id=company_id, success=False)

        customers_done = True
        if not categories:
            customers_done = await self._reconcile_resource(
                "customers",
                client,
                client.fetch_customers_page,
                self._upsert_customer,
                result,
                cancel_event,
            )

        products_done = False
        if not result.cancelled:
            products_done = await self._reconcile_resource(
                "products",
                client,
                client.fetch_items_page,
                self._upsert_product,
                result,
                cancel_event,
                category_ids=categories,
            )

        for counts in result.resources.values():
            result.total += counts.total
            result.created += counts.created
            result.updated += counts.updated
            result.errored += counts.errored

        if customers_done and products_done and not categories:
            synced_at = self.clock()
            await self.store.mark_company_synced(company_id, synced_at)
            result.last_synced_at = synced_at

        result.success = (
            customers_done and products_done and not result.cancelled and not result.errors
        )
        if result.errors and not result.error:
            result.error = result.errors[0]
        result.duration_seconds = time.time() - start_time

        logger.info(
            f"Sync for company {company_id} finished: success={result.success} "
            f"created={result.created} updated={result.updated} "
            f"errored={result.errored} cancelled={result.cancelled}"
        )
        return result

    async def list_categories(self, company_id: str) -> List[RemoteCategory]:
        """List the company's remote item categories for a filtered sync."""
        client = await self.tokens.get_usable_client(company_id)
        try:
            return await client.list_categories()
        except ProviderCallError as e:
            if e.cause == FailureCause.REVOKED:
                raise ReAuthRequiredError(client.provider.value, company_id) from e
            raise TransientIntegrationError(
                f"Could not list {client.provider.value} categories: {e.message}",
                retry_after=e.retry_after,
            ) from e

    async def _reconcile_resource(
        self,
        resource: str,
        client: ProviderClient,
        fetch_page: Callable[[Cursor], Awaitable[Page]],
        upsert: Callable[[str, object], Awaitable[UpsertOutcome]],
        result: SyncResult,
        cancel_event: Optional[asyncio.Event],
        category_ids: Tuple[str, ...] = (),
    ) -> bool:
        """Page through one resource. Returns True when pagination completed."""
        counts = result.resources.setdefault(resource, ResourceSyncCounts())
        cursor: Optional[Cursor] = client.first_cursor(self.page_size)
        if category_ids:
            cursor = cursor.model_copy(update={"category_ids": category_ids})
        position = 0

        while cursor is not None:
            if cancel_event is not None and cancel_event.is_set():
                logger.info(
                    f"Sync for company {client.company_id} cancelled before "
                    f"{resource} page {counts.pages + 1}"
                )
                result.cancelled = True
                return False

            try:
                page = await fetch_page(cursor)
            except ProviderCallError as e:
                if e.cause == FailureCause.REVOKED:
                    raise ReAuthRequiredError(client.provider.value, client.company_id) from e
                message = f"{resource} page {counts.pages + 1}: {e.message}"
                logger.error(f"Sync for company {client.company_id} stopped {message}")
                result.errors.append(message)
                return False

            counts.pages += 1
            for record in page.records:
                position += 1
                counts.total += 1
                try:
                    outcome = await upsert(client.company_id, record)
                except ReAuthRequiredError:
                    raise
                except Exception as e:
                    counts.errored += 1
                    reference = getattr(record, "external_id", None) or f"#{position}"
                    result.errors.append(f"{resource} {reference}: {e}")
                    logger.warning(
                        f"Failed to reconcile {resource} {reference} for company "
                        f"{client.company_id}: {e}"
                    )
                    continue

                if outcome == UpsertOutcome.CREATED:
                    counts.created += 1
                else:
                    counts.updated += 1

            cursor = page.next_cursor

        counts.completed = True
        return True

    async def _upsert_product(self, company_id: str, item: RemoteItem) -> UpsertOutcome:
        if not item.external_id:
            raise SkippedRecordError("missing external id")
        if not item.name and not item.sku:
            raise SkippedRecordError("missing both name and SKU")

        fields = ProductFields(
            name=item.name or item.sku,
            sku=item.sku,
            price=item.price,
            quantity_on_hand=item.quantity_on_hand,
            tax_code_ref=item.tax_code_ref,
            category=item.category,
            is_archived=item.is_archived,
        )
        return await self.store.upsert_product(company_id, item.external_id, fields)

    async def _upsert_customer(
        self, company_id: str, customer: RemoteCustomer
    ) -> UpsertOutcome:
        if not customer.external_id:
            raise SkippedRecordError("missing external id")
        if not customer.display_name:
            raise SkippedRecordError("missing display name")

        fields = CustomerFields(
            display_name=customer.display_name, is_archived=customer.is_archived
        )
        return await self.store.upsert_customer(company_id, customer.external_id, fields)
