import asyncio
import logging
from typing import Dict, List, Set

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field, field_validator

from ..base.models import SyncResult
from ..base.types import RemoteCategory
from ..container import IntegrationServices, get_integrations

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/sync", tags=["sync"])

# Keeps background sync tasks referenced until they finish
_background_tasks: Set[asyncio.Task] = set()


class SyncTriggerResponse(BaseModel):
    company_id: str
    started: bool
    message: str


class CategorySyncRequest(BaseModel):
    category_ids: List[str] = Field(..., min_length=1)

    @field_validator("category_ids")
    @classmethod
    def ids_are_numeric(cls, value: List[str]) -> List[str]:
        cleaned = [v.strip() for v in value]
        if not all(v.isdigit() for v in cleaned):
            raise ValueError("category ids must be numeric")
        return cleaned


@router.post("/{company_id}", response_model=SyncTriggerResponse)
async def trigger_company_sync(
    company_id: str,
    services: IntegrationServices = Depends(get_integrations),
) -> SyncTriggerResponse:
    """
    Trigger catalogue synchronization for one company.

    The sync runs in the background; poll the connection status for
    last_synced_at.
    """
    if services.scheduler.is_running(company_id):
        return SyncTriggerResponse(
            company_id=company_id, started=False, message="Sync already running"
        )

    task = asyncio.create_task(_perform_company_sync(services, company_id))
    _background_tasks.add(task)
    task.add_done_callback(_background_tasks.discard)

    return SyncTriggerResponse(
        company_id=company_id, started=True, message="Sync started"
    )


@router.post("/{company_id}/cancel", response_model=SyncTriggerResponse)
async def cancel_company_sync(
    company_id: str,
    services: IntegrationServices = Depends(get_integrations),
) -> SyncTriggerResponse:
    cancelled = services.scheduler.cancel(company_id)
    return SyncTriggerResponse(
        company_id=company_id,
        started=False,
        message="Cancellation requested" if cancelled else "No sync running",
    )


@router.post("", response_model=Dict[str, SyncResult])
async def run_due_syncs(
    force: bool = False,
    services: IntegrationServices = Depends(get_integrations),
) -> Dict[str, SyncResult]:
    """Run the scheduled sync pass immediately and return every company's result."""
    return await services.scheduler.run_all_due(force=force)


async def _perform_company_sync(services: IntegrationServices, company_id: str) -> None:
    """Perform the actual company sync in background."""
    result = await services.scheduler.run_company(company_id)

    if result.success:
        logger.info(
            f"Sync completed for {company_id}: {result.total} records "
            f"in {result.duration_seconds:.1f}s"
        )
    else:
        logger.error(f"Sync failed for {company_id}: {result.error}")


@router.get("/{company_id}/categories", response_model=List[RemoteCategory])
async def list_item_categories(
    company_id: str,
    services: IntegrationServices = Depends(get_integrations),
) -> List[RemoteCategory]:
    """List the item categories a filtered product sync can target."""
    return await services.engine.list_categories(company_id)


@router.post("/{company_id}/products/categories", response_model=SyncResult)
async def sync_products_by_category(
    company_id: str,
    request: CategorySyncRequest,
    services: IntegrationServices = Depends(get_integrations),
) -> SyncResult:
    """
    Sync only the products under the given categories and wait for the result.

    Customers are not touched and last_synced_at is not advanced.
    """
    return await services.scheduler.run_company(
        company_id, category_ids=request.category_ids
    )
