from typing import List

from fastapi import APIRouter, Depends
from pydantic import BaseModel, Field

from ..base.models import ConversionRecord
from ..container import IntegrationServices, get_integrations
from .matching import parse_items_description
from .models import ConversionOutcome, FinalizationBatchResult, LocalOrder, MatchedLine

router = APIRouter(prefix="/finalization", tags=["finalization"])


class MatchRequest(BaseModel):
    items_description: str = Field(..., description="Free-text items, comma separated")


@router.post("/{company_id}/orders", response_model=ConversionOutcome)
async def finalize_order(
    company_id: str,
    order: LocalOrder,
    services: IntegrationServices = Depends(get_integrations),
) -> ConversionOutcome:
    """Create the provider estimate for a staged order."""
    return await services.finalization.finalize_order(company_id, order)


@router.post("/{company_id}/orders/batch", response_model=FinalizationBatchResult)
async def finalize_orders(
    company_id: str,
    orders: List[LocalOrder],
    services: IntegrationServices = Depends(get_integrations),
) -> FinalizationBatchResult:
    return await services.finalization.finalize_orders(company_id, orders)


@router.get("/{company_id}/history", response_model=List[ConversionRecord])
async def get_conversion_history(
    company_id: str,
    limit: int = 50,
    services: IntegrationServices = Depends(get_integrations),
) -> List[ConversionRecord]:
    return await services.finalization.get_conversion_history(company_id, limit)


@router.post("/{company_id}/match", response_model=List[MatchedLine])
async def match_line_items(
    company_id: str,
    request: MatchRequest,
    services: IntegrationServices = Depends(get_integrations),
) -> List[MatchedLine]:
    """Parse a free-text items description and match it to local products."""
    lines = parse_items_description(request.items_description)
    return await services.matcher.match_line_items(company_id, lines)
