from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends

from src.api.dependencies import get_deals_service
from src.schemas.deals import (
    DealAction,
    DealDetail,
    DealFieldUpdate,
    StageTransitionRequest,
    StageTransitionResponse,
    TenderSummaryRequest,
)
from src.services.deals_service import DealsService
from src.shared.response import REPORT_CURRENCY, Meta, ResponseEnvelope, build_meta


router = APIRouter(prefix="/deals", tags=["deals"])


def _deal_meta(source: str = "deals", currency: Optional[str] = REPORT_CURRENCY) -> Meta:
    return build_meta(source=source, time_window="na", currency=currency)


@router.get("/{deal_id}")
def deal_detail(
    deal_id: str,
    service: DealsService = Depends(get_deals_service),
) -> ResponseEnvelope[DealDetail]:
    data = service.get_deal(deal_id)
    return ResponseEnvelope(data=data, pagination=None, meta=_deal_meta())


@router.get("/{deal_id}/actions")
def deal_actions(
    deal_id: str,
    service: DealsService = Depends(get_deals_service),
) -> ResponseEnvelope[List[DealAction]]:
    data = service.list_actions(deal_id)
    return ResponseEnvelope(
        data=data,
        pagination=None,
        meta=_deal_meta(source="deal_actions", currency=None)
    )


@router.post("/{deal_id}/transitions")
def deal_transition(
    deal_id: str,
    request: StageTransitionRequest,
    service: DealsService = Depends(get_deals_service),
) -> ResponseEnvelope[StageTransitionResponse]:
    data = service.request_transition(deal_id, request)
    return ResponseEnvelope(data=data, pagination=None, meta=_deal_meta())


@router.put("/{deal_id}/tender-summary")
def deal_tender_summary(
    deal_id: str,
    request: TenderSummaryRequest,
    service: DealsService = Depends(get_deals_service),
) -> ResponseEnvelope[DealDetail]:
    data = service.save_tender_summary(deal_id, request)
    return ResponseEnvelope(data=data, pagination=None, meta=_deal_meta())


@router.patch("/{deal_id}")
def deal_update(
    deal_id: str,
    request: DealFieldUpdate,
    service: DealsService = Depends(get_deals_service),
) -> ResponseEnvelope[DealDetail]:
    data = service.update_fields(deal_id, request)
    return ResponseEnvelope(data=data, pagination=None, meta=_deal_meta())
