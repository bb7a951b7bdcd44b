from __future__ import annotations

import logging
from typing import List

from src.analytics.collapsing import project_key
from src.analytics.financials import derive_financials, parse_amount
from src.analytics.weighting import expected_value, weight
from src.core.errors import BadRequestError, NotFoundError
from src.models.deals import DealActionRecord, DealRecord, DealStage
from src.repositories.deals_repository import DealsRepository
from src.schemas.deals import (
    DealAction,
    DealDetail,
    DealFieldUpdate,
    DealSummary,
    StageTransitionRequest,
    StageTransitionResponse,
    TenderSummaryRequest,
)
from src.workflow.stage_machine import (
    DEFAULT_POLICY,
    StagePolicy,
    allowed_targets,
    request_transition,
)

logger = logging.getLogger(__name__)


def to_deal_summary(record: DealRecord) -> DealSummary:
    return DealSummary(
        **record.model_dump(exclude={"notes", "created_at", "updated_at"}),
        project_key=project_key(record),
        weight=weight(record),
        expected_value=expected_value(record),
    )


def to_deal_action(record: DealActionRecord) -> DealAction:
    return DealAction(**record.model_dump())


class DealsService:
    def __init__(self, repository: DealsRepository, policy: StagePolicy = DEFAULT_POLICY) -> None:
        self.repository = repository
        self.policy = policy

    def _load(self, deal_id: str) -> DealRecord:
        record = self.repository.get_deal(deal_id)
        if not record:
            raise NotFoundError("Deal not found")
        return record

    def _to_deal_detail(self, record: DealRecord) -> DealDetail:
        summary = to_deal_summary(record)
        allowed = allowed_targets(record.stage, self.policy)
        return DealDetail(
            **summary.model_dump(),
            notes=record.notes,
            created_at=record.created_at,
            updated_at=record.updated_at,
            allowed_stages=[stage for stage in DealStage if stage in allowed],
        )

    def get_deal(self, deal_id: str) -> DealDetail:
        return self._to_deal_detail(self._load(deal_id))

    def list_actions(self, deal_id: str) -> List[DealAction]:
        self._load(deal_id)
        return [to_deal_action(record) for record in self.repository.list_deal_actions(deal_id)]

    def request_transition(
        self, deal_id: str, request: StageTransitionRequest
    ) -> StageTransitionResponse:
        deal = self._load(deal_id)
        prior_actions = self.repository.list_deal_actions(deal_id)
        transition = request_transition(
            deal,
            request.target_stage,
            answers=request.answers,
            prior_actions=prior_actions,
            policy=self.policy,
        )
        saved_deal, saved_action = self.repository.commit_stage_change(
            deal.id,
            expected_stage=transition.from_stage,
            expected_updated_at=deal.updated_at,
            patch=transition.patch,
            action=transition.action,
        )
        logger.info(
            "Deal stage changed deal_id=%s from=%s to=%s action=%s",
            deal.id,
            transition.from_stage.value,
            transition.to_stage.value,
            saved_action.action_type,
        )
        return StageTransitionResponse(
            deal=self._to_deal_detail(saved_deal),
            action=to_deal_action(saved_action),
        )

    def save_tender_summary(self, deal_id: str, request: TenderSummaryRequest) -> DealDetail:
        deal = self._load(deal_id)
        value = parse_amount(request.tender_value)
        cost = parse_amount(request.tender_cost)
        if value is None or value == 0:
            raise BadRequestError("Tender value must be a non-zero amount")
        if cost is None:
            raise BadRequestError("Tender cost must be a valid amount")

        figures = derive_financials(value, cost)
        saved = self.repository.update_deal(
            deal.id,
            figures.model_dump(),
            expected_stage=deal.stage,
            expected_updated_at=deal.updated_at,
        )
        return self._to_deal_detail(saved)

    def update_fields(self, deal_id: str, request: DealFieldUpdate) -> DealDetail:
        deal = self._load(deal_id)
        patch = request.model_dump(exclude_unset=True)
        if not patch:
            raise BadRequestError("No fields to update")
        if patch.get("probability") is not None and deal.is_closed:
            raise BadRequestError(
                f"Probability cannot be set on a deal in '{deal.stage.value}'"
            )
        saved = self.repository.update_deal(
            deal.id, patch, expected_stage=deal.stage, expected_updated_at=deal.updated_at
        )
        return self._to_deal_detail(saved)
