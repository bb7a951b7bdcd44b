from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional, Union

from pydantic import ConfigDict, Field, field_validator

from src.models.deals import DealStage, ProbabilityBucket
from src.shared.base import BaseSchema, to_camel


class DealSummary(BaseSchema):
    id: str
    project_key: str
    ap_number: Optional[int] = None
    company_id: Optional[str] = None
    client_name: Optional[str] = None
    site_name: Optional[str] = None
    salesperson: Optional[str] = None
    salesperson_id: Optional[str] = None
    works_category: Optional[str] = None
    works_subcategory: Optional[str] = None
    stage: DealStage
    probability: Optional[ProbabilityBucket] = None
    tender_value: Optional[Decimal] = None
    tender_cost: Optional[Decimal] = None
    tender_margin: Optional[Decimal] = None
    tender_margin_percent: Optional[Decimal] = None
    enquiry_date: Optional[date] = None
    tender_return_date: Optional[date] = None
    estimated_start_date: Optional[date] = None
    weight: Decimal
    expected_value: Decimal


class DealDetail(DealSummary):
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    allowed_stages: List[DealStage] = Field(default_factory=list)


class DealAction(BaseSchema):
    id: str
    deal_id: str
    action_type: Optional[str] = None
    notes: Optional[str] = None
    file_url: Optional[str] = None
    created_at: Optional[datetime] = None


class StageTransitionRequest(BaseSchema):
    target_stage: DealStage
    answers: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("target_stage", mode="before")
    @classmethod
    def _parse_stage(cls, value: Any) -> DealStage:
        return DealStage.parse(value)


class StageTransitionResponse(BaseSchema):
    deal: DealDetail
    action: DealAction


class TenderSummaryRequest(BaseSchema):
    tender_value: Union[Decimal, str]
    tender_cost: Union[Decimal, str]


class DealFieldUpdate(BaseSchema):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="forbid")

    probability: Optional[ProbabilityBucket] = None
    client_name: Optional[str] = None
    site_name: Optional[str] = None
    salesperson_id: Optional[str] = None
    works_category: Optional[str] = None
    works_subcategory: Optional[str] = None
    enquiry_date: Optional[date] = None
    tender_return_date: Optional[date] = None
    estimated_start_date: Optional[date] = None
    notes: Optional[str] = None
