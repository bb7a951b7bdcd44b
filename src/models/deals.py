from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, field_validator


class DealStage(str, Enum):
    RECEIVED = "Received"
    QUALIFIED = "Qualified"
    IN_REVIEW = "In Review"
    QUOTE_SUBMITTED = "Quote Submitted"
    WON = "Won"
    LOST = "Lost"
    NO_TENDER = "No Tender"

    @classmethod
    def parse(cls, value: Any) -> "DealStage":
        if isinstance(value, cls):
            return value
        key = str(value or "").strip().lower()
        for stage in cls:
            if stage.value.lower() == key:
                return stage
        raise ValueError(f"Unknown deal stage: {value!r}")


ACTIVE_STAGES = (
    DealStage.RECEIVED,
    DealStage.QUALIFIED,
    DealStage.IN_REVIEW,
    DealStage.QUOTE_SUBMITTED,
)
CLOSED_STAGES = frozenset({DealStage.WON, DealStage.LOST, DealStage.NO_TENDER})


class ProbabilityBucket(str, Enum):
    A = "A"
    B = "B"
    C = "C"
    D = "D"


class DealRecord(BaseModel):
    id: str
    ap_number: Optional[int] = None
    company_id: Optional[str] = None
    client_name: Optional[str] = None
    site_name: Optional[str] = None
    salesperson: Optional[str] = None
    salesperson_id: Optional[str] = None
    works_category: Optional[str] = None
    works_subcategory: Optional[str] = None
    stage: DealStage = DealStage.RECEIVED
    probability: Optional[ProbabilityBucket] = None
    tender_value: Optional[Decimal] = None
    tender_cost: Optional[Decimal] = None
    tender_margin: Optional[Decimal] = None
    tender_margin_percent: Optional[Decimal] = None
    enquiry_date: Optional[date] = None
    tender_return_date: Optional[date] = None
    estimated_start_date: Optional[date] = None
    notes: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @field_validator("stage", mode="before")
    @classmethod
    def _normalise_stage(cls, value: Any) -> DealStage:
        # Rows created before the stage column was constrained may be blank.
        if value is None or not str(value).strip():
            return DealStage.RECEIVED
        return DealStage.parse(value)

    @field_validator("probability", mode="before")
    @classmethod
    def _normalise_probability(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        key = str(value).strip().upper()
        if key in ProbabilityBucket.__members__:
            return key
        return None

    @property
    def is_closed(self) -> bool:
        return self.stage in CLOSED_STAGES

    def missing_financials(self) -> list[str]:
        return [
            field
            for field in ("tender_value", "tender_cost", "tender_margin", "tender_margin_percent")
            if getattr(self, field) is None
        ]


class DealActionRecord(BaseModel):
    id: str
    deal_id: str
    action_type: Optional[str] = None
    notes: Optional[str] = None
    file_url: Optional[str] = None
    created_at: Optional[datetime] = None


class DealActionDraft(BaseModel):
    action_type: str
    notes: Optional[str] = None
    file_url: Optional[str] = None


class CompanyRecord(BaseModel):
    id: str
    company_name: str


class StaffRecord(BaseModel):
    id: str
    full_name: str
