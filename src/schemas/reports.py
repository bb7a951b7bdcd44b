from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Dict, List, Literal, Optional, Tuple

from pydantic import Field, model_validator

from src.models.deals import ProbabilityBucket
from src.shared.base import BaseSchema, FrozenSchema

DateMode = Literal["all", "month_range", "financial_year"]
RollupSortKey = Literal["win_rate", "count", "expected_value"]


class ReportFilters(FrozenSchema):
    date_mode: DateMode = "all"
    month_from: Optional[date] = None
    month_to: Optional[date] = None
    financial_year: Optional[int] = Field(default=None, ge=2000, le=2100)
    salesperson: Optional[str] = None
    works_category: Optional[str] = None
    works_subcategory: Optional[str] = None
    probabilities: Tuple[ProbabilityBucket, ...] = ()

    @model_validator(mode="after")
    def _check_month_range(self) -> "ReportFilters":
        if self.month_from and self.month_to and self.month_from > self.month_to:
            raise ValueError("month_from must not be after month_to")
        return self

    @property
    def is_filtered(self) -> bool:
        return (
            self.date_mode != "all"
            or bool(self.salesperson)
            or bool(self.works_category)
            or bool(self.works_subcategory)
            or bool(self.probabilities)
        )


class StageStat(BaseSchema):
    stage: str
    count: int = 0
    total_value: Decimal = Decimal("0")


class StageGroup(BaseSchema):
    key: str
    label: str
    count: int
    total_value: Decimal
    children: List[StageStat] = Field(default_factory=list)


class StageKpiReport(BaseSchema):
    tenders: int
    total_value: Decimal
    quotes_submitted: int
    won_value: Decimal
    groups: List[StageGroup]


class PipelineBucket(BaseSchema):
    month_key: str
    label: str
    period_start: date
    deal_count: int = 0
    total_value: Decimal = Decimal("0")
    won_value: Decimal = Decimal("0")
    expected_value: Decimal = Decimal("0")
    probability_values: Dict[str, Decimal] = Field(default_factory=dict)


class EntityRollupRow(BaseSchema):
    key: str
    label: str
    deal_count: int = 0
    won_count: int = 0
    total_value: Decimal = Decimal("0")
    won_value: Decimal = Decimal("0")
    expected_value: Decimal = Decimal("0")
    win_rate: Optional[Decimal] = None


class YearOverYearPoint(BaseSchema):
    month: int
    label: str
    year_a_count: int = 0
    year_b_count: int = 0


class YearOverYearReport(BaseSchema):
    year_a: int
    year_b: int
    year_a_total: int
    year_b_total: int
    points: List[YearOverYearPoint]


class FinancialYearRow(BaseSchema):
    fy_end_year: int
    label: str
    tenders: int = 0
    stage_counts: Dict[str, int] = Field(default_factory=dict)
    quotes_submitted: int = 0
    won_count: int = 0
    total_value: Decimal = Decimal("0")
    won_value: Decimal = Decimal("0")
