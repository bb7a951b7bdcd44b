from __future__ import annotations

from typing import List, Optional, Tuple

from src.analytics.aggregation import (
    apply_report_filters,
    available_financial_years,
    company_rollup,
    financial_year_summary,
    monthly_pipeline,
    salesperson_rollup,
    select_report_deals,
    stage_group_kpis,
    year_over_year,
)
from src.analytics.collapsing import collapse_deals
from src.core.errors import BadRequestError
from src.models.deals import DealRecord
from src.repositories.deals_repository import DealsRepository
from src.schemas.deals import DealSummary
from src.schemas.reports import (
    EntityRollupRow,
    FinancialYearRow,
    PipelineBucket,
    ReportFilters,
    RollupSortKey,
    StageKpiReport,
    YearOverYearReport,
)
from src.services.deals_service import to_deal_summary
from src.shared.response import Pagination, paginate_list


class ReportsService:
    """Dashboard reports, recomputed from a fresh read of the deal set on every call."""

    def __init__(self, repository: DealsRepository) -> None:
        self.repository = repository

    def _filtered(self, filters: ReportFilters) -> List[DealRecord]:
        return apply_report_filters(self.repository.list_deals(), filters)

    def _collapsed(self, filters: ReportFilters) -> List[DealRecord]:
        return collapse_deals(self._filtered(filters))

    def get_stage_kpis(self, filters: ReportFilters) -> StageKpiReport:
        return stage_group_kpis(self._collapsed(filters))

    def get_pipeline(self, filters: ReportFilters) -> List[PipelineBucket]:
        return monthly_pipeline(self._collapsed(filters), date_field="enquiry_date")

    def get_forecast(self, filters: ReportFilters) -> List[PipelineBucket]:
        return monthly_pipeline(
            self._collapsed(filters), date_field="estimated_start_date", exclude_dead=True
        )

    def get_salesperson_rollup(
        self, filters: ReportFilters, sort_by: RollupSortKey = "win_rate"
    ) -> List[EntityRollupRow]:
        return salesperson_rollup(
            self._collapsed(filters), staff=self.repository.list_staff(), sort_by=sort_by
        )

    def get_company_rollup(
        self, filters: ReportFilters, sort_by: RollupSortKey = "win_rate"
    ) -> List[EntityRollupRow]:
        return company_rollup(
            self._collapsed(filters), companies=self.repository.list_companies(), sort_by=sort_by
        )

    def list_report_deals(
        self,
        filters: ReportFilters,
        stage: Optional[str],
        ascending: bool,
        page: int,
        page_size: int,
    ) -> Tuple[List[DealSummary], Pagination]:
        try:
            selected = select_report_deals(self._filtered(filters), stage, ascending=ascending)
        except ValueError as exc:
            raise BadRequestError(str(exc)) from exc
        rows, pagination = paginate_list(selected, page, page_size)
        return [to_deal_summary(record) for record in rows], pagination

    def get_year_over_year(self, year_a: int, year_b: int) -> YearOverYearReport:
        return year_over_year(self.repository.list_deals(), year_a, year_b)

    def get_financial_year_summary(self) -> List[FinancialYearRow]:
        return financial_year_summary(self.repository.list_deals())

    def get_available_financial_years(self) -> List[int]:
        return available_financial_years(self.repository.list_deals())
