from __future__ import annotations

from typing import List, Optional

from fastapi import APIRouter, Depends, Query
from pydantic import ValidationError

from src.api.dependencies import get_reports_service
from src.core.errors import BadRequestError
from src.models.deals import ProbabilityBucket
from src.schemas.deals import DealSummary
from src.schemas.reports import (
    DateMode,
    EntityRollupRow,
    FinancialYearRow,
    PipelineBucket,
    ReportFilters,
    RollupSortKey,
    StageKpiReport,
    YearOverYearReport,
)
from src.services.reports_service import ReportsService
from src.shared.response import Meta, ResponseEnvelope, build_meta
from src.shared.time import parse_month


router = APIRouter(prefix="/reports", tags=["reports"])


def get_report_filters(
    date_mode: DateMode = Query(default="all"),
    month_from: Optional[str] = Query(default=None),
    month_to: Optional[str] = Query(default=None),
    financial_year: Optional[int] = Query(default=None, ge=2000, le=2100),
    salesperson: Optional[str] = Query(default=None),
    works_category: Optional[str] = Query(default=None),
    works_subcategory: Optional[str] = Query(default=None),
    probability: List[ProbabilityBucket] = Query(default=[]),
) -> ReportFilters:
    if date_mode == "financial_year" and financial_year is None:
        raise BadRequestError("financial_year is required when date_mode is financial_year")
    try:
        return ReportFilters(
            date_mode=date_mode,
            month_from=parse_month(month_from) if month_from else None,
            month_to=parse_month(month_to) if month_to else None,
            financial_year=financial_year,
            salesperson=salesperson or None,
            works_category=works_category or None,
            works_subcategory=works_subcategory or None,
            probabilities=tuple(probability),
        )
    except ValidationError as exc:
        raise BadRequestError("Invalid report filters") from exc


def _time_window(filters: ReportFilters) -> str:
    if filters.date_mode == "financial_year":
        return f"FY{filters.financial_year}"
    if filters.date_mode == "month_range":
        start = filters.month_from.strftime("%Y-%m") if filters.month_from else ""
        end = filters.month_to.strftime("%Y-%m") if filters.month_to else ""
        return f"{start}..{end}"
    return "all"


def _report_meta(source: str, filters: ReportFilters, collapsed: bool = True) -> Meta:
    return build_meta(
        source=source,
        time_window=_time_window(filters),
        collapsed=collapsed,
        filtered=filters.is_filtered,
    )


@router.get("/stage-kpis")
def stage_kpis(
    filters: ReportFilters = Depends(get_report_filters),
    service: ReportsService = Depends(get_reports_service),
) -> ResponseEnvelope[StageKpiReport]:
    data = service.get_stage_kpis(filters)
    return ResponseEnvelope(data=data, pagination=None, meta=_report_meta("deals", filters))


@router.get("/pipeline")
def pipeline(
    filters: ReportFilters = Depends(get_report_filters),
    service: ReportsService = Depends(get_reports_service),
) -> ResponseEnvelope[List[PipelineBucket]]:
    data = service.get_pipeline(filters)
    return ResponseEnvelope(data=data, pagination=None, meta=_report_meta("deals", filters))


@router.get("/forecast")
def forecast(
    filters: ReportFilters = Depends(get_report_filters),
    service: ReportsService = Depends(get_reports_service),
) -> ResponseEnvelope[List[PipelineBucket]]:
    data = service.get_forecast(filters)
    return ResponseEnvelope(data=data, pagination=None, meta=_report_meta("deals", filters))


@router.get("/salespeople")
def salespeople(
    sort_by: RollupSortKey = Query(default="win_rate"),
    filters: ReportFilters = Depends(get_report_filters),
    service: ReportsService = Depends(get_reports_service),
) -> ResponseEnvelope[List[EntityRollupRow]]:
    data = service.get_salesperson_rollup(filters, sort_by=sort_by)
    return ResponseEnvelope(data=data, pagination=None, meta=_report_meta("deals", filters))


@router.get("/companies")
def companies(
    sort_by: RollupSortKey = Query(default="win_rate"),
    filters: ReportFilters = Depends(get_report_filters),
    service: ReportsService = Depends(get_reports_service),
) -> ResponseEnvelope[List[EntityRollupRow]]:
    data = service.get_company_rollup(filters, sort_by=sort_by)
    return ResponseEnvelope(data=data, pagination=None, meta=_report_meta("deals", filters))


@router.get("/deals")
def report_deals(
    stage: Optional[str] = Query(default=None),
    ascending: bool = Query(default=True),
    page: int = Query(default=1, ge=1),
    page_size: int = Query(default=50, ge=1, le=500),
    filters: ReportFilters = Depends(get_report_filters),
    service: ReportsService = Depends(get_reports_service),
) -> ResponseEnvelope[List[DealSummary]]:
    data, pagination = service.list_report_deals(
        filters,
        stage=stage,
        ascending=ascending,
        page=page,
        page_size=page_size,
    )
    return ResponseEnvelope(
        data=data,
        pagination=pagination,
        meta=_report_meta("deals", filters, collapsed=bool(stage)),
    )


@router.get("/year-over-year")
def year_over_year(
    year_a: int = Query(ge=2000, le=2100),
    year_b: int = Query(ge=2000, le=2100),
    service: ReportsService = Depends(get_reports_service),
) -> ResponseEnvelope[YearOverYearReport]:
    data = service.get_year_over_year(year_a, year_b)
    meta = build_meta(
        source="deals",
        time_window=f"{year_a}:{year_b}",
        collapsed=False,
        filtered=False,
        currency=None,
    )
    return ResponseEnvelope(data=data, pagination=None, meta=meta)


@router.get("/financial-years")
def financial_years(
    service: ReportsService = Depends(get_reports_service),
) -> ResponseEnvelope[List[FinancialYearRow]]:
    data = service.get_financial_year_summary()
    meta = build_meta(source="deals", collapsed=False, filtered=False)
    return ResponseEnvelope(data=data, pagination=None, meta=meta)


@router.get("/financial-years/available")
def financial_years_available(
    service: ReportsService = Depends(get_reports_service),
) -> ResponseEnvelope[List[int]]:
    data = service.get_available_financial_years()
    meta = build_meta(source="deals", collapsed=False, filtered=False, currency=None)
    return ResponseEnvelope(data=data, pagination=None, meta=meta)
