from __future__ import annotations

import calendar
from collections import defaultdict
from datetime import date
from decimal import Decimal
from typing import Callable, Dict, Iterable, List, Literal, Optional, Sequence, Tuple

from src.analytics.collapsing import collapse_deals
from src.analytics.weighting import ZERO, expected_value, tender_value
from src.models.deals import (
    ACTIVE_STAGES,
    CompanyRecord,
    DealRecord,
    DealStage,
    ProbabilityBucket,
    StaffRecord,
)
from src.schemas.reports import (
    EntityRollupRow,
    FinancialYearRow,
    PipelineBucket,
    ReportFilters,
    RollupSortKey,
    StageGroup,
    StageKpiReport,
    StageStat,
    YearOverYearPoint,
    YearOverYearReport,
)
from src.shared.time import (
    financial_year_end,
    is_in_financial_year,
    month_key,
    month_label,
    month_start,
)

PipelineDateField = Literal["enquiry_date", "estimated_start_date"]

ACTIVE_GROUP_KEY = "Active"
UNASSIGNED_KEY = "unassigned"


def _month_index(value: date) -> int:
    return value.year * 12 + (value.month - 1)


def _matches_salesperson(deal: DealRecord, salesperson: str) -> bool:
    wanted = salesperson.strip().lower()
    if deal.salesperson_id and deal.salesperson_id.lower() == wanted:
        return True
    return (deal.salesperson or "").strip().lower() == wanted


def _matches(deal: DealRecord, filters: ReportFilters) -> bool:
    if filters.date_mode != "all":
        if deal.enquiry_date is None:
            return False
        if filters.date_mode == "month_range":
            index = _month_index(deal.enquiry_date)
            if filters.month_from and index < _month_index(filters.month_from):
                return False
            if filters.month_to and index > _month_index(filters.month_to):
                return False
        if filters.date_mode == "financial_year" and filters.financial_year is not None:
            if not is_in_financial_year(deal.enquiry_date, filters.financial_year):
                return False

    if filters.salesperson and not _matches_salesperson(deal, filters.salesperson):
        return False
    if filters.works_category and (deal.works_category or "").strip() != filters.works_category:
        return False
    if filters.works_subcategory and (
        (deal.works_subcategory or "").strip() != filters.works_subcategory
    ):
        return False
    if filters.probabilities and deal.probability not in filters.probabilities:
        return False
    return True


def apply_report_filters(deals: Iterable[DealRecord], filters: ReportFilters) -> List[DealRecord]:
    return [deal for deal in deals if _matches(deal, filters)]


def stage_group_kpis(deals: Iterable[DealRecord]) -> StageKpiReport:
    stats: Dict[DealStage, StageStat] = {stage: StageStat(stage=stage.value) for stage in DealStage}
    tenders = 0
    total = ZERO
    for deal in deals:
        value = tender_value(deal)
        stat = stats[deal.stage]
        stat.count += 1
        stat.total_value += value
        tenders += 1
        total += value

    active_children = [stats[stage] for stage in ACTIVE_STAGES]
    groups = [
        StageGroup(
            key=ACTIVE_GROUP_KEY,
            label=ACTIVE_GROUP_KEY,
            count=sum(child.count for child in active_children),
            total_value=sum((child.total_value for child in active_children), ZERO),
            children=active_children,
        )
    ]
    for stage in (DealStage.WON, DealStage.LOST, DealStage.NO_TENDER):
        groups.append(
            StageGroup(
                key=stage.value,
                label=stage.value,
                count=stats[stage].count,
                total_value=stats[stage].total_value,
            )
        )

    return StageKpiReport(
        tenders=tenders,
        total_value=total,
        quotes_submitted=stats[DealStage.QUOTE_SUBMITTED].count,
        won_value=stats[DealStage.WON].total_value,
        groups=groups,
    )


def monthly_pipeline(
    deals: Iterable[DealRecord],
    date_field: PipelineDateField = "enquiry_date",
    exclude_dead: bool = False,
) -> List[PipelineBucket]:
    """Bucket deal values by calendar month of ``date_field``.

    ``probability_values`` holds the unweighted value of still-open deals per
    probability bucket; ``expected_value`` is the weighted total.
    """
    buckets: Dict[date, PipelineBucket] = {}
    for deal in deals:
        bucket_date: Optional[date] = getattr(deal, date_field)
        if bucket_date is None:
            continue
        if exclude_dead and deal.stage in (DealStage.LOST, DealStage.NO_TENDER):
            continue

        period_start = month_start(bucket_date)
        bucket = buckets.get(period_start)
        if bucket is None:
            bucket = PipelineBucket(
                month_key=month_key(period_start),
                label=month_label(period_start),
                period_start=period_start,
                probability_values={probability.value: ZERO for probability in ProbabilityBucket},
            )
            buckets[period_start] = bucket

        value = tender_value(deal)
        bucket.deal_count += 1
        bucket.total_value += value
        bucket.expected_value += expected_value(deal)
        if deal.stage == DealStage.WON:
            bucket.won_value += value
        elif not deal.is_closed and deal.probability is not None:
            bucket.probability_values[deal.probability.value] += value

    return [buckets[period_start] for period_start in sorted(buckets)]


def _win_rate(won_value: Decimal, total_value: Decimal) -> Optional[Decimal]:
    if total_value == 0:
        return None
    return won_value / total_value


def _rollup(
    deals: Iterable[DealRecord],
    key_for: Callable[[DealRecord], Optional[Tuple[str, str]]],
    sort_by: RollupSortKey,
) -> List[EntityRollupRow]:
    rows: Dict[str, EntityRollupRow] = {}
    for deal in deals:
        identity = key_for(deal)
        if identity is None:
            continue
        key, label = identity
        row = rows.get(key)
        if row is None:
            row = EntityRollupRow(key=key, label=label)
            rows[key] = row
        value = tender_value(deal)
        row.deal_count += 1
        row.total_value += value
        row.expected_value += expected_value(deal)
        if deal.stage == DealStage.WON:
            row.won_count += 1
            row.won_value += value

    for row in rows.values():
        row.win_rate = _win_rate(row.won_value, row.total_value)
    return sort_rollup(rows.values(), sort_by)


def sort_rollup(rows: Iterable[EntityRollupRow], sort_by: RollupSortKey) -> List[EntityRollupRow]:
    if sort_by == "count":
        return sorted(rows, key=lambda row: (-row.deal_count, row.label))
    if sort_by == "expected_value":
        return sorted(rows, key=lambda row: (-row.expected_value, row.label))
    return sorted(
        rows,
        key=lambda row: (
            row.win_rate is None,
            -(row.win_rate or ZERO),
            -row.deal_count,
            row.label,
        ),
    )


def salesperson_rollup(
    deals: Iterable[DealRecord],
    staff: Sequence[StaffRecord] = (),
    sort_by: RollupSortKey = "win_rate",
) -> List[EntityRollupRow]:
    names = {member.id: member.full_name for member in staff}

    def key_for(deal: DealRecord) -> Tuple[str, str]:
        if deal.salesperson_id:
            return deal.salesperson_id, names.get(deal.salesperson_id, "Unknown")
        legacy = (deal.salesperson or "").strip()
        if legacy:
            return f"legacy:{legacy.lower()}", legacy
        return UNASSIGNED_KEY, "Unassigned"

    return _rollup(deals, key_for, sort_by)


def company_rollup(
    deals: Iterable[DealRecord],
    companies: Sequence[CompanyRecord] = (),
    sort_by: RollupSortKey = "win_rate",
) -> List[EntityRollupRow]:
    names = {company.id: company.company_name for company in companies}

    def key_for(deal: DealRecord) -> Optional[Tuple[str, str]]:
        if not deal.company_id:
            return None
        return deal.company_id, names.get(deal.company_id, "Unknown")

    return _rollup(deals, key_for, sort_by)


def year_over_year(deals: Iterable[DealRecord], year_a: int, year_b: int) -> YearOverYearReport:
    """Monthly enquiry counts for two years; callers pass the raw, uncollapsed set."""
    counts: Dict[Tuple[int, int], int] = defaultdict(int)
    for deal in deals:
        if deal.enquiry_date is None:
            continue
        counts[(deal.enquiry_date.year, deal.enquiry_date.month)] += 1

    points = [
        YearOverYearPoint(
            month=month,
            label=calendar.month_abbr[month],
            year_a_count=counts[(year_a, month)],
            year_b_count=counts[(year_b, month)],
        )
        for month in range(1, 13)
    ]
    return YearOverYearReport(
        year_a=year_a,
        year_b=year_b,
        year_a_total=sum(point.year_a_count for point in points),
        year_b_total=sum(point.year_b_count for point in points),
        points=points,
    )


def financial_year_summary(deals: Iterable[DealRecord]) -> List[FinancialYearRow]:
    rows: Dict[int, FinancialYearRow] = {}
    for deal in deals:
        if deal.enquiry_date is None:
            continue
        fy_end = financial_year_end(deal.enquiry_date)
        row = rows.get(fy_end)
        if row is None:
            row = FinancialYearRow(
                fy_end_year=fy_end,
                label=f"FY{fy_end}",
                stage_counts={stage.value: 0 for stage in DealStage},
            )
            rows[fy_end] = row

        value = tender_value(deal)
        row.tenders += 1
        row.total_value += value
        row.stage_counts[deal.stage.value] += 1
        if deal.stage == DealStage.QUOTE_SUBMITTED:
            row.quotes_submitted += 1
        if deal.stage == DealStage.WON:
            row.won_count += 1
            row.won_value += value

    return [rows[fy_end] for fy_end in sorted(rows)]


def available_financial_years(deals: Iterable[DealRecord]) -> List[int]:
    return sorted(
        {financial_year_end(deal.enquiry_date) for deal in deals if deal.enquiry_date is not None}
    )


def select_report_deals(
    deals: Sequence[DealRecord],
    stage_filter: Optional[str] = None,
    ascending: bool = True,
) -> List[DealRecord]:
    """Rows behind the KPI figures.

    Without a stage filter every filtered deal is listed; with one, the
    collapsed set is used so row counts agree with the stage groups.
    """
    if not stage_filter:
        selected = list(deals)
    elif stage_filter.strip().lower() == ACTIVE_GROUP_KEY.lower():
        selected = [deal for deal in collapse_deals(deals) if deal.stage in ACTIVE_STAGES]
    else:
        stage = DealStage.parse(stage_filter)
        selected = [deal for deal in collapse_deals(deals) if deal.stage == stage]

    with_ap = [deal for deal in selected if deal.ap_number is not None]
    without_ap = [deal for deal in selected if deal.ap_number is None]
    with_ap.sort(key=lambda deal: deal.ap_number, reverse=not ascending)
    return with_ap + without_ap
