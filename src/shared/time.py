from __future__ import annotations

from datetime import date, datetime

from src.core.errors import BadRequestError

# Financial years run December to November and carry the year they end in.
FINANCIAL_YEAR_START_MONTH = 12


def month_start(value: date) -> date:
    return date(value.year, value.month, 1)


def month_key(value: date) -> str:
    return f"{value.year}-{value.month:02d}"


def month_label(value: date) -> str:
    return f"{value.month:02d}/{value.year}"


def financial_year_end(value: date) -> int:
    if value.month >= FINANCIAL_YEAR_START_MONTH:
        return value.year + 1
    return value.year


def is_in_financial_year(value: date, fy_end_year: int) -> bool:
    return financial_year_end(value) == fy_end_year


def parse_month(value: str) -> date:
    """Parse a ``YYYY-MM`` month picker value into the first day of that month."""
    try:
        return datetime.strptime(value.strip(), "%Y-%m").date()
    except (AttributeError, ValueError) as exc:
        raise BadRequestError("Unsupported month format, expected YYYY-MM") from exc
