from __future__ import annotations

from decimal import Decimal, InvalidOperation
from typing import Any, Optional

from pydantic import BaseModel

HUNDRED = Decimal("100")


class TenderFinancials(BaseModel):
    tender_value: Decimal
    tender_cost: Decimal
    tender_margin: Decimal
    tender_margin_percent: Optional[Decimal] = None


def derive_financials(value: Decimal, cost: Decimal) -> TenderFinancials:
    """Margin is value less cost; the percentage is left unset when value is zero."""
    margin = value - cost
    margin_percent = margin / value * HUNDRED if value != 0 else None
    return TenderFinancials(
        tender_value=value,
        tender_cost=cost,
        tender_margin=margin,
        tender_margin_percent=margin_percent,
    )


def parse_amount(raw: Any) -> Optional[Decimal]:
    if raw is None:
        return None
    if isinstance(raw, Decimal):
        amount = raw
    else:
        text = str(raw).strip().replace(",", "").lstrip("£")
        if not text:
            return None
        try:
            amount = Decimal(text)
        except InvalidOperation:
            return None
    if not amount.is_finite():
        return None
    return amount
