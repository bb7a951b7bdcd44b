"""Reduce multiple tender submissions for the same project to one deal.

A project (AP number) can carry several deals, one per tender submission.
Reports count a project once, using its most advanced submission.
"""

from __future__ import annotations

from datetime import date, datetime
from typing import Dict, Iterable, List, Tuple

from src.analytics.weighting import tender_value, weight
from src.models.deals import DealRecord, DealStage

STAGE_RANK: Dict[DealStage, int] = {
    DealStage.LOST: 0,
    DealStage.NO_TENDER: 0,
    DealStage.RECEIVED: 1,
    DealStage.QUALIFIED: 2,
    DealStage.IN_REVIEW: 3,
    DealStage.QUOTE_SUBMITTED: 4,
    DealStage.WON: 5,
}

_NO_DATE = date.min
_NO_TIMESTAMP = datetime.max


def project_key(deal: DealRecord) -> str:
    if deal.ap_number is not None:
        return f"AP-{deal.ap_number}"
    return f"ID-{deal.id}"


def stage_rank(deal: DealRecord) -> int:
    return STAGE_RANK.get(deal.stage, 0)


def _created_sort_value(deal: DealRecord) -> datetime:
    if deal.created_at is None:
        return _NO_TIMESTAMP
    # Naive and aware timestamps cannot be compared; rank on wall-clock UTC.
    if deal.created_at.tzinfo is not None:
        return deal.created_at.replace(tzinfo=None) - deal.created_at.utcoffset()
    return deal.created_at


def _preference(deal: DealRecord) -> Tuple:
    return (
        stage_rank(deal),
        weight(deal),
        tender_value(deal),
        deal.enquiry_date or _NO_DATE,
    )


def choose_better(a: DealRecord, b: DealRecord) -> DealRecord:
    preference_a = _preference(a)
    preference_b = _preference(b)
    if preference_a != preference_b:
        return a if preference_a > preference_b else b
    # Full tie: keep the submission entered first so the pick does not depend on input order.
    tie_a = (_created_sort_value(a), a.id)
    tie_b = (_created_sort_value(b), b.id)
    return a if tie_a <= tie_b else b


def collapse_deals(deals: Iterable[DealRecord]) -> List[DealRecord]:
    best_by_project: Dict[str, DealRecord] = {}
    for deal in deals:
        key = project_key(deal)
        existing = best_by_project.get(key)
        best_by_project[key] = deal if existing is None else choose_better(existing, deal)
    return list(best_by_project.values())
