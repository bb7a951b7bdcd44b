from __future__ import annotations

from decimal import Decimal
from typing import Dict, Optional

from src.models.deals import DealRecord, DealStage, ProbabilityBucket

ZERO = Decimal("0")
ONE = Decimal("1")

PROBABILITY_WEIGHTS: Dict[ProbabilityBucket, Decimal] = {
    ProbabilityBucket.A: Decimal("0.75"),
    ProbabilityBucket.B: Decimal("0.5"),
    ProbabilityBucket.C: Decimal("0.25"),
    ProbabilityBucket.D: Decimal("0.1"),
}


def probability_weight(probability: Optional[ProbabilityBucket]) -> Decimal:
    if probability is None:
        return ZERO
    return PROBABILITY_WEIGHTS.get(probability, ZERO)


def weight(deal: DealRecord) -> Decimal:
    """Forecast weight in [0, 1]: won deals count fully, dead deals not at all."""
    if deal.stage == DealStage.WON:
        return ONE
    if deal.stage in (DealStage.LOST, DealStage.NO_TENDER):
        return ZERO
    return probability_weight(deal.probability)


def tender_value(deal: DealRecord) -> Decimal:
    return deal.tender_value if deal.tender_value is not None else ZERO


def expected_value(deal: DealRecord) -> Decimal:
    return tender_value(deal) * weight(deal)
