"""Stage-gate state machine for tender deals.

Deals move forward one stage at a time:

    Received -> Qualified -> In Review -> Quote Submitted -> Won | Lost

Any stage except No Tender may drop to No Tender, and a submitted quote may
go back to In Review for a re-quote. Entering Qualified, In Review or Quote
Submitted from the stage before it requires the matching gate answers.
``request_transition`` is pure: it returns the new deal version together with
the store patch and the audit entry, and the caller commits both in one write.
"""

from __future__ import annotations

from typing import Any, Dict, FrozenSet, Mapping, Optional, Sequence

from pydantic import BaseModel, ConfigDict

from src.core.errors import GateValidationError, IllegalTransitionError
from src.models.deals import (
    CLOSED_STAGES,
    DealActionDraft,
    DealActionRecord,
    DealRecord,
    DealStage,
)
from src.workflow.gates import GATES

STAGE_CHANGED_LABEL = "Stage changed"
REQUOTE_LABEL = "Re-quote started"

TRANSITIONS: Dict[DealStage, FrozenSet[DealStage]] = {
    DealStage.RECEIVED: frozenset({DealStage.QUALIFIED, DealStage.NO_TENDER}),
    DealStage.QUALIFIED: frozenset({DealStage.IN_REVIEW, DealStage.NO_TENDER}),
    DealStage.IN_REVIEW: frozenset({DealStage.QUOTE_SUBMITTED, DealStage.NO_TENDER}),
    DealStage.QUOTE_SUBMITTED: frozenset(
        {DealStage.WON, DealStage.LOST, DealStage.IN_REVIEW, DealStage.NO_TENDER}
    ),
    DealStage.WON: frozenset({DealStage.NO_TENDER}),
    DealStage.LOST: frozenset({DealStage.NO_TENDER}),
    DealStage.NO_TENDER: frozenset(),
}

UNGATED_MOVES = frozenset({(DealStage.QUOTE_SUBMITTED, DealStage.IN_REVIEW)})
FINANCIALS_REQUIRED = frozenset({DealStage.WON, DealStage.LOST})


class StagePolicy(BaseModel):
    """Whether the Received and No Tender locks are enforced.

    Both locks are on by default. ``lock_received=False`` lets the active
    stages after Received step back to it; ``lock_no_tender=False`` lets a
    No Tender deal reopen through the qualification gate.
    """

    model_config = ConfigDict(frozen=True)

    lock_received: bool = True
    lock_no_tender: bool = True


DEFAULT_POLICY = StagePolicy()


class StageTransition(BaseModel):
    from_stage: DealStage
    to_stage: DealStage
    gated: bool
    deal: DealRecord
    patch: Dict[str, Any]
    action: DealActionDraft


def allowed_targets(stage: DealStage, policy: StagePolicy = DEFAULT_POLICY) -> FrozenSet[DealStage]:
    targets = set(TRANSITIONS[stage])
    if not policy.lock_received and stage in (
        DealStage.QUALIFIED,
        DealStage.IN_REVIEW,
        DealStage.QUOTE_SUBMITTED,
    ):
        targets.add(DealStage.RECEIVED)
    if not policy.lock_no_tender and stage == DealStage.NO_TENDER:
        targets.add(DealStage.QUALIFIED)
    return frozenset(targets)


def requires_gate(from_stage: DealStage, to_stage: DealStage) -> bool:
    return to_stage in GATES and (from_stage, to_stage) not in UNGATED_MOVES


def _rejection_message(from_stage: DealStage, to_stage: DealStage) -> str:
    if from_stage == to_stage:
        return f"Deal is already in '{to_stage.value}'"
    if from_stage == DealStage.NO_TENDER:
        return "This deal has been marked 'No Tender' and cannot move to another stage"
    if to_stage == DealStage.RECEIVED:
        return "Moving back to 'Received' is disabled; record changes as notes or actions instead"
    return f"Cannot move a deal from '{from_stage.value}' to '{to_stage.value}'"


def ensure_transition_allowed(
    deal: DealRecord, target: DealStage, policy: StagePolicy = DEFAULT_POLICY
) -> None:
    if target == deal.stage or target not in allowed_targets(deal.stage, policy):
        raise IllegalTransitionError(
            deal.stage.value, target.value, message=_rejection_message(deal.stage, target)
        )
    if target in FINANCIALS_REQUIRED:
        missing = deal.missing_financials()
        if missing:
            raise IllegalTransitionError(
                deal.stage.value,
                target.value,
                message="Tender summary must be completed before marking this deal as Won or Lost",
                missing=missing,
            )


def _ungated_action(from_stage: DealStage, to_stage: DealStage) -> DealActionDraft:
    note = f"Stage changed from {from_stage.value} to {to_stage.value}"
    if (from_stage, to_stage) in UNGATED_MOVES:
        return DealActionDraft(
            action_type=REQUOTE_LABEL,
            notes=f"{note} to prepare a revised quotation.",
        )
    return DealActionDraft(action_type=STAGE_CHANGED_LABEL, notes=note)


def request_transition(
    deal: DealRecord,
    target: DealStage,
    answers: Optional[Mapping[str, Any]] = None,
    prior_actions: Sequence[DealActionRecord] = (),
    policy: StagePolicy = DEFAULT_POLICY,
) -> StageTransition:
    """Validate a stage move and build its commit.

    Raises ``IllegalTransitionError`` when the state machine forbids the move
    and ``GateValidationError`` when gate answers are missing or malformed.
    ``prior_actions`` is the deal's audit history, used to number quote
    submissions.
    """
    target = DealStage.parse(target)
    ensure_transition_allowed(deal, target, policy)

    gated = requires_gate(deal.stage, target)
    patch: Dict[str, Any] = {}
    if gated:
        gate = GATES[target].from_answers(answers or {})
        missing = gate.missing_fields()
        invalid = gate.invalid_fields()
        if missing or invalid:
            raise GateValidationError(target.value, missing=missing, invalid=invalid)
        patch.update(gate.deal_patch())
        action = gate.audit_action(deal.stage, prior_actions)
    else:
        action = _ungated_action(deal.stage, target)

    patch["stage"] = target
    if target in CLOSED_STAGES:
        patch["probability"] = None

    return StageTransition(
        from_stage=deal.stage,
        to_stage=target,
        gated=gated,
        deal=deal.model_copy(update=patch),
        patch=patch,
        action=action,
    )
