from __future__ import annotations

from decimal import Decimal

import pytest

from src.core.errors import (
    BadRequestError,
    GateValidationError,
    IllegalTransitionError,
    NotFoundError,
    PersistenceError,
)
from src.models.deals import DealStage, ProbabilityBucket
from src.schemas.deals import DealFieldUpdate, StageTransitionRequest, TenderSummaryRequest
from src.services.deals_service import DealsService
from src.workflow.stage_machine import request_transition


@pytest.fixture()
def build_service(make_repository):
    def _build(*deals) -> DealsService:
        return DealsService(repository=make_repository(list(deals)))

    return _build


def test_get_deal_raises_not_found(build_service) -> None:
    with pytest.raises(NotFoundError):
        build_service().get_deal("missing")


def test_get_deal_includes_forecast_fields(build_service, make_deal) -> None:
    service = build_service(
        make_deal(
            stage=DealStage.IN_REVIEW,
            probability=ProbabilityBucket.C,
            tender_value=Decimal("1000"),
        )
    )
    detail = service.get_deal("deal-1")
    assert detail.project_key == "AP-1001"
    assert detail.weight == Decimal("0.25")
    assert detail.expected_value == Decimal("250")
    assert detail.allowed_stages == [DealStage.QUOTE_SUBMITTED, DealStage.NO_TENDER]


def test_transition_commits_deal_and_audit_together(
    build_service, make_deal, gate_answers
) -> None:
    service = build_service(make_deal(stage=DealStage.RECEIVED))
    response = service.request_transition(
        "deal-1",
        StageTransitionRequest(target_stage="Qualified", answers=gate_answers[DealStage.QUALIFIED]),
    )
    repository = service.repository
    assert response.deal.stage == DealStage.QUALIFIED
    assert response.action.action_type == "Stage gate: Qualified"
    assert len(repository.commits) == 1
    _, expected_stage, patch, _ = repository.commits[0]
    assert expected_stage == DealStage.RECEIVED
    assert patch["stage"] == DealStage.QUALIFIED
    assert [action.deal_id for action in repository.actions] == ["deal-1"]


def test_quote_versions_count_stored_history(build_service, make_deal, gate_answers) -> None:
    service = build_service(make_deal(stage=DealStage.IN_REVIEW))
    quote = StageTransitionRequest(
        target_stage=DealStage.QUOTE_SUBMITTED, answers=gate_answers[DealStage.QUOTE_SUBMITTED]
    )
    first = service.request_transition("deal-1", quote)
    service.request_transition("deal-1", StageTransitionRequest(target_stage="In Review"))
    second = service.request_transition("deal-1", quote)

    assert first.action.action_type == "Stage gate: Quote Submitted (v1)"
    assert second.action.action_type == "Stage gate: Quote Submitted (v2)"
    labels = [action.action_type for action in service.repository.actions]
    assert labels[1] == "Re-quote started"


def test_persistence_failure_leaves_deal_and_audit_untouched(
    build_service, make_deal, won_ready_values
) -> None:
    deal = make_deal(stage=DealStage.QUOTE_SUBMITTED, **won_ready_values)
    service = build_service(deal)
    service.repository.fail_writes = True

    with pytest.raises(PersistenceError) as excinfo:
        service.request_transition("deal-1", StageTransitionRequest(target_stage="Won"))
    assert excinfo.value.details == {"retryable": True}
    assert service.repository.deals["deal-1"] == deal
    assert service.repository.actions == []


def test_rejected_transitions_write_nothing(build_service, make_deal) -> None:
    service = build_service(make_deal(stage=DealStage.QUOTE_SUBMITTED))
    with pytest.raises(IllegalTransitionError):
        service.request_transition("deal-1", StageTransitionRequest(target_stage="Lost"))
    assert service.repository.commits == []

    service = build_service(make_deal(stage=DealStage.IN_REVIEW))
    with pytest.raises(GateValidationError):
        service.request_transition(
            "deal-1", StageTransitionRequest(target_stage="Quote Submitted", answers={})
        )
    assert service.repository.commits == []


def test_save_tender_summary_derives_margin(build_service, make_deal) -> None:
    service = build_service(make_deal(stage=DealStage.QUOTE_SUBMITTED))
    detail = service.save_tender_summary(
        "deal-1", TenderSummaryRequest(tender_value="2,000", tender_cost=Decimal("1500"))
    )
    assert detail.tender_margin == Decimal("500")
    assert detail.tender_margin_percent == Decimal("25")
    _, patch, expected_stage = service.repository.updates[0]
    assert expected_stage == DealStage.QUOTE_SUBMITTED
    assert patch["tender_value"] == Decimal("2000")


def test_save_tender_summary_rejects_zero_value(build_service, make_deal) -> None:
    service = build_service(make_deal())
    with pytest.raises(BadRequestError):
        service.save_tender_summary(
            "deal-1", TenderSummaryRequest(tender_value="0", tender_cost="10")
        )
    assert service.repository.updates == []


def test_update_fields_patches_only_sent_fields(build_service, make_deal) -> None:
    service = build_service(make_deal(stage=DealStage.QUALIFIED, notes="old"))
    detail = service.update_fields("deal-1", DealFieldUpdate(probability="A"))
    assert detail.probability == ProbabilityBucket.A
    assert detail.notes == "old"
    assert service.repository.updates[0][1] == {"probability": ProbabilityBucket.A}


def test_update_fields_rejects_probability_on_closed_deal(build_service, make_deal) -> None:
    service = build_service(make_deal(stage=DealStage.LOST))
    with pytest.raises(BadRequestError):
        service.update_fields("deal-1", DealFieldUpdate(probability="B"))


def test_update_fields_requires_a_change(build_service, make_deal) -> None:
    service = build_service(make_deal())
    with pytest.raises(BadRequestError):
        service.update_fields("deal-1", DealFieldUpdate())


def test_stale_quote_commit_after_requote_is_rejected(
    build_service, make_deal, gate_answers
) -> None:
    service = build_service(make_deal(stage=DealStage.IN_REVIEW))
    repository = service.repository
    snapshot = repository.get_deal("deal-1")
    stale = request_transition(
        snapshot, DealStage.QUOTE_SUBMITTED, answers=gate_answers[DealStage.QUOTE_SUBMITTED]
    )
    quote = StageTransitionRequest(
        target_stage=DealStage.QUOTE_SUBMITTED, answers=gate_answers[DealStage.QUOTE_SUBMITTED]
    )
    service.request_transition("deal-1", quote)
    service.request_transition("deal-1", StageTransitionRequest(target_stage="In Review"))
    assert repository.get_deal("deal-1").stage == DealStage.IN_REVIEW

    with pytest.raises(PersistenceError):
        repository.commit_stage_change(
            "deal-1",
            expected_stage=stale.from_stage,
            expected_updated_at=snapshot.updated_at,
            patch=stale.patch,
            action=stale.action,
        )
    labels = [action.action_type for action in repository.actions]
    assert labels == ["Stage gate: Quote Submitted (v1)", "Re-quote started"]
    assert repository.get_deal("deal-1").stage == DealStage.IN_REVIEW


def test_field_edit_from_stale_snapshot_is_rejected(build_service, make_deal) -> None:
    service = build_service(make_deal(stage=DealStage.QUALIFIED))
    repository = service.repository
    snapshot = repository.get_deal("deal-1")
    service.update_fields("deal-1", DealFieldUpdate(notes="first"))

    with pytest.raises(PersistenceError):
        repository.update_deal(
            "deal-1",
            {"notes": "second"},
            expected_stage=snapshot.stage,
            expected_updated_at=snapshot.updated_at,
        )
    assert repository.get_deal("deal-1").notes == "first"
