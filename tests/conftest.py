from __future__ import annotations

import os
from datetime import date, datetime, timedelta, timezone
from decimal import Decimal
from typing import Any, Callable, Dict, List, Optional, Tuple

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("SUPABASE_URL", "http://localhost:54321")
os.environ.setdefault("SUPABASE_SERVICE_ROLE_KEY", "test-service-role-key")

from src.api.dependencies import get_deals_service, get_reports_service  # noqa: E402
from src.core.errors import PersistenceError  # noqa: E402
from src.models.deals import (  # noqa: E402
    CompanyRecord,
    DealActionDraft,
    DealActionRecord,
    DealRecord,
    DealStage,
    StaffRecord,
)
from src.main import create_app  # noqa: E402
from src.services.deals_service import DealsService  # noqa: E402
from src.services.reports_service import ReportsService  # noqa: E402


BASE_TIMESTAMP = datetime(2025, 3, 10, 9, 0, tzinfo=timezone.utc)


def build_deal(**overrides: Any) -> DealRecord:
    values: Dict[str, Any] = {
        "id": "deal-1",
        "ap_number": 1001,
        "company_id": "company-1",
        "stage": DealStage.RECEIVED,
        "enquiry_date": date(2025, 3, 10),
        "created_at": BASE_TIMESTAMP,
        "updated_at": BASE_TIMESTAMP,
    }
    values.update(overrides)
    return DealRecord(**values)


def _next_version(deal: DealRecord) -> datetime:
    return (deal.updated_at or deal.created_at or BASE_TIMESTAMP) + timedelta(seconds=1)


class StubDealsRepository:
    def __init__(self, deals: Optional[List[DealRecord]] = None) -> None:
        self.deals: Dict[str, DealRecord] = {deal.id: deal for deal in deals or []}
        self.actions: List[DealActionRecord] = []
        self.companies: List[CompanyRecord] = []
        self.staff: List[StaffRecord] = []
        self.fail_writes = False
        self.commits: List[Tuple[str, DealStage, Dict[str, Any], DealActionDraft]] = []
        self.updates: List[Tuple[str, Dict[str, Any], DealStage]] = []

    def list_deals(self, stages: Any = None, company_id: Optional[str] = None) -> List[DealRecord]:
        _ = stages, company_id
        return list(self.deals.values())

    def get_deal(self, deal_id: str) -> Optional[DealRecord]:
        return self.deals.get(deal_id)

    def list_deal_actions(self, deal_id: str) -> List[DealActionRecord]:
        return [action for action in reversed(self.actions) if action.deal_id == deal_id]

    def list_companies(self) -> List[CompanyRecord]:
        return self.companies

    def list_staff(self) -> List[StaffRecord]:
        return self.staff

    def _check(
        self, deal_id: str, expected_stage: DealStage, expected_updated_at: Optional[datetime]
    ) -> DealRecord:
        if self.fail_writes:
            raise PersistenceError("Could not save stage change")
        current = self.deals[deal_id]
        if current.stage != expected_stage or current.updated_at != expected_updated_at:
            raise PersistenceError("Deal changed since it was loaded; reload and try again")
        return current

    def update_deal(
        self,
        deal_id: str,
        patch: Dict[str, Any],
        expected_stage: DealStage,
        expected_updated_at: Optional[datetime],
    ) -> DealRecord:
        current = self._check(deal_id, expected_stage, expected_updated_at)
        self.updates.append((deal_id, patch, expected_stage))
        saved = current.model_copy(update={**patch, "updated_at": _next_version(current)})
        self.deals[deal_id] = saved
        return saved

    def commit_stage_change(
        self,
        deal_id: str,
        expected_stage: DealStage,
        expected_updated_at: Optional[datetime],
        patch: Dict[str, Any],
        action: DealActionDraft,
    ) -> Tuple[DealRecord, DealActionRecord]:
        current = self._check(deal_id, expected_stage, expected_updated_at)
        self.commits.append((deal_id, expected_stage, patch, action))
        saved = current.model_copy(update={**patch, "updated_at": _next_version(current)})
        record = DealActionRecord(
            id=f"action-{len(self.actions) + 1}",
            deal_id=deal_id,
            created_at=datetime.now(timezone.utc),
            **action.model_dump(),
        )
        self.deals[deal_id] = saved
        self.actions.append(record)
        return saved, record


@pytest.fixture()
def make_deal() -> Callable[..., DealRecord]:
    return build_deal


@pytest.fixture()
def make_repository() -> Callable[..., StubDealsRepository]:
    return StubDealsRepository


@pytest.fixture()
def repository() -> StubDealsRepository:
    return StubDealsRepository()


QUALIFIED_ANSWERS = {
    "scope_works": "Groundworks",
    "est_start_month": "2025-09",
    "qualified_tender_return_date": "2025-05-30",
    "scheme_size": "Single Plot",
}

IN_REVIEW_ANSWERS = {
    "arch_housetype": "yes",
    "arch_siteplans": "yes",
    "civils_levels": "yes",
    "civils_drainage": "yes",
    "si_depth": "2.5",
    "drawings_in_sharepoint": "yes",
}

QUOTE_ANSWERS = {
    "quote_reference": "Q-1001",
    "quote_date": "2025-06-12",
    "quote_submission_link": "https://files.example.com/q-1001.pdf",
    "quote_drawings_link": "https://files.example.com/q-1001-drawings",
    "tender_value": "£12,500",
    "tender_cost": "10000",
    "tender_margin": "9999",
    "tender_margin_percent": "99",
    "key_material_rates": "yes",
    "overall_duration": "12 weeks",
    "phases_priced": "Phase 1",
}


@pytest.fixture()
def gate_answers() -> Dict[DealStage, Dict[str, str]]:
    return {
        DealStage.QUALIFIED: dict(QUALIFIED_ANSWERS),
        DealStage.IN_REVIEW: dict(IN_REVIEW_ANSWERS),
        DealStage.QUOTE_SUBMITTED: dict(QUOTE_ANSWERS),
    }


@pytest.fixture()
def won_ready_values() -> Dict[str, Decimal]:
    return {
        "tender_value": Decimal("1000"),
        "tender_cost": Decimal("800"),
        "tender_margin": Decimal("200"),
        "tender_margin_percent": Decimal("20"),
    }


@pytest.fixture()
def api_repository() -> StubDealsRepository:
    repository = StubDealsRepository(
        [
            build_deal(
                id="deal-1",
                ap_number=1001,
                stage=DealStage.IN_REVIEW,
                probability="B",
                tender_value=Decimal("4000"),
                salesperson_id="staff-1",
            ),
            build_deal(
                id="deal-2",
                ap_number=1002,
                stage=DealStage.QUOTE_SUBMITTED,
                probability="A",
                tender_value=Decimal("1000"),
                tender_cost=Decimal("800"),
                tender_margin=Decimal("200"),
                tender_margin_percent=Decimal("20"),
                estimated_start_date=date(2025, 8, 1),
            ),
            build_deal(id="deal-3", ap_number=None, stage=DealStage.NO_TENDER),
        ]
    )
    repository.staff = [StaffRecord(id="staff-1", full_name="Alex Kay")]
    repository.companies = [CompanyRecord(id="company-1", company_name="Acme Homes")]
    return repository


@pytest.fixture()
def client(api_repository: StubDealsRepository) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_deals_service] = lambda: DealsService(repository=api_repository)
    app.dependency_overrides[get_reports_service] = lambda: ReportsService(
        repository=api_repository
    )
    return TestClient(app)
