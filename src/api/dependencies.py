from __future__ import annotations

from functools import lru_cache

from src.core.config import get_settings
from src.repositories.deals_repository import DealsRepository
from src.services.deals_service import DealsService
from src.services.reports_service import ReportsService
from src.workflow.stage_machine import StagePolicy


@lru_cache
def get_deals_repository() -> DealsRepository:
    return DealsRepository()


@lru_cache
def get_stage_policy() -> StagePolicy:
    settings = get_settings()
    return StagePolicy(
        lock_received=settings.stage_lock_received,
        lock_no_tender=settings.stage_lock_no_tender,
    )


def get_deals_service() -> DealsService:
    return DealsService(repository=get_deals_repository(), policy=get_stage_policy())


def get_reports_service() -> ReportsService:
    return ReportsService(repository=get_deals_repository())
