from __future__ import annotations

import logging
from datetime import date, datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any, Dict, List, Optional, Tuple

import httpx
from pydantic import ValidationError

from src.core.config import get_settings
from src.core.errors import PersistenceError
from src.core.supabase import SupabaseClient
from src.models.deals import (
    CompanyRecord,
    DealActionDraft,
    DealActionRecord,
    DealRecord,
    DealStage,
    StaffRecord,
)

logger = logging.getLogger(__name__)

DEAL_COLUMNS = (
    "id,ap_number,company_id,client_name,site_name,salesperson,salesperson_id,"
    "works_category,works_subcategory,stage,probability,tender_value,tender_cost,"
    "tender_margin,tender_margin_percent,enquiry_date,tender_return_date,"
    "estimated_start_date,notes,created_at,updated_at"
)
ACTION_COLUMNS = "id,deal_id,action_type,notes,file_url,created_at"


def _to_json_value(value: Any) -> Any:
    if isinstance(value, Enum):
        return value.value
    if isinstance(value, (date, datetime)):
        return value.isoformat()
    if isinstance(value, Decimal):
        # numeric columns accept strings; floats would drop precision.
        return str(value)
    return value


def serialise_patch(patch: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _to_json_value(value) for key, value in patch.items()}


def _stage_filter(stage: DealStage) -> Tuple[str, str]:
    # Legacy rows may carry a null stage, which reads as Received.
    if stage == DealStage.RECEIVED:
        return ("or", f"(stage.eq.{stage.value},stage.is.null)")
    return ("stage", f"eq.{stage.value}")


def _version_filter(updated_at: Optional[datetime]) -> Tuple[str, str]:
    if updated_at is None:
        return ("updated_at", "is.null")
    return ("updated_at", f"eq.{updated_at.isoformat()}")


class DealsRepository:
    def __init__(self) -> None:
        self.client = SupabaseClient()
        self.page_size = get_settings().deals_fetch_page_size

    def _select(self, table: str, **params: Any) -> List[Dict[str, Any]]:
        try:
            rows, _ = self.client.select(table=table, **params)
        except httpx.HTTPError as exc:
            logger.warning("Store read failed table=%s error=%s", table, exc)
            raise PersistenceError(f"Could not read {table}") from exc
        return rows

    def list_deals(
        self,
        stages: Optional[List[DealStage]] = None,
        company_id: Optional[str] = None,
    ) -> List[DealRecord]:
        filters: List[Tuple[str, str]] = []
        if stages:
            stage_list = ",".join(f'"{stage.value}"' for stage in stages)
            filters.append(("stage", f"in.({stage_list})"))
        if company_id:
            filters.append(("company_id", f"eq.{company_id}"))

        records: List[DealRecord] = []
        offset = 0
        while True:
            rows = self._select(
                "deals",
                select=DEAL_COLUMNS,
                filters=filters,
                limit=self.page_size,
                offset=offset,
                order="created_at.asc,id.asc",
            )
            for row in rows:
                try:
                    records.append(DealRecord.model_validate(row))
                except ValidationError as exc:
                    # Bad rows are logged and left out of reports.
                    logger.warning("Skipping unreadable deal id=%s error=%s", row.get("id"), exc)
            if len(rows) < self.page_size:
                return records
            offset += self.page_size

    def get_deal(self, deal_id: str) -> Optional[DealRecord]:
        rows = self._select(
            "deals",
            select=DEAL_COLUMNS,
            filters=[("id", f"eq.{deal_id}")],
            limit=1,
        )
        if not rows:
            return None
        return DealRecord.model_validate(rows[0])

    def list_deal_actions(self, deal_id: str) -> List[DealActionRecord]:
        rows = self._select(
            "deal_actions",
            select=ACTION_COLUMNS,
            filters=[("deal_id", f"eq.{deal_id}")],
            order="created_at.desc",
        )
        return [DealActionRecord.model_validate(row) for row in rows]

    def list_companies(self) -> List[CompanyRecord]:
        rows = self._select("companies", select="id,company_name")
        return [CompanyRecord.model_validate(row) for row in rows]

    def list_staff(self) -> List[StaffRecord]:
        rows = self._select("staff_profiles", select="id,full_name")
        return [StaffRecord.model_validate(row) for row in rows]

    def update_deal(
        self,
        deal_id: str,
        patch: Dict[str, Any],
        expected_stage: DealStage,
        expected_updated_at: Optional[datetime],
    ) -> DealRecord:
        """Apply a field patch only if the deal still matches the caller's snapshot.

        ``expected_updated_at`` is the snapshot's version; the patch bumps it so a
        second writer holding the same snapshot finds no row to update.
        """
        payload = serialise_patch(patch)
        payload["updated_at"] = datetime.now(timezone.utc).isoformat()
        try:
            rows = self.client.update(
                table="deals",
                payload=payload,
                filters=[
                    ("id", f"eq.{deal_id}"),
                    _stage_filter(expected_stage),
                    _version_filter(expected_updated_at),
                ],
            )
        except httpx.HTTPError as exc:
            logger.warning("Deal update failed deal_id=%s error=%s", deal_id, exc)
            raise PersistenceError("Could not update deal") from exc
        if not rows:
            raise PersistenceError("Deal changed since it was loaded; reload and try again")
        return DealRecord.model_validate(rows[0])

    def commit_stage_change(
        self,
        deal_id: str,
        expected_stage: DealStage,
        expected_updated_at: Optional[datetime],
        patch: Dict[str, Any],
        action: DealActionDraft,
    ) -> Tuple[DealRecord, DealActionRecord]:
        """Update the deal and append its audit entry in one database transaction."""
        try:
            result = self.client.rpc(
                "commit_deal_stage_change_v1",
                payload={
                    "p_deal_id": deal_id,
                    "p_expected_stage": expected_stage.value,
                    "p_expected_updated_at": _to_json_value(expected_updated_at),
                    "p_patch": serialise_patch(patch),
                    "p_action": action.model_dump(),
                },
            )
        except httpx.HTTPError as exc:
            logger.warning("Stage commit failed deal_id=%s error=%s", deal_id, exc)
            raise PersistenceError("Could not save stage change") from exc
        if not isinstance(result, dict) or not result.get("deal") or not result.get("action"):
            raise PersistenceError("Deal changed since it was loaded; reload and try again")
        return (
            DealRecord.model_validate(result["deal"]),
            DealActionRecord.model_validate(result["action"]),
        )
