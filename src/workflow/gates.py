"""Typed answer records for the three gated stage transitions.

Each gate turns the caller's loose ``question -> answer`` mapping into a
record with a known shape. ``missing_fields`` and ``invalid_fields`` are total
over that shape, so completeness never depends on which keys were sent.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from datetime import date, datetime
from decimal import Decimal
from typing import Any, ClassVar, Dict, List, Mapping, Optional, Sequence, Type

from pydantic import BaseModel, ConfigDict, field_validator

from src.analytics.financials import TenderFinancials, derive_financials, parse_amount
from src.models.deals import DealActionDraft, DealActionRecord, DealStage

QUALIFIED_GATE_LABEL = "Stage gate: Qualified"
IN_REVIEW_GATE_LABEL = "Stage gate: In Review"
QUOTE_GATE_LABEL_PREFIX = "Stage gate: Quote Submitted"

MULTIPLE_PLOTS = "Multiple Plots"
INDIVIDUAL_PLOTS = "Individual Plots"
YES_NO = ("yes", "no")


def _parse_month(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return datetime.strptime(value, "%Y-%m").date()
    except ValueError:
        return None


def _parse_date(value: Optional[str]) -> Optional[date]:
    if not value:
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def _money(value: Decimal) -> str:
    return f"{value:.2f}"


def count_quote_submissions(prior_actions: Sequence[DealActionRecord]) -> int:
    return sum(
        1
        for action in prior_actions
        if (action.action_type or "").startswith(QUOTE_GATE_LABEL_PREFIX)
    )


class GateAnswers(BaseModel, ABC):
    model_config = ConfigDict(extra="ignore")

    stage: ClassVar[DealStage]
    required: ClassVar[tuple[str, ...]] = ()

    @field_validator("*", mode="before")
    @classmethod
    def _blank_to_none(cls, value: Any) -> Optional[str]:
        if value is None:
            return None
        text = str(value).strip()
        return text or None

    @classmethod
    def from_answers(cls, answers: Mapping[str, Any]) -> "GateAnswers":
        known = {key: answers[key] for key in cls.model_fields if key in answers}
        return cls(**known)

    def missing_fields(self) -> List[str]:
        return [key for key in self.required if getattr(self, key) is None]

    def invalid_fields(self) -> List[str]:
        return []

    def deal_patch(self) -> Dict[str, Any]:
        return {}

    @abstractmethod
    def audit_action(
        self, from_stage: DealStage, prior_actions: Sequence[DealActionRecord]
    ) -> DealActionDraft:
        ...


class QualifiedGateAnswers(GateAnswers):
    stage: ClassVar[DealStage] = DealStage.QUALIFIED
    required: ClassVar[tuple[str, ...]] = (
        "scope_works",
        "est_start_month",
        "qualified_tender_return_date",
        "scheme_size",
    )

    scope_works: Optional[str] = None
    est_start_month: Optional[str] = None
    qualified_tender_return_date: Optional[str] = None
    scheme_size: Optional[str] = None
    multi_basis: Optional[str] = None
    multi_plot_numbers: Optional[str] = None
    multi_extra_over_offered: Optional[str] = None
    multi_extra_over_client_agreed: Optional[str] = None

    @property
    def is_multiple_plots(self) -> bool:
        return self.scheme_size == MULTIPLE_PLOTS

    @property
    def prices_individual_plots(self) -> bool:
        return self.multi_basis == INDIVIDUAL_PLOTS

    def missing_fields(self) -> List[str]:
        missing = super().missing_fields()
        if self.is_multiple_plots:
            if self.multi_basis is None:
                missing.append("multi_basis")
            if self.prices_individual_plots and self.multi_plot_numbers is None:
                missing.append("multi_plot_numbers")
            if self.multi_extra_over_offered is None:
                missing.append("multi_extra_over_offered")
            if self.multi_extra_over_client_agreed is None:
                missing.append("multi_extra_over_client_agreed")
        return missing

    def invalid_fields(self) -> List[str]:
        invalid: List[str] = []
        if self.est_start_month is not None and _parse_month(self.est_start_month) is None:
            invalid.append("est_start_month")
        if (
            self.qualified_tender_return_date is not None
            and _parse_date(self.qualified_tender_return_date) is None
        ):
            invalid.append("qualified_tender_return_date")
        return invalid

    def deal_patch(self) -> Dict[str, Any]:
        return {
            "tender_return_date": _parse_date(self.qualified_tender_return_date),
            "estimated_start_date": _parse_month(self.est_start_month),
        }

    def audit_action(
        self, from_stage: DealStage, prior_actions: Sequence[DealActionRecord]
    ) -> DealActionDraft:
        lines = [
            f"Stage gate: {from_stage.value} → {self.stage.value}",
            "",
            f"General scope of works: {self.scope_works}",
            f"Estimated start (month/year): {self.est_start_month}",
            f"Tender return date (at qualification): {self.qualified_tender_return_date}",
            f"Scheme size: {self.scheme_size}",
        ]
        if self.is_multiple_plots:
            lines.append(f"Pricing basis: {self.multi_basis}")
            if self.prices_individual_plots:
                lines.append(f"Plots requiring pricing: {self.multi_plot_numbers}")
            lines.append(f"Extra-over for whole site allowed: {self.multi_extra_over_offered}")
            lines.append(f"Client agreed to extra-over: {self.multi_extra_over_client_agreed}")
        return DealActionDraft(action_type=QUALIFIED_GATE_LABEL, notes="\n".join(lines))


class InReviewGateAnswers(GateAnswers):
    stage: ClassVar[DealStage] = DealStage.IN_REVIEW
    required: ClassVar[tuple[str, ...]] = (
        "arch_housetype",
        "arch_siteplans",
        "civils_levels",
        "civils_drainage",
        "si_depth",
        "drawings_in_sharepoint",
    )
    drawing_fields: ClassVar[tuple[str, ...]] = (
        "arch_housetype",
        "arch_siteplans",
        "civils_levels",
        "civils_drainage",
    )

    arch_housetype: Optional[str] = None
    arch_siteplans: Optional[str] = None
    civils_levels: Optional[str] = None
    civils_drainage: Optional[str] = None
    si_depth: Optional[str] = None
    drawings_in_sharepoint: Optional[str] = None
    sharepoint_link: Optional[str] = None

    def missing_fields(self) -> List[str]:
        # Every drawing must be confirmed as received.
        return [
            key
            for key in self.required
            if getattr(self, key) is None
            or (key in self.drawing_fields and getattr(self, key).lower() != "yes")
        ]

    def invalid_fields(self) -> List[str]:
        answer = self.drawings_in_sharepoint
        if answer is not None and answer.lower() not in YES_NO:
            return ["drawings_in_sharepoint"]
        return []

    def audit_action(
        self, from_stage: DealStage, prior_actions: Sequence[DealActionRecord]
    ) -> DealActionDraft:
        lines = [
            f"Stage gate: {from_stage.value} → {self.stage.value}",
            "",
            "Drawings received:",
            "Architect – Housetypes: Received",
            "Architect – Site plans: Received",
            "Civils – External level layouts: Received",
            "Civils – Drainage layouts: Received",
            "",
            f"Site investigation depth contained in tender info (m): {self.si_depth}",
            "",
            "All drawings placed in SharePoint & labelled as date received: "
            f"{self.drawings_in_sharepoint}",
        ]
        if self.sharepoint_link:
            lines.append(f"SharePoint location: {self.sharepoint_link}")
        return DealActionDraft(
            action_type=IN_REVIEW_GATE_LABEL,
            notes="\n".join(lines),
            file_url=self.sharepoint_link,
        )


class QuoteSubmittedGateAnswers(GateAnswers):
    stage: ClassVar[DealStage] = DealStage.QUOTE_SUBMITTED
    required: ClassVar[tuple[str, ...]] = (
        "quote_reference",
        "quote_date",
        "quote_submission_link",
        "quote_drawings_link",
        "tender_value",
        "tender_cost",
        "tender_margin",
        "tender_margin_percent",
        "key_material_rates",
        "overall_duration",
        "phases_priced",
    )

    quote_reference: Optional[str] = None
    quote_date: Optional[str] = None
    quote_submission_link: Optional[str] = None
    quote_drawings_link: Optional[str] = None
    tender_value: Optional[str] = None
    tender_cost: Optional[str] = None
    # Typed margins only prove the form was filled in; the stored figures are recomputed.
    tender_margin: Optional[str] = None
    tender_margin_percent: Optional[str] = None
    key_material_rates: Optional[str] = None
    overall_duration: Optional[str] = None
    phases_priced: Optional[str] = None

    def invalid_fields(self) -> List[str]:
        invalid: List[str] = []
        if self.tender_value is not None:
            value = parse_amount(self.tender_value)
            if value is None or value == 0:
                invalid.append("tender_value")
        if self.tender_cost is not None and parse_amount(self.tender_cost) is None:
            invalid.append("tender_cost")
        return invalid

    def financials(self) -> TenderFinancials:
        value = parse_amount(self.tender_value)
        cost = parse_amount(self.tender_cost)
        if value is None or cost is None or value == 0:
            raise ValueError("Tender value and cost must be numeric and value non-zero")
        return derive_financials(value, cost)

    def deal_patch(self) -> Dict[str, Any]:
        return self.financials().model_dump()

    def audit_action(
        self, from_stage: DealStage, prior_actions: Sequence[DealActionRecord]
    ) -> DealActionDraft:
        version = count_quote_submissions(prior_actions) + 1
        figures = self.financials()
        margin_percent = figures.tender_margin_percent or Decimal("0")
        lines = [
            f"Stage Gate: {from_stage.value} → {self.stage.value} (v{version})",
            "",
            f"Quote Reference: {self.quote_reference}",
            f"Date of Quote: {self.quote_date}",
            f"Quotation Submission Link: {self.quote_submission_link}",
            f"Quotation Drawings Link: {self.quote_drawings_link}",
            "",
            f"Tender Value £: {_money(figures.tender_value)}",
            f"Tender Cost £: {_money(figures.tender_cost)}",
            f"Tender Margin £: {_money(figures.tender_margin)}",
            f"Tender Margin %: {margin_percent:.1f}%",
            "",
            f"Procurement key material rates received: {self.key_material_rates}",
            "",
            f"Overall Duration of Works: {self.overall_duration}",
            f"Phases Priced: {self.phases_priced}",
        ]
        return DealActionDraft(
            action_type=f"{QUOTE_GATE_LABEL_PREFIX} (v{version})",
            notes="\n".join(lines),
            file_url=self.quote_submission_link,
        )


GATES: Dict[DealStage, Type[GateAnswers]] = {
    DealStage.QUALIFIED: QualifiedGateAnswers,
    DealStage.IN_REVIEW: InReviewGateAnswers,
    DealStage.QUOTE_SUBMITTED: QuoteSubmittedGateAnswers,
}
