"""Domain values for artisan completion workflows.

Everything here is plain data: no network calls, no framework types. Sessions
are immutable and are rebuilt with :func:`dataclasses.replace` when a field
changes, so a cancelled session can simply be dropped.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Any


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------


class ExpenseCategory(str, Enum):
    MATERIALS = "MATERIALS"
    TOOLS = "TOOLS"
    EQUIPMENT = "EQUIPMENT"
    LABOUR = "LABOUR"
    TRANSPORTATION = "TRANSPORTATION"
    OTHER = "OTHER"

    @classmethod
    def from_label(cls, label: str | None) -> "ExpenseCategory":
        """Map a wire/user label onto a category; unknown labels become OTHER."""
        token = (label or "").strip().upper()
        if token == "TRANSPORT":
            token = "TRANSPORTATION"
        try:
            return cls(token)
        except ValueError:
            return cls.OTHER


class PaymentType(str, Enum):
    HOURLY = "hourly"
    DAILY = "daily"


class CompletionVariant(str, Enum):
    JOB = "job"
    MILESTONE = "milestone"
    QUOTATION = "quotation"
    REVIEW_EDIT = "review_edit"


class JobStatus(str, Enum):
    ASSIGNED = "ASSIGNED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class MilestoneStatus(str, Enum):
    NOT_STARTED = "NOT_STARTED"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"


class QuotationStatus(str, Enum):
    PENDING = "PENDING"
    IN_PROGRESS = "IN_PROGRESS"
    READY_FOR_REVIEW = "READY_FOR_REVIEW"


class DurationUnit(str, Enum):
    HOURLY = "HOURLY"
    DAILY = "DAILY"


class DocumentKind(str, Enum):
    JOB_CARD = "job-card"
    ORDER_SUMMARY = "order-summary"


def to_utc_timestamp(value: datetime) -> str:
    """Format as UTC with millisecond precision and a trailing ``Z``.

    Naive values are read as local time. The platform only accepts this shape
    for datetime inputs.
    """
    utc = value.astimezone(timezone.utc)
    return utc.strftime("%Y-%m-%dT%H:%M:%S.") + f"{utc.microsecond // 1000:03d}Z"


# ---------------------------------------------------------------------------
# Records
# ---------------------------------------------------------------------------


@dataclass(frozen=True, slots=True)
class ExpenseRecord:
    """One uploaded expense slip or supplier quotation."""

    document_reference: str
    category: ExpenseCategory = ExpenseCategory.MATERIALS
    description: str | None = None
    amount: Decimal | None = None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "url": self.document_reference,
            "category": self.category.value,
        }
        if self.description:
            payload["description"] = self.description
        if self.amount is not None:
            payload["amount"] = float(self.amount)
        return payload


@dataclass(frozen=True, slots=True)
class PaymentBasis:
    """Hourly or daily basis for a payment request.

    ``units_worked`` is hours for HOURLY and days for DAILY.
    """

    payment_type: PaymentType = PaymentType.HOURLY
    units_worked: Decimal | None = None
    rate: Decimal | None = None

    def wire_fields(self) -> dict[str, float]:
        """Only the selected mode's fields, named the way the remote expects."""
        if self.payment_type is PaymentType.HOURLY:
            units_key, rate_key = "hoursWorked", "hourlyRate"
        else:
            units_key, rate_key = "daysWorked", "dailyRate"
        fields: dict[str, float] = {}
        if self.units_worked is not None:
            fields[units_key] = float(self.units_worked)
        if self.rate is not None:
            fields[rate_key] = float(self.rate)
        return fields


@dataclass(frozen=True, slots=True)
class ArtisanProfile:
    artisan_id: int
    hourly_rate: Decimal | None = None
    daily_rate: Decimal | None = None

    def rate_for(self, payment_type: PaymentType) -> Decimal:
        rate = self.hourly_rate if payment_type is PaymentType.HOURLY else self.daily_rate
        return rate if rate is not None else Decimal("0")

    def prefilled_basis(self, payment_type: PaymentType = PaymentType.HOURLY) -> PaymentBasis:
        """Basis with the profile rate pre-filled, as a freshly opened form shows it."""
        rate = self.hourly_rate if payment_type is PaymentType.HOURLY else self.daily_rate
        return PaymentBasis(payment_type=payment_type, units_worked=None, rate=rate)


@dataclass(frozen=True, slots=True)
class ItemizedBudgetLine:
    description: str
    quoted_amount: Decimal
    actual_spent: Decimal
    overspend_reason: str | None = None

    @property
    def is_overspent(self) -> bool:
        return self.actual_spent > self.quoted_amount

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "itemDescription": self.description,
            "quotedAmount": float(self.quoted_amount),
            "actualSpent": float(self.actual_spent),
        }
        if self.overspend_reason:
            payload["reasonForOverspend"] = self.overspend_reason
        return payload


@dataclass(frozen=True, slots=True)
class QuotationLineItem:
    description: str
    category: str = "Material"
    quantity: Decimal | None = None
    notes: str | None = None

    def to_wire(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            "description": self.description,
            "category": self.category,
        }
        if self.quantity is not None:
            payload["quantity"] = float(self.quantity)
        if self.notes:
            payload["notes"] = self.notes
        return payload


@dataclass(frozen=True, slots=True)
class CompletionEvidence:
    """Everything a completion action submits as one unit."""

    after_photos: tuple[str, ...] = ()
    signature_reference: str | None = None
    client_rep_name: str | None = None
    client_rep_sign_date: datetime | None = None
    expense_records: tuple[ExpenseRecord, ...] = ()
    payment_basis: PaymentBasis = field(default_factory=PaymentBasis)
    notes: str | None = None


@dataclass(frozen=True, slots=True)
class QuotationEstimate:
    num_people_needed: Decimal | None = Decimal("1")
    estimated_duration: Decimal | None = None
    duration_unit: DurationUnit = DurationUnit.HOURLY
    rate_amount: Decimal | None = None
    line_items: tuple[QuotationLineItem, ...] = (QuotationLineItem(description=""),)


@dataclass(frozen=True, slots=True)
class CompletionSession:
    """State of one open completion modal.

    Built fresh when the modal opens; thrown away on cancel or once the
    orchestrator reaches DONE.
    """

    variant: CompletionVariant
    entity_id: int
    evidence: CompletionEvidence = field(default_factory=CompletionEvidence)
    entity_number: str | None = None
    manual_cost_override: Decimal | None = None
    is_pm_order: bool = False
    quotation: QuotationEstimate | None = None
    payment_request_id: int | None = None

    @property
    def document_label(self) -> str:
        """Identifier used in downloaded file names."""
        return self.entity_number or str(self.entity_id)

    @classmethod
    def open_job(
        cls,
        order_id: int,
        profile: ArtisanProfile,
        *,
        order_number: str | None = None,
        is_pm_order: bool = False,
    ) -> "CompletionSession":
        return cls(
            variant=CompletionVariant.JOB,
            entity_id=order_id,
            entity_number=order_number,
            is_pm_order=is_pm_order,
            evidence=CompletionEvidence(payment_basis=profile.prefilled_basis()),
        )

    @classmethod
    def open_milestone(cls, milestone_id: int, profile: ArtisanProfile) -> "CompletionSession":
        return cls(
            variant=CompletionVariant.MILESTONE,
            entity_id=milestone_id,
            evidence=CompletionEvidence(payment_basis=profile.prefilled_basis()),
        )

    @classmethod
    def open_quotation(
        cls,
        quotation_id: int,
        *,
        existing_slips: tuple[ExpenseRecord, ...] = (),
        estimate: QuotationEstimate | None = None,
    ) -> "CompletionSession":
        return cls(
            variant=CompletionVariant.QUOTATION,
            entity_id=quotation_id,
            evidence=CompletionEvidence(expense_records=existing_slips),
            quotation=estimate or QuotationEstimate(),
        )

    @classmethod
    def open_review(
        cls,
        order_id: int,
        evidence: CompletionEvidence,
        *,
        manual_cost_override: Decimal | None = None,
        payment_request_id: int | None = None,
    ) -> "CompletionSession":
        return cls(
            variant=CompletionVariant.REVIEW_EDIT,
            entity_id=order_id,
            evidence=evidence,
            manual_cost_override=manual_cost_override,
            payment_request_id=payment_request_id,
        )


@dataclass(frozen=True, slots=True)
class ProgressUpdate:
    """Weekly milestone progress report submitted while work is under way."""

    milestone_id: int
    progress_percentage: Decimal | None
    work_done: str | None = None
    challenges: str | None = None
    successes: str | None = None
    images_done: tuple[str, ...] = ()
    itemized_expenses: tuple[ItemizedBudgetLine, ...] = ()
    next_week_plan: str | None = None


@dataclass(frozen=True, slots=True)
class AccessCredential:
    """Bearer token passed explicitly into every remote use case."""

    token: str

    def __repr__(self) -> str:  # never leak the token into logs
        return "AccessCredential(token=***)"
