"""Completion orchestrator: runs one completion action as an explicit state machine.

    Idle -> Validating -> CommittingStatus -> CommittingPayment -> GeneratingDocument -> Done
                                  \\________________\\_________________\\____> Failed(step, error)

Remote steps are awaited strictly one after another. A failed step leaves the
steps before it committed: there are no compensating calls, the platform is the
system of record. Calling ``run()`` again after a failure resumes at the failed
step and never re-issues a step that already succeeded.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from pathlib import Path
from typing import Any, Awaitable, Callable, List, Optional

from src.backend.jobs.callbacks.notifications import (
    LoggingNotifier,
    NotificationFactory,
    Notifier,
)
from src.backend.jobs.config.settings import CompletionPolicy
from src.backend.jobs.errors import (
    CompletionInProgress,
    ConfirmationDeclined,
    DecodeFailure,
    RemoteCallFailure,
    ValidationFailure,
)
from src.backend.jobs.integrations.documents import (
    DocumentSaver,
    decode_document_payload,
    document_filename,
    extract_encoded_payload,
)
from src.backend.jobs.integrations.trpc_client import CompletionRemote
from src.backend.jobs.models.completion import (
    AccessCredential,
    ArtisanProfile,
    CompletionSession,
    CompletionVariant,
    DocumentKind,
    JobStatus,
    MilestoneStatus,
    PaymentBasis,
    QuotationStatus,
    to_utc_timestamp,
)
from src.backend.jobs.orchestration.confirmation_manager import (
    ConfirmationRequest,
    Confirmer,
)
from src.backend.jobs.use_cases.completion_checks import check_completion
from src.backend.jobs.use_cases.cost_calculations import (
    compute_material_cost,
    compute_payment_amount,
    needs_unattributed_slip_confirmation,
    parse_amount,
    unattributed_expense_records,
)

logger = logging.getLogger(__name__)


class CompletionState(str, Enum):
    IDLE = "Idle"
    VALIDATING = "Validating"
    COMMITTING_STATUS = "CommittingStatus"
    COMMITTING_PAYMENT = "CommittingPayment"
    GENERATING_DOCUMENT = "GeneratingDocument"
    DONE = "Done"
    FAILED = "Failed"


_REMOTE_STEPS = (
    CompletionState.COMMITTING_STATUS,
    CompletionState.COMMITTING_PAYMENT,
    CompletionState.GENERATING_DOCUMENT,
)

# variant -> remote steps it runs, in order
VARIANT_PLANS: dict[CompletionVariant, tuple[CompletionState, ...]] = {
    CompletionVariant.JOB: _REMOTE_STEPS,
    CompletionVariant.MILESTONE: (
        CompletionState.COMMITTING_STATUS,
        CompletionState.COMMITTING_PAYMENT,
    ),
    CompletionVariant.QUOTATION: (CompletionState.COMMITTING_STATUS,),
    CompletionVariant.REVIEW_EDIT: (CompletionState.COMMITTING_STATUS,),
}

_FAILURE_MESSAGES = {
    CompletionState.COMMITTING_STATUS: "Failed to update status",
    CompletionState.COMMITTING_PAYMENT: "Failed to create payment request",
    CompletionState.GENERATING_DOCUMENT: "Failed to generate job card",
}

_SUCCESS_MESSAGES = {
    CompletionVariant.JOB: "Job completed and job card downloaded!",
    CompletionVariant.MILESTONE: "Milestone completed and payment request submitted!",
    CompletionVariant.QUOTATION: "Quotation submitted for review",
    CompletionVariant.REVIEW_EDIT: "Job details updated",
}

# used instead of the success message when the run ended Done with warnings
_SAVE_WARNING_MESSAGE = "Job completed, but the job card could not be saved"


@dataclass(slots=True)
class StepFailure:
    step: CompletionState
    error: RemoteCallFailure


@dataclass(slots=True)
class CompletionOutcome:
    variant: CompletionVariant
    entity_id: int
    state: CompletionState
    material_cost: Decimal
    payment_amount: Decimal
    completed_steps: List[CompletionState] = field(default_factory=list)
    failure: Optional[StepFailure] = None
    status_result: Optional[dict[str, Any]] = None
    payment_result: Optional[dict[str, Any]] = None
    document_filename: Optional[str] = None
    document_path: Optional[Path] = None
    document_bytes: Optional[bytes] = None
    warnings: List[DecodeFailure] = field(default_factory=list)

    @property
    def succeeded(self) -> bool:
        return self.state is CompletionState.DONE

    def to_dict(self) -> dict[str, Any]:
        return {
            "variant": self.variant.value,
            "entity_id": self.entity_id,
            "state": self.state.value,
            "material_cost": str(self.material_cost),
            "payment_amount": str(self.payment_amount),
            "completed_steps": [s.value for s in self.completed_steps],
            "failure": (
                {"step": self.failure.step.value, "error": str(self.failure.error.cause)}
                if self.failure
                else None
            ),
            "status_result": self.status_result,
            "payment_result": self.payment_result,
            "document_filename": self.document_filename,
            "document_path": str(self.document_path) if self.document_path else None,
            "warnings": [str(w) for w in self.warnings],
        }


def _float(amount: Decimal | None) -> float | None:
    return float(amount) if amount is not None else None


def _positive_basis_fields(basis: PaymentBasis) -> dict[str, float]:
    """Review edits send only the payment fields that hold a positive value."""
    units = parse_amount(basis.units_worked)
    rate = parse_amount(basis.rate)
    trimmed = PaymentBasis(
        payment_type=basis.payment_type,
        units_worked=units if units is not None and units > 0 else None,
        rate=rate if rate is not None and rate > 0 else None,
    )
    return trimmed.wire_fields()


class CompletionOrchestrator:
    """Runs the completion action for one open session."""

    def __init__(
        self,
        session: CompletionSession,
        *,
        remote: CompletionRemote,
        credential: AccessCredential,
        profile: ArtisanProfile,
        policy: Optional[CompletionPolicy] = None,
        notifier: Optional[Notifier] = None,
        confirmer: Optional[Confirmer] = None,
        saver: Optional[DocumentSaver] = None,
    ):
        self.logger = logger
        self.remote = remote
        self.credential = credential
        self.profile = profile
        self.policy = policy or CompletionPolicy()
        self.notifier = notifier or LoggingNotifier()
        self.notifications = NotificationFactory(self.policy.notifications)
        self.confirmer = confirmer
        self.saver = saver

        self._session: Optional[CompletionSession] = session
        self._plan = VARIANT_PLANS[session.variant]
        self._state = CompletionState.IDLE
        self._running = False
        self._outcome = CompletionOutcome(
            variant=session.variant,
            entity_id=session.entity_id,
            state=CompletionState.IDLE,
            material_cost=self._material_cost(session),
            payment_amount=self._payment_amount(session),
        )

    # ---------------------------
    # Introspection
    # ---------------------------
    @property
    def state(self) -> CompletionState:
        return self._state

    @property
    def session(self) -> Optional[CompletionSession]:
        """The open session; None once the action reached DONE."""
        return self._session

    @property
    def outcome(self) -> CompletionOutcome:
        return self._outcome

    @property
    def in_progress(self) -> bool:
        return self._running

    def _transition(self, state: CompletionState) -> None:
        self.logger.info(
            "%s %s: %s -> %s",
            self._outcome.variant.value,
            self._outcome.entity_id,
            self._state.value,
            state.value,
        )
        self._state = state
        self._outcome.state = state

    # ---------------------------
    # Derived figures
    # ---------------------------
    def _material_cost(self, session: CompletionSession) -> Decimal:
        if session.variant is CompletionVariant.QUOTATION:
            # quotations carry slips only; no manual override path
            return compute_material_cost(None, session.evidence.expense_records)
        return compute_material_cost(
            session.manual_cost_override, session.evidence.expense_records
        )

    def _payment_amount(self, session: CompletionSession) -> Decimal:
        basis = session.evidence.payment_basis
        return compute_payment_amount(basis, self.profile.rate_for(basis.payment_type))

    # ---------------------------
    # Entry point
    # ---------------------------
    async def run(self) -> CompletionOutcome:
        """Validate and commit, or resume after a failed remote step.

        Raises ValidationFailure / ConfirmationDeclined before any remote call,
        and CompletionInProgress if another run of this action has not returned;
        remote failures are reported through the returned outcome.
        """
        if self._running:
            raise CompletionInProgress("Completion action is already in progress")
        if self._state is CompletionState.DONE:
            return self._outcome

        self._running = True
        try:
            if self._state is CompletionState.FAILED:
                failure = self._outcome.failure
                resume_at = self._plan.index(failure.step) if failure else 0
                self.logger.info(
                    "Retrying %s %s from %s",
                    self._outcome.variant.value,
                    self._outcome.entity_id,
                    self._plan[resume_at].value,
                )
                self._outcome.failure = None
            else:
                await self._validate()
                resume_at = 0

            for step in self._plan[resume_at:]:
                if not await self._execute(step):
                    return self._outcome

            await self._finish()
            return self._outcome
        finally:
            self._running = False

    async def _validate(self) -> None:
        session = self._session
        self._transition(CompletionState.VALIDATING)

        result = check_completion(session, policy=self.policy.gate)
        if not result.passed:
            failure = result.first_failure
            self._transition(CompletionState.IDLE)
            await self.notifier.notify(self.notifications.validation(failure.message))
            raise ValidationFailure(failure.check_id, failure.message)

        if session.variant in (CompletionVariant.JOB, CompletionVariant.REVIEW_EDIT):
            await self._confirm_unattributed_slips(session)

    async def _confirm_unattributed_slips(self, session: CompletionSession) -> None:
        records = session.evidence.expense_records
        if not needs_unattributed_slip_confirmation(session.manual_cost_override, records):
            return

        request = ConfirmationRequest(
            entity_id=session.entity_id,
            unattributed_count=len(unattributed_expense_records(records)),
            manual_cost=self._outcome.material_cost,
            currency_symbol=self.policy.currency_symbol,
        )
        approved = bool(self.confirmer and await self.confirmer.confirm(request))
        if not approved:
            self._transition(CompletionState.IDLE)
            raise ConfirmationDeclined(request.message)

    async def _execute(self, step: CompletionState) -> bool:
        handlers: dict[CompletionState, Callable[[], Awaitable[None]]] = {
            CompletionState.COMMITTING_STATUS: self._commit_status,
            CompletionState.COMMITTING_PAYMENT: self._commit_payment,
            CompletionState.GENERATING_DOCUMENT: self._generate_document,
        }
        self._transition(step)
        try:
            await handlers[step]()
        except Exception as e:
            error = RemoteCallFailure(step.value, e)
            self._outcome.failure = StepFailure(step=step, error=error)
            self._transition(CompletionState.FAILED)
            self.logger.error(
                "%s %s failed at %s: %s (committed: %s)",
                self._outcome.variant.value,
                self._outcome.entity_id,
                step.value,
                e,
                [s.value for s in self._outcome.completed_steps],
            )
            await self.notifier.notify(
                self.notifications.error(f"{_FAILURE_MESSAGES[step]}: {e}", step=step.value)
            )
            return False

        self._outcome.completed_steps.append(step)
        return True

    async def _finish(self) -> None:
        self._transition(CompletionState.DONE)
        if self._outcome.warnings:
            message = _SAVE_WARNING_MESSAGE
        else:
            message = _SUCCESS_MESSAGES[self._outcome.variant]
        await self.notifier.notify(self.notifications.success(message))
        self._session = None

    # ---------------------------
    # Remote steps
    # ---------------------------
    def _status_payload(self, session: CompletionSession) -> dict[str, Any]:
        evidence = session.evidence
        slips = [r.to_wire() for r in evidence.expense_records]
        material_cost = float(self._outcome.material_cost)

        if session.variant is CompletionVariant.QUOTATION:
            estimate = session.quotation
            return {
                "status": QuotationStatus.READY_FOR_REVIEW.value,
                "expenseSlips": slips,
                "materialCost": material_cost,
                "numPeopleNeeded": _float(parse_amount(estimate.num_people_needed)),
                "estimatedDuration": _float(parse_amount(estimate.estimated_duration)),
                "durationUnit": estimate.duration_unit.value,
                "labourRate": _float(parse_amount(estimate.rate_amount)),
                "quotationLineItems": [
                    item.to_wire()
                    for item in estimate.line_items
                    if (item.description or "").strip()
                ],
            }

        if session.variant is CompletionVariant.MILESTONE:
            payload: dict[str, Any] = {
                "status": MilestoneStatus.COMPLETED.value,
                "progressPercentage": 100,
                "expenseSlips": slips,
                "materialCost": material_cost,
                **evidence.payment_basis.wire_fields(),
            }
            return payload

        payload = {
            "afterPictures": list(evidence.after_photos),
            "signedJobCardUrl": evidence.signature_reference,
            "clientRepName": (evidence.client_rep_name or "").strip(),
            "clientRepSignDate": to_utc_timestamp(evidence.client_rep_sign_date)
            if isinstance(evidence.client_rep_sign_date, datetime)
            else None,
            "expenseSlips": slips,
            "materialCost": material_cost,
        }
        if session.variant is CompletionVariant.REVIEW_EDIT:
            payload.update(_positive_basis_fields(evidence.payment_basis))
            if session.payment_request_id is not None:
                payload["paymentRequestId"] = session.payment_request_id
            if evidence.notes:
                payload["paymentNotes"] = evidence.notes
            return payload

        payload.update(
            {
                "status": JobStatus.COMPLETED.value,
                "isPMOrder": session.is_pm_order,
                **evidence.payment_basis.wire_fields(),
            }
        )
        return payload

    async def _commit_status(self) -> None:
        session = self._session
        self._outcome.status_result = await self.remote.update_status(
            session.variant,
            session.entity_id,
            self._status_payload(session),
            credential=self.credential,
        )

    async def _commit_payment(self) -> None:
        session = self._session
        payload: dict[str, Any] = {
            "artisanId": self.profile.artisan_id,
            **session.evidence.payment_basis.wire_fields(),
            "calculatedAmount": float(self._outcome.payment_amount),
        }
        if session.evidence.notes:
            payload["notes"] = session.evidence.notes
        self._outcome.payment_result = await self.remote.create_payment_request(
            session.variant,
            session.entity_id,
            payload,
            credential=self.credential,
        )

    async def _generate_document(self) -> None:
        session = self._session
        kind = DocumentKind.JOB_CARD
        await self.notifier.notify(self.notifications.info("Generating job card..."))
        response = await self.remote.generate_document(
            kind,
            session.entity_id,
            credential=self.credential,
            is_pm_order=session.is_pm_order,
        )

        # Remote work is committed from here on; local save problems are warnings.
        filename = document_filename(kind, session.document_label)
        self._outcome.document_filename = filename
        try:
            content = decode_document_payload(extract_encoded_payload(response))
            self._outcome.document_bytes = content
            if self.saver is not None:
                self._outcome.document_path = self.saver.save(filename, content)
        except (ValueError, OSError) as e:
            warning = DecodeFailure(kind.value, e)
            self._outcome.warnings.append(warning)
            self.logger.warning("%s", warning)
            await self.notifier.notify(
                self.notifications.warning(str(warning), step=CompletionState.GENERATING_DOCUMENT.value)
            )
