"""Completion API Router.

Endpoints for the artisan completion actions: completing a job, milestone or
quotation, editing a completed job, the single-call start/progress/summary
actions, and a side-effect-free cost preview.

Gate failures map to 400, declined confirmations to 409 and remote failures to
502. A failed completion is kept in memory under its ``run_id`` so that a retry
resumes at the failed step, until it succeeds or is discarded. A run that is
already executing answers 409.
"""

import logging
import uuid
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from fastapi import APIRouter, Depends, HTTPException
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from src.backend.jobs.callbacks.notifications import LoggingNotifier, RecordingNotifier
from src.backend.jobs.config.settings import CompletionPolicy, CompletionSettings
from src.backend.jobs.errors import (
    CompletionInProgress,
    ConfirmationDeclined,
    DecodeFailure,
    RemoteCallFailure,
    ValidationFailure,
)
from src.backend.jobs.integrations.documents import DocumentSaver, LocalDocumentSaver
from src.backend.jobs.integrations.trpc_client import CompletionRemote, TRPCCompletionClient
from src.backend.jobs.models.completion import (
    AccessCredential,
    ArtisanProfile,
    CompletionEvidence,
    CompletionSession,
    DurationUnit,
    ExpenseCategory,
    ExpenseRecord,
    ItemizedBudgetLine,
    PaymentBasis,
    PaymentType,
    ProgressUpdate,
    QuotationEstimate,
    QuotationLineItem,
)
from src.backend.jobs.orchestration.completion_orchestrator import CompletionOrchestrator
from src.backend.jobs.orchestration.confirmation_manager import (
    Confirmer,
    PendingConfirmationManager,
    StaticConfirmer,
    TimedConfirmer,
)
from src.backend.jobs.orchestration import work_actions
from src.backend.jobs.use_cases.cost_calculations import (
    compute_estimated_labour_cost,
    compute_material_cost,
    compute_payment_amount,
    format_money,
    needs_unattributed_slip_confirmation,
    summarize_itemized_budget,
    unattributed_expense_records,
)

logger = logging.getLogger(__name__)

completion_router = APIRouter(tags=["Completion"])

# Failed runs waiting for a retry, keyed by run id.
failed_runs: Dict[str, CompletionOrchestrator] = {}

confirmation_manager = PendingConfirmationManager()


# ---------------------------------------------------------------------------
# Request/Response Models
# ---------------------------------------------------------------------------


class ExpenseSlipIn(BaseModel):
    url: str
    category: str = "MATERIALS"
    description: Optional[str] = None
    amount: Optional[Decimal] = None


class PaymentBasisIn(BaseModel):
    payment_type: PaymentType = PaymentType.HOURLY
    units_worked: Optional[Decimal] = None
    rate: Optional[Decimal] = None


class ArtisanIn(BaseModel):
    artisan_id: int
    hourly_rate: Optional[Decimal] = None
    daily_rate: Optional[Decimal] = None


class EvidenceIn(BaseModel):
    after_photos: List[str] = Field(default_factory=list)
    signature_reference: Optional[str] = None
    client_rep_name: Optional[str] = None
    client_rep_sign_date: Optional[datetime] = None
    expense_slips: List[ExpenseSlipIn] = Field(default_factory=list)
    payment_basis: PaymentBasisIn = Field(default_factory=PaymentBasisIn)
    notes: Optional[str] = None


class JobCompletionRequest(BaseModel):
    token: str
    order_id: int
    order_number: Optional[str] = None
    is_pm_order: bool = False
    artisan: ArtisanIn
    evidence: EvidenceIn
    manual_material_cost: Optional[Decimal] = None
    # None: wait for an answer posted to /completion/confirmations/{request_id}
    confirm_unattributed_slips: Optional[bool] = None


class MilestoneCompletionRequest(BaseModel):
    token: str
    milestone_id: int
    artisan: ArtisanIn
    evidence: EvidenceIn


class LineItemIn(BaseModel):
    description: str = ""
    category: str = "Material"
    quantity: Optional[Decimal] = None
    notes: Optional[str] = None


class QuotationCompletionRequest(BaseModel):
    token: str
    quotation_id: int
    artisan_id: int
    expense_slips: List[ExpenseSlipIn] = Field(default_factory=list)
    num_people_needed: Optional[Decimal] = Decimal("1")
    estimated_duration: Optional[Decimal] = None
    duration_unit: DurationUnit = DurationUnit.HOURLY
    rate_amount: Optional[Decimal] = None
    line_items: List[LineItemIn] = Field(default_factory=list)


class ReviewEditRequest(BaseModel):
    token: str
    order_id: int
    artisan_id: int
    evidence: EvidenceIn
    manual_material_cost: Optional[Decimal] = None
    payment_request_id: Optional[int] = None
    confirm_unattributed_slips: Optional[bool] = None


class RetryRequest(BaseModel):
    token: str


class ConfirmationAnswer(BaseModel):
    approved: bool


class StartWorkRequest(BaseModel):
    token: str
    before_photos: List[str] = Field(default_factory=list)
    is_pm_order: bool = False


class TokenRequest(BaseModel):
    token: str


class ItemizedLineIn(BaseModel):
    item_description: str = ""
    quoted_amount: Decimal = Decimal("0")
    actual_spent: Decimal = Decimal("0")
    reason_for_overspend: Optional[str] = None


class ProgressUpdateRequest(BaseModel):
    token: str
    progress_percentage: Optional[Decimal] = None
    work_done: Optional[str] = None
    challenges: Optional[str] = None
    successes: Optional[str] = None
    images_done: List[str] = Field(default_factory=list)
    itemized_expenses: List[ItemizedLineIn] = Field(default_factory=list)
    next_week_plan: Optional[str] = None


class OrderSummaryRequest(BaseModel):
    token: str
    order_number: Optional[str] = None
    is_pm_order: bool = False


class CostPreviewRequest(BaseModel):
    manual_material_cost: Optional[Decimal] = None
    expense_slips: List[ExpenseSlipIn] = Field(default_factory=list)
    payment_basis: PaymentBasisIn = Field(default_factory=PaymentBasisIn)
    fallback_rate: Optional[Decimal] = None
    num_people_needed: Optional[Decimal] = None
    estimated_duration: Optional[Decimal] = None
    itemized_expenses: List[ItemizedLineIn] = Field(default_factory=list)


# ---------------------------------------------------------------------------
# Dependencies
# ---------------------------------------------------------------------------


def get_settings() -> CompletionSettings:
    return CompletionSettings.from_env()


def get_policy(settings: CompletionSettings = Depends(get_settings)) -> CompletionPolicy:
    return settings.load_policy()


def get_remote(settings: CompletionSettings = Depends(get_settings)) -> CompletionRemote:
    return TRPCCompletionClient(
        base_url=settings.rpc_base_url, timeout_seconds=settings.rpc_timeout_seconds
    )


def get_saver(settings: CompletionSettings = Depends(get_settings)) -> DocumentSaver:
    return LocalDocumentSaver(settings.download_dir)


# ---------------------------------------------------------------------------
# Helper Functions
# ---------------------------------------------------------------------------


def _expense_records(slips: List[ExpenseSlipIn]) -> tuple[ExpenseRecord, ...]:
    return tuple(
        ExpenseRecord(
            document_reference=s.url,
            category=ExpenseCategory.from_label(s.category),
            description=s.description,
            amount=s.amount,
        )
        for s in slips
    )


def _payment_basis(basis: PaymentBasisIn) -> PaymentBasis:
    return PaymentBasis(
        payment_type=basis.payment_type, units_worked=basis.units_worked, rate=basis.rate
    )


def _evidence(body: EvidenceIn) -> CompletionEvidence:
    return CompletionEvidence(
        after_photos=tuple(body.after_photos),
        signature_reference=body.signature_reference,
        client_rep_name=body.client_rep_name,
        client_rep_sign_date=body.client_rep_sign_date,
        expense_records=_expense_records(body.expense_slips),
        payment_basis=_payment_basis(body.payment_basis),
        notes=body.notes,
    )


def _profile(body: ArtisanIn) -> ArtisanProfile:
    return ArtisanProfile(
        artisan_id=body.artisan_id, hourly_rate=body.hourly_rate, daily_rate=body.daily_rate
    )


def _itemized_lines(lines: List[ItemizedLineIn]) -> tuple[ItemizedBudgetLine, ...]:
    return tuple(
        ItemizedBudgetLine(
            description=line.item_description,
            quoted_amount=line.quoted_amount,
            actual_spent=line.actual_spent,
            overspend_reason=line.reason_for_overspend,
        )
        for line in lines
    )


def _confirmer(answer: Optional[bool], policy: CompletionPolicy) -> Confirmer:
    if answer is None:
        return TimedConfirmer(confirmation_manager, policy.confirmation_timeout_seconds)
    return StaticConfirmer(answer)


def _validation_error(e: ValidationFailure) -> HTTPException:
    return HTTPException(
        status_code=400, detail={"check_id": e.check_id, "message": e.message}
    )


def _remote_error(e: RemoteCallFailure) -> HTTPException:
    return HTTPException(status_code=502, detail={"step": e.step, "message": str(e.cause)})


async def _run(
    orchestrator: CompletionOrchestrator,
    notifier: RecordingNotifier,
    *,
    run_id: Optional[str] = None,
) -> Any:
    try:
        outcome = await orchestrator.run()
    except ValidationFailure as e:
        raise _validation_error(e)
    except (ConfirmationDeclined, CompletionInProgress) as e:
        raise HTTPException(status_code=409, detail={"message": str(e)})

    run_id = run_id or str(uuid.uuid4())
    payload = {
        "run_id": run_id,
        **outcome.to_dict(),
        "notifications": notifier.to_list(),
    }
    if outcome.succeeded:
        failed_runs.pop(run_id, None)
        return payload

    failed_runs[run_id] = orchestrator
    return JSONResponse(status_code=502, content=payload)


def _orchestrator(
    session: CompletionSession,
    *,
    token: str,
    profile: ArtisanProfile,
    remote: CompletionRemote,
    policy: CompletionPolicy,
    saver: DocumentSaver,
    confirmer: Optional[Confirmer] = None,
) -> tuple[CompletionOrchestrator, RecordingNotifier]:
    notifier = RecordingNotifier(forward_to=LoggingNotifier())
    orchestrator = CompletionOrchestrator(
        session,
        remote=remote,
        credential=AccessCredential(token),
        profile=profile,
        policy=policy,
        notifier=notifier,
        confirmer=confirmer,
        saver=saver,
    )
    return orchestrator, notifier


# ---------------------------------------------------------------------------
# Completion endpoints
# ---------------------------------------------------------------------------


@completion_router.post("/completion/job")
async def complete_job(
    body: JobCompletionRequest,
    remote: CompletionRemote = Depends(get_remote),
    policy: CompletionPolicy = Depends(get_policy),
    saver: DocumentSaver = Depends(get_saver),
):
    """Status update, payment request, then the job card PDF."""
    profile = _profile(body.artisan)
    session = replace(
        CompletionSession.open_job(
            body.order_id,
            profile,
            order_number=body.order_number,
            is_pm_order=body.is_pm_order,
        ),
        evidence=_evidence(body.evidence),
        manual_cost_override=body.manual_material_cost,
    )
    orchestrator, notifier = _orchestrator(
        session,
        token=body.token,
        profile=profile,
        remote=remote,
        policy=policy,
        saver=saver,
        confirmer=_confirmer(body.confirm_unattributed_slips, policy),
    )
    return await _run(orchestrator, notifier)


@completion_router.post("/completion/milestone")
async def complete_milestone(
    body: MilestoneCompletionRequest,
    remote: CompletionRemote = Depends(get_remote),
    policy: CompletionPolicy = Depends(get_policy),
    saver: DocumentSaver = Depends(get_saver),
):
    profile = _profile(body.artisan)
    session = replace(
        CompletionSession.open_milestone(body.milestone_id, profile),
        evidence=_evidence(body.evidence),
    )
    orchestrator, notifier = _orchestrator(
        session, token=body.token, profile=profile, remote=remote, policy=policy, saver=saver
    )
    return await _run(orchestrator, notifier)


@completion_router.post("/completion/quotation")
async def complete_quotation(
    body: QuotationCompletionRequest,
    remote: CompletionRemote = Depends(get_remote),
    policy: CompletionPolicy = Depends(get_policy),
    saver: DocumentSaver = Depends(get_saver),
):
    estimate = QuotationEstimate(
        num_people_needed=body.num_people_needed,
        estimated_duration=body.estimated_duration,
        duration_unit=body.duration_unit,
        rate_amount=body.rate_amount,
        line_items=tuple(
            QuotationLineItem(
                description=item.description,
                category=item.category,
                quantity=item.quantity,
                notes=item.notes,
            )
            for item in body.line_items
        ),
    )
    session = CompletionSession.open_quotation(
        body.quotation_id,
        existing_slips=_expense_records(body.expense_slips),
        estimate=estimate,
    )
    orchestrator, notifier = _orchestrator(
        session,
        token=body.token,
        profile=ArtisanProfile(artisan_id=body.artisan_id),
        remote=remote,
        policy=policy,
        saver=saver,
    )
    return await _run(orchestrator, notifier)


@completion_router.post("/completion/review_edit")
async def edit_completed_job(
    body: ReviewEditRequest,
    remote: CompletionRemote = Depends(get_remote),
    policy: CompletionPolicy = Depends(get_policy),
    saver: DocumentSaver = Depends(get_saver),
):
    session = CompletionSession.open_review(
        body.order_id,
        _evidence(body.evidence),
        manual_cost_override=body.manual_material_cost,
        payment_request_id=body.payment_request_id,
    )
    orchestrator, notifier = _orchestrator(
        session,
        token=body.token,
        profile=ArtisanProfile(artisan_id=body.artisan_id),
        remote=remote,
        policy=policy,
        saver=saver,
        confirmer=_confirmer(body.confirm_unattributed_slips, policy),
    )
    return await _run(orchestrator, notifier)


@completion_router.post("/completion/runs/{run_id}/retry")
async def retry_completion(run_id: str, body: RetryRequest):
    """Resume a failed completion at the step that failed."""
    orchestrator = failed_runs.get(run_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail=f"No failed completion run {run_id}")
    if orchestrator.in_progress:
        raise HTTPException(
            status_code=409, detail={"message": f"Completion run {run_id} is already running"}
        )

    orchestrator.credential = AccessCredential(body.token)
    notifier = RecordingNotifier(forward_to=LoggingNotifier())
    orchestrator.notifier = notifier
    return await _run(orchestrator, notifier, run_id=run_id)


@completion_router.delete("/completion/runs/{run_id}")
async def discard_completion(run_id: str):
    """Abandon a failed completion. Committed steps stay committed."""
    orchestrator = failed_runs.get(run_id)
    if orchestrator is None:
        raise HTTPException(status_code=404, detail=f"No failed completion run {run_id}")
    if orchestrator.in_progress:
        raise HTTPException(
            status_code=409, detail={"message": f"Completion run {run_id} is already running"}
        )

    del failed_runs[run_id]
    logger.info("Discarded failed completion run %s", run_id)
    return {
        "run_id": run_id,
        "discarded": True,
        "completed_steps": [s.value for s in orchestrator.outcome.completed_steps],
    }


@completion_router.get("/completion/confirmations")
async def list_pending_confirmations():
    return [
        {
            "request_id": request.request_id,
            "entity_id": request.entity_id,
            "message": request.message,
        }
        for request in confirmation_manager.pending.values()
    ]


@completion_router.post("/completion/confirmations/{request_id}")
async def answer_confirmation(request_id: str, body: ConfirmationAnswer):
    try:
        confirmation_manager.set_answer(request_id, body.approved)
    except KeyError:
        raise HTTPException(status_code=404, detail=f"No pending confirmation {request_id}")
    return {"request_id": request_id, "approved": body.approved}


# ---------------------------------------------------------------------------
# Single-call actions
# ---------------------------------------------------------------------------


@completion_router.post("/jobs/{order_id}/start")
async def start_job(
    order_id: int,
    body: StartWorkRequest,
    remote: CompletionRemote = Depends(get_remote),
    policy: CompletionPolicy = Depends(get_policy),
):
    try:
        result = await work_actions.start_job(
            remote,
            order_id,
            body.before_photos,
            credential=AccessCredential(body.token),
            is_pm_order=body.is_pm_order,
            policy=policy,
        )
    except ValidationFailure as e:
        raise _validation_error(e)
    except RemoteCallFailure as e:
        raise _remote_error(e)
    return {"order_id": order_id, "result": result}


@completion_router.post("/quotations/{quotation_id}/start")
async def start_quotation(
    quotation_id: int,
    body: StartWorkRequest,
    remote: CompletionRemote = Depends(get_remote),
    policy: CompletionPolicy = Depends(get_policy),
):
    try:
        result = await work_actions.start_quotation(
            remote,
            quotation_id,
            body.before_photos,
            credential=AccessCredential(body.token),
            policy=policy,
        )
    except ValidationFailure as e:
        raise _validation_error(e)
    except RemoteCallFailure as e:
        raise _remote_error(e)
    return {"quotation_id": quotation_id, "result": result}


@completion_router.post("/milestones/{milestone_id}/start")
async def start_milestone(
    milestone_id: int,
    body: TokenRequest,
    remote: CompletionRemote = Depends(get_remote),
):
    try:
        result = await work_actions.start_milestone(
            remote, milestone_id, credential=AccessCredential(body.token)
        )
    except RemoteCallFailure as e:
        raise _remote_error(e)
    return {"milestone_id": milestone_id, "result": result}


@completion_router.post("/milestones/{milestone_id}/progress")
async def update_milestone_progress(
    milestone_id: int,
    body: ProgressUpdateRequest,
    remote: CompletionRemote = Depends(get_remote),
):
    update = ProgressUpdate(
        milestone_id=milestone_id,
        progress_percentage=body.progress_percentage,
        work_done=body.work_done,
        challenges=body.challenges,
        successes=body.successes,
        images_done=tuple(body.images_done),
        itemized_expenses=_itemized_lines(body.itemized_expenses),
        next_week_plan=body.next_week_plan,
    )
    try:
        result = await work_actions.update_milestone_progress(
            remote, update, credential=AccessCredential(body.token)
        )
    except ValidationFailure as e:
        raise _validation_error(e)
    except RemoteCallFailure as e:
        raise _remote_error(e)
    return {"milestone_id": milestone_id, "result": result}


@completion_router.post("/orders/{order_id}/summary")
async def download_order_summary(
    order_id: int,
    body: OrderSummaryRequest,
    remote: CompletionRemote = Depends(get_remote),
    saver: DocumentSaver = Depends(get_saver),
):
    try:
        path = await work_actions.download_order_summary(
            remote,
            order_id,
            credential=AccessCredential(body.token),
            saver=saver,
            order_number=body.order_number,
            is_pm_order=body.is_pm_order,
        )
    except RemoteCallFailure as e:
        raise _remote_error(e)
    except DecodeFailure as e:
        raise HTTPException(status_code=502, detail={"message": str(e)})
    return {"order_id": order_id, "document_path": str(path), "filename": path.name}


@completion_router.post("/completion/cost_preview")
async def cost_preview(
    body: CostPreviewRequest,
    policy: CompletionPolicy = Depends(get_policy),
):
    """Aggregated figures the completion form shows while it is being filled in.

    Pure computation: no remote calls.
    """
    records = _expense_records(body.expense_slips)
    basis = _payment_basis(body.payment_basis)
    material_cost = compute_material_cost(body.manual_material_cost, records)
    payment_amount = compute_payment_amount(basis, body.fallback_rate)
    symbol = policy.currency_symbol

    response: dict[str, Any] = {
        "material_cost": str(material_cost),
        "material_cost_display": format_money(material_cost, currency_symbol=symbol),
        "payment_amount": str(payment_amount),
        "payment_amount_display": format_money(payment_amount, currency_symbol=symbol),
        "needs_unattributed_confirmation": needs_unattributed_slip_confirmation(
            body.manual_material_cost, records
        ),
        "unattributed_slip_count": len(unattributed_expense_records(records)),
    }
    if body.num_people_needed is not None or body.estimated_duration is not None:
        labour = compute_estimated_labour_cost(
            body.num_people_needed, body.estimated_duration, basis.rate
        )
        response["estimated_labour_cost"] = str(labour)
    if body.itemized_expenses:
        summary = summarize_itemized_budget(_itemized_lines(body.itemized_expenses))
        response["budget"] = {
            "total_quoted": str(summary.total_quoted),
            "total_actual": str(summary.total_actual),
            "variance": str(summary.variance),
            "over_budget": summary.is_over_budget,
            "overspent_lines": [line.description for line in summary.overspent_lines],
        }
    return response
