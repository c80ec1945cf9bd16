"""Evidence gates for completion actions.

Each gate is a pure function over a completion session and returns a
``GateResult``. Checks run in a fixed order and, by default, stop at the first
failure: the caller shows exactly one message and re-runs the gate on every
resubmission.
"""

from __future__ import annotations

from dataclasses import dataclass
from decimal import Decimal
from typing import Callable, Iterable

from src.backend.jobs.errors import ValidationFailure
from src.backend.jobs.models.completion import (
    CompletionSession,
    CompletionVariant,
    ItemizedBudgetLine,
    PaymentBasis,
    PaymentType,
    ProgressUpdate,
)
from src.backend.jobs.use_cases.cost_calculations import (
    compute_material_cost,
    parse_amount,
)


@dataclass(frozen=True, slots=True)
class GatePolicy:
    min_after_photos: int = 3
    min_before_photos: int = 3
    min_expense_records: int = 1


DEFAULT_POLICY = GatePolicy()


@dataclass(frozen=True, slots=True)
class GateFailure:
    check_id: str
    message: str


@dataclass(frozen=True, slots=True)
class GateResult:
    passed: bool
    failures: tuple[GateFailure, ...] = ()

    @property
    def first_failure(self) -> GateFailure | None:
        return self.failures[0] if self.failures else None

    def raise_for_failure(self) -> None:
        failure = self.first_failure
        if failure is not None:
            raise ValidationFailure(failure.check_id, failure.message)


# A check returns None when satisfied, else the failure to report.
Check = Callable[[], GateFailure | None]


def _run_checks(checks: Iterable[Check], *, stop_at_first: bool) -> GateResult:
    failures: list[GateFailure] = []
    for check in checks:
        failure = check()
        if failure is None:
            continue
        failures.append(failure)
        if stop_at_first:
            break
    return GateResult(passed=not failures, failures=tuple(failures))


def _is_positive(value: object) -> bool:
    amount = parse_amount(value)
    return amount is not None and amount > 0


def _is_blank(text: str | None) -> bool:
    return not (text or "").strip()


def _require(condition: bool, check_id: str, message: str) -> GateFailure | None:
    return None if condition else GateFailure(check_id=check_id, message=message)


# ---------------------------------------------------------------------------
# Shared check builders
# ---------------------------------------------------------------------------


def _after_photos_check(session: CompletionSession, policy: GatePolicy) -> Check:
    minimum = policy.min_after_photos
    return lambda: _require(
        len(session.evidence.after_photos) >= minimum,
        "after_photos",
        f"Please upload at least {minimum} after pictures",
    )


def _signature_check(session: CompletionSession) -> Check:
    return lambda: _require(
        not _is_blank(session.evidence.signature_reference),
        "signature",
        "Please capture the customer's signature",
    )


def _client_rep_name_check(session: CompletionSession) -> Check:
    return lambda: _require(
        not _is_blank(session.evidence.client_rep_name),
        "client_rep_name",
        "Please enter the client representative's name",
    )


def _sign_date_check(session: CompletionSession) -> Check:
    return lambda: _require(
        session.evidence.client_rep_sign_date is not None,
        "client_rep_sign_date",
        "Please select the date",
    )


def _expense_records_check(
    session: CompletionSession,
    policy: GatePolicy,
    message: str = "Please upload at least one expense slip",
) -> Check:
    return lambda: _require(
        len(session.evidence.expense_records) >= policy.min_expense_records,
        "expense_records",
        message,
    )


def payment_basis_checks(basis: PaymentBasis) -> list[Check]:
    """Units then rate for the selected mode, both as entered (> 0)."""

    if basis.payment_type is PaymentType.HOURLY:
        units_msg = "Please enter hours worked for payment request"
        rate_msg = "Please enter your hourly rate for payment request"
    else:
        units_msg = "Please enter days worked for payment request"
        rate_msg = "Please enter your daily rate for payment request"

    return [
        lambda: _require(_is_positive(basis.units_worked), "payment_units", units_msg),
        lambda: _require(_is_positive(basis.rate), "payment_rate", rate_msg),
    ]


def _material_cost_check(session: CompletionSession, message: str) -> Check:
    def check() -> GateFailure | None:
        cost = compute_material_cost(
            session.manual_cost_override, session.evidence.expense_records
        )
        return _require(cost > 0, "material_cost", message)

    return check


_MATERIAL_COST_MESSAGE = (
    "Material cost must be greater than 0. Please enter a manual material cost "
    "or ensure all expense slips have amounts specified."
)
_REVIEW_MATERIAL_COST_MESSAGE = (
    "Please enter material cost or specify amounts in expense slips"
)


# ---------------------------------------------------------------------------
# Gates per variant
# ---------------------------------------------------------------------------


def check_job_completion(
    session: CompletionSession,
    *,
    policy: GatePolicy = DEFAULT_POLICY,
    stop_at_first: bool = True,
) -> GateResult:
    checks: list[Check] = [
        _after_photos_check(session, policy),
        _signature_check(session),
        _client_rep_name_check(session),
        _sign_date_check(session),
        _expense_records_check(session, policy),
        *payment_basis_checks(session.evidence.payment_basis),
        _material_cost_check(session, _MATERIAL_COST_MESSAGE),
    ]
    return _run_checks(checks, stop_at_first=stop_at_first)


def check_milestone_completion(
    session: CompletionSession,
    *,
    policy: GatePolicy = DEFAULT_POLICY,
    stop_at_first: bool = True,
) -> GateResult:
    """Milestones need slips and payment fields only; no photos or signature."""

    checks: list[Check] = [
        _expense_records_check(session, policy),
        *payment_basis_checks(session.evidence.payment_basis),
    ]
    return _run_checks(checks, stop_at_first=stop_at_first)


def check_quotation_completion(
    session: CompletionSession,
    *,
    policy: GatePolicy = DEFAULT_POLICY,
    stop_at_first: bool = True,
) -> GateResult:
    estimate = session.quotation
    if estimate is None:
        return GateResult(
            passed=False,
            failures=(
                GateFailure(
                    check_id="quotation_estimate",
                    message="Please specify the number of people needed",
                ),
            ),
        )

    checks: list[Check] = [
        _expense_records_check(
            session,
            policy,
            "Please upload at least one supplier quotation/expense slip",
        ),
        lambda: _require(
            _is_positive(estimate.num_people_needed),
            "num_people_needed",
            "Please specify the number of people needed",
        ),
        lambda: _require(
            _is_positive(estimate.estimated_duration),
            "estimated_duration",
            "Please specify the estimated work duration",
        ),
        lambda: _require(
            _is_positive(estimate.rate_amount),
            "rate_amount",
            "Please specify the rate amount",
        ),
        lambda: _require(
            any(not _is_blank(item.description) for item in estimate.line_items),
            "line_items",
            "Please add at least one line item describing the scope of work",
        ),
    ]
    return _run_checks(checks, stop_at_first=stop_at_first)


def check_review_edit(
    session: CompletionSession,
    *,
    policy: GatePolicy = DEFAULT_POLICY,
    stop_at_first: bool = True,
) -> GateResult:
    """Editing an already completed job: same evidence bar, payment fields optional."""

    checks: list[Check] = [
        _after_photos_check(session, policy),
        _signature_check(session),
        _client_rep_name_check(session),
        _sign_date_check(session),
        _expense_records_check(session, policy),
        _material_cost_check(session, _REVIEW_MATERIAL_COST_MESSAGE),
    ]
    return _run_checks(checks, stop_at_first=stop_at_first)


_GATES: dict[CompletionVariant, Callable[..., GateResult]] = {
    CompletionVariant.JOB: check_job_completion,
    CompletionVariant.MILESTONE: check_milestone_completion,
    CompletionVariant.QUOTATION: check_quotation_completion,
    CompletionVariant.REVIEW_EDIT: check_review_edit,
}


def check_completion(
    session: CompletionSession,
    *,
    policy: GatePolicy = DEFAULT_POLICY,
    stop_at_first: bool = True,
) -> GateResult:
    """Dispatch to the gate for the session's variant."""

    gate = _GATES[session.variant]
    return gate(session, policy=policy, stop_at_first=stop_at_first)


# ---------------------------------------------------------------------------
# Start and progress gates
# ---------------------------------------------------------------------------


def check_start_work(
    before_photos: Iterable[str],
    *,
    policy: GatePolicy = DEFAULT_POLICY,
) -> GateResult:
    """Starting a job or quotation needs the minimum set of before pictures."""

    count = len(list(before_photos))
    minimum = policy.min_before_photos
    return _run_checks(
        [
            lambda: _require(
                count >= minimum,
                "before_photos",
                f"Please upload at least {minimum} before pictures",
            )
        ],
        stop_at_first=True,
    )


def check_itemized_expenses(
    lines: Iterable[ItemizedBudgetLine],
    *,
    stop_at_first: bool = True,
) -> GateResult:
    """Batch rule for itemized budget lines.

    Any failing line fails the whole batch; nothing in the update may commit.
    """

    checks: list[Check] = []
    for line in lines:
        checks.append(
            lambda line=line: _require(
                not _is_blank(line.description),
                "itemized_description",
                "Please fill in all item descriptions for expenses",
            )
        )
        checks.append(
            lambda line=line: _require(
                not (line.is_overspent and _is_blank(line.overspend_reason)),
                "itemized_overspend_reason",
                "Please provide a reason for all expenses that exceed the quoted amount",
            )
        )
    return _run_checks(checks, stop_at_first=stop_at_first)


def check_progress_update(update: ProgressUpdate) -> GateResult:
    progress = parse_amount(update.progress_percentage)
    if progress is None or progress < Decimal("0") or progress > Decimal("100"):
        return GateResult(
            passed=False,
            failures=(
                GateFailure(
                    check_id="progress_percentage",
                    message="Please enter a valid progress percentage (0-100)",
                ),
            ),
        )
    return check_itemized_expenses(update.itemized_expenses)
