from __future__ import annotations

from dataclasses import replace
from datetime import datetime
from decimal import Decimal

import pytest

from src.backend.jobs.errors import ValidationFailure
from src.backend.jobs.models.completion import (
    ArtisanProfile,
    CompletionEvidence,
    CompletionSession,
    ExpenseRecord,
    ItemizedBudgetLine,
    PaymentBasis,
    PaymentType,
    ProgressUpdate,
    QuotationEstimate,
    QuotationLineItem,
)
from src.backend.jobs.use_cases.completion_checks import (
    GatePolicy,
    check_completion,
    check_itemized_expenses,
    check_job_completion,
    check_progress_update,
    check_quotation_completion,
    check_review_edit,
    check_start_work,
)

PROFILE = ArtisanProfile(artisan_id=7, hourly_rate=Decimal("250"), daily_rate=Decimal("1800"))


def _complete_evidence(**overrides) -> CompletionEvidence:
    evidence = CompletionEvidence(
        after_photos=("a.jpg", "b.jpg", "c.jpg"),
        signature_reference="https://files/signature.png",
        client_rep_name="Thandi Mokoena",
        client_rep_sign_date=datetime(2026, 3, 14, 10, 30),
        expense_records=(ExpenseRecord("https://files/slip.jpg", amount=Decimal("320")),),
        payment_basis=PaymentBasis(
            payment_type=PaymentType.HOURLY, units_worked=Decimal("6"), rate=Decimal("250")
        ),
    )
    return replace(evidence, **overrides)


def _job(**overrides) -> CompletionSession:
    session = CompletionSession.open_job(101, PROFILE, order_number="ORD-101")
    return replace(session, evidence=_complete_evidence(**overrides))


def test_complete_job_passes() -> None:
    res = check_job_completion(_job())
    assert res.passed is True
    assert res.failures == ()


def test_only_first_violation_is_reported() -> None:
    session = _job(after_photos=("a.jpg", "b.jpg"), signature_reference=None)

    res = check_job_completion(session)

    assert res.passed is False
    assert len(res.failures) == 1
    assert res.first_failure.check_id == "after_photos"
    assert res.first_failure.message == "Please upload at least 3 after pictures"


def test_collect_all_lists_violations_in_gate_order() -> None:
    session = _job(
        after_photos=(),
        signature_reference=None,
        client_rep_name="  ",
        client_rep_sign_date=None,
        expense_records=(),
        payment_basis=PaymentBasis(),
    )

    res = check_job_completion(session, stop_at_first=False)

    assert [f.check_id for f in res.failures] == [
        "after_photos",
        "signature",
        "client_rep_name",
        "client_rep_sign_date",
        "expense_records",
        "payment_units",
        "payment_rate",
        "material_cost",
    ]


@pytest.mark.parametrize(
    "overrides, check_id, message",
    [
        ({"signature_reference": ""}, "signature", "Please capture the customer's signature"),
        (
            {"client_rep_name": "   "},
            "client_rep_name",
            "Please enter the client representative's name",
        ),
        ({"client_rep_sign_date": None}, "client_rep_sign_date", "Please select the date"),
        (
            {"expense_records": ()},
            "expense_records",
            "Please upload at least one expense slip",
        ),
        (
            {"payment_basis": PaymentBasis(units_worked=None, rate=Decimal("250"))},
            "payment_units",
            "Please enter hours worked for payment request",
        ),
        (
            {
                "payment_basis": PaymentBasis(
                    payment_type=PaymentType.DAILY, units_worked=Decimal("2"), rate=None
                )
            },
            "payment_rate",
            "Please enter your daily rate for payment request",
        ),
    ],
)
def test_job_gate_messages(overrides, check_id, message) -> None:
    res = check_job_completion(_job(**overrides))
    assert res.first_failure.check_id == check_id
    assert res.first_failure.message == message


def test_material_cost_must_be_positive() -> None:
    session = _job(expense_records=(ExpenseRecord("https://files/slip.jpg"),))

    res = check_job_completion(session)

    assert res.first_failure.check_id == "material_cost"
    assert res.first_failure.message.startswith("Material cost must be greater than 0")

    with_override = replace(session, manual_cost_override=Decimal("450"))
    assert check_job_completion(with_override).passed is True


def test_policy_changes_photo_minimum() -> None:
    session = _job(after_photos=("a.jpg",))
    res = check_job_completion(session, policy=GatePolicy(min_after_photos=1))
    assert res.passed is True


def test_milestone_gate_ignores_photos_and_signature() -> None:
    session = replace(
        CompletionSession.open_milestone(12, PROFILE),
        evidence=_complete_evidence(after_photos=(), signature_reference=None),
    )
    assert check_completion(session).passed is True

    no_slips = replace(session, evidence=replace(session.evidence, expense_records=()))
    assert check_completion(no_slips).first_failure.check_id == "expense_records"


def test_review_edit_gate_does_not_require_payment_fields() -> None:
    session = CompletionSession.open_review(
        101, _complete_evidence(payment_basis=PaymentBasis())
    )
    assert check_review_edit(session).passed is True

    unpriced = CompletionSession.open_review(
        101, _complete_evidence(expense_records=(ExpenseRecord("https://files/slip.jpg"),))
    )
    res = check_completion(unpriced)
    assert res.first_failure.check_id == "material_cost"
    assert (
        res.first_failure.message
        == "Please enter material cost or specify amounts in expense slips"
    )


def _quotation(**estimate_overrides) -> CompletionSession:
    estimate = QuotationEstimate(
        num_people_needed=Decimal("2"),
        estimated_duration=Decimal("16"),
        rate_amount=Decimal("220"),
        line_items=(QuotationLineItem(description="Replace geyser element"),),
    )
    return CompletionSession.open_quotation(
        55,
        existing_slips=(ExpenseRecord("https://files/supplier-quote.pdf", amount=Decimal("900")),),
        estimate=replace(estimate, **estimate_overrides),
    )


def test_quotation_gate() -> None:
    assert check_quotation_completion(_quotation()).passed is True

    res = check_quotation_completion(_quotation(estimated_duration=None))
    assert res.first_failure.check_id == "estimated_duration"

    blank_items = _quotation(line_items=(QuotationLineItem(description="  "),))
    res = check_quotation_completion(blank_items)
    assert res.first_failure.message == (
        "Please add at least one line item describing the scope of work"
    )

    no_slips = replace(_quotation(), evidence=CompletionEvidence())
    res = check_completion(no_slips)
    assert res.first_failure.message == (
        "Please upload at least one supplier quotation/expense slip"
    )


def test_start_work_needs_before_photos() -> None:
    res = check_start_work(["a.jpg", "b.jpg"])
    assert res.first_failure.message == "Please upload at least 3 before pictures"
    assert check_start_work(["a.jpg", "b.jpg", "c.jpg"]).passed is True

    with pytest.raises(ValidationFailure) as exc:
        res.raise_for_failure()
    assert exc.value.check_id == "before_photos"


def _line(desc: str, quoted: str, actual: str, reason: str | None = None) -> ItemizedBudgetLine:
    return ItemizedBudgetLine(desc, Decimal(quoted), Decimal(actual), reason)


def test_one_unexplained_overspend_fails_the_whole_batch() -> None:
    lines = [_line(f"Item {i}", "100", "90") for i in range(9)]
    lines.insert(4, _line("Paint", "100", "130"))

    res = check_itemized_expenses(lines)

    assert res.passed is False
    assert res.first_failure.message == (
        "Please provide a reason for all expenses that exceed the quoted amount"
    )

    lines[4] = _line("Paint", "100", "130", "Extra coat needed")
    assert check_itemized_expenses(lines).passed is True


def test_itemized_lines_need_descriptions() -> None:
    res = check_itemized_expenses([_line("", "10", "5")])
    assert res.first_failure.check_id == "itemized_description"


@pytest.mark.parametrize("value", [None, Decimal("-1"), Decimal("100.5"), "abc"])
def test_progress_percentage_must_be_in_range(value) -> None:
    res = check_progress_update(ProgressUpdate(milestone_id=3, progress_percentage=value))
    assert res.first_failure.message == "Please enter a valid progress percentage (0-100)"


def test_progress_update_runs_itemized_rule() -> None:
    update = ProgressUpdate(
        milestone_id=3,
        progress_percentage=Decimal("40"),
        itemized_expenses=(_line("Tiles", "200", "260"),),
    )
    assert check_progress_update(update).first_failure.check_id == "itemized_overspend_reason"

    ok = replace(update, progress_percentage=Decimal("0"), itemized_expenses=())
    assert check_progress_update(ok).passed is True
