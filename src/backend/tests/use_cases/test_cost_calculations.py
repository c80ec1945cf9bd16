from __future__ import annotations

from decimal import Decimal

import pytest

from src.backend.jobs.models.completion import (
    ExpenseRecord,
    ItemizedBudgetLine,
    PaymentBasis,
    PaymentType,
)
from src.backend.jobs.use_cases.cost_calculations import (
    compute_estimated_labour_cost,
    compute_material_cost,
    compute_payment_amount,
    format_money,
    needs_unattributed_slip_confirmation,
    parse_amount,
    summarize_itemized_budget,
    unattributed_expense_records,
)


def _slips(*amounts) -> tuple[ExpenseRecord, ...]:
    return tuple(
        ExpenseRecord(document_reference=f"https://files/slip-{i}.jpg", amount=a)
        for i, a in enumerate(amounts)
    )


def test_parse_amount() -> None:
    assert parse_amount("R1,250.00") == Decimal("1250.00")
    assert parse_amount("(10.00)") == Decimal("-10.00")
    assert parse_amount(12) == Decimal("12")
    assert parse_amount(0.5) == Decimal("0.5")
    assert parse_amount("") is None
    assert parse_amount("n/a") is None
    assert parse_amount("R") is None
    assert parse_amount(None) is None
    assert parse_amount(True) is None


@pytest.mark.parametrize("override", [Decimal("0.01"), Decimal("75"), Decimal("9999.99")])
def test_positive_override_wins_regardless_of_records(override) -> None:
    for records in [(), _slips(None), _slips(Decimal("100"), None, Decimal("50"))]:
        assert compute_material_cost(override, records) == override


def test_material_cost_sums_records_without_override() -> None:
    records = _slips(Decimal("10.10"), None, Decimal("0"), Decimal("5.05"))
    expected = sum((r.amount or Decimal("0") for r in records), Decimal("0"))
    assert compute_material_cost(None, records) == expected == Decimal("15.15")


def test_non_positive_override_falls_back_to_sum() -> None:
    records = _slips(Decimal("40"), Decimal("2"))
    assert compute_material_cost(Decimal("0"), records) == Decimal("42")
    assert compute_material_cost(Decimal("-5"), records) == Decimal("42")


def test_material_cost_zero_when_nothing_attributed() -> None:
    assert compute_material_cost(None, _slips(None, None)) == Decimal("0")
    assert compute_material_cost(None, ()) == Decimal("0")


def test_partially_attributed_slips_without_override_need_no_prompt() -> None:
    records = _slips(Decimal("100"), Decimal("0"), Decimal("50"))

    assert compute_material_cost(None, records) == Decimal("150")
    assert needs_unattributed_slip_confirmation(None, records) is False
    assert needs_unattributed_slip_confirmation(Decimal("200"), records) is True
    assert len(unattributed_expense_records(records)) == 1


def test_confirmation_not_needed_when_every_slip_has_an_amount() -> None:
    records = _slips(Decimal("100"), Decimal("50"))
    assert needs_unattributed_slip_confirmation(Decimal("500"), records) is False


def test_blank_rate_uses_profile_fallback() -> None:
    basis = PaymentBasis(
        payment_type=PaymentType.HOURLY, units_worked=Decimal("8"), rate=Decimal("0")
    )
    assert compute_payment_amount(basis, Decimal("250")) == Decimal("2000")

    blank = PaymentBasis(payment_type=PaymentType.HOURLY, units_worked=Decimal("8"), rate=None)
    assert compute_payment_amount(blank, Decimal("250")) == Decimal("2000")


def test_payment_amount_zero_without_units_or_rate() -> None:
    assert compute_payment_amount(PaymentBasis(rate=Decimal("300")), Decimal("250")) == 0
    basis = PaymentBasis(payment_type=PaymentType.DAILY, units_worked=Decimal("2"))
    assert compute_payment_amount(basis, None) == Decimal("0")


def test_payment_amount_non_decreasing_in_units() -> None:
    rate = Decimal("180")
    previous = Decimal("-1")
    for units in ["0", "0.5", "1", "7.25", "8", "40"]:
        basis = PaymentBasis(units_worked=Decimal(units), rate=rate)
        amount = compute_payment_amount(basis, Decimal("250"))
        assert amount >= previous
        previous = amount


def test_payment_amount_non_decreasing_in_positive_rate() -> None:
    previous = Decimal("-1")
    for rate in ["0.01", "1", "99.99", "250", "1000"]:
        basis = PaymentBasis(
            payment_type=PaymentType.DAILY, units_worked=Decimal("3"), rate=Decimal(rate)
        )
        amount = compute_payment_amount(basis, Decimal("500"))
        assert amount >= previous
        previous = amount


def test_estimated_labour_cost() -> None:
    assert compute_estimated_labour_cost(Decimal("2"), Decimal("3"), Decimal("150")) == Decimal(
        "900"
    )
    assert compute_estimated_labour_cost(None, Decimal("3"), Decimal("150")) == Decimal("0")


def test_summarize_itemized_budget() -> None:
    lines = [
        ItemizedBudgetLine("Cement", Decimal("500"), Decimal("650"), "Price increase"),
        ItemizedBudgetLine("Sand", Decimal("300"), Decimal("200")),
    ]
    summary = summarize_itemized_budget(lines)

    assert summary.total_quoted == Decimal("800")
    assert summary.total_actual == Decimal("850")
    assert summary.variance == Decimal("50")
    assert summary.is_over_budget is True
    assert [line.description for line in summary.overspent_lines] == ["Cement"]


def test_format_money() -> None:
    assert format_money(Decimal("1234.5")) == "R1,234.50"
    assert format_money(None) == "R0.00"
    assert format_money(Decimal("10"), currency_symbol="$") == "$10.00"
