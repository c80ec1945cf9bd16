"""Deterministic cost calculations for completion actions.

This is the money layer between:
- Completion sessions (operator input + uploaded slip metadata)
- The completion gate and orchestrator (which decide what to submit)

No network calls here, and nothing is rounded: presentation rounding lives in
``format_money`` only.
"""

from __future__ import annotations

import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from typing import Any, Iterable

from src.backend.jobs.models.completion import (
    ExpenseRecord,
    ItemizedBudgetLine,
    PaymentBasis,
)

_ZERO = Decimal("0")


def parse_amount(value: Any) -> Decimal | None:
    """Parse operator-entered amounts into Decimal.

    Handles:
    - Decimal/int/float passthrough
    - commas and currency symbols ("R1,250.00")
    - parentheses for negatives
    - blanks and placeholders ("", "-", "n/a")

    Returns None when nothing numeric can be read.
    """

    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, Decimal):
        return value if value.is_finite() else None
    if isinstance(value, int):
        return Decimal(value)
    if isinstance(value, float):
        if value != value or value in (float("inf"), float("-inf")):
            return None
        return Decimal(str(value))

    s = str(value).strip()
    if s == "" or s.lower() in {"-", "n/a", "na"}:
        return None

    negative = False
    if s.startswith("(") and s.endswith(")"):
        negative = True
        s = s[1:-1].strip()

    s = re.sub(r"[^0-9.\-]", "", s)
    if s in {"", "-", ".", "-."}:
        return None

    try:
        amount = Decimal(s)
    except InvalidOperation:
        return None

    return -amount if negative else amount


def _positive(value: Any) -> Decimal | None:
    amount = parse_amount(value)
    if amount is None or amount <= 0:
        return None
    return amount


def sum_expense_amounts(expense_records: Iterable[ExpenseRecord]) -> Decimal:
    """Sum slip amounts, counting a missing amount as zero."""

    return sum(
        (parse_amount(record.amount) or _ZERO for record in expense_records), _ZERO
    )


def compute_material_cost(
    manual_override: Decimal | None,
    expense_records: Iterable[ExpenseRecord],
) -> Decimal:
    """Material cost for a completion payload.

    A positive manual override wins verbatim; otherwise the slip amounts are
    summed. A non-positive result is returned as-is: rejecting it is the
    completion gate's job.
    """

    override = _positive(manual_override)
    if override is not None:
        return override
    return sum_expense_amounts(expense_records)


def unattributed_expense_records(
    expense_records: Iterable[ExpenseRecord],
) -> list[ExpenseRecord]:
    return [r for r in expense_records if _positive(r.amount) is None]


def needs_unattributed_slip_confirmation(
    manual_override: Decimal | None,
    expense_records: Iterable[ExpenseRecord],
) -> bool:
    """True when a positive override hides slips that carry no amount.

    Only the override path asks for consent; a plain sum that undercounts
    unattributed slips goes through without a prompt.
    """

    if _positive(manual_override) is None:
        return False
    return bool(unattributed_expense_records(expense_records))


def compute_payment_amount(basis: PaymentBasis, fallback_rate: Decimal | None) -> Decimal:
    """units_worked x effective rate, where a blank/zero rate uses the fallback.

    Returns 0 while units are not entered (absent or non-numeric).
    """

    units = parse_amount(basis.units_worked)
    if units is None:
        return _ZERO

    rate = parse_amount(basis.rate)
    if rate is None or rate <= 0:
        rate = parse_amount(fallback_rate) or _ZERO

    return units * rate


def compute_estimated_labour_cost(
    num_people: Any,
    duration: Any,
    rate: Any,
) -> Decimal:
    """Quotation labour estimate: people x duration x rate, zero when blank."""

    people = parse_amount(num_people) or _ZERO
    units = parse_amount(duration) or _ZERO
    amount = parse_amount(rate) or _ZERO
    return people * units * amount


@dataclass(frozen=True, slots=True)
class BudgetSummary:
    total_quoted: Decimal
    total_actual: Decimal
    variance: Decimal
    overspent_lines: tuple[ItemizedBudgetLine, ...]

    @property
    def is_over_budget(self) -> bool:
        return self.variance > 0


def summarize_itemized_budget(lines: Iterable[ItemizedBudgetLine]) -> BudgetSummary:
    """Budget-vs-actual totals for a milestone progress update.

    ``variance`` is actual minus quoted, so a positive value means overspend.
    """

    items = tuple(lines)
    total_quoted = sum((line.quoted_amount for line in items), _ZERO)
    total_actual = sum((line.actual_spent for line in items), _ZERO)
    return BudgetSummary(
        total_quoted=total_quoted,
        total_actual=total_actual,
        variance=total_actual - total_quoted,
        overspent_lines=tuple(line for line in items if line.is_overspent),
    )


def format_money(amount: Decimal | None, *, currency_symbol: str = "R") -> str:
    if amount is None:
        return f"{currency_symbol}0.00"
    return f"{currency_symbol}{amount:,.2f}"
