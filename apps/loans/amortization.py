"""
Pure amortization math for the EMI engine.

Nothing in this module touches the database. The service layer feeds
loan terms in, persists the resulting rows, and owns all locking.
"""

from dataclasses import asdict, dataclass
from datetime import date
from decimal import Decimal
from typing import Iterable, List, Optional

from dateutil.relativedelta import relativedelta

from apps.core.exceptions import (
    InvalidLoanTerms,
    NonAmortizingSchedule,
    ScheduleIntegrityError,
)
from apps.core.utils import (
    ZERO,
    calculate_emi,
    monthly_rate,
    round_money,
    to_decimal,
    to_money,
)


@dataclass(frozen=True)
class ScheduleRow:
    """One projected installment, before it is persisted."""

    sequence: int
    due_date: date
    installment_amount: Decimal
    interest_component: Decimal
    principal_component: Decimal
    remaining_principal: Decimal

    @property
    def opening_principal(self) -> Decimal:
        return self.remaining_principal + self.principal_component

    def as_dict(self) -> dict:
        return asdict(self)


def due_date_for(start_date: date, sequence: int) -> date:
    """Installment ``sequence`` falls due ``sequence`` months after the start date."""
    return start_date + relativedelta(months=sequence)


def build_schedule(
    principal,
    annual_rate,
    tenure_months: int,
    start_date: date,
    installment=None,
    first_sequence: int = 1,
) -> List[ScheduleRow]:
    """
    Build the amortization rows for a balance.

    Each row charges interest on the opening balance at the monthly rate,
    the remainder of the installment reduces principal. The last row takes
    whatever balance is left so the schedule closes at exactly zero, and it
    is the only row whose installment may differ from the nominal EMI.

    Args:
        principal: Balance to amortize (> 0).
        annual_rate: Annual interest rate in percent.
        tenure_months: Maximum number of rows to produce.
        start_date: Loan start date; due dates are derived from it.
        installment: Overridden installment. Calculated when omitted.
        first_sequence: Sequence index of the first produced row. Used when
            regenerating the unpaid tail of an existing schedule.

    Returns:
        Ordered list of ScheduleRow. Shorter than ``tenure_months`` only
        when an installment clears the balance early.

    Raises:
        InvalidLoanTerms: If the terms are invalid.
        NonAmortizingSchedule: If the installment does not exceed a
            month's interest.
    """
    principal = to_decimal(principal)
    if principal <= 0:
        raise InvalidLoanTerms(
            "Principal must be greater than 0.", principal=principal,
        )
    principal = to_money(principal)

    if installment is None:
        installment = calculate_emi(principal, annual_rate, tenure_months)
    else:
        installment = to_money(installment)
        if installment <= 0:
            raise InvalidLoanTerms(
                "Installment must be greater than 0.", installment=installment,
            )
        # Validates rate and tenure for the override path too
        calculate_emi(principal, annual_rate, tenure_months)

    rate = monthly_rate(annual_rate)
    tenure_months = int(tenure_months)

    rows = []
    balance = principal
    for offset in range(tenure_months):
        sequence = first_sequence + offset
        interest = round_money(balance * rate)
        is_last = offset == tenure_months - 1

        if not is_last and installment <= interest:
            raise NonAmortizingSchedule(
                "Installment does not cover the interest due for the month.",
                installment=installment,
                interest=interest,
                sequence=sequence,
            )

        principal_part = installment - interest
        amount = installment
        if is_last or principal_part >= balance:
            principal_part = balance
            amount = interest + principal_part

        balance = balance - principal_part
        rows.append(ScheduleRow(
            sequence=sequence,
            due_date=due_date_for(start_date, sequence),
            installment_amount=amount,
            interest_component=interest,
            principal_component=principal_part,
            remaining_principal=balance,
        ))
        if balance == 0:
            break

    check_schedule(rows, principal)
    return rows


def check_schedule(rows: List[ScheduleRow], principal: Decimal) -> None:
    """
    Verify the amortization invariants of a freshly built schedule.

    A failure here is a defect in the generator, not bad input.

    Raises:
        ScheduleIntegrityError: On any violated invariant.
    """
    if not rows:
        raise ScheduleIntegrityError("Schedule has no rows.")

    opening = principal
    for row in rows:
        if row.interest_component + row.principal_component != row.installment_amount:
            raise ScheduleIntegrityError(
                f"Row {row.sequence}: interest {row.interest_component} + "
                f"principal {row.principal_component} != "
                f"installment {row.installment_amount}"
            )
        if row.opening_principal != opening:
            raise ScheduleIntegrityError(
                f"Row {row.sequence}: opening balance {row.opening_principal} "
                f"does not continue from {opening}"
            )
        if row.principal_component < 0 or row.remaining_principal > opening:
            raise ScheduleIntegrityError(
                f"Row {row.sequence}: remaining principal increased"
            )
        opening = row.remaining_principal

    if rows[-1].remaining_principal != 0:
        raise ScheduleIntegrityError(
            f"Final row {rows[-1].sequence} leaves "
            f"{rows[-1].remaining_principal} outstanding"
        )
    if sum_principal(rows) != principal:
        raise ScheduleIntegrityError(
            f"Principal components sum to {sum_principal(rows)}, "
            f"expected {principal}"
        )


def sum_interest(rows: Iterable) -> Decimal:
    """Total interest of schedule rows or persisted entries."""
    return sum((row.interest_component for row in rows), ZERO)


def sum_principal(rows: Iterable) -> Decimal:
    return sum((row.principal_component for row in rows), ZERO)


def sum_installments(rows: Iterable) -> Decimal:
    return sum((row.installment_amount for row in rows), ZERO)


def accrued_interest(
    outstanding: Decimal,
    annual_rate,
    period_start: date,
    period_end: Optional[date],
    as_of: date,
) -> Decimal:
    """
    Interest accrued on ``outstanding`` since ``period_start``.

    Simple daily proration of one month's interest over the installment
    period. Elapsed days are clamped to the period, so the charge never
    exceeds the interest of the next scheduled installment.
    """
    outstanding = to_decimal(outstanding)
    if outstanding <= 0 or period_end is None:
        return ZERO

    period_days = (period_end - period_start).days
    if period_days <= 0:
        return ZERO

    elapsed_days = min(max((as_of - period_start).days, 0), period_days)
    return round_money(
        outstanding * monthly_rate(annual_rate)
        * Decimal(elapsed_days) / Decimal(period_days)
    )
