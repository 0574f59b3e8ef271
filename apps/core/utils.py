"""
Core money and rounding helpers for the EMI engine.

All currency arithmetic goes through Python's Decimal and is quantized
to the minor unit (two places) with an explicit rounding mode.
"""

import decimal
from decimal import ROUND_DOWN, Decimal, getcontext
from typing import Optional

from django.conf import settings

from apps.core.exceptions import InvalidLoanTerms

# Set high precision for intermediate financial calculations
getcontext().prec = 28

TWO_PLACES = Decimal('0.01')
ZERO = Decimal('0.00')


def get_rounding_mode() -> str:
    """
    Return the decimal rounding mode used for currency amounts.

    Read from ``settings.EMI_ROUNDING`` (e.g. ``'ROUND_HALF_UP'``) so an
    institution whose statements round differently can match them.
    """
    name = getattr(settings, 'EMI_ROUNDING', 'ROUND_HALF_UP')
    mode = getattr(decimal, name, None)
    if not isinstance(mode, str) or not name.startswith('ROUND_'):
        raise ValueError(f"Unknown rounding mode: {name!r}")
    return mode


def to_decimal(value) -> Decimal:
    """Coerce int, float, str or Decimal to Decimal via its string form."""
    if isinstance(value, Decimal):
        return value
    return Decimal(str(value))


def round_money(value, rounding: Optional[str] = None) -> Decimal:
    """Quantize an amount to the minor currency unit."""
    return to_decimal(value).quantize(
        TWO_PLACES,
        rounding=rounding or get_rounding_mode(),
    )


def to_money(value) -> Decimal:
    """Alias of round_money for values entering the engine."""
    return round_money(value)


def monthly_rate(annual_rate) -> Decimal:
    """Convert an annual percentage rate (9.5 = 9.5%) to a monthly fraction."""
    return to_decimal(annual_rate) / Decimal('1200')


def calculate_emi(
    principal: Decimal,
    annual_rate: Decimal,
    tenure_months: int,
) -> Decimal:
    """
    Calculate EMI using compound interest formula with Decimal precision.

    EMI = P × r × (1+r)^n / ((1+r)^n - 1)

    Where:
        P = principal (loan amount)
        r = monthly interest rate (annual_rate / 12 / 100)
        n = tenure in months

    At 0% the EMI is P / n truncated to the minor unit; the remainder is
    carried by the final installment of the schedule, never by the EMI.

    Args:
        principal: Loan amount (must be > 0). Accepts Decimal, float, or int.
        annual_rate: Annual interest rate as percentage (e.g., 12 for 12%).
        tenure_months: Number of months for repayment (must be >= 1).

    Returns:
        Monthly EMI amount as Decimal, quantized to 2 decimal places.

    Raises:
        InvalidLoanTerms: If inputs are invalid.
    """
    principal = to_decimal(principal)
    annual_rate = to_decimal(annual_rate)

    if principal <= 0:
        raise InvalidLoanTerms(
            "Principal must be greater than 0.", principal=principal,
        )
    if annual_rate < 0:
        raise InvalidLoanTerms(
            "Interest rate cannot be negative.", annual_rate=annual_rate,
        )
    if tenure_months is None or int(tenure_months) < 1:
        raise InvalidLoanTerms(
            "Tenure must be at least 1 month.", tenure_months=tenure_months,
        )
    tenure_months = int(tenure_months)

    # Handle 0% interest rate edge case
    if annual_rate == 0:
        emi = (principal / Decimal(tenure_months)).quantize(TWO_PLACES, rounding=ROUND_DOWN)
        if emi <= 0:
            raise InvalidLoanTerms(
                "Principal is too small to spread over the tenure at 0% interest.",
                principal=principal,
                tenure_months=tenure_months,
            )
        return emi

    rate = monthly_rate(annual_rate)

    # Compound interest EMI formula using Decimal exponentiation
    one_plus_r = Decimal('1') + rate
    power_term = one_plus_r ** tenure_months
    emi = principal * rate * power_term / (power_term - Decimal('1'))

    return round_money(emi)
