"""
Tests for EMI calculation and currency rounding using Decimal precision.
"""

from decimal import Decimal

from django.test import TestCase, override_settings

from apps.core.exceptions import InvalidLoanTerms
from apps.core.utils import (
    calculate_emi,
    get_rounding_mode,
    monthly_rate,
    round_money,
)


class CalculateEMITests(TestCase):
    """Test the compound interest EMI formula with Decimal."""

    def test_standard_emi(self):
        """Standard loan: 500k, 12%, 24 months."""
        emi = calculate_emi(Decimal('500000'), Decimal('12'), 24)
        self.assertIsInstance(emi, Decimal)
        self.assertAlmostEqual(float(emi), 23536.74, places=0)

    def test_home_loan_emi(self):
        """500k at 9.5% over 240 months lands a little above 4.6k."""
        emi = calculate_emi(Decimal('500000'), Decimal('9.5'), 240)
        self.assertGreater(emi, Decimal('4600'))
        self.assertLess(emi, Decimal('4700'))
        # First month's interest must be covered with principal to spare
        self.assertGreater(emi, Decimal('3958.33'))

    def test_zero_interest(self):
        """0% interest → simple division."""
        emi = calculate_emi(Decimal('120000'), Decimal('0'), 12)
        self.assertEqual(emi, Decimal('10000.00'))

    def test_zero_interest_truncates_remainder(self):
        """At 0% the EMI is truncated; the last row carries the remainder."""
        emi = calculate_emi(Decimal('100000'), Decimal('0'), 3)
        self.assertEqual(emi, Decimal('33333.33'))

    def test_one_month_tenure(self):
        """1 month tenure."""
        emi = calculate_emi(Decimal('100000'), Decimal('12'), 1)
        self.assertEqual(emi, Decimal('101000.00'))

    def test_small_loan(self):
        """Very small loan."""
        emi = calculate_emi(Decimal('1000'), Decimal('10'), 6)
        self.assertIsInstance(emi, Decimal)
        self.assertGreater(emi, Decimal('0'))

    def test_large_loan(self):
        """Large loan: 50 crore, 10%, 360 months."""
        emi = calculate_emi(Decimal('500000000'), Decimal('10'), 360)
        self.assertGreater(emi, Decimal('4000000'))

    def test_low_interest(self):
        """Very low interest rate: 0.5%."""
        emi = calculate_emi(Decimal('100000'), Decimal('0.5'), 12)
        self.assertGreater(emi, Decimal('8000'))

    def test_invalid_principal(self):
        """Negative principal raises InvalidLoanTerms."""
        with self.assertRaises(InvalidLoanTerms):
            calculate_emi(Decimal('-1'), Decimal('10'), 12)

    def test_zero_principal(self):
        with self.assertRaises(InvalidLoanTerms):
            calculate_emi(Decimal('0'), Decimal('10'), 12)

    def test_negative_rate(self):
        with self.assertRaises(InvalidLoanTerms) as ctx:
            calculate_emi(Decimal('100000'), Decimal('-1'), 12)
        self.assertEqual(ctx.exception.context['annual_rate'], '-1')

    def test_zero_tenure(self):
        with self.assertRaises(InvalidLoanTerms):
            calculate_emi(Decimal('100000'), Decimal('10'), 0)

    def test_returns_two_decimal_places(self):
        """EMI should always be quantized to 2 decimal places."""
        emi = calculate_emi(Decimal('333333'), Decimal('7.77'), 17)
        self.assertEqual(emi, emi.quantize(Decimal('0.01')))

    def test_manual_verification_15_percent(self):
        """Manually verified: P=500000, r=15%/12=0.0125, n=24."""
        emi = calculate_emi(Decimal('500000'), Decimal('15'), 24)
        self.assertEqual(emi, Decimal('24243.32'))

    def test_accepts_int_and_float_inputs(self):
        """calculate_emi should coerce int/float to Decimal."""
        emi1 = calculate_emi(100000, 12, 12)
        emi2 = calculate_emi(100000.0, 12.0, 12)
        emi3 = calculate_emi(Decimal('100000'), Decimal('12'), 12)
        self.assertEqual(emi1, emi3)
        self.assertEqual(emi2, emi3)


class RoundingTests(TestCase):
    """Tests for the configurable currency rounding."""

    def test_default_is_half_up(self):
        self.assertEqual(get_rounding_mode(), 'ROUND_HALF_UP')
        self.assertEqual(round_money(Decimal('1.235')), Decimal('1.24'))

    @override_settings(EMI_ROUNDING='ROUND_HALF_EVEN')
    def test_bankers_rounding(self):
        self.assertEqual(round_money(Decimal('1.225')), Decimal('1.22'))
        self.assertEqual(round_money(Decimal('1.235')), Decimal('1.24'))

    @override_settings(EMI_ROUNDING='ROUND_DOWN')
    def test_round_down(self):
        self.assertEqual(round_money(Decimal('1.239')), Decimal('1.23'))

    @override_settings(EMI_ROUNDING='ROUND_SIDEWAYS')
    def test_unknown_mode_rejected(self):
        with self.assertRaises(ValueError):
            round_money(Decimal('1.235'))

    def test_explicit_mode_wins(self):
        self.assertEqual(
            round_money(Decimal('1.239'), rounding='ROUND_DOWN'),
            Decimal('1.23'),
        )

    def test_monthly_rate(self):
        self.assertEqual(monthly_rate(Decimal('12')), Decimal('0.01'))


class ZeroRateTruncationTests(TestCase):
    """A 0% EMI that truncates to nothing is invalid input."""

    def test_principal_below_one_paisa_per_month(self):
        with self.assertRaises(InvalidLoanTerms) as ctx:
            calculate_emi(Decimal('0.05'), Decimal('0'), 12)
        self.assertEqual(ctx.exception.context['tenure_months'], 12)

    def test_smallest_spreadable_principal(self):
        self.assertEqual(calculate_emi(Decimal('0.12'), Decimal('0'), 12), Decimal('0.01'))
