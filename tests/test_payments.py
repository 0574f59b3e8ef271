"""
Tests for loan creation, term edits and marking EMIs as paid.
"""

from datetime import date
from decimal import Decimal

from django.test import TestCase

from apps.core.exceptions import (
    AlreadyPaid,
    EmiNotFoundError,
    InvalidLoanTerms,
    LoanNotFoundError,
    NonAmortizingSchedule,
    ScheduleHasHistory,
)
from apps.loans.models import EmiEvent, EmiScheduleEntry, Loan
from apps.loans.services import (
    LoanService,
    PartPaymentService,
    PaymentService,
    ScheduleService,
)


def make_loan(**overrides):
    data = {
        'bank_name': 'HDFC Bank',
        'account_number': 'HL-0001',
        'principal_amount': Decimal('120000'),
        'interest_rate': Decimal('12'),
        'tenure_months': 12,
        'start_date': date(2024, 1, 1),
    }
    data.update(overrides)
    return LoanService.create_loan(data)


class CreateLoanTests(TestCase):
    """Loan creation generates a schedule in the same transaction."""

    def test_schedule_generated(self):
        loan = make_loan()

        self.assertEqual(loan.schedule.count(), 12)
        self.assertFalse(loan.emi_overridden)
        first = loan.schedule.order_by('sequence').first()
        self.assertEqual(first.installment_amount, loan.emi_amount)
        self.assertEqual(first.due_date, date(2024, 2, 1))
        self.assertEqual(first.status, EmiScheduleEntry.Status.PENDING)

    def test_emi_override_kept(self):
        loan = make_loan(emi_amount=Decimal('50000'))

        self.assertTrue(loan.emi_overridden)
        self.assertEqual(loan.emi_amount, Decimal('50000.00'))
        self.assertEqual(loan.schedule.count(), 3)

    def test_non_amortizing_override_creates_nothing(self):
        with self.assertRaises(NonAmortizingSchedule):
            make_loan(emi_amount=Decimal('1000'))
        self.assertEqual(Loan.objects.count(), 0)
        self.assertEqual(EmiScheduleEntry.objects.count(), 0)

    def test_regenerate_replaces_schedule(self):
        loan = make_loan()
        old_ids = set(loan.schedule.values_list('pk', flat=True))

        entries = ScheduleService.generate_schedule(loan.pk)

        self.assertEqual(len(entries), 12)
        new_ids = set(loan.schedule.values_list('pk', flat=True))
        self.assertFalse(old_ids & new_ids)

    def test_missing_loan(self):
        with self.assertRaises(LoanNotFoundError):
            ScheduleService.generate_schedule(9999)


class UpdateTermsTests(TestCase):
    """Term edits regenerate the schedule."""

    def test_tenure_change_regenerates(self):
        loan = make_loan()
        loan = LoanService.update_terms(loan.pk, {'tenure_months': 24})

        self.assertEqual(loan.schedule.count(), 24)
        self.assertLess(loan.emi_amount, Decimal('10660.00'))

    def test_descriptive_edit_keeps_schedule(self):
        loan = make_loan()
        ids = set(loan.schedule.values_list('pk', flat=True))

        LoanService.update_terms(loan.pk, {'bank_name': 'SBI'})

        self.assertEqual(set(loan.schedule.values_list('pk', flat=True)), ids)
        self.assertEqual(Loan.objects.get(pk=loan.pk).bank_name, 'SBI')

    def test_edit_after_payments_is_logged(self):
        loan = make_loan()
        first = loan.schedule.order_by('sequence').first()
        PaymentService.mark_paid(first.pk, date(2024, 2, 1), 'UPI')

        with self.assertLogs('apps.loans.services', level='WARNING') as logs:
            LoanService.update_terms(loan.pk, {'interest_rate': Decimal('10')})

        self.assertIn('discards them', logs.output[0])
        self.assertFalse(
            loan.schedule.filter(status=EmiScheduleEntry.Status.PAID).exists()
        )

    def test_clearing_override_recalculates(self):
        loan = make_loan(emi_amount=Decimal('50000'))
        loan = LoanService.update_terms(loan.pk, {'emi_amount': None})

        self.assertFalse(loan.emi_overridden)
        self.assertEqual(loan.schedule.count(), 12)


class MarkPaidTests(TestCase):
    """Marking a single EMI as paid."""

    def setUp(self):
        self.loan = make_loan()
        self.entries = list(self.loan.schedule.order_by('sequence'))

    def test_mark_paid(self):
        entry = PaymentService.mark_paid(self.entries[0].pk, date(2024, 2, 1), 'UPI')

        self.assertEqual(entry.status, EmiScheduleEntry.Status.PAID)
        self.assertEqual(entry.paid_date, date(2024, 2, 1))
        self.assertEqual(entry.payment_method, 'UPI')
        self.assertEqual(entry.paid_amount, entry.installment_amount)

    def test_other_rows_untouched(self):
        before = list(
            self.loan.schedule.exclude(pk=self.entries[0].pk)
            .values_list('pk', 'status', 'installment_amount')
        )
        PaymentService.mark_paid(self.entries[0].pk, date(2024, 2, 1), 'UPI')
        after = list(
            self.loan.schedule.exclude(pk=self.entries[0].pk)
            .values_list('pk', 'status', 'installment_amount')
        )
        self.assertEqual(before, after)

    def test_out_of_order_payment_allowed(self):
        entry = PaymentService.mark_paid(self.entries[5].pk, date(2024, 7, 1), 'NEFT')
        self.assertEqual(entry.status, EmiScheduleEntry.Status.PAID)

    def test_second_payment_rejected(self):
        PaymentService.mark_paid(self.entries[0].pk, date(2024, 2, 1), 'UPI')

        with self.assertRaises(AlreadyPaid) as ctx:
            PaymentService.mark_paid(self.entries[0].pk, date(2024, 2, 2), 'Cash')

        self.assertEqual(ctx.exception.context['emi_id'], self.entries[0].pk)
        entry = EmiScheduleEntry.objects.get(pk=self.entries[0].pk)
        self.assertEqual(entry.paid_date, date(2024, 2, 1))
        self.assertEqual(entry.payment_method, 'UPI')

    def test_backdated_payment_logged(self):
        with self.assertLogs('apps.loans.services', level='WARNING') as logs:
            entry = PaymentService.mark_paid(
                self.entries[0].pk, date(2023, 12, 1), 'Cheque',
            )
        self.assertEqual(entry.status, EmiScheduleEntry.Status.PAID)
        self.assertIn('before loan start', logs.output[0])

    def test_amount_mismatch_logged(self):
        with self.assertLogs('apps.loans.services', level='WARNING'):
            entry = PaymentService.mark_paid(
                self.entries[0].pk, date(2024, 2, 1), 'Cash',
                amount=Decimal('10000'),
            )
        self.assertEqual(entry.paid_amount, Decimal('10000.00'))

    def test_missing_entry(self):
        with self.assertRaises(EmiNotFoundError):
            PaymentService.mark_paid(999999, date(2024, 2, 1), 'UPI')

    def test_last_payment_completes_loan(self):
        for entry in self.entries[:-1]:
            PaymentService.mark_paid(entry.pk, entry.due_date, 'Auto Debit')
        self.loan.refresh_from_db()
        self.assertEqual(self.loan.status, Loan.Status.ACTIVE)

        PaymentService.mark_paid(self.entries[-1].pk, date(2025, 1, 1), 'Auto Debit')

        self.loan.refresh_from_db()
        self.assertEqual(self.loan.status, Loan.Status.COMPLETED)
        self.assertEqual(self.loan.closure_date, date(2025, 1, 1))
        self.assertIsNotNone(self.loan.closed_at)


class BulkMarkPaidTests(TestCase):
    """Marking several EMIs in one call."""

    def setUp(self):
        self.loan = make_loan()
        self.entries = list(self.loan.schedule.order_by('sequence'))

    def test_bulk_mark_paid(self):
        ids = [e.pk for e in self.entries[:3]]
        settled = PaymentService.bulk_mark_paid(self.loan.pk, ids, date(2024, 4, 1), 'UPI')

        self.assertEqual([e.sequence for e in settled], [1, 2, 3])
        self.assertEqual(
            self.loan.schedule.filter(status=EmiScheduleEntry.Status.PAID).count(), 3,
        )

    def test_all_or_nothing(self):
        PaymentService.mark_paid(self.entries[1].pk, date(2024, 3, 1), 'UPI')
        ids = [e.pk for e in self.entries[:3]]

        with self.assertRaises(AlreadyPaid):
            PaymentService.bulk_mark_paid(self.loan.pk, ids, date(2024, 4, 1), 'UPI')

        self.assertEqual(
            self.loan.schedule.filter(status=EmiScheduleEntry.Status.PAID).count(), 1,
        )

    def test_foreign_entry_rejected(self):
        other = make_loan(account_number='HL-0002')
        foreign = other.schedule.order_by('sequence').first()

        with self.assertRaises(EmiNotFoundError):
            PaymentService.bulk_mark_paid(
                self.loan.pk, [self.entries[0].pk, foreign.pk], date(2024, 2, 1), 'UPI',
            )

    def test_paying_everything_completes_loan(self):
        ids = [e.pk for e in self.entries]
        PaymentService.bulk_mark_paid(self.loan.pk, ids, date(2025, 1, 1), 'UPI')

        self.loan.refresh_from_db()
        self.assertEqual(self.loan.status, Loan.Status.COMPLETED)


class GenerateScheduleGuardTests(TestCase):
    """Regeneration is refused once the schedule carries history."""

    def setUp(self):
        self.loan = make_loan()
        self.entries = list(self.loan.schedule.order_by('sequence'))

    def test_paid_rows_block_regeneration(self):
        PaymentService.mark_paid(self.entries[0].pk, date(2024, 2, 1), 'UPI')

        with self.assertRaises(ScheduleHasHistory) as ctx:
            ScheduleService.generate_schedule(self.loan.pk)

        self.assertEqual(ctx.exception.context['paid_count'], 1)
        self.assertEqual(
            self.loan.schedule.filter(status=EmiScheduleEntry.Status.PAID).count(), 1,
        )

    def test_events_block_regeneration(self):
        PartPaymentService.apply_part_payment(
            self.loan.pk,
            Decimal('20000'),
            date(2024, 1, 10),
            EmiEvent.ReductionPolicy.TENURE_REDUCTION,
        )
        rows_before = list(self.loan.schedule.order_by('pk').values_list('pk', flat=True))

        with self.assertRaises(ScheduleHasHistory):
            ScheduleService.generate_schedule(self.loan.pk)

        rows_after = list(self.loan.schedule.order_by('pk').values_list('pk', flat=True))
        self.assertEqual(rows_after, rows_before)

    def test_term_edit_still_rebuilds(self):
        PaymentService.mark_paid(self.entries[0].pk, date(2024, 2, 1), 'UPI')

        with self.assertLogs('apps.loans.services', level='WARNING'):
            loan = LoanService.update_terms(self.loan.pk, {'tenure_months': 24})

        self.assertEqual(loan.schedule.count(), 24)


class ZeroRateTinyLoanTests(TestCase):
    """A 0% loan too small to split over its tenure is invalid input."""

    def test_rejected_as_invalid_terms(self):
        with self.assertRaises(InvalidLoanTerms):
            make_loan(
                principal_amount=Decimal('0.05'),
                interest_rate=Decimal('0'),
                tenure_months=12,
            )
        self.assertEqual(Loan.objects.count(), 0)
