"""
Loan service layer.

Owns every read-modify-write sequence on a loan's schedule: schedule
generation, payment marking, part-payments, foreclosure and refinance
projection. Mutating operations run in a transaction and lock the loan
row first with select_for_update(), which serializes them per loan.
"""

import logging
from datetime import date
from decimal import Decimal
from typing import Optional

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from apps.core.exceptions import (
    AlreadyPaid,
    EmiNotFoundError,
    ExcessivePayment,
    InvalidLoanTerms,
    InvalidPaymentAmount,
    LoanNotActive,
    LoanNotFoundError,
    ScheduleHasHistory,
)
from apps.core.utils import ZERO, calculate_emi, to_decimal, to_money
from apps.loans.amortization import (
    accrued_interest,
    build_schedule,
    due_date_for,
    sum_installments,
    sum_interest,
)
from apps.loans.models import EmiEvent, EmiScheduleEntry, Loan

logger = logging.getLogger(__name__)

Policy = EmiEvent.ReductionPolicy

TERM_FIELDS = ('principal_amount', 'interest_rate', 'tenure_months', 'start_date')


def _lock_loan(loan_id: int) -> Loan:
    """Fetch a loan and hold its row lock until the transaction ends."""
    try:
        return Loan.objects.select_for_update().get(pk=loan_id)
    except Loan.DoesNotExist:
        raise LoanNotFoundError(detail=f"Loan with ID {loan_id} not found.")


def _ensure_active(loan: Loan) -> None:
    if not loan.is_active:
        raise LoanNotActive(
            f"Loan {loan.pk} is {loan.status}.",
            loan_id=loan.pk,
            status=loan.status,
        )


def _last_paid_entry(loan: Loan) -> Optional[EmiScheduleEntry]:
    return (
        loan.schedule.filter(status=EmiScheduleEntry.Status.PAID)
        .order_by('-sequence')
        .first()
    )


def _unpaid_tail(loan: Loan, last_paid: Optional[EmiScheduleEntry]) -> list:
    """Pending rows after the most recent paid row, in sequence order."""
    rows = loan.schedule.filter(status=EmiScheduleEntry.Status.PENDING)
    if last_paid is not None:
        rows = rows.filter(sequence__gt=last_paid.sequence)
    return list(rows.order_by('sequence'))


def _outstanding(loan: Loan, last_paid: Optional[EmiScheduleEntry], tail: list) -> Decimal:
    """
    Principal outstanding before the first unpaid tail row.

    Equals the last paid row's remaining principal (or the loan principal
    when nothing is paid) net of any part-payments applied since, which
    are already reflected in the regenerated tail.
    """
    if tail:
        return tail[0].remaining_principal + tail[0].principal_component
    if last_paid is not None:
        return last_paid.remaining_principal
    return loan.principal_amount


def _write_rows(loan: Loan, rows, event: Optional[EmiEvent] = None) -> list:
    entries = [
        EmiScheduleEntry(
            loan=loan,
            sequence=row.sequence,
            due_date=row.due_date,
            installment_amount=row.installment_amount,
            interest_component=row.interest_component,
            principal_component=row.principal_component,
            remaining_principal=row.remaining_principal,
            is_adjusted=event is not None,
            adjustment_event=event,
        )
        for row in rows
    ]
    return EmiScheduleEntry.objects.bulk_create(entries)


class ScheduleService:
    """Generation of a loan's full amortization schedule."""

    @staticmethod
    def _regenerate(loan: Loan) -> list:
        """Replace the whole schedule of a locked loan from its terms."""
        override = loan.emi_amount if loan.emi_overridden else None
        rows = build_schedule(
            principal=loan.principal_amount,
            annual_rate=loan.interest_rate,
            tenure_months=loan.tenure_months,
            start_date=loan.start_date,
            installment=override,
        )

        deleted, _ = loan.schedule.all().delete()
        entries = _write_rows(loan, rows)

        if override is None:
            loan.emi_amount = calculate_emi(
                loan.principal_amount, loan.interest_rate, loan.tenure_months,
            )
        loan.save(update_fields=['emi_amount', 'updated_at'])

        logger.info(
            "Generated schedule for loan #%d: %d rows (replaced %d), emi=%s",
            loan.pk,
            len(entries),
            deleted,
            loan.emi_amount,
        )
        return entries

    @classmethod
    @transaction.atomic
    def generate_schedule(cls, loan_id: int) -> list:
        """
        Regenerate the full schedule of a loan from its current terms.

        Only allowed while nothing has been paid or recorded against the
        schedule. Term edits go through LoanService.update_terms instead.

        Args:
            loan_id: The loan's primary key.

        Returns:
            List of the new EmiScheduleEntry rows, all pending.

        Raises:
            ScheduleHasHistory: If the schedule has paid rows or events.
        """
        loan = _lock_loan(loan_id)
        _ensure_active(loan)

        paid = loan.schedule.filter(status=EmiScheduleEntry.Status.PAID).count()
        events = loan.events.count()
        if paid or events:
            logger.warning(
                "Refusing to regenerate schedule of loan #%d: %d paid rows, %d events",
                loan.pk,
                paid,
                events,
            )
            raise ScheduleHasHistory(
                f"Loan {loan.pk} has recorded payments or events; "
                "edit its terms to rebuild the schedule.",
                loan_id=loan.pk,
                paid_count=paid,
                event_count=events,
            )
        return cls._regenerate(loan)


class LoanService:
    """Loan creation, term edits, retrieval and summaries."""

    @staticmethod
    @transaction.atomic
    def create_loan(validated_data: dict) -> Loan:
        """
        Create a loan and its schedule atomically.

        A supplied ``emi_amount`` is treated as a manual override.

        Args:
            validated_data: Loan terms and descriptive fields.

        Returns:
            The newly created Loan instance.
        """
        data = dict(validated_data)
        override = data.pop('emi_amount', None)

        loan = Loan.objects.create(
            emi_amount=to_money(override) if override is not None else None,
            emi_overridden=override is not None,
            **data,
        )
        # Lock the new row so concurrent writers queue behind generation
        loan = _lock_loan(loan.pk)
        ScheduleService._regenerate(loan)

        logger.info(
            "Loan #%d created: principal=%s, rate=%s%%, tenure=%d, emi=%s%s",
            loan.pk,
            loan.principal_amount,
            loan.interest_rate,
            loan.tenure_months,
            loan.emi_amount,
            ' (override)' if loan.emi_overridden else '',
        )
        return loan

    @staticmethod
    @transaction.atomic
    def update_terms(loan_id: int, validated_data: dict) -> Loan:
        """
        Edit a loan and regenerate its schedule when terms change.

        Editing terms after payments exist invalidates the prior schedule;
        the recorded payments are discarded with the old rows.
        """
        loan = _lock_loan(loan_id)
        _ensure_active(loan)

        data = dict(validated_data)
        override = data.pop('emi_amount', Ellipsis)
        terms_changed = override is not Ellipsis

        for field, value in data.items():
            if field in TERM_FIELDS and getattr(loan, field) != value:
                terms_changed = True
            setattr(loan, field, value)

        if override is not Ellipsis:
            loan.emi_overridden = override is not None
            loan.emi_amount = to_money(override) if override is not None else None

        loan.save()

        if terms_changed:
            paid = loan.schedule.filter(status=EmiScheduleEntry.Status.PAID).count()
            if paid:
                logger.warning(
                    "Loan #%d terms edited after %d payments; "
                    "regenerating schedule discards them",
                    loan.pk,
                    paid,
                )
            ScheduleService._regenerate(loan)

        return loan

    @staticmethod
    @transaction.atomic
    def delete_loan(loan_id: int) -> None:
        """Delete a loan together with its schedule and events."""
        loan = _lock_loan(loan_id)
        loan.delete()
        logger.info("Loan #%d deleted", loan_id)

    @staticmethod
    def get_loan(loan_id: int) -> Loan:
        """
        Retrieve a single loan by ID.

        Raises:
            LoanNotFoundError: If the loan does not exist.
        """
        try:
            return Loan.objects.get(pk=loan_id)
        except Loan.DoesNotExist:
            raise LoanNotFoundError(detail=f"Loan with ID {loan_id} not found.")

    @staticmethod
    def list_loans(status: Optional[str] = None):
        loans = Loan.objects.all()
        if status:
            loans = loans.filter(status=status)
        return loans.order_by('-created_at')

    @classmethod
    def get_schedule(cls, loan_id: int):
        return cls.get_loan(loan_id).schedule.order_by('sequence')

    @classmethod
    def get_events(cls, loan_id: int):
        return cls.get_loan(loan_id).events.order_by('created_at', 'id')

    @classmethod
    def summary(cls, loan_id: int) -> dict:
        """
        Repayment summary of a loan for dashboard display.

        Superseded rows count neither as paid nor as pending.
        """
        loan = cls.get_loan(loan_id)
        entries = list(loan.schedule.order_by('sequence'))
        paid = [e for e in entries if e.status == EmiScheduleEntry.Status.PAID]
        pending = [e for e in entries if e.status == EmiScheduleEntry.Status.PENDING]

        if loan.is_active:
            last_paid = paid[-1] if paid else None
            if last_paid is not None:
                tail = [e for e in pending if e.sequence > last_paid.sequence]
            else:
                tail = pending
            outstanding = _outstanding(loan, last_paid, tail)
        else:
            outstanding = ZERO

        repaid = loan.principal_amount - outstanding
        progress = (repaid / loan.principal_amount * 100).quantize(Decimal('0.01'))

        interest_saved = loan.events.aggregate(
            total=Sum('interest_saved')
        )['total'] or ZERO

        return {
            'loan_id': loan.pk,
            'status': loan.status,
            'emi_amount': loan.emi_amount,
            'paid_count': len(paid),
            'pending_count': len(pending),
            'total_paid': sum(
                (e.paid_amount if e.paid_amount is not None else e.installment_amount
                 for e in paid),
                ZERO,
            ),
            'interest_paid': sum_interest(paid),
            'outstanding_principal': outstanding,
            'remaining_interest': sum_interest(pending),
            'total_interest_saved': interest_saved,
            'progress_percent': progress,
            'next_due_date': pending[0].due_date if pending else None,
            'next_due_amount': pending[0].installment_amount if pending else None,
        }


class PaymentService:
    """Marking individual installments as paid."""

    @staticmethod
    def _settle(
        loan: Loan,
        entry: EmiScheduleEntry,
        paid_date: date,
        payment_method: str,
        amount: Optional[Decimal] = None,
    ) -> EmiScheduleEntry:
        if not entry.is_pending:
            raise AlreadyPaid(
                f"EMI #{entry.sequence} is not pending (status: {entry.status}).",
                emi_id=entry.pk,
                sequence=entry.sequence,
                status=entry.status,
                paid_date=entry.paid_date.isoformat() if entry.paid_date else None,
            )

        if paid_date < loan.start_date:
            logger.warning(
                "EMI #%d of loan #%d paid on %s, before loan start %s",
                entry.sequence,
                loan.pk,
                paid_date,
                loan.start_date,
            )

        paid_amount = entry.installment_amount
        if amount is not None:
            paid_amount = to_money(amount)
            if paid_amount != entry.installment_amount:
                logger.warning(
                    "EMI #%d of loan #%d paid %s, expected %s",
                    entry.sequence,
                    loan.pk,
                    paid_amount,
                    entry.installment_amount,
                )

        entry.status = EmiScheduleEntry.Status.PAID
        entry.paid_date = paid_date
        entry.payment_method = payment_method
        entry.paid_amount = paid_amount
        entry.save(update_fields=['status', 'paid_date', 'payment_method', 'paid_amount'])

        logger.info(
            "EMI #%d of loan #%d marked as paid. Amount: %s, Method: %s",
            entry.sequence,
            loan.pk,
            paid_amount,
            payment_method,
        )
        return entry

    @staticmethod
    def _complete_if_settled(loan: Loan, paid_date: date) -> None:
        if loan.is_active and not loan.schedule.filter(
            status=EmiScheduleEntry.Status.PENDING,
        ).exists():
            loan.status = Loan.Status.COMPLETED
            loan.closure_date = paid_date
            loan.closed_at = timezone.now()
            loan.save(update_fields=['status', 'closure_date', 'closed_at', 'updated_at'])
            logger.info("Loan #%d fully repaid", loan.pk)

    @classmethod
    @transaction.atomic
    def mark_paid(
        cls,
        entry_id: int,
        paid_date: date,
        payment_method: str,
        amount: Optional[Decimal] = None,
    ) -> EmiScheduleEntry:
        """
        Mark one pending installment as paid.

        Backdated payments and amounts differing from the installment are
        logged, not rejected. Other rows are left untouched.

        Args:
            entry_id: Primary key of the schedule entry.
            paid_date: Settlement date.
            payment_method: How the installment was paid.
            amount: Amount actually paid. Defaults to the installment.

        Returns:
            The updated EmiScheduleEntry.

        Raises:
            EmiNotFoundError: If the entry does not exist.
            AlreadyPaid: If the entry is not pending.
        """
        loan_id = (
            EmiScheduleEntry.objects.filter(pk=entry_id)
            .values_list('loan_id', flat=True)
            .first()
        )
        if loan_id is None:
            raise EmiNotFoundError(detail=f"EMI with ID {entry_id} not found.")

        loan = _lock_loan(loan_id)
        try:
            entry = loan.schedule.select_for_update().get(pk=entry_id)
        except EmiScheduleEntry.DoesNotExist:
            # Replaced by a concurrent regeneration after the lookup above
            raise EmiNotFoundError(detail=f"EMI with ID {entry_id} not found.")

        entry = cls._settle(loan, entry, paid_date, payment_method, amount)
        cls._complete_if_settled(loan, paid_date)
        return entry

    @classmethod
    @transaction.atomic
    def bulk_mark_paid(
        cls,
        loan_id: int,
        entry_ids: list,
        paid_date: date,
        payment_method: str,
    ) -> list:
        """
        Mark several installments of one loan as paid, all or nothing.

        Raises:
            EmiNotFoundError: If any id does not belong to the loan.
            AlreadyPaid: If any entry is not pending.
        """
        loan = _lock_loan(loan_id)
        entries = {
            e.pk: e
            for e in loan.schedule.select_for_update().filter(pk__in=entry_ids)
        }
        missing = [pk for pk in entry_ids if pk not in entries]
        if missing:
            raise EmiNotFoundError(
                detail=f"EMIs {missing} not found on loan {loan_id}."
            )

        settled = [
            cls._settle(loan, entry, paid_date, payment_method)
            for entry in sorted(entries.values(), key=lambda e: e.sequence)
        ]
        cls._complete_if_settled(loan, paid_date)

        logger.info(
            "Bulk marked %d EMIs of loan #%d as paid (total %s)",
            len(settled),
            loan.pk,
            sum_installments(settled),
        )
        return settled


def _tail_keeping_installment(loan: Loan, balance: Decimal, tail: list) -> list:
    """Tenure reduction: same EMI, stop as soon as the balance is cleared."""
    return build_schedule(
        principal=balance,
        annual_rate=loan.interest_rate,
        tenure_months=len(tail),
        start_date=loan.start_date,
        installment=loan.emi_amount,
        first_sequence=tail[0].sequence,
    )


def _tail_keeping_tenure(loan: Loan, balance: Decimal, tail: list) -> list:
    """
    Installment reduction: same row count, EMI recomputed for the balance.

    The installment never rises above the current one; with a low
    overridden EMI the final row carries whatever is left.
    """
    installment = calculate_emi(balance, loan.interest_rate, len(tail))
    if loan.emi_amount is not None:
        installment = min(installment, loan.emi_amount)
    return build_schedule(
        principal=balance,
        annual_rate=loan.interest_rate,
        tenure_months=len(tail),
        start_date=loan.start_date,
        installment=installment,
        first_sequence=tail[0].sequence,
    )


TAIL_BUILDERS = {
    Policy.TENURE_REDUCTION: _tail_keeping_installment,
    Policy.INSTALLMENT_REDUCTION: _tail_keeping_tenure,
}


class PartPaymentService:
    """Lump-sum prepayments against outstanding principal."""

    @classmethod
    @transaction.atomic
    def apply_part_payment(
        cls,
        loan_id: int,
        amount: Decimal,
        event_date: date,
        policy: str,
    ) -> dict:
        """
        Apply a lump-sum part-payment and regenerate the unpaid tail.

        A payment equal to the full outstanding principal is handed to the
        foreclosure engine instead.

        Args:
            loan_id: The loan's primary key.
            amount: Lump sum to apply against principal.
            event_date: Date of the part-payment.
            policy: A ReductionPolicy value.

        Returns:
            Dict with the regenerated tail, interest saved and the event.

        Raises:
            LoanNotActive: If the loan is closed.
            InvalidPaymentAmount: If amount is not positive.
            ExcessivePayment: If amount exceeds the outstanding principal.
        """
        try:
            policy = Policy(policy)
        except ValueError:
            raise InvalidLoanTerms(
                f"Unknown reduction policy: {policy}.",
                allowed=list(Policy.values),
            )
        amount = to_money(amount)

        loan = _lock_loan(loan_id)
        _ensure_active(loan)

        if amount <= 0:
            raise InvalidPaymentAmount(amount=amount)

        last_paid = _last_paid_entry(loan)
        tail = _unpaid_tail(loan, last_paid)
        outstanding = _outstanding(loan, last_paid, tail)

        if amount > outstanding:
            raise ExcessivePayment(
                f"Part-payment of {amount} exceeds outstanding principal {outstanding}.",
                amount=amount,
                outstanding=outstanding,
            )

        if amount == outstanding:
            logger.info(
                "Part-payment of %s clears loan #%d; foreclosing",
                amount,
                loan.pk,
            )
            result = ForeclosureService._foreclose(loan, event_date)
            return {
                'foreclosed': True,
                'updated_tail': [],
                'interest_saved': result['interest_saved'],
                'event': result['event'],
                'foreclosure': result,
            }

        new_outstanding = outstanding - amount
        rows = TAIL_BUILDERS[policy](loan, new_outstanding, tail)

        interest_saved = sum_interest(tail) - sum_interest(rows)
        new_emi = rows[0].installment_amount if len(rows) > 1 else loan.emi_amount

        event = EmiEvent.objects.create(
            loan=loan,
            event_type=EmiEvent.EventType.PART_PAYMENT,
            event_date=event_date,
            amount=amount,
            reduction_policy=policy,
            interest_saved=interest_saved,
            new_tenure_months=len(rows),
            new_emi_amount=new_emi,
        )

        EmiScheduleEntry.objects.filter(pk__in=[e.pk for e in tail]).delete()
        entries = _write_rows(loan, rows, event=event)

        if new_emi != loan.emi_amount:
            loan.emi_amount = new_emi
            loan.save(update_fields=['emi_amount', 'updated_at'])

        logger.info(
            "Part-payment of %s on loan #%d (%s): rows %d -> %d, "
            "emi %s, interest saved %s",
            amount,
            loan.pk,
            policy.value,
            len(tail),
            len(rows),
            new_emi,
            interest_saved,
        )

        return {
            'foreclosed': False,
            'updated_tail': entries,
            'interest_saved': interest_saved,
            'event': event,
            'foreclosure': None,
        }


class ForeclosureService:
    """Full early payoff of a loan."""

    @staticmethod
    def _foreclose(loan: Loan, event_date: date) -> dict:
        last_paid = _last_paid_entry(loan)
        tail = _unpaid_tail(loan, last_paid)
        outstanding = _outstanding(loan, last_paid, tail)

        period_start = last_paid.due_date if last_paid is not None else loan.start_date
        period_end = tail[0].due_date if tail else None
        accrued = accrued_interest(
            outstanding,
            loan.interest_rate,
            period_start,
            period_end,
            event_date,
        )
        payoff = outstanding + accrued

        pending = loan.schedule.filter(status=EmiScheduleEntry.Status.PENDING)
        interest_saved = sum_interest(pending) - accrued
        superseded = pending.update(status=EmiScheduleEntry.Status.SUPERSEDED)

        event = EmiEvent.objects.create(
            loan=loan,
            event_type=EmiEvent.EventType.FORECLOSURE,
            event_date=event_date,
            amount=payoff,
            interest_saved=interest_saved,
            accrued_interest=accrued,
            new_tenure_months=0,
        )

        loan.status = Loan.Status.FORECLOSED
        loan.closure_date = event_date
        loan.closed_at = timezone.now()
        loan.save(update_fields=['status', 'closure_date', 'closed_at', 'updated_at'])

        logger.info(
            "Loan #%d foreclosed on %s: outstanding=%s, accrued=%s, "
            "payoff=%s, interest saved=%s, %d rows superseded",
            loan.pk,
            event_date,
            outstanding,
            accrued,
            payoff,
            interest_saved,
            superseded,
        )

        return {
            'outstanding_principal': outstanding,
            'accrued_interest': accrued,
            'payoff_amount': payoff,
            'interest_saved': interest_saved,
            'superseded_count': superseded,
            'event': event,
        }

    @classmethod
    @transaction.atomic
    def apply_foreclosure(cls, loan_id: int, event_date: date) -> dict:
        """
        Close a loan by full payoff on ``event_date``.

        Payoff is the outstanding principal plus interest accrued since
        the last paid installment, prorated daily over the installment
        period. All pending rows are superseded.

        Returns:
            Dict with outstanding principal, accrued interest, payoff
            amount, interest saved and the recorded event.

        Raises:
            LoanNotActive: If the loan is already foreclosed or completed.
        """
        loan = _lock_loan(loan_id)
        _ensure_active(loan)
        return cls._foreclose(loan, event_date)


class RefinanceService:
    """Read-only projection of alternative loan terms."""

    @staticmethod
    def compare_refinance(
        loan_id: int,
        proposed_rate: Optional[Decimal] = None,
        proposed_tenure: Optional[int] = None,
    ) -> dict:
        """
        Project the outstanding principal over new rate and/or tenure.

        Never mutates stored state. Unspecified terms default to the
        current rate and the remaining installment count.

        Returns:
            Dict comparing the current remaining schedule with the
            projection, including the projected rows.
        """
        loan = LoanService.get_loan(loan_id)
        _ensure_active(loan)

        last_paid = _last_paid_entry(loan)
        tail = _unpaid_tail(loan, last_paid)
        outstanding = _outstanding(loan, last_paid, tail)
        if not tail or outstanding <= 0:
            raise InvalidLoanTerms(
                "Loan has no outstanding balance to refinance.",
                outstanding=outstanding,
            )

        rate = to_decimal(proposed_rate) if proposed_rate is not None else loan.interest_rate
        tenure = int(proposed_tenure) if proposed_tenure is not None else len(tail)

        rows = build_schedule(
            principal=outstanding,
            annual_rate=rate,
            tenure_months=tenure,
            start_date=loan.start_date,
            first_sequence=tail[0].sequence,
        )

        current_interest = sum_interest(tail)
        new_interest = sum_interest(rows)

        return {
            'loan_id': loan.pk,
            'outstanding_principal': outstanding,
            'current_rate': loan.interest_rate,
            'current_emi': loan.emi_amount,
            'current_remaining_tenure': len(tail),
            'current_remaining_interest': current_interest,
            'proposed_rate': rate,
            'proposed_tenure': tenure,
            'new_emi': calculate_emi(outstanding, rate, tenure),
            'new_total_interest': new_interest,
            'new_total_payable': sum_installments(rows),
            'interest_difference': current_interest - new_interest,
            'first_due_date': due_date_for(loan.start_date, tail[0].sequence),
            'schedule': rows,
        }
