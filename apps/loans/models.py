"""
Loan, EMI schedule and EMI event models for the EMI engine.
"""

from decimal import Decimal

from django.core.validators import MinValueValidator
from django.db import models

from apps.core.exceptions import ImmutableEventError


class Loan(models.Model):
    """
    Represents a borrowing contract.

    Owns its EMI schedule and event ledger exclusively; deleting a loan
    cascades to both.
    """

    class Status(models.TextChoices):
        ACTIVE = 'active', 'Active'
        FORECLOSED = 'foreclosed', 'Foreclosed'
        COMPLETED = 'completed', 'Completed'

    class LoanType(models.TextChoices):
        HOME = 'Home', 'Home'
        CAR = 'Car', 'Car'
        PERSONAL = 'Personal', 'Personal'
        EDUCATION = 'Education', 'Education'
        GOLD = 'Gold', 'Gold'
        BUSINESS = 'Business', 'Business'
        TWO_WHEELER = 'Two-Wheeler', 'Two-Wheeler'

    class RepaymentMode(models.TextChoices):
        AUTO_DEBIT = 'Auto Debit', 'Auto Debit'
        MANUAL = 'Manual', 'Manual'
        STANDING_INSTRUCTION = 'Standing Instruction', 'Standing Instruction'

    bank_name = models.CharField(
        max_length=120,
        blank=True,
        default='',
        help_text="Lending institution.",
    )
    account_number = models.CharField(
        max_length=64,
        blank=True,
        default='',
        db_index=True,
        help_text="Loan account number at the lender.",
    )
    loan_type = models.CharField(
        max_length=20,
        choices=LoanType.choices,
        default=LoanType.PERSONAL,
    )
    principal_amount = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        validators=[MinValueValidator(Decimal('0.01'))],
        help_text="Original principal borrowed.",
    )
    interest_rate = models.DecimalField(
        max_digits=6,
        decimal_places=3,
        validators=[MinValueValidator(Decimal('0'))],
        help_text="Annual nominal interest rate (percentage).",
    )
    tenure_months = models.PositiveIntegerField(
        validators=[MinValueValidator(1)],
        help_text="Loan tenure in months."
    )
    emi_amount = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Current installment amount, calculated or overridden.",
    )
    emi_overridden = models.BooleanField(
        default=False,
        help_text="Whether the installment was supplied manually.",
    )
    start_date = models.DateField(
        help_text="Disbursement date. The first EMI is due one month later."
    )
    repayment_mode = models.CharField(
        max_length=30,
        choices=RepaymentMode.choices,
        default=RepaymentMode.AUTO_DEBIT,
    )
    status = models.CharField(
        max_length=12,
        choices=Status.choices,
        default=Status.ACTIVE,
        db_index=True,
    )
    notes = models.TextField(blank=True, default='')
    closure_date = models.DateField(
        null=True,
        blank=True,
        help_text="Date the loan was foreclosed or fully repaid.",
    )
    created_at = models.DateTimeField(auto_now_add=True)
    updated_at = models.DateTimeField(auto_now=True)
    closed_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        db_table = 'loans'
        ordering = ['-created_at']
        indexes = [
            models.Index(
                fields=['status', 'start_date'],
                name='idx_loan_status_start'
            ),
        ]

    def __str__(self):
        return (
            f"Loan #{self.pk} - {self.loan_type} "
            f"- Principal: {self.principal_amount}"
        )

    @property
    def is_active(self):
        return self.status == self.Status.ACTIVE


class EmiScheduleEntry(models.Model):
    """
    One installment row of a loan's amortization schedule.

    The interest/principal split is fixed when the row is generated and
    is never recomputed on payment.
    """

    class Status(models.TextChoices):
        PENDING = 'pending', 'Pending'
        PAID = 'paid', 'Paid'
        SUPERSEDED = 'superseded', 'Superseded'

    loan = models.ForeignKey(
        Loan,
        on_delete=models.CASCADE,
        related_name='schedule',
        help_text="The loan this installment belongs to."
    )
    sequence = models.PositiveIntegerField(
        help_text="1-based installment index."
    )
    due_date = models.DateField()
    installment_amount = models.DecimalField(max_digits=15, decimal_places=2)
    interest_component = models.DecimalField(max_digits=15, decimal_places=2)
    principal_component = models.DecimalField(max_digits=15, decimal_places=2)
    remaining_principal = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        help_text="Principal outstanding after this installment.",
    )
    status = models.CharField(
        max_length=12,
        choices=Status.choices,
        default=Status.PENDING,
        db_index=True,
    )
    paid_date = models.DateField(null=True, blank=True)
    payment_method = models.CharField(max_length=50, null=True, blank=True)
    paid_amount = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        null=True,
        blank=True,
    )
    is_adjusted = models.BooleanField(
        default=False,
        help_text="Row was regenerated by a part-payment.",
    )
    adjustment_event = models.ForeignKey(
        'EmiEvent',
        on_delete=models.SET_NULL,
        null=True,
        blank=True,
        related_name='adjusted_entries',
    )
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'emi_schedule'
        ordering = ['loan_id', 'sequence']
        constraints = [
            models.UniqueConstraint(
                fields=['loan', 'sequence'],
                name='uniq_emi_loan_sequence',
            ),
        ]

    def __str__(self):
        return f"EMI #{self.sequence} of loan {self.loan_id} ({self.status})"

    @property
    def is_pending(self):
        return self.status == self.Status.PENDING


class EmiEvent(models.Model):
    """
    Append-only record of a part-payment or foreclosure.

    Explains how and why a schedule diverged from its original
    generation. Removed only by the owning loan's delete cascade.
    """

    class EventType(models.TextChoices):
        PART_PAYMENT = 'part_payment', 'Part payment'
        FORECLOSURE = 'foreclosure', 'Foreclosure'

    class ReductionPolicy(models.TextChoices):
        TENURE_REDUCTION = 'tenure_reduction', 'Reduce tenure'
        INSTALLMENT_REDUCTION = 'installment_reduction', 'Reduce EMI'

    loan = models.ForeignKey(
        Loan,
        on_delete=models.CASCADE,
        related_name='events',
    )
    event_type = models.CharField(max_length=20, choices=EventType.choices)
    event_date = models.DateField()
    amount = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        help_text="Amount applied (payoff amount for a foreclosure).",
    )
    reduction_policy = models.CharField(
        max_length=24,
        choices=ReductionPolicy.choices,
        null=True,
        blank=True,
    )
    interest_saved = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        default=Decimal('0.00'),
    )
    accrued_interest = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        null=True,
        blank=True,
    )
    new_tenure_months = models.PositiveIntegerField(null=True, blank=True)
    new_emi_amount = models.DecimalField(
        max_digits=15,
        decimal_places=2,
        null=True,
        blank=True,
    )
    notes = models.TextField(blank=True, default='')
    created_at = models.DateTimeField(auto_now_add=True)

    class Meta:
        db_table = 'emi_events'
        ordering = ['loan_id', 'created_at', 'id']

    def __str__(self):
        return f"{self.event_type} of {self.amount} on loan {self.loan_id}"

    def save(self, *args, **kwargs):
        if self.pk is not None:
            raise ImmutableEventError(f"EMI event {self.pk} cannot be modified.")
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise ImmutableEventError(
            f"EMI event {self.pk} can only be removed with its loan."
        )
