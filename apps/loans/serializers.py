"""
Loan serializers for the EMI engine.
"""

from decimal import Decimal

from django.conf import settings
from rest_framework import serializers

from apps.loans.models import EmiEvent, EmiScheduleEntry, Loan


def _max_tenure():
    return getattr(settings, 'MAX_TENURE_MONTHS', 480)


class LoanTermsSerializer(serializers.Serializer):
    """Serializer for loan creation and term edits."""

    bank_name = serializers.CharField(max_length=120, required=False, allow_blank=True)
    account_number = serializers.CharField(max_length=64, required=False, allow_blank=True)
    loan_type = serializers.ChoiceField(choices=Loan.LoanType.choices, required=False)
    repayment_mode = serializers.ChoiceField(
        choices=Loan.RepaymentMode.choices, required=False,
    )
    notes = serializers.CharField(required=False, allow_blank=True)
    principal_amount = serializers.DecimalField(
        max_digits=15,
        decimal_places=2,
        min_value=Decimal('0.01'),
        help_text="Principal borrowed.",
    )
    interest_rate = serializers.DecimalField(
        max_digits=6,
        decimal_places=3,
        min_value=Decimal('0'),
        max_value=Decimal('100'),
        help_text="Annual interest rate (%).",
    )
    tenure_months = serializers.IntegerField(
        min_value=1,
        help_text="Loan tenure in months.",
    )
    start_date = serializers.DateField(
        help_text="Disbursement date; first EMI falls due a month later.",
    )
    emi_amount = serializers.DecimalField(
        max_digits=15,
        decimal_places=2,
        min_value=Decimal('0.01'),
        required=False,
        allow_null=True,
        help_text="Manual EMI override. Calculated when omitted.",
    )

    def validate_tenure_months(self, value):
        """Cap tenure at the configured maximum."""
        if value > _max_tenure():
            raise serializers.ValidationError(
                f"Tenure cannot exceed {_max_tenure()} months."
            )
        return value


class LoanSerializer(serializers.ModelSerializer):
    """Serializer for loan responses."""

    loan_id = serializers.IntegerField(source='pk', read_only=True)

    class Meta:
        model = Loan
        fields = (
            'loan_id', 'bank_name', 'account_number', 'loan_type',
            'principal_amount', 'interest_rate', 'tenure_months',
            'emi_amount', 'emi_overridden', 'start_date', 'repayment_mode',
            'status', 'notes', 'closure_date', 'created_at', 'updated_at',
            'closed_at',
        )
        read_only_fields = fields


class EmiScheduleEntrySerializer(serializers.ModelSerializer):
    """Serializer for a single schedule row."""

    emi_id = serializers.IntegerField(source='pk', read_only=True)

    class Meta:
        model = EmiScheduleEntry
        fields = (
            'emi_id', 'loan_id', 'sequence', 'due_date', 'installment_amount',
            'interest_component', 'principal_component', 'remaining_principal',
            'status', 'paid_date', 'payment_method', 'paid_amount',
            'is_adjusted', 'adjustment_event_id',
        )
        read_only_fields = fields


class EmiEventSerializer(serializers.ModelSerializer):
    """Serializer for the event ledger."""

    event_id = serializers.IntegerField(source='pk', read_only=True)

    class Meta:
        model = EmiEvent
        fields = (
            'event_id', 'loan_id', 'event_type', 'event_date', 'amount',
            'reduction_policy', 'interest_saved', 'accrued_interest',
            'new_tenure_months', 'new_emi_amount', 'notes', 'created_at',
        )
        read_only_fields = fields


class ProjectedRowSerializer(serializers.Serializer):
    """Serializer for an in-memory projected schedule row."""

    sequence = serializers.IntegerField()
    due_date = serializers.DateField()
    installment_amount = serializers.DecimalField(max_digits=15, decimal_places=2)
    interest_component = serializers.DecimalField(max_digits=15, decimal_places=2)
    principal_component = serializers.DecimalField(max_digits=15, decimal_places=2)
    remaining_principal = serializers.DecimalField(max_digits=15, decimal_places=2)


class MarkPaidSerializer(serializers.Serializer):
    """Serializer for marking an EMI as paid."""

    paid_date = serializers.DateField()
    payment_method = serializers.CharField(max_length=50)
    amount = serializers.DecimalField(
        max_digits=15,
        decimal_places=2,
        min_value=Decimal('0.01'),
        required=False,
        help_text="Amount paid. Defaults to the installment amount.",
    )


class BulkMarkPaidSerializer(serializers.Serializer):
    """Serializer for marking several EMIs of a loan as paid."""

    emi_ids = serializers.ListField(
        child=serializers.IntegerField(min_value=1),
        allow_empty=False,
    )
    paid_date = serializers.DateField()
    payment_method = serializers.CharField(max_length=50)


class PartPaymentSerializer(serializers.Serializer):
    """Serializer for part-payment requests."""

    amount = serializers.DecimalField(
        max_digits=15,
        decimal_places=2,
        min_value=Decimal('0.01'),
    )
    date = serializers.DateField()
    policy = serializers.ChoiceField(choices=EmiEvent.ReductionPolicy.choices)


class ForeclosureSerializer(serializers.Serializer):
    """Serializer for foreclosure requests."""

    date = serializers.DateField()


class RefinanceQuerySerializer(serializers.Serializer):
    """Serializer for refinance comparison query parameters."""

    rate = serializers.DecimalField(
        max_digits=6,
        decimal_places=3,
        min_value=Decimal('0'),
        max_value=Decimal('100'),
        required=False,
    )
    tenure = serializers.IntegerField(min_value=1, required=False)

    def validate_tenure(self, value):
        if value > _max_tenure():
            raise serializers.ValidationError(
                f"Tenure cannot exceed {_max_tenure()} months."
            )
        return value


class ForeclosureResponseSerializer(serializers.Serializer):
    """Serializer for foreclosure results."""

    loan_id = serializers.IntegerField()
    outstanding_principal = serializers.DecimalField(max_digits=15, decimal_places=2)
    accrued_interest = serializers.DecimalField(max_digits=15, decimal_places=2)
    payoff_amount = serializers.DecimalField(max_digits=15, decimal_places=2)
    interest_saved = serializers.DecimalField(max_digits=15, decimal_places=2)
    superseded_count = serializers.IntegerField()


class LoanSummarySerializer(serializers.Serializer):
    """Serializer for the loan summary response."""

    loan_id = serializers.IntegerField()
    status = serializers.CharField()
    emi_amount = serializers.DecimalField(max_digits=15, decimal_places=2, allow_null=True)
    paid_count = serializers.IntegerField()
    pending_count = serializers.IntegerField()
    total_paid = serializers.DecimalField(max_digits=15, decimal_places=2)
    interest_paid = serializers.DecimalField(max_digits=15, decimal_places=2)
    outstanding_principal = serializers.DecimalField(max_digits=15, decimal_places=2)
    remaining_interest = serializers.DecimalField(max_digits=15, decimal_places=2)
    total_interest_saved = serializers.DecimalField(max_digits=15, decimal_places=2)
    progress_percent = serializers.DecimalField(max_digits=6, decimal_places=2)
    next_due_date = serializers.DateField(allow_null=True)
    next_due_amount = serializers.DecimalField(
        max_digits=15, decimal_places=2, allow_null=True,
    )


class RefinanceResponseSerializer(serializers.Serializer):
    """Serializer for refinance comparison results."""

    loan_id = serializers.IntegerField()
    outstanding_principal = serializers.DecimalField(max_digits=15, decimal_places=2)
    current_rate = serializers.DecimalField(max_digits=6, decimal_places=3)
    current_emi = serializers.DecimalField(max_digits=15, decimal_places=2, allow_null=True)
    current_remaining_tenure = serializers.IntegerField()
    current_remaining_interest = serializers.DecimalField(max_digits=15, decimal_places=2)
    proposed_rate = serializers.DecimalField(max_digits=6, decimal_places=3)
    proposed_tenure = serializers.IntegerField()
    new_emi = serializers.DecimalField(max_digits=15, decimal_places=2)
    new_total_interest = serializers.DecimalField(max_digits=15, decimal_places=2)
    new_total_payable = serializers.DecimalField(max_digits=15, decimal_places=2)
    interest_difference = serializers.DecimalField(max_digits=15, decimal_places=2)
    first_due_date = serializers.DateField()
    schedule = ProjectedRowSerializer(many=True)
