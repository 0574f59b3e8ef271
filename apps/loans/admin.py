from django.contrib import admin

from apps.loans.models import EmiEvent, EmiScheduleEntry, Loan


class EmiScheduleInline(admin.TabularInline):
    model = EmiScheduleEntry
    extra = 0
    can_delete = False
    fields = (
        'sequence', 'due_date', 'installment_amount', 'interest_component',
        'principal_component', 'remaining_principal', 'status', 'paid_date',
        'payment_method',
    )
    readonly_fields = fields


@admin.register(Loan)
class LoanAdmin(admin.ModelAdmin):
    list_display = (
        'id', 'bank_name', 'loan_type', 'principal_amount', 'interest_rate',
        'tenure_months', 'emi_amount', 'status', 'start_date', 'closure_date',
    )
    list_filter = ('status', 'loan_type', 'start_date')
    search_fields = ('bank_name', 'account_number')
    # Term edits go through LoanService.update_terms so the schedule is rebuilt
    readonly_fields = (
        'principal_amount', 'interest_rate', 'tenure_months', 'start_date',
        'emi_amount', 'emi_overridden', 'status', 'closure_date',
        'created_at', 'updated_at', 'closed_at',
    )
    inlines = [EmiScheduleInline]

    def has_add_permission(self, request):
        return False


@admin.register(EmiEvent)
class EmiEventAdmin(admin.ModelAdmin):
    list_display = (
        'id', 'loan', 'event_type', 'event_date', 'amount',
        'reduction_policy', 'interest_saved', 'created_at',
    )
    list_filter = ('event_type', 'reduction_policy')
    raw_id_fields = ('loan',)

    def has_change_permission(self, request, obj=None):
        return False

    def has_delete_permission(self, request, obj=None):
        return False
