"""
Loan URL configuration.
"""

from django.urls import path

from apps.loans.views import (
    BulkMarkPaidView,
    EventListView,
    ForeclosureView,
    GenerateScheduleView,
    LoanDetailView,
    LoanListView,
    LoanSummaryView,
    MarkPaidView,
    PartPaymentView,
    RefinanceView,
    ScheduleView,
)

urlpatterns = [
    path('loans', LoanListView.as_view(), name='loan-list'),
    path('loans/<int:loan_id>', LoanDetailView.as_view(), name='loan-detail'),
    path(
        'loans/<int:loan_id>/generate-schedule',
        GenerateScheduleView.as_view(),
        name='generate-schedule',
    ),
    path('loans/<int:loan_id>/schedule', ScheduleView.as_view(), name='loan-schedule'),
    path('loans/<int:loan_id>/events', EventListView.as_view(), name='loan-events'),
    path('loans/<int:loan_id>/summary', LoanSummaryView.as_view(), name='loan-summary'),
    path(
        'loans/<int:loan_id>/bulk-mark-paid',
        BulkMarkPaidView.as_view(),
        name='bulk-mark-paid',
    ),
    path(
        'loans/<int:loan_id>/part-payment',
        PartPaymentView.as_view(),
        name='part-payment',
    ),
    path('loans/<int:loan_id>/foreclose', ForeclosureView.as_view(), name='foreclose'),
    path('loans/<int:loan_id>/refinance', RefinanceView.as_view(), name='refinance'),
    path('emis/<int:emi_id>/mark-paid', MarkPaidView.as_view(), name='mark-paid'),
]
