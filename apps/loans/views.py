"""
Loan views for the EMI engine.

Views are thin; business logic lives in the service layer.
"""

import logging

from rest_framework import status
from rest_framework.pagination import PageNumberPagination
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.loans.serializers import (
    BulkMarkPaidSerializer,
    EmiEventSerializer,
    EmiScheduleEntrySerializer,
    ForeclosureResponseSerializer,
    ForeclosureSerializer,
    LoanSerializer,
    LoanSummarySerializer,
    LoanTermsSerializer,
    MarkPaidSerializer,
    PartPaymentSerializer,
    RefinanceQuerySerializer,
    RefinanceResponseSerializer,
)
from apps.loans.services import (
    ForeclosureService,
    LoanService,
    PartPaymentService,
    PaymentService,
    RefinanceService,
    ScheduleService,
)

logger = logging.getLogger(__name__)


class LoanPagination(PageNumberPagination):
    """Pagination for loan lists."""
    page_size = 10
    page_size_query_param = 'page_size'
    max_page_size = 100


class LoanListView(APIView):
    """
    GET  /api/loans
    POST /api/loans

    List loans, or create a loan and generate its EMI schedule.
    """

    def get(self, request):
        """Handle listing loans, optionally filtered by status."""
        loans = LoanService.list_loans(status=request.query_params.get('status'))

        paginator = LoanPagination()
        page = paginator.paginate_queryset(loans, request)
        serializer = LoanSerializer(page, many=True)
        return paginator.get_paginated_response(serializer.data)

    def post(self, request):
        """Handle loan creation."""
        serializer = LoanTermsSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        loan = LoanService.create_loan(serializer.validated_data)

        return Response(
            {
                'loan': LoanSerializer(loan).data,
                'schedule_length': loan.schedule.count(),
            },
            status=status.HTTP_201_CREATED,
        )


class LoanDetailView(APIView):
    """
    GET    /api/loans/<loan_id>
    PATCH  /api/loans/<loan_id>
    DELETE /api/loans/<loan_id>
    """

    def get(self, request, loan_id):
        """Handle viewing a single loan."""
        loan = LoanService.get_loan(loan_id)
        return Response(LoanSerializer(loan).data, status=status.HTTP_200_OK)

    def patch(self, request, loan_id):
        """Handle term edits. Changed terms regenerate the schedule."""
        serializer = LoanTermsSerializer(data=request.data, partial=True)
        serializer.is_valid(raise_exception=True)

        loan = LoanService.update_terms(loan_id, serializer.validated_data)
        return Response(LoanSerializer(loan).data, status=status.HTTP_200_OK)

    def delete(self, request, loan_id):
        """Handle loan deletion (cascades to schedule and events)."""
        LoanService.delete_loan(loan_id)
        return Response(status=status.HTTP_204_NO_CONTENT)


class GenerateScheduleView(APIView):
    """
    POST /api/loans/<loan_id>/generate-schedule

    Regenerate the full schedule from the loan's current terms.
    """

    def post(self, request, loan_id):
        entries = ScheduleService.generate_schedule(loan_id)
        serializer = EmiScheduleEntrySerializer(entries, many=True)
        return Response(serializer.data, status=status.HTTP_201_CREATED)


class ScheduleView(APIView):
    """
    GET /api/loans/<loan_id>/schedule
    """

    def get(self, request, loan_id):
        entries = LoanService.get_schedule(loan_id)
        serializer = EmiScheduleEntrySerializer(entries, many=True)
        return Response(serializer.data, status=status.HTTP_200_OK)


class EventListView(APIView):
    """
    GET /api/loans/<loan_id>/events
    """

    def get(self, request, loan_id):
        events = LoanService.get_events(loan_id)
        serializer = EmiEventSerializer(events, many=True)
        return Response(serializer.data, status=status.HTTP_200_OK)


class LoanSummaryView(APIView):
    """
    GET /api/loans/<loan_id>/summary

    Paid/pending counts, outstanding principal and interest saved.
    """

    def get(self, request, loan_id):
        summary = LoanService.summary(loan_id)
        serializer = LoanSummarySerializer(summary)
        return Response(serializer.data, status=status.HTTP_200_OK)


class MarkPaidView(APIView):
    """
    POST /api/emis/<emi_id>/mark-paid

    Mark a single pending EMI as paid.
    """

    def post(self, request, emi_id):
        """Handle marking an EMI as paid."""
        serializer = MarkPaidSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        entry = PaymentService.mark_paid(
            entry_id=emi_id,
            paid_date=serializer.validated_data['paid_date'],
            payment_method=serializer.validated_data['payment_method'],
            amount=serializer.validated_data.get('amount'),
        )
        return Response(
            EmiScheduleEntrySerializer(entry).data,
            status=status.HTTP_200_OK,
        )


class BulkMarkPaidView(APIView):
    """
    POST /api/loans/<loan_id>/bulk-mark-paid

    Mark several EMIs of a loan as paid in one request.
    """

    def post(self, request, loan_id):
        serializer = BulkMarkPaidSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        entries = PaymentService.bulk_mark_paid(
            loan_id=loan_id,
            entry_ids=serializer.validated_data['emi_ids'],
            paid_date=serializer.validated_data['paid_date'],
            payment_method=serializer.validated_data['payment_method'],
        )
        return Response(
            EmiScheduleEntrySerializer(entries, many=True).data,
            status=status.HTTP_200_OK,
        )


class PartPaymentView(APIView):
    """
    POST /api/loans/<loan_id>/part-payment

    Apply a lump-sum part-payment under a reduction policy.
    """

    def post(self, request, loan_id):
        """Handle part-payment."""
        serializer = PartPaymentSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = PartPaymentService.apply_part_payment(
            loan_id=loan_id,
            amount=serializer.validated_data['amount'],
            event_date=serializer.validated_data['date'],
            policy=serializer.validated_data['policy'],
        )

        response_data = {
            'loan_id': loan_id,
            'foreclosed': result['foreclosed'],
            'interest_saved': str(result['interest_saved']),
            'event': EmiEventSerializer(result['event']).data,
            'updated_tail': EmiScheduleEntrySerializer(
                result['updated_tail'], many=True,
            ).data,
        }
        if result['foreclosure'] is not None:
            response_data['foreclosure'] = ForeclosureResponseSerializer(
                dict(result['foreclosure'], loan_id=loan_id),
            ).data

        return Response(response_data, status=status.HTTP_200_OK)


class ForeclosureView(APIView):
    """
    POST /api/loans/<loan_id>/foreclose

    Close the loan by full payoff on the given date.
    """

    def post(self, request, loan_id):
        """Handle foreclosure."""
        serializer = ForeclosureSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        result = ForeclosureService.apply_foreclosure(
            loan_id=loan_id,
            event_date=serializer.validated_data['date'],
        )
        response_serializer = ForeclosureResponseSerializer(
            dict(result, loan_id=loan_id),
        )
        return Response(response_serializer.data, status=status.HTTP_200_OK)


class RefinanceView(APIView):
    """
    GET /api/loans/<loan_id>/refinance?rate=<pct>&tenure=<months>

    Read-only comparison of the current loan against new terms.
    """

    def get(self, request, loan_id):
        """Handle refinance comparison."""
        query = RefinanceQuerySerializer(data=request.query_params)
        query.is_valid(raise_exception=True)

        result = RefinanceService.compare_refinance(
            loan_id=loan_id,
            proposed_rate=query.validated_data.get('rate'),
            proposed_tenure=query.validated_data.get('tenure'),
        )
        return Response(
            RefinanceResponseSerializer(result).data,
            status=status.HTTP_200_OK,
        )
