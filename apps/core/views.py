"""
Core views for the EMI engine.
"""

import logging

from django.http import JsonResponse
from rest_framework import status
from rest_framework.response import Response
from rest_framework.views import APIView

from apps.core.serializers import ImportLoanBookSerializer
from apps.core.tasks import import_loan_book

logger = logging.getLogger(__name__)


def health_check(request):
    """
    GET /health/

    Simple health check endpoint for Docker and load balancer probes.
    Exempt from API key authentication.
    """
    return JsonResponse({'status': 'healthy'}, status=200)


class ImportLoanBookView(APIView):
    """
    POST /api/import-loans

    Queue a background import of loans from the loan book spreadsheet.
    """

    def post(self, request):
        """Trigger the loan book import task."""
        serializer = ImportLoanBookSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        file_name = serializer.validated_data['file_name']
        task = import_loan_book.delay(file_name)

        logger.info("Loan book import triggered: task=%s, file=%s", task.id, file_name)

        return Response(
            {
                'message': 'Loan book import has been queued.',
                'task_id': task.id,
            },
            status=status.HTTP_202_ACCEPTED,
        )
