"""
Custom exceptions and DRF exception handler for the EMI engine.

Domain errors are recoverable by the caller correcting its input and
carry the amounts involved so the client can explain the rejection.
"""

import logging
from decimal import Decimal

from django.db import DatabaseError
from rest_framework import status
from rest_framework.exceptions import APIException
from rest_framework.response import Response
from rest_framework.views import exception_handler

logger = logging.getLogger(__name__)


class LoanEngineError(APIException):
    """
    Base class for loan engine domain errors.

    Keyword arguments passed to the constructor are kept in ``context``
    and rendered alongside the error detail.
    """

    status_code = status.HTTP_400_BAD_REQUEST
    default_detail = 'Loan operation rejected.'
    default_code = 'loan_error'

    def __init__(self, detail=None, code=None, **context):
        super().__init__(detail=detail, code=code)
        self.context = {
            key: str(value) if isinstance(value, Decimal) else value
            for key, value in context.items()
        }


class InvalidLoanTerms(LoanEngineError):
    """Raised when principal, rate, tenure or installment are invalid."""

    default_detail = 'Invalid loan terms.'
    default_code = 'invalid_loan_terms'


class NonAmortizingSchedule(LoanEngineError):
    """Raised when an installment cannot cover a month's interest."""

    status_code = status.HTTP_422_UNPROCESSABLE_ENTITY
    default_detail = 'Installment is too small to amortize the loan.'
    default_code = 'non_amortizing_schedule'


class InvalidPaymentAmount(LoanEngineError):
    """Raised when a part-payment amount is not positive."""

    default_detail = 'Payment amount must be greater than zero.'
    default_code = 'invalid_payment_amount'


class ExcessivePayment(LoanEngineError):
    """Raised when a part-payment exceeds the outstanding principal."""

    default_detail = 'Payment exceeds the outstanding principal.'
    default_code = 'excessive_payment'


class AlreadyPaid(LoanEngineError):
    """Raised when marking an installment that is not pending."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = 'EMI is already marked as paid.'
    default_code = 'already_paid'


class LoanNotActive(LoanEngineError):
    """Raised when a lifecycle operation targets a closed loan."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Loan is not active.'
    default_code = 'loan_not_active'


class ScheduleHasHistory(LoanEngineError):
    """Raised when regenerating a schedule would erase payments or events."""

    status_code = status.HTTP_409_CONFLICT
    default_detail = 'Schedule has recorded payments or events.'
    default_code = 'schedule_has_history'


class LoanNotFoundError(APIException):
    """Raised when a loan does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'Loan not found.'
    default_code = 'loan_not_found'


class EmiNotFoundError(APIException):
    """Raised when a schedule entry does not exist."""

    status_code = status.HTTP_404_NOT_FOUND
    default_detail = 'EMI not found.'
    default_code = 'emi_not_found'


class StorageUnavailable(APIException):
    """Transient persistence failure. Safe for the caller to retry."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE
    default_detail = 'Storage is temporarily unavailable. Please retry.'
    default_code = 'storage_unavailable'


class ScheduleIntegrityError(AssertionError):
    """A generated schedule violates the amortization invariants."""


class ImmutableEventError(Exception):
    """Raised on an attempt to modify or delete a recorded EMI event."""


def custom_exception_handler(exc, context):
    """
    Custom DRF exception handler that returns consistent error responses.

    Database errors are reported as a retryable 503, distinct from
    domain errors which must not be retried without changing input.
    """
    if isinstance(exc, DatabaseError):
        logger.error(
            "Storage error in %s: %s",
            context.get('view', 'unknown'),
            exc,
        )
        exc = StorageUnavailable()

    response = exception_handler(exc, context)

    if response is not None:
        error_data = {
            'error': True,
            'status_code': response.status_code,
            'detail': response.data,
        }
        if isinstance(exc, LoanEngineError):
            error_data['detail'] = str(exc.detail)
            error_data['code'] = exc.default_code
            error_data['context'] = exc.context
        response.data = error_data
    else:
        # Unhandled exceptions: log and return 500
        logger.exception(
            "Unhandled exception in %s",
            context.get('view', 'unknown'),
            exc_info=exc,
        )
        response = Response(
            {
                'error': True,
                'status_code': 500,
                'detail': 'An unexpected error occurred. Please try again later.',
            },
            status=status.HTTP_500_INTERNAL_SERVER_ERROR,
        )

    return response
