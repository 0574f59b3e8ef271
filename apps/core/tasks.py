"""
Celery tasks for loan book ingestion.

Reads loan_book.xlsx using pandas and creates each loan, with its EMI
schedule, through the loan service. Rows are matched on account number
so the task can be re-run safely.
"""

import logging
from decimal import Decimal, InvalidOperation
from pathlib import Path

import pandas as pd
from celery import shared_task
from django.conf import settings
from django.db import IntegrityError

from apps.core.exceptions import LoanEngineError

logger = logging.getLogger(__name__)

REQUIRED_COLUMNS = ('principal_amount', 'interest_rate', 'tenure_months', 'start_date')

# Spreadsheet headers seen in bank exports, mapped to model fields
COLUMN_ALIASES = {
    'loan_amount': 'principal_amount',
    'principal': 'principal_amount',
    'tenure': 'tenure_months',
    'emi': 'emi_amount',
    'monthly_installment': 'emi_amount',
    'loan_account_number': 'account_number',
    'emi_start_date': 'start_date',
}


def _optional_text(row, column):
    value = row.get(column)
    if value is None or pd.isna(value):
        return None
    return str(value).strip()


@shared_task(
    bind=True,
    name='core.import_loan_book',
    max_retries=3,
    default_retry_delay=10,
)
def import_loan_book(self, file_name='loan_book.xlsx'):
    """
    Import loans from an Excel sheet in DATA_DIR.

    Each valid row becomes a loan with a freshly generated schedule.
    Rows with missing or invalid terms are counted as errors and skipped;
    rows whose account number is already on file are skipped.

    Re-running the import is safe.
    """
    from apps.loans.models import Loan
    from apps.loans.services import LoanService

    data_dir = Path(settings.DATA_DIR).resolve()
    file_path = (data_dir / file_name).resolve()

    if data_dir not in file_path.parents:
        logger.error("Loan book path escapes DATA_DIR: %s", file_name)
        return {'status': 'error', 'message': f'Invalid file name: {file_name}'}

    if not file_path.exists():
        logger.error("Loan book file not found: %s", file_path)
        return {'status': 'error', 'message': f'File not found: {file_path}'}

    try:
        logger.info("Starting loan book import from %s", file_path)

        df = pd.read_excel(file_path)
        logger.info("Read %d rows from %s", len(df), file_path.name)

        # Normalize column names
        df.columns = [col.strip().lower().replace(' ', '_') for col in df.columns]
        df = df.rename(columns=COLUMN_ALIASES)

        missing = [col for col in REQUIRED_COLUMNS if col not in df.columns]
        if missing:
            logger.error("Loan book is missing columns: %s", missing)
            return {'status': 'error', 'message': f'Missing columns: {missing}'}

        existing_accounts = set(
            Loan.objects.exclude(account_number='')
            .values_list('account_number', flat=True)
        )

        created_count = 0
        skipped_count = 0
        error_count = 0

        for index, row in df.iterrows():
            try:
                if any(pd.isna(row.get(col)) for col in REQUIRED_COLUMNS):
                    logger.warning("Row %d: missing loan terms, skipping", index)
                    error_count += 1
                    continue

                account_number = _optional_text(row, 'account_number') or ''
                if account_number and account_number in existing_accounts:
                    skipped_count += 1
                    continue

                start_date = pd.to_datetime(row.get('start_date'), errors='coerce')
                if pd.isna(start_date):
                    logger.warning("Row %d: invalid start date, skipping", index)
                    error_count += 1
                    continue

                loan_data = {
                    'principal_amount': Decimal(str(row['principal_amount'])),
                    'interest_rate': Decimal(str(row['interest_rate'])),
                    'tenure_months': int(row['tenure_months']),
                    'start_date': start_date.date(),
                    'account_number': account_number,
                    'bank_name': _optional_text(row, 'bank_name') or '',
                }
                loan_type = _optional_text(row, 'loan_type')
                if loan_type in Loan.LoanType.values:
                    loan_data['loan_type'] = loan_type

                emi_override = row.get('emi_amount')
                if emi_override is not None and not pd.isna(emi_override):
                    loan_data['emi_amount'] = Decimal(str(emi_override))

                LoanService.create_loan(loan_data)
                if account_number:
                    existing_accounts.add(account_number)
                created_count += 1

            except (
                ValueError,
                TypeError,
                InvalidOperation,
                IntegrityError,
                LoanEngineError,
            ) as e:
                logger.warning(
                    "Row %d: failed to process: %s", index, str(e)
                )
                error_count += 1
                continue

        result = {
            'status': 'success',
            'total_rows': len(df),
            'created': created_count,
            'skipped': skipped_count,
            'errors': error_count,
        }
        logger.info("Loan book import complete: %s", result)
        return result

    except Exception as exc:
        logger.exception("Loan book import failed")
        raise self.retry(exc=exc)
