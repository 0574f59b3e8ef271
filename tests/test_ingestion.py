"""
Tests for the Celery loan book import task.
"""

import os
import tempfile
from decimal import Decimal

import pandas as pd
from django.test import TestCase, override_settings

from apps.core.tasks import import_loan_book
from apps.loans.models import Loan


@override_settings(
    CELERY_TASK_ALWAYS_EAGER=True,
    CELERY_TASK_EAGER_PROPAGATES=True,
)
class LoanBookImportTests(TestCase):
    """Test cases for loan book ingestion."""

    def setUp(self):
        """Create a loan book spreadsheet the way banks export it."""
        self.temp_dir = tempfile.mkdtemp()

        data = {
            'Account Number': ['HL-1001', 'CL-2002', 'PL-3003'],
            'Bank Name': ['HDFC Bank', 'SBI', 'Axis Bank'],
            'Loan Type': ['Home', 'Car', 'Personal'],
            'Loan Amount': [2500000, 800000, 150000],
            'Interest Rate': [8.5, 9.25, 13.0],
            'Tenure': [240, 60, 24],
            'Start Date': ['2023-04-10', '2023-09-01', '2024-01-05'],
        }
        pd.DataFrame(data).to_excel(
            os.path.join(self.temp_dir, 'loan_book.xlsx'),
            index=False,
        )

    def test_import_loan_book(self):
        """Each row becomes a loan with a generated schedule."""
        with self.settings(DATA_DIR=self.temp_dir):
            result = import_loan_book.apply().get()

        self.assertEqual(result['status'], 'success')
        self.assertEqual(result['total_rows'], 3)
        self.assertEqual(result['created'], 3)
        self.assertEqual(result['errors'], 0)

        home = Loan.objects.get(account_number='HL-1001')
        self.assertEqual(home.bank_name, 'HDFC Bank')
        self.assertEqual(home.loan_type, Loan.LoanType.HOME)
        self.assertEqual(home.principal_amount, Decimal('2500000.00'))
        self.assertEqual(home.schedule.count(), 240)
        self.assertIsNotNone(home.emi_amount)

    def test_import_idempotent(self):
        """Running the import twice doesn't create duplicates."""
        with self.settings(DATA_DIR=self.temp_dir):
            import_loan_book.apply().get()
            result = import_loan_book.apply().get()

        self.assertEqual(Loan.objects.count(), 3)
        self.assertEqual(result['created'], 0)
        self.assertEqual(result['skipped'], 3)

    def test_invalid_rows_counted(self):
        """Rows with unusable terms are skipped and counted as errors."""
        data = {
            'Account Number': ['OK-1', 'BAD-1', 'BAD-2'],
            'Loan Amount': [100000, 100000, None],
            'Interest Rate': [10.0, 10.0, 10.0],
            'Tenure': [12, 0, 12],
            'Start Date': ['2024-01-01', '2024-01-01', '2024-01-01'],
        }
        temp_dir = tempfile.mkdtemp()
        pd.DataFrame(data).to_excel(
            os.path.join(temp_dir, 'loan_book.xlsx'),
            index=False,
        )

        with self.settings(DATA_DIR=temp_dir):
            result = import_loan_book.apply().get()

        self.assertEqual(result['created'], 1)
        self.assertEqual(result['errors'], 2)
        self.assertEqual(Loan.objects.count(), 1)

    def test_emi_override_column(self):
        data = {
            'Principal': [100000],
            'Interest Rate': [12.0],
            'Tenure': [12],
            'EMI': [50000],
            'Start Date': ['2024-01-01'],
        }
        temp_dir = tempfile.mkdtemp()
        pd.DataFrame(data).to_excel(
            os.path.join(temp_dir, 'override.xlsx'),
            index=False,
        )

        with self.settings(DATA_DIR=temp_dir):
            result = import_loan_book.apply(args=('override.xlsx',)).get()

        self.assertEqual(result['created'], 1)
        loan = Loan.objects.get()
        self.assertTrue(loan.emi_overridden)
        self.assertEqual(loan.schedule.count(), 3)

    def test_missing_columns(self):
        temp_dir = tempfile.mkdtemp()
        pd.DataFrame({'Loan Amount': [100000]}).to_excel(
            os.path.join(temp_dir, 'loan_book.xlsx'),
            index=False,
        )

        with self.settings(DATA_DIR=temp_dir):
            result = import_loan_book.apply().get()

        self.assertEqual(result['status'], 'error')
        self.assertIn('tenure_months', result['message'])

    def test_missing_file(self):
        """Test graceful handling of missing file."""
        with self.settings(DATA_DIR='/nonexistent/path'):
            result = import_loan_book.apply().get()
        self.assertEqual(result['status'], 'error')


class LoanBookPathTests(TestCase):
    """The import only reads spreadsheets inside DATA_DIR."""

    def setUp(self):
        self.outside_dir = tempfile.mkdtemp()
        self.data_dir = os.path.join(self.outside_dir, 'data')
        os.mkdir(self.data_dir)
        pd.DataFrame({
            'Loan Amount': [100000],
            'Interest Rate': [10.0],
            'Tenure': [12],
            'Start Date': ['2024-01-01'],
        }).to_excel(
            os.path.join(self.outside_dir, 'loan_book.xlsx'),
            index=False,
        )

    def test_parent_directory_rejected(self):
        with self.settings(DATA_DIR=self.data_dir):
            result = import_loan_book.apply(args=('../loan_book.xlsx',)).get()

        self.assertEqual(result['status'], 'error')
        self.assertEqual(Loan.objects.count(), 0)

    def test_absolute_path_rejected(self):
        path = os.path.join(self.outside_dir, 'loan_book.xlsx')
        with self.settings(DATA_DIR=self.data_dir):
            result = import_loan_book.apply(args=(path,)).get()

        self.assertEqual(result['status'], 'error')
        self.assertEqual(Loan.objects.count(), 0)
