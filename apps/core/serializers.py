"""
Serializers for core endpoints.
"""

from pathlib import PurePath

from rest_framework import serializers


class ImportLoanBookSerializer(serializers.Serializer):
    """Serializer for loan book import requests."""

    file_name = serializers.CharField(
        max_length=255,
        required=False,
        default='loan_book.xlsx',
        help_text="Spreadsheet name inside DATA_DIR.",
    )

    def validate_file_name(self, value):
        """Only bare file names are accepted, never paths."""
        if PurePath(value).name != value or '\\' in value or value in ('.', '..'):
            raise serializers.ValidationError(
                "File name must not contain path components."
            )
        return value
