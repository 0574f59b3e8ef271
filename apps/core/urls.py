"""
Core app URL configuration for the loan book import trigger.
"""

from django.urls import path

from apps.core.views import ImportLoanBookView

urlpatterns = [
    path(
        'import-loans',
        ImportLoanBookView.as_view(),
        name='import-loans',
    ),
]
