"""
Celery application for background loan book imports.
"""

import os

from celery import Celery

os.environ.setdefault('DJANGO_SETTINGS_MODULE', 'config.settings')

app = Celery('emi_engine')
app.config_from_object('django.conf:settings', namespace='CELERY')
app.autodiscover_tasks(['apps.core'])
