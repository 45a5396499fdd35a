"""
Celery configuration for the ticketing backend.

Celery runs the payout reconciliation batches in the background. The recurring
daily run is registered with django-celery-beat's DatabaseScheduler by the
payout scheduler (see ticketing.scheduler), so it can be started and stopped
at runtime without redeploying beat.

This configuration uses Redis as both the message broker and result backend.
Tasks are auto-discovered from all installed Django apps.

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

app.autodiscover_tasks()
