"""
Celery configuration for the Django application.

Celery runs the payment subsystem's background work:
- Receipt and refund confirmation emails, queued after the ledger commits
- The daily refund sync, scheduled through django-celery-beat's
  DatabaseScheduler (see payments/migrations/0002_add_refund_sync_schedule.py)
- Ad hoc single-payment refund syncs

Redis is both the message broker and result backend. Tasks are
auto-discovered from all installed Django apps.

Usage:
    celery -A config worker -l info
    celery -A config beat -l info --scheduler django_celery_beat.schedulers:DatabaseScheduler

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Looks for a tasks.py module in each installed app
app.autodiscover_tasks()
