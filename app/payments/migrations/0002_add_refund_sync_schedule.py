"""
Add celery-beat schedule for the daily refund sync.

This migration creates the crontab schedule for the sync_all_refunds task,
which imports refunds issued from processor dashboards. The run time comes
from REFUND_SYNC_HOUR / REFUND_SYNC_MINUTE (02:00 by default) in the
configured TIME_ZONE.
"""

from django.conf import settings
from django.db import migrations

TASK_NAME = "Sync Processor Refunds"


def create_periodic_task(apps, schema_editor):
    """Create the daily periodic task for the refund sync."""
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = CrontabSchedule.objects.get_or_create(
        minute=str(getattr(settings, "REFUND_SYNC_MINUTE", 0)),
        hour=str(getattr(settings, "REFUND_SYNC_HOUR", 2)),
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
        timezone=settings.TIME_ZONE,
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "payments.tasks.sync_all_refunds",
            "crontab": schedule,
            "enabled": True,
            "description": (
                "Imports refunds issued outside the site (e.g. from the Square "
                "dashboard) into the payment ledger."
            ),
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("payments", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
