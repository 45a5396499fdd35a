"""
Add the celery-beat schedule for the daily automated payout run.

Registers the same PeriodicTask that PayoutScheduler.start() manages, at
PAYOUT_SCHEDULE_HOUR:PAYOUT_SCHEDULE_MINUTE in PAYOUT_SCHEDULE_TIMEZONE,
so a fresh deployment pays out without a manual start.
"""

import json

from django.conf import settings
from django.db import migrations

TASK_NAME = "ticketing-daily-automated-payouts"


def create_periodic_task(apps, schema_editor):
    """Create the daily payout periodic task."""
    CrontabSchedule = apps.get_model("django_celery_beat", "CrontabSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    schedule, _ = CrontabSchedule.objects.get_or_create(
        minute=str(settings.PAYOUT_SCHEDULE_MINUTE),
        hour=str(settings.PAYOUT_SCHEDULE_HOUR),
        day_of_week="*",
        day_of_month="*",
        month_of_year="*",
        timezone=settings.PAYOUT_SCHEDULE_TIMEZONE,
    )

    PeriodicTask.objects.get_or_create(
        name=TASK_NAME,
        defaults={
            "task": "ticketing.tasks.run_scheduled_payouts",
            "crontab": schedule,
            "kwargs": json.dumps({"mode": "automated"}),
            "enabled": True,
            "description": "Daily payout of organizer net amounts for ended events.",
        },
    )


def remove_periodic_task(apps, schema_editor):
    """Remove the periodic task on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(name=TASK_NAME).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("ticketing", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_task, remove_periodic_task),
    ]
