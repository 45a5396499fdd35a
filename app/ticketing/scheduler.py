"""
Daily payout scheduler.

PayoutScheduler owns the recurring timer that triggers automated payout
runs. The timer is a django-celery-beat PeriodicTask with a CrontabSchedule,
so beat picks up start/stop without a restart. The instance lives on the
ticketing AppConfig; use get_payout_scheduler() to reach it.

Timer, clock and runner are constructor arguments so tests can drive the
scheduler without Celery, the database clock or Stripe.

Usage:
    from ticketing.scheduler import get_payout_scheduler

    scheduler = get_payout_scheduler()
    scheduler.start()
    scheduler.get_status()
    # {"is_running": True, "next_scheduled_run_time": "...", "active_jobs": [...]}
"""

from __future__ import annotations

import json
import logging
from datetime import datetime, time, timedelta
from typing import TYPE_CHECKING, Any, Protocol
from zoneinfo import ZoneInfo

from django.apps import apps
from django.conf import settings
from django.utils import timezone

from ticketing.exceptions import PayoutRunInProgressError
from ticketing.state_machines import PayoutMode

if TYPE_CHECKING:
    from collections.abc import Callable

    from ticketing.services import PayoutBatchResult


logger = logging.getLogger(__name__)


DAILY_PAYOUT_TASK_NAME = "ticketing-daily-automated-payouts"
DAILY_PAYOUT_TASK = "ticketing.tasks.run_scheduled_payouts"


class PayoutTimer(Protocol):
    """Recurring daily trigger for the automated payout run."""

    name: str

    def register(self, hour: int, minute: int, tz_name: str) -> None: ...

    def cancel(self) -> bool: ...

    def is_registered(self) -> bool: ...


class CeleryBeatTimer:
    """
    Daily timer stored as a django-celery-beat PeriodicTask.

    Disabling goes through save() rather than a queryset update so beat's
    change tracking notices it.
    """

    def __init__(
        self,
        name: str = DAILY_PAYOUT_TASK_NAME,
        task: str = DAILY_PAYOUT_TASK,
    ) -> None:
        self.name = name
        self.task = task

    def register(self, hour: int, minute: int, tz_name: str) -> None:
        from django_celery_beat.models import CrontabSchedule, PeriodicTask

        schedule, _ = CrontabSchedule.objects.get_or_create(
            minute=str(minute),
            hour=str(hour),
            day_of_week="*",
            day_of_month="*",
            month_of_year="*",
            timezone=tz_name,
        )
        PeriodicTask.objects.update_or_create(
            name=self.name,
            defaults={
                "task": self.task,
                "crontab": schedule,
                "interval": None,
                "kwargs": json.dumps({"mode": PayoutMode.AUTOMATED.value}),
                "enabled": True,
                "description": "Daily payout of organizer net amounts for ended events.",
            },
        )

    def cancel(self) -> bool:
        from django_celery_beat.models import PeriodicTask

        periodic_task = PeriodicTask.objects.filter(name=self.name).first()
        if periodic_task is None or not periodic_task.enabled:
            return False
        periodic_task.enabled = False
        periodic_task.save()
        return True

    def is_registered(self) -> bool:
        from django_celery_beat.models import PeriodicTask

        return PeriodicTask.objects.filter(name=self.name, enabled=True).exists()


def _default_runner(mode: PayoutMode) -> PayoutBatchResult:
    from ticketing.services import PayoutReconciliationService

    return PayoutReconciliationService.run_payouts(mode)


class PayoutScheduler:
    """
    Start, stop and inspect the daily automated payout run.

    Args:
        timer: Recurring trigger (CeleryBeatTimer in production)
        clock: Returns the current aware datetime
        runner: Executes a payout batch for a mode
        hour / minute / tz_name: Local time of the daily run
    """

    def __init__(
        self,
        timer: PayoutTimer,
        clock: Callable[[], datetime] = timezone.now,
        runner: Callable[[PayoutMode], PayoutBatchResult] = _default_runner,
        hour: int | None = None,
        minute: int | None = None,
        tz_name: str | None = None,
    ) -> None:
        self.timer = timer
        self.clock = clock
        self.runner = runner
        self.hour = settings.PAYOUT_SCHEDULE_HOUR if hour is None else hour
        self.minute = settings.PAYOUT_SCHEDULE_MINUTE if minute is None else minute
        self.tz_name = tz_name or settings.PAYOUT_SCHEDULE_TIMEZONE

    @property
    def is_running(self) -> bool:
        return self.timer.is_registered()

    def start(self) -> bool:
        """
        Register the daily timer.

        Returns:
            False if the timer was already registered (nothing changes)
        """
        if self.is_running:
            logger.info("Payout scheduler already running", extra={"job": self.timer.name})
            return False

        self.timer.register(self.hour, self.minute, self.tz_name)
        logger.info(
            "Payout scheduler started",
            extra={
                "job": self.timer.name,
                "hour": self.hour,
                "minute": self.minute,
                "tz_name": self.tz_name,
            },
        )
        return True

    def stop(self) -> bool:
        """Cancel the daily timer; False if it was not running."""
        cancelled = self.timer.cancel()
        if cancelled:
            logger.info("Payout scheduler stopped", extra={"job": self.timer.name})
        return cancelled

    def run_now(self, mode: PayoutMode | str = PayoutMode.MANUAL) -> PayoutBatchResult:
        """
        Run a payout batch immediately, independent of the timer.

        Errors propagate to the caller, including PayoutRunInProgressError.
        """
        mode = PayoutMode(mode)
        logger.info("Payout run triggered on demand", extra={"mode": mode.value})
        return self.runner(mode)

    def run_scheduled(
        self,
        mode: PayoutMode | str = PayoutMode.AUTOMATED,
    ) -> PayoutBatchResult | None:
        """
        Timer callback. Failures are logged and the timer stays registered.

        Returns:
            The batch result, or None when the run was skipped or failed
        """
        mode = PayoutMode(mode)
        try:
            return self.runner(mode)
        except PayoutRunInProgressError:
            logger.warning(
                "Scheduled payout run skipped: previous run still in progress",
                extra={"mode": mode.value},
            )
        except Exception:
            logger.error(
                "Scheduled payout run failed",
                extra={"mode": mode.value},
                exc_info=True,
            )
        return None

    def next_run_time(self) -> datetime | None:
        """Next daily run in the schedule's timezone, or None when stopped."""
        if not self.is_running:
            return None

        tz = ZoneInfo(self.tz_name)
        now = self.clock().astimezone(tz)
        run_at = time(self.hour, self.minute)
        candidate = datetime.combine(now.date(), run_at, tzinfo=tz)
        if candidate <= now:
            candidate = datetime.combine(now.date() + timedelta(days=1), run_at, tzinfo=tz)
        return candidate

    def get_status(self) -> dict[str, Any]:
        next_run = self.next_run_time()
        return {
            "is_running": next_run is not None,
            "next_scheduled_run_time": next_run.isoformat() if next_run else None,
            "active_jobs": [self.timer.name] if next_run is not None else [],
        }


def get_payout_scheduler() -> PayoutScheduler:
    """The scheduler instance owned by the ticketing app config."""
    return apps.get_app_config("ticketing").payout_scheduler


__all__ = [
    "CeleryBeatTimer",
    "DAILY_PAYOUT_TASK",
    "DAILY_PAYOUT_TASK_NAME",
    "PayoutScheduler",
    "PayoutTimer",
    "get_payout_scheduler",
]
