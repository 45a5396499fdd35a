"""
Control the daily payout scheduler from the command line.

Usage:
    python manage.py payout_scheduler status
    python manage.py payout_scheduler start
    python manage.py payout_scheduler stop
    python manage.py payout_scheduler run --mode manual
"""

from django.core.management.base import BaseCommand, CommandError

from ticketing.exceptions import PayoutRunInProgressError
from ticketing.scheduler import get_payout_scheduler
from ticketing.state_machines import PayoutMode


class Command(BaseCommand):
    help = "Start, stop or inspect the daily payout scheduler, or run payouts now"

    def add_arguments(self, parser):
        parser.add_argument(
            "action",
            choices=["start", "stop", "status", "run"],
            help="Scheduler action",
        )
        parser.add_argument(
            "--mode",
            choices=PayoutMode.values,
            default=PayoutMode.MANUAL,
            help="Eligibility mode for 'run' (default: manual)",
        )

    def handle(self, *args, **options):
        scheduler = get_payout_scheduler()
        action = options["action"]

        if action == "start":
            if scheduler.start():
                self.stdout.write(self.style.SUCCESS("Payout scheduler started"))
            else:
                self.stdout.write(self.style.WARNING("Payout scheduler already running"))
        elif action == "stop":
            if scheduler.stop():
                self.stdout.write(self.style.SUCCESS("Payout scheduler stopped"))
            else:
                self.stdout.write(self.style.WARNING("Payout scheduler was not running"))
        elif action == "run":
            self._run(scheduler, options["mode"])
            return

        status = scheduler.get_status()
        self.stdout.write(f"Running:  {status['is_running']}")
        self.stdout.write(f"Next run: {status['next_scheduled_run_time'] or '-'}")
        self.stdout.write(f"Jobs:     {', '.join(status['active_jobs']) or '-'}")

    def _run(self, scheduler, mode):
        try:
            batch = scheduler.run_now(mode)
        except PayoutRunInProgressError as e:
            raise CommandError(e.message) from e

        self.stdout.write(
            f"Processed {batch.total_processed} ticket group(s) in {batch.mode} mode: "
            f"{batch.success_count} completed, {batch.failure_count} failed, "
            f"{batch.skipped_count} skipped"
        )
        for item in batch.results:
            line = f"  {item.ticket_group_id} {item.status.value} {item.amount}"
            if item.reference:
                line += f" {item.reference}"
            if item.reason:
                line += f" ({item.reason})"
            self.stdout.write(line)
        self.stdout.write(self.style.SUCCESS(f"Total paid out: {batch.total_amount}"))
