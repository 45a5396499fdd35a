"""
Celery tasks for ticketing.

run_scheduled_payouts is the target of the daily PeriodicTask registered
by PayoutScheduler.start(). celery-beat sends it with kwargs
{"mode": "automated"}.

Usage:
    from ticketing.tasks import run_scheduled_payouts

    run_scheduled_payouts.delay(mode="manual")
"""

from __future__ import annotations

import logging

from celery import shared_task

from ticketing.scheduler import get_payout_scheduler

logger = logging.getLogger(__name__)


@shared_task(acks_late=True)
def run_scheduled_payouts(mode: str = "automated") -> dict:
    """
    Run a payout batch on behalf of the scheduler.

    Never retried: a failed transfer stays failed until an operator
    requeues it, and a crashed run is picked up by the next tick.

    Returns:
        Batch summary dict, or {"status": "skipped"} if the run did not happen
    """
    logger.info("Scheduled payout task started", extra={"mode": mode})

    batch = get_payout_scheduler().run_scheduled(mode)
    if batch is None:
        return {"status": "skipped", "mode": mode}

    return {"status": "completed", **batch.to_dict()}
