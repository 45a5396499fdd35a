"""
Ticketing app configuration.

The app config is the composition root for the payout scheduler: ready()
builds the single PayoutScheduler instance that views, tasks and the
payout_scheduler management command share.
"""

from django.apps import AppConfig


class TicketingConfig(AppConfig):
    """Configuration for the ticketing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "ticketing"
    verbose_name = "Ticketing"

    def ready(self):
        from ticketing.scheduler import CeleryBeatTimer, PayoutScheduler

        # Register webhook handlers
        from ticketing.webhooks import handlers  # noqa: F401

        self.payout_scheduler = PayoutScheduler(timer=CeleryBeatTimer())
