"""
Stripe webhook handling for ticket payments.

The endpoint verifies the signature and dispatches the event to a
registered handler in the same request.

Usage:
    # In urls.py
    from ticketing.webhooks import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from ticketing.webhooks.handlers import dispatch_webhook, register_handler
from ticketing.webhooks.views import stripe_webhook

__all__ = [
    "dispatch_webhook",
    "register_handler",
    "stripe_webhook",
]
