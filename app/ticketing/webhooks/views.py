"""
Webhook endpoint view for Stripe.

The view verifies the signature, dispatches the event synchronously and
always answers 200 for verified events so Stripe does not retry events
that were handled or deliberately ignored. An exception raised by a
handler surfaces as a 500 and Stripe retries the delivery; the payment
transitions are idempotent.
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, HttpResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from ticketing.adapters import StripeAdapter
from ticketing.exceptions import GatewayError
from ticketing.webhooks.handlers import dispatch_webhook

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> HttpResponse:
    """
    Receive a Stripe webhook event.

    Returns:
        HttpResponse with status:
        - 200: Event verified and handled (or ignored)
        - 400: Missing or invalid signature, or malformed payload
    """
    payload = request.body
    signature = request.headers.get("Stripe-Signature", "")

    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return HttpResponse("Missing signature", status=400)

    try:
        event = StripeAdapter.verify_webhook_signature(payload, signature)
    except GatewayError as e:
        logger.warning(
            "Webhook signature verification failed",
            extra={"error_code": e.error_code},
        )
        return HttpResponse("Invalid signature", status=400)

    stripe_event_id = event.get("id")
    event_type = event.get("type")

    if not stripe_event_id or not event_type:
        logger.warning("Webhook missing required fields")
        return HttpResponse("Invalid event", status=400)

    logger.info(
        f"Received Stripe webhook: {event_type}",
        extra={"stripe_event_id": stripe_event_id, "event_type": event_type},
    )

    result = dispatch_webhook(event)
    if not result.success:
        logger.warning(
            "Webhook handler reported failure",
            extra={
                "stripe_event_id": stripe_event_id,
                "event_type": event_type,
                "error_code": result.error_code,
            },
        )

    return HttpResponse("OK", status=200)
