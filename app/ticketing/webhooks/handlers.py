"""
Webhook event handlers for Stripe events.

Handlers are registered per event type and receive the verified event
payload as a dict. Unknown event types are acknowledged without action.

Usage:
    from ticketing.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("charge.dispute.created")
    def handle_dispute(event: dict) -> ServiceResult:
        ...

    result = dispatch_webhook(event)
"""

from __future__ import annotations

import logging
from typing import Any, Callable

from core.services import ServiceResult

from ticketing.services import PurchaseService

logger = logging.getLogger(__name__)


StripeEvent = dict[str, Any]


# =============================================================================
# Handler Registry
# =============================================================================


# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, Callable[[StripeEvent], ServiceResult]] = {}


def register_handler(event_type: str) -> Callable:
    """
    Decorator to register a webhook event handler.

    Args:
        event_type: The Stripe event type (e.g., "payment_intent.succeeded")
    """

    def decorator(func: Callable[[StripeEvent], ServiceResult]) -> Callable:
        WEBHOOK_HANDLERS[event_type] = func
        logger.debug(f"Registered webhook handler for {event_type}")
        return func

    return decorator


def dispatch_webhook(event: StripeEvent) -> ServiceResult:
    """
    Dispatch a verified Stripe event to its handler.

    Returns:
        ServiceResult from the handler, or success if no handler is registered
    """
    event_type = event.get("type", "")
    handler = WEBHOOK_HANDLERS.get(event_type)

    if not handler:
        logger.info(
            f"No handler registered for event type: {event_type}",
            extra={"stripe_event_id": event.get("id")},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {event_type} to handler",
        extra={"stripe_event_id": event.get("id")},
    )
    return handler(event)


def get_object_id(event: StripeEvent) -> str | None:
    """ID of the Stripe object the event is about (data.object.id)."""
    return event.get("data", {}).get("object", {}).get("id")


# =============================================================================
# Payment Intent Handlers
# =============================================================================


@register_handler("payment_intent.succeeded")
def handle_payment_intent_succeeded(event: StripeEvent) -> ServiceResult:
    """Mark the ticket group paid."""
    payment_intent_id = get_object_id(event)
    if not payment_intent_id:
        logger.error(
            "payment_intent.succeeded: Could not extract payment_intent_id",
            extra={"stripe_event_id": event.get("id")},
        )
        return ServiceResult.failure(
            "Missing payment intent ID", error_code="INVALID_EVENT"
        )

    return PurchaseService.mark_payment_succeeded(payment_intent_id)


@register_handler("payment_intent.payment_failed")
def handle_payment_intent_failed(event: StripeEvent) -> ServiceResult:
    """Mark the ticket group failed."""
    payment_intent_id = get_object_id(event)
    if not payment_intent_id:
        logger.error(
            "payment_intent.payment_failed: Could not extract payment_intent_id",
            extra={"stripe_event_id": event.get("id")},
        )
        return ServiceResult.failure(
            "Missing payment intent ID", error_code="INVALID_EVENT"
        )

    last_error = event["data"]["object"].get("last_payment_error") or {}
    logger.info(
        "Payment failed at Stripe",
        extra={
            "payment_intent_id": payment_intent_id,
            "decline_code": last_error.get("decline_code"),
        },
    )
    return PurchaseService.mark_payment_failed(payment_intent_id)
