"""
State enums for ticketing models.

These are Django TextChoices for database storage and admin integration,
used by the FSM fields on TicketGroup.

State Machines Overview:

Payment States (TicketGroup.payment_state):
    pending → paid (gateway confirms the payment intent)
    pending → failed
    paid → partially_refunded (some admissions refunded)
    paid/partially_refunded → refunded (every admission refunded)

Refund States (TicketGroup.refund_state and LineItem.refund_state):
    none → requested → completed
    none → requested → rejected
    rejected → requested (a fresh request on the group)

Payout States (TicketGroup.payout_state):
    pending → completed (at most once)
    pending → failed → pending (operator requeue only)
"""

from django.db import models


class PaymentState(models.TextChoices):
    """
    States of the buyer's payment for a ticket group.

    Terminal states: FAILED, REFUNDED
    """

    PENDING = "pending", "Pending"
    PAID = "paid", "Paid"
    FAILED = "failed", "Failed"
    REFUNDED = "refunded", "Refunded"
    PARTIALLY_REFUNDED = "partially_refunded", "Partially Refunded"


class RefundState(models.TextChoices):
    """
    Refund states shared by the group aggregate and its line items.

    A line item in REJECTED or COMPLETED is never quoted again.
    """

    NONE = "none", "None"
    REQUESTED = "requested", "Requested"
    APPROVED = "approved", "Approved"
    REJECTED = "rejected", "Rejected"
    COMPLETED = "completed", "Completed"


class PayoutState(models.TextChoices):
    """
    States of the organizer payout for a ticket group.

    COMPLETED is written at most once. FAILED only returns to PENDING
    through an explicit operator requeue.
    """

    PENDING = "pending", "Pending"
    COMPLETED = "completed", "Completed"
    FAILED = "failed", "Failed"


class EventStatus(models.TextChoices):
    """Publication status of an event."""

    DRAFT = "draft", "Draft"
    PUBLISHED = "published", "Published"
    COMPLETED = "completed", "Completed"
    CANCELLED = "cancelled", "Cancelled"


class PayoutMode(models.TextChoices):
    """
    Eligibility mode for a payout batch.

    AUTOMATED: events whose end time has passed (daily scheduled run)
    MANUAL: events that are published or completed (admin-triggered run)
    """

    AUTOMATED = "automated", "Automated"
    MANUAL = "manual", "Manual"
