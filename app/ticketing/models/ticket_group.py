"""
TicketGroup and LineItem models.

A TicketGroup is one purchase transaction covering one or more admissions
to a single event. Each admission is a LineItem with its own globally unique
ticket number and its own refund state.

Usage:
    from ticketing.models import TicketGroup
    from ticketing.state_machines import PaymentState

    group = TicketGroup.objects.get(payment_reference="pi_123")

    # Gateway confirmed the payment intent
    group.mark_paid()  # pending -> paid
    group.save()

    # Operator requeues a failed payout
    group.requeue_payout()  # failed -> pending
    group.save()

Note:
    Refund and payout settlement are written through
    ticketing.store.TicketGroupStore.atomic_update (compare-and-swap on the
    state columns), not through instance.save().
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.db.models import F, Q
from django.utils import timezone

from django_fsm import FSMField, transition

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from ticketing.state_machines import PaymentState, PayoutState, RefundState


class TicketGroup(UUIDPrimaryKeyMixin, BaseModel):
    """
    One purchase of 1..N admissions to an event.

    Amount fields describe the original, unrefunded purchase and are never
    rewritten by refunds; prorated figures are derived by ticketing.ledger.

    Fields:
        event: Event the admissions are for
        buyer: Purchasing user
        organizer: Organizer at purchase time (payout recipient)
        quantity: Admissions purchased (>= 1, never mutated)
        gross_amount / platform_fee_amount / organizer_net_amount: 10/90 split
        currency: ISO 4217 currency code (lowercase)
        payment_state: Buyer payment lifecycle (FSM)
        payment_reference: Gateway payment intent ID (pi_xxx)
        refund_state: Group-level refund aggregate
        refund_*: Figures of the most recent refund request
        payout_state: Organizer payout lifecycle (FSM)
        payout_*: Outcome of the payout transfer
        purchased_at: Purchase timestamp
        version: Optimistic locking version
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    event = models.ForeignKey(
        "ticketing.Event",
        on_delete=models.PROTECT,
        related_name="ticket_groups",
    )

    buyer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="ticket_groups",
    )

    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="sold_ticket_groups",
    )

    # ==========================================================================
    # Amounts
    # ==========================================================================

    quantity = models.PositiveIntegerField()

    gross_amount = models.DecimalField(max_digits=12, decimal_places=2)

    platform_fee_amount = models.DecimalField(max_digits=12, decimal_places=2)

    organizer_net_amount = models.DecimalField(max_digits=12, decimal_places=2)

    currency = models.CharField(
        max_length=3,
        default="chf",
        help_text="ISO 4217 currency code (lowercase)",
    )

    # ==========================================================================
    # Payment
    # ==========================================================================

    payment_state = FSMField(
        default=PaymentState.PENDING,
        choices=PaymentState.choices,
        db_index=True,
        protected=True,
    )

    payment_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx)",
    )

    # ==========================================================================
    # Refund
    # ==========================================================================

    refund_state = models.CharField(
        max_length=20,
        choices=RefundState.choices,
        default=RefundState.NONE,
        db_index=True,
    )

    refund_reason = models.TextField(blank=True, default="")

    refund_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
        help_text="Net amount returned to the buyer",
    )

    cancellation_fee_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
    )

    refund_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Refund ID (re_xxx)",
    )

    refunded_at = models.DateTimeField(null=True, blank=True)

    # ==========================================================================
    # Payout
    # ==========================================================================

    payout_state = FSMField(
        default=PayoutState.PENDING,
        choices=PayoutState.choices,
        db_index=True,
        protected=True,
    )

    payout_reference = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        help_text="Stripe Transfer ID (tr_xxx)",
    )

    payout_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
    )

    payout_completed_at = models.DateTimeField(null=True, blank=True)

    payout_failure_reason = models.TextField(null=True, blank=True)

    payout_attempt = models.PositiveIntegerField(
        default=1,
        help_text="Transfer attempt number; part of the transfer idempotency key",
    )

    # ==========================================================================
    # Timestamps & Concurrency
    # ==========================================================================

    purchased_at = models.DateTimeField(default=timezone.now, db_index=True)

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each write",
    )

    class Meta:
        ordering = ["-purchased_at"]
        verbose_name = "Ticket Group"
        verbose_name_plural = "Ticket Groups"
        indexes = [
            models.Index(
                fields=["payment_state", "payout_state"],
                name="tg_payment_payout_idx",
            ),
            models.Index(
                fields=["organizer", "refund_state"],
                name="tg_organizer_refund_idx",
            ),
        ]
        constraints = [
            models.CheckConstraint(
                condition=Q(quantity__gte=1),
                name="ticket_group_quantity_positive",
            ),
        ]

    def __str__(self) -> str:
        return (
            f"TicketGroup({self.id}, {self.quantity}x, "
            f"{self.gross_amount} {self.currency.upper()}, {self.payment_state})"
        )

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.
        """
        is_update = self.pk and not self._state.adding
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=payment_state,
        source=PaymentState.PENDING,
        target=PaymentState.PAID,
    )
    def mark_paid(self):
        """
        Record a successful payment.

        Transition: PENDING -> PAID
        """

    @transition(
        field=payment_state,
        source=PaymentState.PENDING,
        target=PaymentState.FAILED,
    )
    def mark_failed(self):
        """
        Record a failed payment.

        Transition: PENDING -> FAILED
        """

    @transition(
        field=payout_state,
        source=PayoutState.FAILED,
        target=PayoutState.PENDING,
    )
    def requeue_payout(self):
        """
        Put a failed payout back in the queue.

        Transition: FAILED -> PENDING

        Operator action only; reconciliation never resets failures itself.
        """
        self.payout_failure_reason = None
        self.payout_attempt += 1

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_paid(self) -> bool:
        return self.payment_state in (
            PaymentState.PAID,
            PaymentState.PARTIALLY_REFUNDED,
        )

    @property
    def is_payout_completed(self) -> bool:
        return self.payout_state == PayoutState.COMPLETED


class LineItem(BaseModel):
    """
    One admission within a ticket group.

    Fields:
        ticket_group: Owning purchase
        position: Order within the group (0-based)
        ticket_number: Globally unique ticket number ("<prefix>_<n>")
        holder_name / holder_email: Attendee details
        refund_state: Refund state of this admission
        refund_amount / refund_reason / refunded_at: Refund details
    """

    ticket_group = models.ForeignKey(
        TicketGroup,
        on_delete=models.CASCADE,
        related_name="line_items",
    )

    position = models.PositiveIntegerField(default=0)

    ticket_number = models.CharField(max_length=64, unique=True)

    holder_name = models.CharField(max_length=200)

    holder_email = models.EmailField()

    refund_state = models.CharField(
        max_length=20,
        choices=RefundState.choices,
        default=RefundState.NONE,
        db_index=True,
    )

    refund_amount = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        null=True,
        blank=True,
    )

    refund_reason = models.TextField(blank=True, default="")

    refunded_at = models.DateTimeField(null=True, blank=True)

    class Meta:
        ordering = ["ticket_group", "position"]
        verbose_name = "Line Item"
        verbose_name_plural = "Line Items"

    def __str__(self) -> str:
        return f"LineItem({self.ticket_number}, {self.refund_state})"
