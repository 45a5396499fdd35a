"""
Event and organizer payout account models.

Only the fields the payment, refund and payout engine reads are modelled
here: who organizes the event, whether it is published, and when it ends.

Usage:
    from ticketing.models import Event, OrganizerPayoutAccount

    event = Event.objects.create(
        organizer=organizer,
        title="Summer Jazz Night",
        status=EventStatus.PUBLISHED,
        starts_at=starts_at,
        ends_at=ends_at,
        ticket_price=Decimal("100.00"),
    )

    # Destination for organizer payouts
    OrganizerPayoutAccount.objects.create(
        organizer=organizer,
        destination_account_id="acct_1234567890",
    )
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel

from ticketing.state_machines import EventStatus


class Event(UUIDPrimaryKeyMixin, BaseModel):
    """
    A ticketed event.

    Fields:
        organizer: User who organizes the event and receives payouts
        title: Event title (first letters prefix its ticket numbers)
        status: Publication status
        starts_at / ends_at: Event schedule; refunds close at ends_at
        ticket_price: Unit price per admission
        currency: ISO 4217 currency code (lowercase)
    """

    organizer = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="organized_events",
        help_text="User organizing this event",
    )

    title = models.CharField(max_length=200)

    status = models.CharField(
        max_length=20,
        choices=EventStatus.choices,
        default=EventStatus.DRAFT,
        db_index=True,
    )

    starts_at = models.DateTimeField()

    ends_at = models.DateTimeField(
        db_index=True,
        help_text="Event end; automated payouts become eligible after this",
    )

    ticket_price = models.DecimalField(
        max_digits=12,
        decimal_places=2,
        help_text="Price per admission",
    )

    currency = models.CharField(
        max_length=3,
        default="chf",
        help_text="ISO 4217 currency code (lowercase)",
    )

    class Meta:
        ordering = ["-starts_at"]
        verbose_name = "Event"
        verbose_name_plural = "Events"

    def __str__(self) -> str:
        return f"Event({self.title}, {self.status})"

    @property
    def has_ended(self) -> bool:
        return self.ends_at <= timezone.now()

    @property
    def ticket_prefix(self) -> str:
        """
        Two-letter ticket number prefix derived from the title.

        Falls back to "ev" when the title has fewer than two leading letters.
        """
        prefix = "".join(c for c in self.title[:2].lower() if "a" <= c <= "z")
        return prefix if len(prefix) == 2 else "ev"


class OrganizerPayoutAccount(UUIDPrimaryKeyMixin, BaseModel):
    """
    Payout destination for an organizer.

    An organizer without an account row, or with an empty
    destination_account_id, cannot receive payouts.

    Fields:
        organizer: OneToOne link to the organizing user
        destination_account_id: Gateway connected account (acct_xxx)
        payouts_blocked: Administrative block on outgoing payouts
    """

    organizer = models.OneToOneField(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="payout_account",
    )

    destination_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Connected Account ID (acct_xxx)",
    )

    payouts_blocked = models.BooleanField(
        default=False,
        help_text="Block all payouts to this organizer",
    )

    class Meta:
        verbose_name = "Organizer Payout Account"
        verbose_name_plural = "Organizer Payout Accounts"

    def __str__(self) -> str:
        return f"OrganizerPayoutAccount({self.organizer_id}, {self.destination_account_id or '-'})"
