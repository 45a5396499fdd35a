"""
Ticket record store: persistence access for ticket groups.

Services read ticket groups through TicketGroupStore and write refund and
payout state through atomic_update, a compare-and-swap that only applies
the patch when the row still matches the expected state. Two writers racing
on the same group therefore cannot both win: the loser gets
UpdateOutcome.CONFLICT and nothing is written.

Usage:
    from ticketing.store import TicketGroupStore, UpdateOutcome

    outcome = TicketGroupStore.atomic_update(
        group.id,
        predicate=Q(payout_state=PayoutState.PENDING),
        patch={"payout_state": PayoutState.COMPLETED, "payout_reference": "tr_1"},
    )
    if outcome is UpdateOutcome.CONFLICT:
        ...
"""

from __future__ import annotations

import enum
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.db import transaction
from django.db.models import F, Q
from django.utils import timezone

from ticketing.exceptions import TicketGroupNotFoundError
from ticketing.models import LineItem, TicketGroup
from ticketing.state_machines import (
    EventStatus,
    PaymentState,
    PayoutMode,
    PayoutState,
    RefundState,
)

if TYPE_CHECKING:
    import uuid
    from collections.abc import Iterable
    from datetime import datetime
    from typing import Any

    from django.db.models import QuerySet


logger = logging.getLogger(__name__)


class UpdateOutcome(enum.Enum):
    UPDATED = "updated"
    CONFLICT = "conflict"


@dataclass(frozen=True)
class LineItemPatch:
    """
    Line item update applied in the same transaction as the group patch.

    Attributes:
        values: Column values to write
        ticket_numbers: Restrict to these ticket numbers (None = whole group)
        predicate: Extra filter the line items must match
        expected_count: If set, the patch must touch exactly this many rows
            or the whole update is rolled back as a conflict
    """

    values: dict[str, Any]
    ticket_numbers: tuple[str, ...] | None = None
    predicate: Q = field(default_factory=Q)
    expected_count: int | None = None


class _LineItemConflict(Exception):
    pass


class TicketGroupStore:
    """
    Read and conditional-write access to ticket groups.

    All methods are classmethods; the store holds no state.
    """

    @classmethod
    def base_queryset(cls) -> QuerySet[TicketGroup]:
        return TicketGroup.objects.select_related(
            "event", "buyer", "organizer"
        ).prefetch_related("line_items")

    @classmethod
    def get(cls, ticket_group_id: uuid.UUID | str) -> TicketGroup:
        """
        Load a ticket group with its event and line items.

        Raises:
            TicketGroupNotFoundError: If no such group exists
        """
        group = cls.base_queryset().filter(pk=ticket_group_id).first()
        if group is None:
            raise TicketGroupNotFoundError(
                f"Ticket group {ticket_group_id} not found",
                details={"ticket_group_id": str(ticket_group_id)},
            )
        return group

    @classmethod
    def find_eligible_for_payout(
        cls,
        mode: PayoutMode | str,
        now: datetime | None = None,
    ) -> list[TicketGroup]:
        """
        Ticket groups whose organizer payout is due.

        Candidates are paid or partially refunded with a pending payout.
        AUTOMATED additionally requires the event to have ended; MANUAL
        requires the event to be published or completed.
        """
        now = now or timezone.now()
        queryset = cls.base_queryset().filter(
            payment_state__in=[PaymentState.PAID, PaymentState.PARTIALLY_REFUNDED],
            payout_state=PayoutState.PENDING,
        )

        if mode == PayoutMode.AUTOMATED:
            queryset = queryset.filter(event__ends_at__lt=now)
        elif mode == PayoutMode.MANUAL:
            queryset = queryset.filter(
                event__status__in=[EventStatus.PUBLISHED, EventStatus.COMPLETED]
            )
        else:
            raise ValueError(f"Unknown payout mode: {mode!r}")

        return list(queryset.order_by("purchased_at", "id"))

    @classmethod
    def pending_refund_requests(cls, organizer=None) -> QuerySet[TicketGroup]:
        """Groups with an open refund request, optionally for one organizer."""
        queryset = cls.base_queryset().filter(refund_state=RefundState.REQUESTED)
        if organizer is not None:
            queryset = queryset.filter(organizer=organizer)
        return queryset.order_by("-updated_at")

    @classmethod
    def atomic_update(
        cls,
        ticket_group_id: uuid.UUID | str,
        predicate: Q,
        patch: dict[str, Any],
        line_items: Iterable[LineItemPatch] = (),
    ) -> UpdateOutcome:
        """
        Apply patch to the group only if it still matches predicate.

        Runs a single UPDATE ... WHERE id = ? AND <predicate>, bumps the
        version and writes line item patches in the same transaction.

        Returns:
            UpdateOutcome.UPDATED, or UpdateOutcome.CONFLICT when the row no
            longer matched (nothing is written in that case)
        """
        now = timezone.now()
        try:
            with transaction.atomic():
                rows = (
                    TicketGroup.objects.filter(pk=ticket_group_id)
                    .filter(predicate)
                    .update(**patch, version=F("version") + 1, updated_at=now)
                )
                if rows == 0:
                    return UpdateOutcome.CONFLICT

                for item_patch in line_items:
                    queryset = LineItem.objects.filter(
                        ticket_group_id=ticket_group_id
                    ).filter(item_patch.predicate)
                    if item_patch.ticket_numbers is not None:
                        queryset = queryset.filter(
                            ticket_number__in=item_patch.ticket_numbers
                        )
                    updated = queryset.update(**item_patch.values, updated_at=now)
                    if (
                        item_patch.expected_count is not None
                        and updated != item_patch.expected_count
                    ):
                        raise _LineItemConflict
        except _LineItemConflict:
            logger.warning(
                "Line item patch lost to a concurrent update",
                extra={"ticket_group_id": str(ticket_group_id)},
            )
            return UpdateOutcome.CONFLICT

        return UpdateOutcome.UPDATED
