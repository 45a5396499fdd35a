"""
Data types for ledger calculations.

Types:
    PriceSplit: Platform fee / organizer net split of a gross amount
    LineItemSnapshot / GroupSnapshot: Read-only view of a ticket group
    ProratedAmounts: Figures for the non-refunded subset of a group
    RefundScope: Which admissions a refund request targets
    RefundQuote: What a refund request would return to the buyer

Usage:
    from ticketing.ledger.types import GroupSnapshot, RefundScope

    snapshot = GroupSnapshot.from_ticket_group(group)
    scope = RefundScope.specific(["su_1", "su_2"])
"""

from __future__ import annotations

from dataclasses import dataclass, field
from decimal import Decimal
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Iterable

    from ticketing.models import TicketGroup


@dataclass(frozen=True)
class PriceSplit:
    """Result of splitting a gross amount; fee + net == gross."""

    platform_fee: Decimal
    organizer_net: Decimal


@dataclass(frozen=True)
class LineItemSnapshot:
    ticket_number: str
    refund_state: str


@dataclass(frozen=True)
class GroupSnapshot:
    """
    Immutable view of the ticket group fields the calculator reads.

    Keeping the calculator on snapshots instead of model instances keeps
    it free of database access.
    """

    quantity: int
    gross_amount: Decimal
    platform_fee_amount: Decimal
    organizer_net_amount: Decimal
    line_items: tuple[LineItemSnapshot, ...] = ()

    @classmethod
    def from_ticket_group(cls, group: TicketGroup) -> GroupSnapshot:
        return cls(
            quantity=group.quantity,
            gross_amount=group.gross_amount,
            platform_fee_amount=group.platform_fee_amount,
            organizer_net_amount=group.organizer_net_amount,
            line_items=tuple(
                LineItemSnapshot(item.ticket_number, item.refund_state)
                for item in group.line_items.all()
            ),
        )


@dataclass(frozen=True)
class ProratedAmounts:
    """Gross, fee and net for the admissions that are still active."""

    active_count: int
    gross_active: Decimal
    fee_active: Decimal
    net_active: Decimal


@dataclass(frozen=True)
class RefundScope:
    """
    Which admissions of a group a refund request targets.

    ticket_numbers is None for "every refundable admission". An explicit
    empty set targets nothing; it is never widened to "all" here.

    Example:
        RefundScope.all()
        RefundScope.specific(["su_1"])
    """

    ticket_numbers: frozenset[str] | None = None

    @classmethod
    def all(cls) -> RefundScope:
        return cls(ticket_numbers=None)

    @classmethod
    def specific(cls, ticket_numbers: Iterable[str]) -> RefundScope:
        return cls(ticket_numbers=frozenset(ticket_numbers))

    @classmethod
    def from_request(
        cls,
        ticket_numbers: Iterable[str] | None,
        empty_means_all: bool,
    ) -> RefundScope:
        """
        Build a scope from request input.

        Args:
            ticket_numbers: Ticket numbers sent by the caller (None or empty
                when none were given)
            empty_means_all: Policy for a missing/empty list
        """
        numbers = list(ticket_numbers or [])
        if not numbers and empty_means_all:
            return cls.all()
        return cls.specific(numbers)

    @property
    def is_all(self) -> bool:
        return self.ticket_numbers is None

    def includes(self, ticket_number: str) -> bool:
        return self.ticket_numbers is None or ticket_number in self.ticket_numbers


@dataclass(frozen=True)
class RefundQuote:
    """
    Refund figures for the targeted, still-refundable admissions.

    net_refund is never negative: cancellation fees larger than the
    refundable gross clamp it to zero.
    """

    refundable_count: int
    gross_refundable: Decimal
    cancellation_fee: Decimal
    net_refund: Decimal
    ticket_numbers: tuple[str, ...] = field(default_factory=tuple)

    @property
    def per_ticket_refund(self) -> Decimal:
        """Net refund attributed to each refunded admission (unrounded)."""
        if self.refundable_count == 0:
            return Decimal("0")
        return self.net_refund / self.refundable_count
