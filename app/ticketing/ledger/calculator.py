"""
Money calculations for ticket groups.

Pure, deterministic functions over Decimal amounts. Nothing here touches
the database, settings, or the payment gateway; callers pass configured
values (fee ratio, cancellation fee) in explicitly.

Rounding policy:
    Amounts are rounded half-up to 0.01, once, at the end of each
    calculation. Intermediate per-unit values are never rounded.

Usage:
    from ticketing.ledger import calculator

    split = calculator.split_gross(Decimal("300.00"))
    # PriceSplit(platform_fee=Decimal("30.00"), organizer_net=Decimal("270.00"))

    quote = calculator.refund_quote(
        snapshot, RefundScope.all(), cancellation_fee_per_ticket=Decimal("2.50")
    )
"""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal

from ticketing.ledger.types import (
    GroupSnapshot,
    PriceSplit,
    ProratedAmounts,
    RefundQuote,
    RefundScope,
)
from ticketing.state_machines import RefundState

CENT = Decimal("0.01")
DEFAULT_PLATFORM_FEE_RATIO = Decimal("0.10")


def round_money(amount: Decimal) -> Decimal:
    """Round half-up to two decimal places."""
    return amount.quantize(CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal) -> int:
    """
    Convert a decimal amount to the gateway's smallest currency unit.

    Example:
        to_minor_units(Decimal("97.50"))  # 9750
    """
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_minor_units(amount_minor: int) -> Decimal:
    return round_money(Decimal(amount_minor) / 100)


def split_gross(
    gross: Decimal,
    fee_ratio: Decimal = DEFAULT_PLATFORM_FEE_RATIO,
) -> PriceSplit:
    """
    Split a gross amount into platform fee and organizer net.

    The fee is rounded; the net is the exact remainder, so
    platform_fee + organizer_net == gross to the cent.
    """
    gross = round_money(gross)
    platform_fee = round_money(gross * fee_ratio)
    return PriceSplit(platform_fee=platform_fee, organizer_net=gross - platform_fee)


def per_unit_amounts(group: GroupSnapshot) -> tuple[Decimal, Decimal, Decimal]:
    """
    Unrounded (gross, fee, net) per admission.

    Quantity is validated upstream; a group with quantity 0 never exists.
    """
    quantity = Decimal(group.quantity)
    return (
        group.gross_amount / quantity,
        group.platform_fee_amount / quantity,
        group.organizer_net_amount / quantity,
    )


def active_line_item_count(group: GroupSnapshot) -> int:
    """Admissions not refunded: quantity minus refund-completed line items."""
    refunded = sum(
        1 for item in group.line_items if item.refund_state == RefundState.COMPLETED
    )
    return group.quantity - refunded


def prorated_amounts(group: GroupSnapshot) -> ProratedAmounts:
    """
    Gross, fee and net for the active admissions.

    Each figure is active_count * per-unit, rounded once.
    """
    active = active_line_item_count(group)
    gross_unit, fee_unit, net_unit = per_unit_amounts(group)
    return ProratedAmounts(
        active_count=active,
        gross_active=round_money(gross_unit * active),
        fee_active=round_money(fee_unit * active),
        net_active=round_money(net_unit * active),
    )


def refund_quote(
    group: GroupSnapshot,
    scope: RefundScope,
    cancellation_fee_per_ticket: Decimal,
) -> RefundQuote:
    """
    Quote a refund for the admissions selected by scope.

    Only line items still in refund state "none" are refundable; items
    already requested, rejected or refunded are excluded even when named
    explicitly. Unknown ticket numbers are ignored.
    """
    targeted = tuple(
        item.ticket_number
        for item in group.line_items
        if item.refund_state == RefundState.NONE and scope.includes(item.ticket_number)
    )
    count = len(targeted)
    gross_unit, _, _ = per_unit_amounts(group)
    gross_refundable = round_money(gross_unit * count)
    cancellation_fee = round_money(cancellation_fee_per_ticket * count)
    net_refund = max(Decimal("0.00"), gross_refundable - cancellation_fee)
    return RefundQuote(
        refundable_count=count,
        gross_refundable=gross_refundable,
        cancellation_fee=cancellation_fee,
        net_refund=net_refund,
        ticket_numbers=targeted,
    )
