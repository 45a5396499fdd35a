"""
Money ledger calculator for ticket groups.

Price splits, per-admission proration and refund quotes. See
ticketing.ledger.calculator for the rounding policy.
"""

from ticketing.ledger.calculator import (
    active_line_item_count,
    from_minor_units,
    per_unit_amounts,
    prorated_amounts,
    refund_quote,
    round_money,
    split_gross,
    to_minor_units,
)
from ticketing.ledger.types import (
    GroupSnapshot,
    LineItemSnapshot,
    PriceSplit,
    ProratedAmounts,
    RefundQuote,
    RefundScope,
)

__all__ = [
    "GroupSnapshot",
    "LineItemSnapshot",
    "PriceSplit",
    "ProratedAmounts",
    "RefundQuote",
    "RefundScope",
    "active_line_item_count",
    "from_minor_units",
    "per_unit_amounts",
    "prorated_amounts",
    "refund_quote",
    "round_money",
    "split_gross",
    "to_minor_units",
]
