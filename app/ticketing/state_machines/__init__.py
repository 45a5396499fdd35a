"""
State machine enums for ticketing models.
"""

from ticketing.state_machines.states import (
    EventStatus,
    PaymentState,
    PayoutMode,
    PayoutState,
    RefundState,
)

__all__ = [
    "EventStatus",
    "PaymentState",
    "PayoutMode",
    "PayoutState",
    "RefundState",
]
