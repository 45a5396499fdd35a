"""
Ticketing domain models.

- Event: Ticketed event (organizer, status, schedule)
- OrganizerPayoutAccount: Payout destination and block flag per organizer
- TicketGroup: One purchase covering 1..N admissions
- LineItem: One admission with its own refund state
"""

from ticketing.models.event import Event, OrganizerPayoutAccount
from ticketing.models.ticket_group import LineItem, TicketGroup

__all__ = [
    "Event",
    "LineItem",
    "OrganizerPayoutAccount",
    "TicketGroup",
]
