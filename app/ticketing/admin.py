"""
Ticketing admin configuration.

Ticket groups are read-only in the admin: payment, refund and payout state
only change through the services. The one write path is the
"Requeue failed payouts" action, which goes through
PayoutReconciliationService.requeue_failed_payout.
"""

from django.contrib import admin, messages

from ticketing.exceptions import InvalidStateError
from ticketing.models import Event, LineItem, OrganizerPayoutAccount, TicketGroup
from ticketing.services import PayoutReconciliationService
from ticketing.state_machines import PayoutState

__all__ = [
    "EventAdmin",
    "OrganizerPayoutAccountAdmin",
    "TicketGroupAdmin",
]


@admin.register(Event)
class EventAdmin(admin.ModelAdmin):
    list_display = ["title", "organizer", "status", "starts_at", "ends_at", "ticket_price", "currency"]
    list_filter = ["status", "currency"]
    search_fields = ["title", "organizer__email", "organizer__username"]
    readonly_fields = ["id", "created_at", "updated_at"]
    ordering = ["-starts_at"]


@admin.register(OrganizerPayoutAccount)
class OrganizerPayoutAccountAdmin(admin.ModelAdmin):
    """
    Admin configuration for OrganizerPayoutAccount.

    Operators block payouts for an organizer here.
    """

    list_display = ["organizer", "destination_account_id", "payouts_blocked", "updated_at"]
    list_filter = ["payouts_blocked"]
    search_fields = ["organizer__email", "organizer__username", "destination_account_id"]
    readonly_fields = ["id", "created_at", "updated_at"]


class LineItemInline(admin.TabularInline):
    model = LineItem
    extra = 0
    can_delete = False
    fields = [
        "position",
        "ticket_number",
        "holder_name",
        "holder_email",
        "refund_state",
        "refund_amount",
        "refunded_at",
    ]
    readonly_fields = fields

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(TicketGroup)
class TicketGroupAdmin(admin.ModelAdmin):
    """
    Admin configuration for TicketGroup.

    Provides visibility into payment, refund and payout state per purchase.
    """

    list_display = [
        "id",
        "event",
        "buyer",
        "quantity",
        "amount_display",
        "payment_state",
        "refund_state",
        "payout_state",
        "purchased_at",
    ]
    list_filter = ["payment_state", "refund_state", "payout_state", "currency"]
    search_fields = [
        "id",
        "payment_reference",
        "payout_reference",
        "line_items__ticket_number",
        "buyer__email",
    ]
    ordering = ["-purchased_at"]
    inlines = [LineItemInline]
    actions = ["requeue_failed_payouts"]

    readonly_fields = [
        "id",
        "event",
        "buyer",
        "organizer",
        "quantity",
        "gross_amount",
        "platform_fee_amount",
        "organizer_net_amount",
        "currency",
        "payment_state",
        "payment_reference",
        "refund_state",
        "refund_reason",
        "refund_amount",
        "cancellation_fee_amount",
        "refund_reference",
        "refunded_at",
        "payout_state",
        "payout_reference",
        "payout_amount",
        "payout_completed_at",
        "payout_failure_reason",
        "payout_attempt",
        "purchased_at",
        "version",
        "created_at",
        "updated_at",
    ]

    fieldsets = (
        (None, {"fields": ("id", "event", "buyer", "organizer", "quantity")}),
        (
            "Amounts",
            {
                "fields": (
                    "gross_amount",
                    "platform_fee_amount",
                    "organizer_net_amount",
                    "currency",
                ),
            },
        ),
        ("Payment", {"fields": ("payment_state", "payment_reference")}),
        (
            "Refund",
            {
                "fields": (
                    "refund_state",
                    "refund_reason",
                    "refund_amount",
                    "cancellation_fee_amount",
                    "refund_reference",
                    "refunded_at",
                ),
            },
        ),
        (
            "Payout",
            {
                "fields": (
                    "payout_state",
                    "payout_reference",
                    "payout_amount",
                    "payout_completed_at",
                    "payout_failure_reason",
                    "payout_attempt",
                ),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("purchased_at", "created_at", "updated_at", "version"),
                "classes": ("collapse",),
            },
        ),
    )

    def amount_display(self, obj: TicketGroup) -> str:
        """Display the gross amount with currency."""
        return f"{obj.gross_amount} {obj.currency.upper()}"

    amount_display.short_description = "Gross"

    @admin.action(description="Requeue failed payouts")
    def requeue_failed_payouts(self, request, queryset):
        """Move failed payouts back to pending for the next payout run."""
        requeued = 0
        for group in queryset.filter(payout_state=PayoutState.FAILED):
            try:
                PayoutReconciliationService.requeue_failed_payout(group.id)
            except InvalidStateError:
                continue
            requeued += 1

        skipped = queryset.count() - requeued
        self.message_user(request, f"Requeued {requeued} failed payouts.")
        if skipped:
            self.message_user(
                request,
                f"Skipped {skipped} ticket groups without a failed payout.",
                level=messages.WARNING,
            )

    def has_add_permission(self, request) -> bool:
        """Ticket groups are created through purchases only."""
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for ticket groups (audit trail)."""
        return False
