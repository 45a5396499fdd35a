"""
DRF serializers for the ticketing app.

Request serializers only shape input; all business rules live in the
services. Response serializers render ticket groups with their line items.

Related files:
    - services/: PurchaseService, RefundService, PayoutReconciliationService
    - views.py: API views
"""

from __future__ import annotations

from rest_framework import serializers

from ticketing.models import LineItem, TicketGroup
from ticketing.services import MAX_TICKETS_PER_PURCHASE, RefundAction
from ticketing.state_machines import PayoutMode


# =============================================================================
# Responses
# =============================================================================


class LineItemSerializer(serializers.ModelSerializer):
    class Meta:
        model = LineItem
        fields = [
            "ticket_number",
            "holder_name",
            "holder_email",
            "refund_state",
            "refund_amount",
            "refund_reason",
            "refunded_at",
        ]
        read_only_fields = fields


class TicketGroupSerializer(serializers.ModelSerializer):
    """
    Ticket group with line items.

    Fields:
        event_id / buyer_id / organizer_id: Related object IDs
        line_items: Admissions in purchase order
    """

    event_id = serializers.UUIDField(read_only=True)
    buyer_id = serializers.ReadOnlyField()
    organizer_id = serializers.ReadOnlyField()
    line_items = LineItemSerializer(many=True, read_only=True)

    class Meta:
        model = TicketGroup
        fields = [
            "id",
            "event_id",
            "buyer_id",
            "organizer_id",
            "quantity",
            "gross_amount",
            "platform_fee_amount",
            "organizer_net_amount",
            "currency",
            "payment_state",
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
            "purchased_at",
            "line_items",
        ]
        read_only_fields = fields


# =============================================================================
# Requests
# =============================================================================


class HolderSerializer(serializers.Serializer):
    name = serializers.CharField(max_length=200)
    email = serializers.EmailField()


class PurchaseCreateSerializer(serializers.Serializer):
    """
    Purchase request body.

    Example:
        {"holders": [{"name": "Ada Lovelace", "email": "ada@example.com"}]}
    """

    holders = HolderSerializer(
        many=True,
        allow_empty=False,
        max_length=MAX_TICKETS_PER_PURCHASE,
    )


class RefundRequestSerializer(serializers.Serializer):
    """
    Refund request body.

    ticket_numbers may be omitted or empty; how that is interpreted is
    decided by RefundService.resolve_scope.
    """

    reason = serializers.CharField(allow_blank=True, default="")
    ticket_numbers = serializers.ListField(
        child=serializers.CharField(max_length=64),
        required=False,
        allow_empty=True,
        default=list,
    )


class ProcessRefundSerializer(serializers.Serializer):
    action = serializers.ChoiceField(choices=[a.value for a in RefundAction])


class PayoutRunSerializer(serializers.Serializer):
    mode = serializers.ChoiceField(
        choices=PayoutMode.choices,
        default=PayoutMode.MANUAL,
    )
