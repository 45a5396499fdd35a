"""
Tests for RefundService: request, approve and reject.

The Stripe adapter is a MagicMock (stripe_adapter fixture).
"""

from datetime import timedelta
from decimal import Decimal

import pytest
from freezegun import freeze_time

from ticketing.exceptions import (
    GatewayError,
    GatewayErrorKind,
    InvalidStateError,
    NoRefundableTicketsError,
    RefundAuthorizationError,
    RefundWindowClosedError,
    StateConflictError,
    TicketingValidationError,
)
from ticketing.ledger import RefundScope
from ticketing.models import LineItem, TicketGroup
from ticketing.services import RefundAction, RefundService
from ticketing.state_machines import PaymentState, RefundState
from ticketing.store import TicketGroupStore, UpdateOutcome
from ticketing.tests.factories import EventFactory, TicketGroupFactory, make_refund


def ticket_numbers(group):
    return list(group.line_items.order_by("position").values_list("ticket_number", flat=True))


def line_item_states(group):
    return list(
        LineItem.objects.filter(ticket_group_id=group.pk)
        .order_by("position")
        .values_list("refund_state", flat=True)
    )


# =============================================================================
# request_refund
# =============================================================================


@pytest.mark.django_db
class TestRequestRefund:
    def test_buyer_requests_single_ticket(self, paid_group, buyer):
        first = ticket_numbers(paid_group)[0]

        group = RefundService.request_refund(
            paid_group.id, buyer, "Cannot attend", RefundScope.specific([first])
        )

        assert group.refund_state == RefundState.REQUESTED
        assert group.refund_reason == "Cannot attend"
        assert group.refund_amount == Decimal("97.50")
        assert group.cancellation_fee_amount == Decimal("2.50")
        assert group.payment_state == PaymentState.PAID
        assert line_item_states(group) == [
            RefundState.REQUESTED,
            RefundState.NONE,
            RefundState.NONE,
        ]
        item = LineItem.objects.get(ticket_number=first)
        assert item.refund_amount == Decimal("97.50")
        assert item.refund_reason == "Cannot attend"

    def test_no_money_moves_on_request(self, paid_group, buyer, stripe_adapter):
        RefundService.request_refund(paid_group.id, buyer, "Sick", RefundScope.all())

        stripe_adapter.create_refund.assert_not_called()

    def test_admin_can_request(self, paid_group, admin_user):
        group = RefundService.request_refund(
            paid_group.id, admin_user, "Goodwill", RefundScope.all()
        )

        assert group.refund_state == RefundState.REQUESTED
        assert group.refund_amount == Decimal("292.50")

    def test_other_user_cannot_request(self, paid_group, other_user):
        with pytest.raises(RefundAuthorizationError):
            RefundService.request_refund(paid_group.id, other_user, "Mine", RefundScope.all())

    def test_organizer_cannot_request(self, paid_group, organizer):
        with pytest.raises(RefundAuthorizationError):
            RefundService.request_refund(paid_group.id, organizer, "No", RefundScope.all())

    def test_reason_required(self, paid_group, buyer):
        with pytest.raises(TicketingValidationError) as exc_info:
            RefundService.request_refund(paid_group.id, buyer, "   ", RefundScope.all())

        assert exc_info.value.error_code == "REFUND_REASON_REQUIRED"

    @pytest.mark.parametrize(
        "payment_state",
        [PaymentState.PENDING, PaymentState.FAILED, PaymentState.PARTIALLY_REFUNDED],
    )
    def test_requires_paid_group(self, upcoming_event, buyer, payment_state):
        group = TicketGroupFactory(event=upcoming_event, buyer=buyer, payment_state=payment_state)

        with pytest.raises(InvalidStateError):
            RefundService.request_refund(group.id, buyer, "Sick", RefundScope.all())

    def test_event_ended(self, ended_paid_group, buyer):
        with pytest.raises(RefundWindowClosedError) as exc_info:
            RefundService.request_refund(ended_paid_group.id, buyer, "Late", RefundScope.all())

        assert exc_info.value.error_code == "EVENT_ENDED"

    def test_window_closes_at_event_end(self, paid_group, buyer):
        with freeze_time(paid_group.event.ends_at):
            with pytest.raises(RefundWindowClosedError):
                RefundService.request_refund(paid_group.id, buyer, "Late", RefundScope.all())

    def test_window_open_until_just_before_end(self, paid_group, buyer):
        with freeze_time(paid_group.event.ends_at - timedelta(seconds=1)):
            group = RefundService.request_refund(
                paid_group.id, buyer, "Just in time", RefundScope.all()
            )

        assert group.refund_state == RefundState.REQUESTED

    def test_second_request_while_open(self, paid_group, buyer):
        first, second, _ = ticket_numbers(paid_group)
        RefundService.request_refund(paid_group.id, buyer, "One", RefundScope.specific([first]))

        with pytest.raises(InvalidStateError):
            RefundService.request_refund(
                paid_group.id, buyer, "Two", RefundScope.specific([second])
            )

    def test_nothing_refundable_in_scope(self, paid_group, buyer):
        with pytest.raises(NoRefundableTicketsError):
            RefundService.request_refund(
                paid_group.id, buyer, "Sick", RefundScope.specific(["zz_404"])
            )

    def test_lost_conditional_update_raises_conflict(self, paid_group, buyer, mocker):
        mocker.patch.object(
            TicketGroupStore, "atomic_update", return_value=UpdateOutcome.CONFLICT
        )

        with pytest.raises(StateConflictError):
            RefundService.request_refund(paid_group.id, buyer, "Sick", RefundScope.all())

    def test_new_request_after_rejection_skips_rejected_tickets(
        self, paid_group, buyer, organizer
    ):
        first = ticket_numbers(paid_group)[0]
        RefundService.request_refund(paid_group.id, buyer, "One", RefundScope.specific([first]))
        RefundService.process_refund(paid_group.id, organizer, RefundAction.REJECT)

        group = RefundService.request_refund(paid_group.id, buyer, "All", RefundScope.all())

        assert group.refund_amount == Decimal("195.00")
        assert line_item_states(group) == [
            RefundState.REJECTED,
            RefundState.REQUESTED,
            RefundState.REQUESTED,
        ]


# =============================================================================
# process_refund
# =============================================================================


@pytest.fixture
def requested_group(paid_group, buyer):
    """paid_group with a refund requested for its first admission."""
    first = ticket_numbers(paid_group)[0]
    return RefundService.request_refund(
        paid_group.id, buyer, "Cannot attend", RefundScope.specific([first])
    )


@pytest.mark.django_db
class TestApproveRefund:
    def test_organizer_approves(self, requested_group, organizer, stripe_adapter):
        stripe_adapter.create_refund.return_value = make_refund("re_123")

        group = RefundService.process_refund(requested_group.id, organizer, "approve")

        assert group.refund_state == RefundState.COMPLETED
        assert group.refund_reference == "re_123"
        assert group.refunded_at is not None
        assert group.payment_state == PaymentState.PARTIALLY_REFUNDED
        assert line_item_states(group) == [
            RefundState.COMPLETED,
            RefundState.NONE,
            RefundState.NONE,
        ]

        call = stripe_adapter.create_refund.call_args.kwargs
        assert call["payment_intent_id"] == requested_group.payment_reference
        assert call["amount_cents"] == 9750
        assert call["metadata"]["ticket_group_id"] == str(requested_group.id)

    def test_full_refund_marks_group_refunded(self, paid_group, buyer, admin_user, stripe_adapter):
        stripe_adapter.create_refund.return_value = make_refund("re_all", amount_cents=29250)
        RefundService.request_refund(paid_group.id, buyer, "Cancelled", RefundScope.all())

        group = RefundService.process_refund(paid_group.id, admin_user, RefundAction.APPROVE)

        assert group.payment_state == PaymentState.REFUNDED
        assert stripe_adapter.create_refund.call_args.kwargs["amount_cents"] == 29250

    def test_zero_net_refund_skips_gateway(self, buyer, organizer, stripe_adapter):
        event = EventFactory(organizer=organizer, ticket_price=Decimal("2.00"))
        group = TicketGroupFactory(event=event, buyer=buyer, quantity=1)
        RefundService.request_refund(group.id, buyer, "Cheap", RefundScope.all())

        group = RefundService.process_refund(group.id, organizer, RefundAction.APPROVE)

        stripe_adapter.create_refund.assert_not_called()
        assert group.refund_amount == Decimal("0.00")
        assert group.refund_state == RefundState.COMPLETED
        assert group.refund_reference is None
        assert group.payment_state == PaymentState.REFUNDED

    def test_gateway_failure_leaves_request_open(
        self, requested_group, organizer, stripe_adapter
    ):
        stripe_adapter.create_refund.side_effect = GatewayError(
            "Insufficient funds", kind=GatewayErrorKind.INSUFFICIENT_FUNDS
        )

        with pytest.raises(GatewayError) as exc_info:
            RefundService.process_refund(requested_group.id, organizer, RefundAction.APPROVE)

        assert exc_info.value.kind is GatewayErrorKind.INSUFFICIENT_FUNDS
        group = TicketGroup.objects.get(pk=requested_group.pk)
        assert group.refund_state == RefundState.REQUESTED
        assert group.payment_state == PaymentState.PAID

    def test_retry_reuses_idempotency_key(self, requested_group, organizer, stripe_adapter):
        stripe_adapter.create_refund.side_effect = [
            GatewayError("Timed out"),
            make_refund("re_retry"),
        ]

        with pytest.raises(GatewayError):
            RefundService.process_refund(requested_group.id, organizer, RefundAction.APPROVE)
        RefundService.process_refund(requested_group.id, organizer, RefundAction.APPROVE)

        first_call, second_call = stripe_adapter.create_refund.call_args_list
        assert first_call.kwargs["idempotency_key"] == second_call.kwargs["idempotency_key"]

    def test_buyer_cannot_approve(self, requested_group, buyer):
        with pytest.raises(RefundAuthorizationError):
            RefundService.process_refund(requested_group.id, buyer, RefundAction.APPROVE)

    def test_requires_open_request(self, paid_group, organizer):
        with pytest.raises(InvalidStateError):
            RefundService.process_refund(paid_group.id, organizer, RefundAction.APPROVE)

    def test_unknown_action(self, requested_group, organizer):
        with pytest.raises(ValueError):
            RefundService.process_refund(requested_group.id, organizer, "refund-twice")


@pytest.mark.django_db
class TestRejectRefund:
    def test_organizer_rejects(self, requested_group, organizer, stripe_adapter):
        group = RefundService.process_refund(requested_group.id, organizer, RefundAction.REJECT)

        assert group.refund_state == RefundState.REJECTED
        assert group.payment_state == PaymentState.PAID
        assert line_item_states(group) == [
            RefundState.REJECTED,
            RefundState.NONE,
            RefundState.NONE,
        ]
        stripe_adapter.create_refund.assert_not_called()

    def test_cannot_reject_twice(self, requested_group, organizer):
        RefundService.process_refund(requested_group.id, organizer, RefundAction.REJECT)

        with pytest.raises(InvalidStateError):
            RefundService.process_refund(requested_group.id, organizer, RefundAction.REJECT)


# =============================================================================
# Listings and scope
# =============================================================================


@pytest.mark.django_db
class TestListPendingRequests:
    def test_organizer_sees_own_requests(self, requested_group, organizer, buyer):
        other_event_group = TicketGroupFactory(buyer=buyer)
        RefundService.request_refund(other_event_group.id, buyer, "x", RefundScope.all())

        pending = RefundService.list_pending_requests(organizer)

        assert [g.pk for g in pending] == [requested_group.pk]

    def test_admin_sees_all_requests(self, requested_group, admin_user, buyer):
        other_event_group = TicketGroupFactory(buyer=buyer)
        RefundService.request_refund(other_event_group.id, buyer, "x", RefundScope.all())

        pending = RefundService.list_pending_requests(admin_user)

        assert {g.pk for g in pending} == {requested_group.pk, other_event_group.pk}


class TestResolveScope:
    def test_empty_means_all_by_default(self, settings):
        settings.TICKETING_EMPTY_REFUND_SCOPE_MEANS_ALL = True

        assert RefundService.resolve_scope([]).is_all

    def test_empty_means_nothing_when_disabled(self, settings):
        settings.TICKETING_EMPTY_REFUND_SCOPE_MEANS_ALL = False

        scope = RefundService.resolve_scope([])

        assert not scope.is_all
        assert scope.ticket_numbers == frozenset()
