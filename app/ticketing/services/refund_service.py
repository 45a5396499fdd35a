"""
Refund workflow for ticket groups.

A refund moves through request -> approval/rejection -> execution:

    request_refund:  none|rejected -> requested   (no money moves)
    process_refund:  requested -> rejected        (action "reject")
                     requested -> completed       (action "approve", Stripe refund)

Every state write is a compare-and-swap through TicketGroupStore, so two
concurrent requests (or a request racing an approval) cannot both succeed.

The Stripe refund is called outside any database transaction. If it fails
the group stays "requested" and the classified GatewayError propagates to
the caller; nothing is retried automatically. The idempotency key is derived
from the group and the exact set of requested tickets, so re-approving after
an ambiguous failure cannot refund twice.

Usage:
    from ticketing.services import RefundService
    from ticketing.ledger import RefundScope

    group = RefundService.request_refund(
        group.id, request.user, "Cannot attend", RefundScope.specific(["su_2"])
    )
    group = RefundService.process_refund(group.id, organizer, RefundAction.APPROVE)
"""

from __future__ import annotations

import uuid
from enum import Enum
from typing import TYPE_CHECKING

from django.conf import settings
from django.db.models import Q
from django.utils import timezone

from core.services import BaseService

from ticketing.adapters import IdempotencyKeyGenerator, StripeAdapter
from ticketing.exceptions import (
    GatewayError,
    InvalidStateError,
    NoRefundableTicketsError,
    RefundAuthorizationError,
    RefundWindowClosedError,
    StateConflictError,
    TicketingValidationError,
)
from ticketing.ledger import (
    GroupSnapshot,
    RefundScope,
    refund_quote,
    round_money,
    to_minor_units,
)
from ticketing.state_machines import PaymentState, RefundState
from ticketing.store import LineItemPatch, TicketGroupStore, UpdateOutcome

if TYPE_CHECKING:
    from collections.abc import Iterable

    from django.db.models import QuerySet

    from ticketing.models import TicketGroup


class RefundAction(str, Enum):
    APPROVE = "approve"
    REJECT = "reject"


def is_admin(user) -> bool:
    return bool(user and user.is_staff)


class RefundService(BaseService):
    """
    Request, approve and reject refunds on ticket groups.

    Authorization:
        - request_refund: the buyer or an admin
        - process_refund: the event organizer or an admin
    """

    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        cls._stripe_adapter = adapter

    @staticmethod
    def resolve_scope(ticket_numbers: Iterable[str] | None) -> RefundScope:
        """
        Build the refund scope for a request body.

        A missing or empty list means every refundable admission when
        TICKETING_EMPTY_REFUND_SCOPE_MEANS_ALL is enabled, and nothing
        otherwise.
        """
        return RefundScope.from_request(
            ticket_numbers,
            empty_means_all=settings.TICKETING_EMPTY_REFUND_SCOPE_MEANS_ALL,
        )

    # =========================================================================
    # Request
    # =========================================================================

    @classmethod
    def request_refund(
        cls,
        ticket_group_id: uuid.UUID | str,
        requester,
        reason: str,
        scope: RefundScope,
    ) -> TicketGroup:
        """
        Open a refund request for the admissions selected by scope.

        Returns:
            The refreshed TicketGroup in refund state "requested"

        Raises:
            RefundAuthorizationError: requester is neither buyer nor admin
            TicketingValidationError: blank reason
            InvalidStateError: group not paid, or a request is already open
            RefundWindowClosedError: the event has ended
            NoRefundableTicketsError: nothing refundable in scope
            StateConflictError: a concurrent request won
        """
        logger = cls.get_logger()
        group = TicketGroupStore.get(ticket_group_id)
        log_context = {
            "ticket_group_id": str(group.id),
            "requester_id": str(requester.pk),
        }

        if not (is_admin(requester) or requester.pk == group.buyer_id):
            raise RefundAuthorizationError(
                "Only the buyer or an admin can request a refund",
                details={"ticket_group_id": str(group.id)},
            )

        reason = (reason or "").strip()
        if not reason:
            raise TicketingValidationError(
                "A refund reason is required",
                error_code="REFUND_REASON_REQUIRED",
            )

        if group.payment_state != PaymentState.PAID:
            raise InvalidStateError(
                "Refunds can only be requested for paid tickets",
                details={"payment_state": group.payment_state},
            )

        if group.refund_state not in (RefundState.NONE, RefundState.REJECTED):
            raise InvalidStateError(
                "A refund request is already open for these tickets",
                details={"refund_state": group.refund_state},
            )

        if timezone.now() >= group.event.ends_at:
            raise RefundWindowClosedError(
                "Refunds are not possible after the event has ended",
                details={"event_ends_at": group.event.ends_at.isoformat()},
            )

        quote = refund_quote(
            GroupSnapshot.from_ticket_group(group),
            scope,
            settings.TICKETING_CANCELLATION_FEE_PER_TICKET,
        )
        if quote.refundable_count == 0:
            raise NoRefundableTicketsError(
                "No refundable tickets in this request",
                details={"ticket_group_id": str(group.id)},
            )

        outcome = TicketGroupStore.atomic_update(
            group.id,
            predicate=Q(
                payment_state=PaymentState.PAID,
                refund_state__in=[RefundState.NONE, RefundState.REJECTED],
            ),
            patch={
                "refund_state": RefundState.REQUESTED,
                "refund_reason": reason,
                "refund_amount": quote.net_refund,
                "cancellation_fee_amount": quote.cancellation_fee,
                "refund_reference": None,
                "refunded_at": None,
            },
            line_items=[
                LineItemPatch(
                    values={
                        "refund_state": RefundState.REQUESTED,
                        "refund_amount": round_money(quote.per_ticket_refund),
                        "refund_reason": reason,
                    },
                    ticket_numbers=quote.ticket_numbers,
                    predicate=Q(refund_state=RefundState.NONE),
                    expected_count=quote.refundable_count,
                ),
            ],
        )
        if outcome is UpdateOutcome.CONFLICT:
            logger.warning("Refund request lost to a concurrent update", extra=log_context)
            raise StateConflictError(
                "The ticket group changed while the refund was being requested",
                details={"ticket_group_id": str(group.id)},
            )

        logger.info(
            "Refund requested",
            extra={
                **log_context,
                "ticket_numbers": list(quote.ticket_numbers),
                "gross_refundable": str(quote.gross_refundable),
                "cancellation_fee": str(quote.cancellation_fee),
                "net_refund": str(quote.net_refund),
            },
        )
        return TicketGroupStore.get(group.id)

    # =========================================================================
    # Approve / Reject
    # =========================================================================

    @classmethod
    def process_refund(
        cls,
        ticket_group_id: uuid.UUID | str,
        approver,
        action: RefundAction | str,
    ) -> TicketGroup:
        """
        Approve or reject an open refund request.

        Raises:
            RefundAuthorizationError: approver is neither organizer nor admin
            InvalidStateError: no open request
            GatewayError: Stripe refund failed (group stays "requested")
            StateConflictError: the request was settled concurrently
        """
        action = RefundAction(action)
        group = TicketGroupStore.get(ticket_group_id)

        if not (is_admin(approver) or approver.pk == group.organizer_id):
            raise RefundAuthorizationError(
                "Only the event organizer or an admin can process refunds",
                details={"ticket_group_id": str(group.id)},
            )

        if group.refund_state != RefundState.REQUESTED:
            raise InvalidStateError(
                "There is no open refund request for these tickets",
                details={"refund_state": group.refund_state},
            )

        if action is RefundAction.REJECT:
            return cls._reject(group, approver)
        return cls._approve(group, approver)

    @classmethod
    def _reject(cls, group: TicketGroup, approver) -> TicketGroup:
        outcome = TicketGroupStore.atomic_update(
            group.id,
            predicate=Q(refund_state=RefundState.REQUESTED),
            patch={"refund_state": RefundState.REJECTED},
            line_items=[
                LineItemPatch(
                    values={"refund_state": RefundState.REJECTED},
                    predicate=Q(refund_state=RefundState.REQUESTED),
                ),
            ],
        )
        if outcome is UpdateOutcome.CONFLICT:
            raise StateConflictError(
                "The refund request was settled concurrently",
                details={"ticket_group_id": str(group.id)},
            )

        cls.get_logger().info(
            "Refund rejected",
            extra={"ticket_group_id": str(group.id), "approver_id": str(approver.pk)},
        )
        return TicketGroupStore.get(group.id)

    @classmethod
    def _approve(cls, group: TicketGroup, approver) -> TicketGroup:
        logger = cls.get_logger()
        requested = sorted(
            item.ticket_number
            for item in group.line_items.all()
            if item.refund_state == RefundState.REQUESTED
        )
        already_refunded = sum(
            1
            for item in group.line_items.all()
            if item.refund_state == RefundState.COMPLETED
        )
        net_refund = group.refund_amount or 0
        log_context = {
            "ticket_group_id": str(group.id),
            "approver_id": str(approver.pk),
            "ticket_numbers": requested,
            "net_refund": str(net_refund),
        }

        refund_reference = None
        if net_refund > 0:
            try:
                refund = cls.get_stripe_adapter().create_refund(
                    payment_intent_id=group.payment_reference,
                    idempotency_key=IdempotencyKeyGenerator.generate(
                        "refund", group.id, discriminator=",".join(requested)
                    ),
                    amount_cents=to_minor_units(net_refund),
                    metadata={
                        "ticket_group_id": str(group.id),
                        "event_id": str(group.event_id),
                        "ticket_numbers": ",".join(requested),
                        "refund_reason": group.refund_reason[:450],
                    },
                )
            except GatewayError as e:
                logger.error(
                    "Stripe refund failed; request left open",
                    extra={**log_context, "error_code": e.error_code, "kind": e.kind.value},
                )
                raise
            refund_reference = refund.id
        else:
            logger.info("Refund nets to zero, skipping Stripe", extra=log_context)

        fully_refunded = already_refunded + len(requested) >= group.quantity
        now = timezone.now()
        outcome = TicketGroupStore.atomic_update(
            group.id,
            predicate=Q(refund_state=RefundState.REQUESTED),
            patch={
                "refund_state": RefundState.COMPLETED,
                "refund_reference": refund_reference,
                "refunded_at": now,
                "payment_state": (
                    PaymentState.REFUNDED
                    if fully_refunded
                    else PaymentState.PARTIALLY_REFUNDED
                ),
            },
            line_items=[
                LineItemPatch(
                    values={"refund_state": RefundState.COMPLETED, "refunded_at": now},
                    predicate=Q(refund_state=RefundState.REQUESTED),
                ),
            ],
        )
        if outcome is UpdateOutcome.CONFLICT:
            logger.error(
                "Refund executed at Stripe but the request was settled concurrently",
                extra={**log_context, "refund_id": refund_reference},
            )
            raise StateConflictError(
                "The refund request was settled concurrently",
                details={
                    "ticket_group_id": str(group.id),
                    "refund_reference": refund_reference,
                },
            )

        logger.info(
            "Refund completed",
            extra={**log_context, "refund_id": refund_reference},
        )
        return TicketGroupStore.get(group.id)

    # =========================================================================
    # Listings
    # =========================================================================

    @classmethod
    def list_pending_requests(cls, viewer) -> QuerySet[TicketGroup]:
        """
        Open refund requests visible to viewer.

        Admins see every request; organizers see requests for their events.
        """
        if is_admin(viewer):
            return TicketGroupStore.pending_refund_requests()
        return TicketGroupStore.pending_refund_requests(organizer=viewer)


__all__ = [
    "RefundAction",
    "RefundService",
]
