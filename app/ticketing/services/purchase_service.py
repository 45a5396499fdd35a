"""
Purchase service: ticket group creation and payment confirmation.

create_purchase records a pending ticket group with its line items and
creates the Stripe PaymentIntent the buyer completes client-side. The
group becomes paid either through confirm_payment (client callback) or
through the payment_intent.succeeded webhook, whichever arrives first.

Usage:
    from ticketing.services import PurchaseService

    result = PurchaseService.create_purchase(
        event_id=event.id,
        buyer=request.user,
        holders=[HolderDetails("Ada Lovelace", "ada@example.com")],
    )
    if result.success:
        client_secret = result.data.client_secret
"""

from __future__ import annotations

import re
import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django_fsm import TransitionNotAllowed

from core.services import BaseService, ServiceResult

from ticketing.adapters import (
    CreatePaymentIntentParams,
    IdempotencyKeyGenerator,
    StripeAdapter,
)
from ticketing.exceptions import (
    GatewayError,
    LockAcquisitionError,
    PurchaseAuthorizationError,
    TicketGroupNotFoundError,
)
from ticketing.ledger import split_gross, to_minor_units
from ticketing.locks import DistributedLock
from ticketing.models import Event, LineItem, TicketGroup
from ticketing.state_machines import EventStatus, PaymentState

if TYPE_CHECKING:
    from collections.abc import Sequence
    from decimal import Decimal

    from ticketing.ledger import PriceSplit


MAX_TICKETS_PER_PURCHASE = 20

# Inserts tried before a purchase fails with TICKET_NUMBER_CONFLICT
TICKET_NUMBER_ATTEMPTS = 3


@dataclass(frozen=True)
class HolderDetails:
    name: str
    email: str


@dataclass
class PurchaseResult:
    """
    Result of creating a purchase.

    Attributes:
        ticket_group: The pending TicketGroup
        client_secret: PaymentIntent client secret for the frontend
    """

    ticket_group: TicketGroup
    client_secret: str | None = None


class PurchaseService(BaseService):
    """
    Creates ticket groups and tracks their payment confirmation.

    Two-phase pattern for purchases:
        1. Create the PaymentIntent (outside any transaction)
        2. Persist the pending group and line items in one transaction
    """

    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        cls._stripe_adapter = adapter

    # =========================================================================
    # Purchase
    # =========================================================================

    @classmethod
    def create_purchase(
        cls,
        event_id: uuid.UUID | str,
        buyer,
        holders: Sequence[HolderDetails],
    ) -> ServiceResult[PurchaseResult]:
        """
        Create a pending ticket group for len(holders) admissions.

        Returns:
            ServiceResult with PurchaseResult, or failure with error_code
            EVENT_NOT_FOUND, EVENT_NOT_ON_SALE, OWN_EVENT, INVALID_QUANTITY,
            INVALID_HOLDER, TICKET_NUMBER_CONFLICT or the gateway error code
        """
        logger = cls.get_logger()

        event = Event.objects.filter(pk=event_id).first()
        if event is None:
            return ServiceResult.failure("Event not found", error_code="EVENT_NOT_FOUND")

        if event.status != EventStatus.PUBLISHED or event.has_ended:
            return ServiceResult.failure(
                "Tickets for this event are not on sale",
                error_code="EVENT_NOT_ON_SALE",
            )

        if event.organizer_id == buyer.pk:
            return ServiceResult.failure(
                "Organizers cannot buy tickets for their own event",
                error_code="OWN_EVENT",
            )

        quantity = len(holders)
        if not 1 <= quantity <= MAX_TICKETS_PER_PURCHASE:
            return ServiceResult.failure(
                f"Quantity must be between 1 and {MAX_TICKETS_PER_PURCHASE}",
                error_code="INVALID_QUANTITY",
            )

        errors = {
            f"holders[{index}]": ["Name and email are required"]
            for index, holder in enumerate(holders)
            if not holder.name.strip() or not holder.email.strip()
        }
        if errors:
            return ServiceResult.failure(
                "Every admission needs a holder name and email",
                error_code="INVALID_HOLDER",
                errors=errors,
            )

        gross = event.ticket_price * quantity
        split = split_gross(gross, settings.TICKETING_PLATFORM_FEE_RATIO)
        group_id = uuid.uuid4()

        try:
            intent = cls.get_stripe_adapter().create_payment_intent(
                CreatePaymentIntentParams(
                    amount_cents=to_minor_units(gross),
                    currency=event.currency,
                    idempotency_key=IdempotencyKeyGenerator.generate(
                        "purchase", group_id
                    ),
                    metadata={
                        "ticket_group_id": str(group_id),
                        "event_id": str(event.id),
                        "buyer_id": str(buyer.pk),
                        "organizer_id": str(event.organizer_id),
                        "quantity": str(quantity),
                        "platform_fee": str(split.platform_fee),
                        "organizer_payment": str(split.organizer_net),
                    },
                    receipt_email=buyer.email or None,
                )
            )
        except GatewayError as e:
            logger.error(
                "Payment intent creation failed",
                extra={"event_id": str(event.id), "error_code": e.error_code},
            )
            return ServiceResult.failure(e.message, error_code=e.error_code)

        try:
            group = cls._record_purchase(
                group_id=group_id,
                event=event,
                buyer=buyer,
                holders=holders,
                gross=gross,
                split=split,
                payment_intent_id=intent.id,
            )
        except (IntegrityError, LockAcquisitionError):
            logger.error(
                "Ticket numbers could not be allocated",
                extra={
                    "event_id": str(event.id),
                    "ticket_prefix": event.ticket_prefix,
                    "payment_intent_id": intent.id,
                },
                exc_info=True,
            )
            cls._cancel_payment_intent(intent.id)
            return ServiceResult.failure(
                "Ticket numbers could not be allocated, please try again",
                error_code="TICKET_NUMBER_CONFLICT",
            )

        logger.info(
            "Purchase created",
            extra={
                "ticket_group_id": str(group.id),
                "event_id": str(event.id),
                "quantity": quantity,
                "gross_amount": str(gross),
                "payment_intent_id": intent.id,
            },
        )
        return ServiceResult.success(
            PurchaseResult(ticket_group=group, client_secret=intent.client_secret)
        )

    @classmethod
    def _record_purchase(
        cls,
        group_id: uuid.UUID,
        event: Event,
        buyer,
        holders: Sequence[HolderDetails],
        gross: Decimal,
        split: PriceSplit,
        payment_intent_id: str,
    ) -> TicketGroup:
        """
        Persist the group and its line items under the prefix lock.

        The lock serializes numbering per prefix; an insert that still
        collides (a writer without the lock, or an expired lock) is retried
        with freshly allocated numbers.

        Raises:
            IntegrityError: Numbers still collided after every attempt
            LockAcquisitionError: The prefix lock could not be taken
        """
        lock = DistributedLock(
            f"ticket_numbers:{event.ticket_prefix}",
            ttl=settings.TICKET_NUMBER_LOCK_TTL,
            timeout=settings.TICKET_NUMBER_LOCK_TIMEOUT,
        )
        with lock:
            for attempt in range(1, TICKET_NUMBER_ATTEMPTS + 1):
                try:
                    with transaction.atomic():
                        group = TicketGroup.objects.create(
                            id=group_id,
                            event=event,
                            buyer=buyer,
                            organizer_id=event.organizer_id,
                            quantity=len(holders),
                            gross_amount=gross,
                            platform_fee_amount=split.platform_fee,
                            organizer_net_amount=split.organizer_net,
                            currency=event.currency,
                            payment_reference=payment_intent_id,
                        )
                        numbers = cls.next_ticket_numbers(event, len(holders))
                        LineItem.objects.bulk_create(
                            LineItem(
                                ticket_group=group,
                                position=position,
                                ticket_number=number,
                                holder_name=holder.name.strip(),
                                holder_email=holder.email.strip(),
                            )
                            for position, (number, holder) in enumerate(
                                zip(numbers, holders)
                            )
                        )
                    return group
                except IntegrityError:
                    if attempt == TICKET_NUMBER_ATTEMPTS:
                        raise
                    cls.get_logger().warning(
                        "Ticket number collision, reallocating",
                        extra={"event_id": str(event.id), "attempt": attempt},
                    )

    @classmethod
    def _cancel_payment_intent(cls, payment_intent_id: str) -> None:
        try:
            cls.get_stripe_adapter().cancel_payment_intent(payment_intent_id)
        except GatewayError as e:
            # Uncaptured intents expire on their own.
            cls.get_logger().warning(
                "Could not cancel orphaned payment intent",
                extra={"payment_intent_id": payment_intent_id, "error_code": e.error_code},
            )

    @classmethod
    def next_ticket_numbers(cls, event: Event, quantity: int) -> list[str]:
        """
        Allocate the next sequential ticket numbers for an event's prefix.

        Numbering continues from the highest existing number with the same
        prefix across all events, so two events sharing a prefix never
        collide on the unique ticket_number column.
        """
        prefix = event.ticket_prefix
        pattern = re.compile(rf"^{prefix}_(\d+)$")
        existing = LineItem.objects.filter(
            ticket_number__startswith=f"{prefix}_"
        ).values_list("ticket_number", flat=True)
        highest = max(
            (int(m.group(1)) for m in map(pattern.match, existing) if m),
            default=0,
        )
        return [f"{prefix}_{highest + offset}" for offset in range(1, quantity + 1)]

    # =========================================================================
    # Payment confirmation
    # =========================================================================

    @classmethod
    def confirm_payment(
        cls,
        ticket_group_id: uuid.UUID | str,
        actor=None,
    ) -> ServiceResult[TicketGroup]:
        """
        Check the PaymentIntent and mark the group paid if it succeeded.

        Idempotent: an already-paid group is returned unchanged. When actor
        is given it must be the buyer or an admin.

        Raises:
            TicketGroupNotFoundError: No such group
            PurchaseAuthorizationError: actor may not confirm this group
        """
        group = TicketGroup.objects.filter(pk=ticket_group_id).first()
        if group is None:
            raise TicketGroupNotFoundError(
                f"Ticket group {ticket_group_id} not found",
                details={"ticket_group_id": str(ticket_group_id)},
            )

        if actor is not None and not (actor.is_staff or actor.pk == group.buyer_id):
            raise PurchaseAuthorizationError(
                "Only the buyer or an admin can confirm this payment",
                details={"ticket_group_id": str(group.id)},
            )

        if group.payment_state != PaymentState.PENDING:
            return ServiceResult.success(group)

        try:
            intent = cls.get_stripe_adapter().retrieve_payment_intent(
                group.payment_reference
            )
        except GatewayError as e:
            return ServiceResult.failure(e.message, error_code=e.error_code)

        if intent.status != "succeeded":
            return ServiceResult.failure(
                f"Payment not completed (status: {intent.status})",
                error_code="PAYMENT_NOT_SUCCEEDED",
            )

        return cls.mark_payment_succeeded(intent.id)

    @classmethod
    def mark_payment_succeeded(cls, payment_intent_id: str) -> ServiceResult[TicketGroup]:
        """Transition the group owning payment_intent_id to paid."""
        return cls._apply_payment_transition(payment_intent_id, "mark_paid")

    @classmethod
    def mark_payment_failed(cls, payment_intent_id: str) -> ServiceResult[TicketGroup]:
        """Transition the group owning payment_intent_id to failed."""
        return cls._apply_payment_transition(payment_intent_id, "mark_failed")

    @classmethod
    def _apply_payment_transition(
        cls,
        payment_intent_id: str,
        transition_name: str,
    ) -> ServiceResult[TicketGroup]:
        logger = cls.get_logger()

        with transaction.atomic():
            group = (
                TicketGroup.objects.select_for_update()
                .filter(payment_reference=payment_intent_id)
                .first()
            )
            if group is None:
                logger.warning(
                    "No ticket group for payment intent",
                    extra={"payment_intent_id": payment_intent_id},
                )
                return ServiceResult.failure(
                    f"No ticket group for payment intent {payment_intent_id}",
                    error_code="TICKET_GROUP_NOT_FOUND",
                )

            if group.payment_state != PaymentState.PENDING:
                logger.info(
                    "Payment state already settled, ignoring",
                    extra={
                        "ticket_group_id": str(group.id),
                        "payment_state": group.payment_state,
                        "transition": transition_name,
                    },
                )
                return ServiceResult.success(group)

            try:
                getattr(group, transition_name)()
            except TransitionNotAllowed:
                return ServiceResult.failure(
                    f"Cannot {transition_name} from {group.payment_state}",
                    error_code="INVALID_STATE_TRANSITION",
                )
            group.save()

        logger.info(
            "Payment state updated",
            extra={
                "ticket_group_id": str(group.id),
                "payment_state": group.payment_state,
                "payment_intent_id": payment_intent_id,
            },
        )
        return ServiceResult.success(group)


__all__ = [
    "HolderDetails",
    "MAX_TICKETS_PER_PURCHASE",
    "PurchaseResult",
    "PurchaseService",
]
