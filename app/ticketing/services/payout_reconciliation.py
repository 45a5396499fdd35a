"""
Payout reconciliation: batch transfers of organizer net amounts.

run_payouts walks every ticket group whose payout is due and transfers the
organizer's prorated net share through Stripe. Groups are processed one at a
time and independently; a failing group is recorded and the batch moves on.

Eligibility modes:
    automated: the event has ended (daily scheduled run)
    manual:    the event is published or completed (operator-triggered)

Only one batch runs at a time. The run holds a non-blocking Redis lock and
an overlapping run raises PayoutRunInProgressError.

Usage:
    from ticketing.services import PayoutReconciliationService

    batch = PayoutReconciliationService.run_payouts(PayoutMode.MANUAL)
    print(batch.success_count, batch.total_amount)
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from django.conf import settings
from django.db import DatabaseError, transaction
from django.db.models import F, Q
from django.utils import timezone

from core.services import BaseService

from ticketing.adapters import IdempotencyKeyGenerator, StripeAdapter
from ticketing.exceptions import (
    GatewayError,
    InvalidStateError,
    PayoutRunInProgressError,
    TicketGroupNotFoundError,
)
from ticketing.ledger import GroupSnapshot, prorated_amounts, to_minor_units
from ticketing.locks import DistributedLock
from ticketing.models import OrganizerPayoutAccount, TicketGroup
from ticketing.state_machines import PayoutMode, PayoutState
from ticketing.store import TicketGroupStore, UpdateOutcome


# Redis key of the run-in-progress guard
PAYOUT_RUN_LOCK_KEY = "payouts:run"


class PayoutItemStatus(str, Enum):
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"


class PayoutSkipReason(str, Enum):
    NO_DESTINATION_ACCOUNT = "NoDestinationAccount"
    PAYOUTS_BLOCKED = "PayoutsBlocked"
    ALL_REFUNDED = "AllRefunded"
    NOTHING_TO_PAY = "NothingToPay"
    ALREADY_PROCESSED = "AlreadyProcessed"


@dataclass
class PayoutItemResult:
    """
    Outcome for one ticket group in a batch.

    Attributes:
        ticket_group_id: The processed group
        status: completed, failed or skipped
        amount: Transferred (or attempted) amount
        reference: Stripe Transfer ID for completed items
        reason: Skip reason or classified failure reason
    """

    ticket_group_id: uuid.UUID
    status: PayoutItemStatus
    amount: Decimal = Decimal("0.00")
    reference: str | None = None
    reason: str | None = None

    def to_dict(self) -> dict[str, Any]:
        return {
            "ticket_group_id": str(self.ticket_group_id),
            "status": self.status.value,
            "amount": str(self.amount),
            "reference": self.reference,
            "reason": self.reason,
        }


@dataclass
class PayoutBatchResult:
    """
    Aggregate of one run_payouts call.

    success_count + failure_count + skipped_count == total_processed.
    total_amount sums completed items only.
    """

    mode: str
    started_at: datetime
    results: list[PayoutItemResult] = field(default_factory=list)

    def _count(self, status: PayoutItemStatus) -> int:
        return sum(1 for item in self.results if item.status == status)

    @property
    def total_processed(self) -> int:
        return len(self.results)

    @property
    def success_count(self) -> int:
        return self._count(PayoutItemStatus.COMPLETED)

    @property
    def failure_count(self) -> int:
        return self._count(PayoutItemStatus.FAILED)

    @property
    def skipped_count(self) -> int:
        return self._count(PayoutItemStatus.SKIPPED)

    @property
    def total_amount(self) -> Decimal:
        return sum(
            (item.amount for item in self.results if item.status == PayoutItemStatus.COMPLETED),
            Decimal("0.00"),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "mode": self.mode,
            "started_at": self.started_at.isoformat(),
            "total_processed": self.total_processed,
            "success_count": self.success_count,
            "failure_count": self.failure_count,
            "skipped_count": self.skipped_count,
            "total_amount": str(self.total_amount),
            "results": [item.to_dict() for item in self.results],
        }


class PayoutReconciliationService(BaseService):
    """
    Runs organizer payout batches and operator requeues.

    Per group:
        1. Check the organizer's payout account (destination, block flag)
        2. Prorate the organizer net over the non-refunded admissions
        3. Create the Stripe transfer (outside any transaction)
        4. Compare-and-swap payout_state pending -> completed | failed

    Failed payouts stay failed until an operator calls requeue_failed_payout.
    """

    _stripe_adapter: type | None = None

    @classmethod
    def get_stripe_adapter(cls) -> type:
        return cls._stripe_adapter or StripeAdapter

    @classmethod
    def set_stripe_adapter(cls, adapter: type | None) -> None:
        cls._stripe_adapter = adapter

    # =========================================================================
    # Batch
    # =========================================================================

    @classmethod
    def run_payouts(
        cls,
        mode: PayoutMode | str,
        now: datetime | None = None,
    ) -> PayoutBatchResult:
        """
        Pay out every eligible ticket group for mode.

        Raises:
            PayoutRunInProgressError: Another batch holds the run lock
            ValueError: Unknown mode
        """
        mode = PayoutMode(mode)
        now = now or timezone.now()
        logger = cls.get_logger()

        lock = DistributedLock(
            PAYOUT_RUN_LOCK_KEY,
            ttl=settings.PAYOUT_RUN_LOCK_TTL,
            blocking=False,
            error_class=PayoutRunInProgressError,
        )
        lock.acquire()

        batch = PayoutBatchResult(mode=mode.value, started_at=now)
        try:
            candidates = TicketGroupStore.find_eligible_for_payout(mode, now=now)
            logger.info(
                "Payout run started",
                extra={"mode": mode.value, "candidate_count": len(candidates)},
            )

            for group in candidates:
                try:
                    item = cls._process_group(group)
                except Exception as e:
                    logger.error(
                        "Unexpected error processing payout",
                        extra={"ticket_group_id": str(group.id), "mode": mode.value},
                        exc_info=True,
                    )
                    item = PayoutItemResult(
                        ticket_group_id=group.id,
                        status=PayoutItemStatus.FAILED,
                        reason=f"error: {type(e).__name__}: {e}",
                    )
                batch.results.append(item)
                lock.extend()
        finally:
            lock.release()

        logger.info(
            "Payout run finished",
            extra={
                "mode": mode.value,
                "total_processed": batch.total_processed,
                "success_count": batch.success_count,
                "failure_count": batch.failure_count,
                "skipped_count": batch.skipped_count,
                "total_amount": str(batch.total_amount),
            },
        )
        return batch

    @classmethod
    def _process_group(cls, group: TicketGroup) -> PayoutItemResult:
        logger = cls.get_logger()
        log_context = {
            "ticket_group_id": str(group.id),
            "organizer_id": str(group.organizer_id),
        }

        account = OrganizerPayoutAccount.objects.filter(
            organizer_id=group.organizer_id
        ).first()
        if account is None or not account.destination_account_id:
            return cls._skip(group, PayoutSkipReason.NO_DESTINATION_ACCOUNT)
        if account.payouts_blocked:
            return cls._skip(group, PayoutSkipReason.PAYOUTS_BLOCKED)

        prorated = prorated_amounts(GroupSnapshot.from_ticket_group(group))
        if prorated.active_count == 0:
            return cls._skip(group, PayoutSkipReason.ALL_REFUNDED)
        amount = prorated.net_active
        if amount <= 0:
            return cls._skip(group, PayoutSkipReason.NOTHING_TO_PAY)

        log_context.update(
            {"amount": str(amount), "active_ticket_count": prorated.active_count}
        )

        try:
            transfer = cls.get_stripe_adapter().create_transfer(
                amount_cents=to_minor_units(amount),
                destination_account=account.destination_account_id,
                idempotency_key=IdempotencyKeyGenerator.generate(
                    "payout", group.id, attempt=group.payout_attempt
                ),
                currency=group.currency,
                metadata={
                    "ticket_group_id": str(group.id),
                    "event_id": str(group.event_id),
                    "organizer_id": str(group.organizer_id),
                    "active_ticket_count": str(prorated.active_count),
                },
            )
        except GatewayError as e:
            return cls._fail(group, amount, e)

        # The transfer exists from here on; the group must not stay pending.
        try:
            outcome = TicketGroupStore.atomic_update(
                group.id,
                predicate=Q(payout_state=PayoutState.PENDING),
                patch={
                    "payout_state": PayoutState.COMPLETED,
                    "payout_reference": transfer.id,
                    "payout_amount": amount,
                    "payout_completed_at": timezone.now(),
                    "payout_failure_reason": None,
                },
            )
        except DatabaseError as e:
            return cls._fail_unconfirmed(group, amount, transfer.id, e)

        if outcome is UpdateOutcome.CONFLICT:
            logger.warning(
                "Payout already settled by another worker",
                extra={**log_context, "transfer_id": transfer.id},
            )
            return cls._skip(group, PayoutSkipReason.ALREADY_PROCESSED)

        logger.info(
            "Payout completed",
            extra={**log_context, "transfer_id": transfer.id},
        )
        return PayoutItemResult(
            ticket_group_id=group.id,
            status=PayoutItemStatus.COMPLETED,
            amount=amount,
            reference=transfer.id,
        )

    @classmethod
    def _skip(cls, group: TicketGroup, reason: PayoutSkipReason) -> PayoutItemResult:
        cls.get_logger().info(
            "Payout skipped",
            extra={"ticket_group_id": str(group.id), "reason": reason.value},
        )
        return PayoutItemResult(
            ticket_group_id=group.id,
            status=PayoutItemStatus.SKIPPED,
            reason=reason.value,
        )

    @classmethod
    def _fail(
        cls,
        group: TicketGroup,
        amount: Decimal,
        error: GatewayError,
    ) -> PayoutItemResult:
        logger = cls.get_logger()
        outcome = TicketGroupStore.atomic_update(
            group.id,
            predicate=Q(payout_state=PayoutState.PENDING),
            patch={
                "payout_state": PayoutState.FAILED,
                "payout_amount": amount,
                "payout_failure_reason": error.reason,
            },
        )
        if outcome is UpdateOutcome.CONFLICT:
            return cls._skip(group, PayoutSkipReason.ALREADY_PROCESSED)

        logger.warning(
            "Payout failed",
            extra={
                "ticket_group_id": str(group.id),
                "amount": str(amount),
                "error_code": error.error_code,
                "kind": error.kind.value,
                "is_retryable": error.is_retryable,
            },
        )
        return PayoutItemResult(
            ticket_group_id=group.id,
            status=PayoutItemStatus.FAILED,
            amount=amount,
            reason=error.reason,
        )

    @classmethod
    def _fail_unconfirmed(
        cls,
        group: TicketGroup,
        amount: Decimal,
        transfer_id: str,
        error: Exception,
    ) -> PayoutItemResult:
        """
        Record a sent transfer whose completion write did not go through.

        The group is moved to failed with the transfer ID kept, so no later
        run sends it again. An operator reconciles it against Stripe.
        """
        logger = cls.get_logger()
        reason = f"unconfirmed: transfer {transfer_id} sent, state write failed"
        logger.error(
            "Payout transfer sent but completion was not recorded",
            extra={
                "ticket_group_id": str(group.id),
                "transfer_id": transfer_id,
                "amount": str(amount),
                "error": f"{type(error).__name__}: {error}",
            },
            exc_info=True,
        )

        # Plain UPDATE without the CAS helper, which just failed.
        TicketGroup.objects.filter(
            pk=group.id, payout_state=PayoutState.PENDING
        ).update(
            payout_state=PayoutState.FAILED,
            payout_reference=transfer_id,
            payout_amount=amount,
            payout_failure_reason=reason,
            version=F("version") + 1,
            updated_at=timezone.now(),
        )

        return PayoutItemResult(
            ticket_group_id=group.id,
            status=PayoutItemStatus.FAILED,
            amount=amount,
            reference=transfer_id,
            reason=reason,
        )

    # =========================================================================
    # Operator actions
    # =========================================================================

    @classmethod
    def requeue_failed_payout(cls, ticket_group_id: uuid.UUID | str) -> TicketGroup:
        """
        Put a failed payout back to pending for the next run.

        The attempt counter is bumped so the next transfer uses a fresh
        idempotency key.

        Raises:
            TicketGroupNotFoundError: No such group
            InvalidStateError: Payout is not in state failed
        """
        with transaction.atomic():
            group = (
                TicketGroup.objects.select_for_update()
                .filter(pk=ticket_group_id)
                .first()
            )
            if group is None:
                raise TicketGroupNotFoundError(
                    f"Ticket group {ticket_group_id} not found",
                    details={"ticket_group_id": str(ticket_group_id)},
                )
            if group.payout_state != PayoutState.FAILED:
                raise InvalidStateError(
                    "Only failed payouts can be requeued",
                    details={"payout_state": group.payout_state},
                )
            group.requeue_payout()
            group.save()

        cls.get_logger().info(
            "Payout requeued",
            extra={
                "ticket_group_id": str(group.id),
                "payout_attempt": group.payout_attempt,
            },
        )
        return group


__all__ = [
    "PAYOUT_RUN_LOCK_KEY",
    "PayoutBatchResult",
    "PayoutItemResult",
    "PayoutItemStatus",
    "PayoutReconciliationService",
    "PayoutSkipReason",
]
