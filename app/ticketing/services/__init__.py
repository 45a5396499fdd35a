"""
Ticketing services.

PurchaseService creates ticket groups and confirms payments,
RefundService runs the refund workflow and PayoutReconciliationService
pays organizers in batches.
"""

from ticketing.services.payout_reconciliation import (
    PAYOUT_RUN_LOCK_KEY,
    PayoutBatchResult,
    PayoutItemResult,
    PayoutItemStatus,
    PayoutReconciliationService,
    PayoutSkipReason,
)
from ticketing.services.purchase_service import (
    MAX_TICKETS_PER_PURCHASE,
    HolderDetails,
    PurchaseResult,
    PurchaseService,
)
from ticketing.services.refund_service import RefundAction, RefundService

__all__ = [
    "HolderDetails",
    "MAX_TICKETS_PER_PURCHASE",
    "PAYOUT_RUN_LOCK_KEY",
    "PayoutBatchResult",
    "PayoutItemResult",
    "PayoutItemStatus",
    "PayoutReconciliationService",
    "PayoutSkipReason",
    "PurchaseResult",
    "PurchaseService",
    "RefundAction",
    "RefundService",
]
