"""
Ticketing-specific exceptions.

Exception Hierarchy:
    ValidationError (core)
    └── TicketingValidationError - Bad refund/purchase input (never retried)
        ├── NoRefundableTicketsError - Nothing left to refund in scope
        └── RefundWindowClosedError - Event already ended

    NotFoundError (core)
    └── TicketGroupNotFoundError

    PermissionDeniedError (core)
    └── RefundAuthorizationError - Caller may not request/process the refund

    ConflictError (core)
    ├── InvalidStateError - Operation not allowed from the current state
    ├── StateConflictError - Lost a compare-and-swap update to another writer
    └── LockAcquisitionError - Distributed lock held elsewhere
        └── PayoutRunInProgressError - Another payout batch is running

    ExternalServiceError (core)
    └── GatewayError - Classified payment gateway failure
        ├── GatewayTimeoutError - No response within the client timeout
        └── GatewayUnavailableError - Network / 5xx / rate limited

Usage:
    from ticketing.exceptions import GatewayError, GatewayErrorKind

    try:
        adapter.create_transfer(...)
    except GatewayError as e:
        if e.kind == GatewayErrorKind.INSUFFICIENT_FUNDS:
            ...
"""

from __future__ import annotations

from enum import Enum
from typing import TYPE_CHECKING

from core.exceptions import (
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    PermissionDeniedError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


# =============================================================================
# Validation
# =============================================================================


class TicketingValidationError(ValidationError):
    default_error_code: str = "TICKETING_VALIDATION_ERROR"


class NoRefundableTicketsError(TicketingValidationError):
    """
    Raised when a refund request selects no refundable admission.

    Every targeted line item is already requested, rejected or refunded,
    or none of the given ticket numbers belong to the group.
    """

    default_error_code: str = "NO_REFUNDABLE_TICKETS"


class RefundWindowClosedError(TicketingValidationError):
    """Raised when a refund is requested at or after the event end."""

    default_error_code: str = "EVENT_ENDED"


# =============================================================================
# Lookup / Authorization
# =============================================================================


class TicketGroupNotFoundError(NotFoundError):
    default_error_code: str = "TICKET_GROUP_NOT_FOUND"


class RefundAuthorizationError(PermissionDeniedError):
    """
    Raised when the caller may not act on a refund.

    Requests: buyer or admin. Approval/rejection: organizer or admin.
    """

    default_error_code: str = "REFUND_NOT_AUTHORIZED"


class PurchaseAuthorizationError(PermissionDeniedError):
    """Raised when the caller is neither the buyer nor an admin."""

    default_error_code: str = "PURCHASE_NOT_AUTHORIZED"


# =============================================================================
# State & Concurrency
# =============================================================================


class InvalidStateError(ConflictError):
    """
    Raised when an operation is not allowed from the current state.

    Example:
        raise InvalidStateError(
            "Refund can only be requested for paid tickets",
            details={"payment_state": group.payment_state},
        )
    """

    default_error_code: str = "INVALID_STATE"


class StateConflictError(ConflictError):
    """
    Raised when a conditional update lost to a concurrent writer.

    The row no longer matched the expected state when the update ran.
    """

    default_error_code: str = "STATE_CONFLICT"


class LockAcquisitionError(ConflictError):
    default_error_code: str = "LOCK_ACQUISITION_FAILED"


class PayoutRunInProgressError(LockAcquisitionError):
    """Raised when a payout batch starts while another one holds the run lock."""

    default_error_code: str = "PAYOUT_RUN_IN_PROGRESS"


# =============================================================================
# Payment Gateway
# =============================================================================


class GatewayErrorKind(str, Enum):
    """
    Closed classification of gateway failures.

    Stripe error codes outside the named ones map to OTHER; the original
    message is kept on the exception.
    """

    INSUFFICIENT_FUNDS = "insufficient_funds"
    INVALID_ACCOUNT = "invalid_account"
    UNSUPPORTED_CURRENCY = "unsupported_currency"
    AMOUNT_TOO_SMALL = "amount_too_small"
    AMOUNT_TOO_LARGE = "amount_too_large"
    OTHER = "other"

    @classmethod
    def from_stripe_code(cls, code: str | None) -> GatewayErrorKind:
        return _STRIPE_CODE_KINDS.get(code or "", cls.OTHER)


_STRIPE_CODE_KINDS = {
    "insufficient_funds": GatewayErrorKind.INSUFFICIENT_FUNDS,
    "balance_insufficient": GatewayErrorKind.INSUFFICIENT_FUNDS,
    "account_invalid": GatewayErrorKind.INVALID_ACCOUNT,
    "no_account": GatewayErrorKind.INVALID_ACCOUNT,
    "currency_not_supported": GatewayErrorKind.UNSUPPORTED_CURRENCY,
    "amount_too_small": GatewayErrorKind.AMOUNT_TOO_SMALL,
    "amount_too_large": GatewayErrorKind.AMOUNT_TOO_LARGE,
}


class GatewayError(ExternalServiceError):
    """
    Classified payment gateway failure.

    Attributes:
        kind: GatewayErrorKind classification
        stripe_code: Stripe's error code, when present
        is_retryable: Whether the failure is transient. Informational only;
            refunds and payouts are never retried automatically.
    """

    default_error_code: str = "GATEWAY_ERROR"
    is_retryable: bool = False

    def __init__(
        self,
        message: str,
        kind: GatewayErrorKind = GatewayErrorKind.OTHER,
        stripe_code: str | None = None,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        details = details or {}
        details["kind"] = kind.value
        if stripe_code:
            details["stripe_code"] = stripe_code
        super().__init__(message, error_code=error_code, details=details)
        self.kind = kind
        self.stripe_code = stripe_code

    @property
    def reason(self) -> str:
        """Short failure reason persisted on the ticket group."""
        if self.kind == GatewayErrorKind.OTHER:
            return f"{self.kind.value}: {self.message}"
        return self.kind.value


class GatewayTimeoutError(GatewayError):
    """
    The gateway did not answer within STRIPE_API_TIMEOUT_SECONDS.

    The operation may have succeeded on Stripe's side; the idempotency key
    makes a later operator-initiated retry safe.
    """

    default_error_code: str = "GATEWAY_TIMEOUT"
    is_retryable: bool = True


class GatewayUnavailableError(GatewayError):
    default_error_code: str = "GATEWAY_UNAVAILABLE"
    is_retryable: bool = True


__all__ = [
    "GatewayError",
    "GatewayErrorKind",
    "GatewayTimeoutError",
    "GatewayUnavailableError",
    "InvalidStateError",
    "LockAcquisitionError",
    "NoRefundableTicketsError",
    "PayoutRunInProgressError",
    "PurchaseAuthorizationError",
    "RefundAuthorizationError",
    "RefundWindowClosedError",
    "StateConflictError",
    "TicketGroupNotFoundError",
    "TicketingValidationError",
]
