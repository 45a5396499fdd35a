"""
Stripe API adapter: the payment gateway for ticketing.

All Stripe calls go through StripeAdapter so that timeouts, idempotency,
error classification and logging are applied consistently. Every failure
surfaces as a ticketing.exceptions.GatewayError carrying a closed
GatewayErrorKind.

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Network retries performed by the Stripe client

Usage:
    from ticketing.adapters import IdempotencyKeyGenerator, StripeAdapter

    result = StripeAdapter.create_transfer(
        amount_cents=18000,
        destination_account="acct_123",
        idempotency_key=IdempotencyKeyGenerator.generate("payout", group.id),
        currency="chf",
        metadata={"ticket_group_id": str(group.id)},
    )
"""

from __future__ import annotations

import hashlib
import json
import logging
import time
import uuid
from dataclasses import dataclass, field
from typing import Any

import stripe
from django.conf import settings

from ticketing.exceptions import (
    GatewayError,
    GatewayErrorKind,
    GatewayTimeoutError,
    GatewayUnavailableError,
)


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreatePaymentIntentParams:
    """
    Parameters for creating a Stripe PaymentIntent.

    Attributes:
        amount_cents: Payment amount in smallest currency unit
        currency: ISO 4217 currency code
        idempotency_key: Unique key for idempotent creation
        metadata: Key-value pairs to attach to the PaymentIntent
        receipt_email: Buyer email for the Stripe receipt
    """

    amount_cents: int
    currency: str
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)
    receipt_email: str | None = None

    def __post_init__(self) -> None:
        if self.amount_cents <= 0:
            raise ValueError("amount_cents must be positive")
        if not self.idempotency_key:
            raise ValueError("idempotency_key is required")
        if not self.currency:
            raise ValueError("currency is required")


@dataclass
class PaymentIntentResult:
    """
    Result from Stripe PaymentIntent operations.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: Current status (requires_payment_method, succeeded, etc.)
        amount_cents: Amount in cents
        currency: Currency code
        client_secret: Secret for client-side confirmation
        metadata: Attached metadata
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    client_secret: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class TransferResult:
    """
    Result from Stripe Transfer operations.

    Attributes:
        id: Transfer ID (tr_xxx)
        amount_cents: Amount transferred in cents
        currency: Currency code
        destination_account: Destination Stripe account ID
        metadata: Attached metadata
    """

    id: str
    amount_cents: int
    currency: str
    destination_account: str
    metadata: dict[str, str] = field(default_factory=dict)


@dataclass
class RefundResult:
    """
    Result from Stripe Refund operations.

    Attributes:
        id: Refund ID (re_xxx)
        amount_cents: Refunded amount in cents
        currency: Currency code
        status: Refund status (succeeded, pending, failed)
        payment_intent_id: Original PaymentIntent ID
    """

    id: str
    amount_cents: int
    currency: str
    status: str
    payment_intent_id: str
    metadata: dict[str, str] = field(default_factory=dict)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Generate idempotency keys for Stripe API calls.

    Format: "{operation}:{entity_id}:{attempt}:{hash}"

    The hash covers an optional discriminator (e.g. the sorted ticket
    numbers of a refund) so the same logical operation always maps to the
    same key, and a different one never does.

    Example:
        IdempotencyKeyGenerator.generate("refund", group.id, discriminator="su_1,su_2")
        # "refund:550e8400-e29b-41d4-a716-446655440000:1:a1b2c3d4"
    """

    @staticmethod
    def generate(
        operation: str,
        entity_id: uuid.UUID | str,
        attempt: int = 1,
        discriminator: str = "",
    ) -> str:
        entity_str = str(entity_id)
        hash_input = (
            f"{operation}:{entity_str}:{attempt}:{discriminator}:{settings.SECRET_KEY}"
        )
        short_hash = hashlib.sha256(hash_input.encode()).hexdigest()[:8]
        return f"{operation}:{entity_str}:{attempt}:{short_hash}"


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods - no instance state is maintained.
    Thread-safe for use from Celery workers.

    Services hold the adapter as an injectable class attribute so tests
    can substitute a mock.
    """

    @staticmethod
    def _configure_stripe() -> None:
        """Configure Stripe client with API key, timeout and network retries."""
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = settings.STRIPE_MAX_RETRIES
        stripe.default_http_client = stripe.RequestsClient(
            timeout=settings.STRIPE_API_TIMEOUT_SECONDS
        )

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    # =========================================================================
    # Payments
    # =========================================================================

    @classmethod
    def create_payment_intent(
        cls,
        params: CreatePaymentIntentParams,
    ) -> PaymentIntentResult:
        """
        Create a PaymentIntent for a ticket purchase.

        Raises:
            GatewayError: Classified Stripe failure
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_payment_intent",
            "amount_cents": params.amount_cents,
            "currency": params.currency,
            "idempotency_key": params.idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent_params: dict[str, Any] = {
                "amount": params.amount_cents,
                "currency": params.currency,
                "metadata": params.metadata,
                "automatic_payment_methods": {"enabled": True},
            }
            if params.receipt_email:
                intent_params["receipt_email"] = params.receipt_email

            intent = stripe.PaymentIntent.create(
                idempotency_key=params.idempotency_key,
                **intent_params,
            )

            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "payment_intent_id": intent.id,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            return cls._payment_intent_result(intent)

        except Exception as e:
            raise cls._translate_error(e, log_context, start_time) from e

    @classmethod
    def retrieve_payment_intent(cls, payment_intent_id: str) -> PaymentIntentResult:
        """
        Retrieve a PaymentIntent by ID.

        Raises:
            GatewayError: PaymentIntent not found or Stripe failure
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": payment_intent_id,
        }

        start_time = time.time()
        logger.debug("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.retrieve(payment_intent_id)

            logger.debug(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": intent.status,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            return cls._payment_intent_result(intent)

        except Exception as e:
            raise cls._translate_error(e, log_context, start_time) from e

    @classmethod
    def cancel_payment_intent(cls, payment_intent_id: str) -> PaymentIntentResult:
        """
        Cancel a PaymentIntent that will never be completed.

        Raises:
            GatewayError: Intent already succeeded or Stripe failure
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "cancel_payment_intent",
            "payment_intent_id": payment_intent_id,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            intent = stripe.PaymentIntent.cancel(payment_intent_id)

            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "status": intent.status,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )
            return cls._payment_intent_result(intent)

        except Exception as e:
            raise cls._translate_error(e, log_context, start_time) from e

    @staticmethod
    def _payment_intent_result(intent: Any) -> PaymentIntentResult:
        return PaymentIntentResult(
            id=intent.id,
            status=intent.status,
            amount_cents=intent.amount,
            currency=intent.currency,
            client_secret=intent.client_secret,
            metadata=dict(intent.metadata or {}),
        )

    # =========================================================================
    # Refunds & Transfers
    # =========================================================================

    @classmethod
    def create_refund(
        cls,
        payment_intent_id: str,
        idempotency_key: str,
        amount_cents: int | None = None,
        metadata: dict[str, str] | None = None,
    ) -> RefundResult:
        """
        Refund (part of) a PaymentIntent.

        Args:
            payment_intent_id: Stripe PaymentIntent ID (pi_xxx)
            idempotency_key: Unique key for idempotent refund
            amount_cents: Amount to refund (None for full refund)
            metadata: Optional metadata dict

        Raises:
            GatewayError: Classified Stripe failure
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_refund",
            "payment_intent_id": payment_intent_id,
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            refund_params: dict[str, Any] = {
                "payment_intent": payment_intent_id,
                "reason": "requested_by_customer",
                "metadata": metadata or {},
            }
            if amount_cents is not None:
                refund_params["amount"] = amount_cents

            refund = stripe.Refund.create(
                idempotency_key=idempotency_key,
                **refund_params,
            )

            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "refund_id": refund.id,
                    "status": refund.status,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )

            return RefundResult(
                id=refund.id,
                amount_cents=refund.amount,
                currency=refund.currency,
                status=refund.status,
                payment_intent_id=refund.payment_intent,
                metadata=dict(refund.metadata or {}),
            )

        except Exception as e:
            raise cls._translate_error(e, log_context, start_time) from e

    @classmethod
    def create_transfer(
        cls,
        amount_cents: int,
        destination_account: str,
        idempotency_key: str,
        currency: str,
        metadata: dict[str, str] | None = None,
    ) -> TransferResult:
        """
        Transfer funds to an organizer's connected account.

        Raises:
            GatewayError: kind INSUFFICIENT_FUNDS, INVALID_ACCOUNT,
                UNSUPPORTED_CURRENCY, AMOUNT_TOO_SMALL, AMOUNT_TOO_LARGE or OTHER
            GatewayTimeoutError: No response within the client timeout
        """
        cls._configure_stripe()
        logger = cls.get_logger()

        log_context = {
            "operation": "create_transfer",
            "amount_cents": amount_cents,
            "destination_account": destination_account,
            "idempotency_key": idempotency_key,
        }

        start_time = time.time()
        logger.info("Starting Stripe operation", extra=log_context)

        try:
            transfer = stripe.Transfer.create(
                idempotency_key=idempotency_key,
                amount=amount_cents,
                currency=currency,
                destination=destination_account,
                metadata=metadata or {},
            )

            logger.info(
                "Stripe operation completed",
                extra={
                    **log_context,
                    "transfer_id": transfer.id,
                    "duration_ms": (time.time() - start_time) * 1000,
                },
            )

            return TransferResult(
                id=transfer.id,
                amount_cents=transfer.amount,
                currency=transfer.currency,
                destination_account=transfer.destination,
                metadata=dict(transfer.metadata or {}),
            )

        except Exception as e:
            raise cls._translate_error(e, log_context, start_time) from e

    # =========================================================================
    # Webhook Verification
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify a Stripe webhook payload and return the parsed event.

        Raises:
            GatewayError: Invalid signature or malformed payload
        """
        try:
            stripe.Webhook.construct_event(
                payload,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
            )
        except stripe.SignatureVerificationError as e:
            raise GatewayError(
                "Invalid webhook signature",
                stripe_code="signature_verification_failed",
                error_code="INVALID_WEBHOOK_SIGNATURE",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise GatewayError(
                "Malformed webhook payload",
                error_code="INVALID_WEBHOOK_PAYLOAD",
                details={"error": str(e)},
            ) from e
        return json.loads(payload)

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _translate_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        start_time: float,
    ) -> GatewayError:
        """
        Translate a Stripe SDK exception into a classified GatewayError.

        Returns the exception for the caller to raise.
        """
        logger = cls.get_logger()
        log_context = {
            **log_context,
            "duration_ms": (time.time() - start_time) * 1000,
        }

        if isinstance(error, (stripe.CardError, stripe.InvalidRequestError)):
            code = getattr(error, "code", None)
            kind = GatewayErrorKind.from_stripe_code(code)
            if kind == GatewayErrorKind.OTHER and isinstance(error, stripe.CardError):
                kind = GatewayErrorKind.from_stripe_code(
                    getattr(error, "decline_code", None)
                )
            logger.warning(
                "Stripe rejected request",
                extra={**log_context, "stripe_code": code, "kind": kind.value},
            )
            return GatewayError(
                str(getattr(error, "user_message", None) or error),
                kind=kind,
                stripe_code=code,
            )

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            return GatewayUnavailableError(
                "Stripe rate limit exceeded",
                stripe_code="rate_limit",
            )

        if isinstance(error, stripe.APIConnectionError):
            if "timed out" in str(error).lower() or "timeout" in str(error).lower():
                logger.error("Stripe request timed out", extra=log_context)
                return GatewayTimeoutError(
                    "Stripe request timed out",
                    stripe_code="timeout",
                )
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            return GatewayUnavailableError(
                "Could not connect to Stripe",
                stripe_code="api_connection_error",
            )

        if isinstance(error, stripe.AuthenticationError):
            logger.critical(
                "Stripe authentication failed - check API key",
                extra=log_context,
            )
            return GatewayError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            )

        if isinstance(error, stripe.StripeError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            return GatewayUnavailableError(
                f"Stripe service error: {error}",
                stripe_code=getattr(error, "code", None) or "api_error",
            )

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        return GatewayError(
            f"Unexpected Stripe error: {error}",
            stripe_code="unknown_error",
        )
