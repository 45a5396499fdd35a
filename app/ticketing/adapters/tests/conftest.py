"""
Pytest fixtures for Stripe adapter tests.

The Stripe SDK resources are patched at the module attribute level so the
adapter's own translation and result mapping run unchanged.
"""

from dataclasses import dataclass
from typing import Any
from unittest.mock import patch

import pytest
import stripe


@dataclass
class MockStripeObject:
    """Attribute access over a plain dict, like a StripeObject."""

    data: dict[str, Any]

    def __getattr__(self, name: str) -> Any:
        if name == "data":
            return self.__dict__["data"]
        return self.data.get(name)


@pytest.fixture(autouse=True)
def mock_stripe_http_client():
    """Keep the adapter from building a real HTTP client."""
    with patch("stripe.RequestsClient") as mock:
        yield mock


@pytest.fixture
def mock_stripe_payment_intent():
    with patch("stripe.PaymentIntent") as mock:
        mock.create.return_value = MockStripeObject(
            {
                "id": "pi_test123",
                "status": "requires_payment_method",
                "amount": 30000,
                "currency": "chf",
                "client_secret": "pi_test123_secret_abc",
                "metadata": {"ticket_group_id": "tg"},
            }
        )
        mock.retrieve.return_value = MockStripeObject(
            {
                "id": "pi_test123",
                "status": "succeeded",
                "amount": 30000,
                "currency": "chf",
                "client_secret": None,
                "metadata": None,
            }
        )
        mock.cancel.return_value = MockStripeObject(
            {
                "id": "pi_test123",
                "status": "canceled",
                "amount": 30000,
                "currency": "chf",
                "client_secret": None,
                "metadata": {},
            }
        )
        yield mock


@pytest.fixture
def mock_stripe_transfer():
    with patch("stripe.Transfer") as mock:
        mock.create.return_value = MockStripeObject(
            {
                "id": "tr_test123",
                "amount": 27000,
                "currency": "chf",
                "destination": "acct_dest123",
                "metadata": {},
            }
        )
        yield mock


@pytest.fixture
def mock_stripe_refund():
    with patch("stripe.Refund") as mock:
        mock.create.return_value = MockStripeObject(
            {
                "id": "re_test123",
                "amount": 9750,
                "currency": "chf",
                "status": "succeeded",
                "payment_intent": "pi_test123",
                "metadata": {},
            }
        )
        yield mock


@pytest.fixture
def mock_stripe_webhook():
    with patch("stripe.Webhook") as mock:
        yield mock


# =============================================================================
# Stripe errors
# =============================================================================


@pytest.fixture
def insufficient_funds_error():
    """Transfer rejected because the platform balance is too low."""
    return stripe.InvalidRequestError(
        message="Insufficient funds in Stripe account.",
        param=None,
        code="balance_insufficient",
    )


@pytest.fixture
def card_declined_insufficient_funds():
    error = stripe.CardError(
        message="Your card has insufficient funds.",
        param=None,
        code="card_declined",
    )
    error.decline_code = "insufficient_funds"
    return error


@pytest.fixture
def invalid_account_error():
    return stripe.InvalidRequestError(
        message="No such destination: 'acct_missing'",
        param="destination",
        code="account_invalid",
    )


@pytest.fixture
def signature_verification_error():
    return stripe.SignatureVerificationError(
        message="Unable to verify webhook signature.",
        sig_header="bad_signature",
    )
