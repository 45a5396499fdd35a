"""
Pytest fixtures for ticketing tests.

Redis is replaced by an in-memory fake for every test so the payout run
lock works without a server. The Stripe adapter is swapped for a MagicMock
on all services through the stripe_adapter fixture.

Usage:
    def test_payout_completes(paid_group, organizer_account, stripe_adapter):
        stripe_adapter.create_transfer.return_value = make_transfer()
        batch = PayoutReconciliationService.run_payouts(PayoutMode.MANUAL)
"""

from datetime import timedelta
from unittest.mock import MagicMock, patch

import pytest
from django.utils import timezone
from rest_framework.test import APIClient

from ticketing.services import (
    PayoutReconciliationService,
    PurchaseService,
    RefundService,
)
from ticketing.state_machines import EventStatus
from ticketing.tests.factories import (
    EventFactory,
    OrganizerPayoutAccountFactory,
    TicketGroupFactory,
    UserFactory,
)


class FakeRedis:
    """In-memory stand-in for the redis-py calls DistributedLock makes."""

    def __init__(self):
        self.store = {}
        self.ttls = {}

    def set(self, key, value, nx=False, ex=None):
        if nx and key in self.store:
            return None
        self.store[key] = value
        self.ttls[key] = ex
        return True

    def get(self, key):
        return self.store.get(key)

    def exists(self, key):
        return int(key in self.store)

    def delete(self, key):
        return int(self.store.pop(key, None) is not None)

    def eval(self, script, numkeys, key, token, *args):
        if self.store.get(key) != token:
            return 0
        if '"del"' in script:
            del self.store[key]
        else:
            self.ttls[key] = int(args[0])
        return 1


@pytest.fixture(autouse=True)
def fake_redis():
    redis = FakeRedis()
    with patch("ticketing.locks.get_redis_connection", return_value=redis):
        yield redis


@pytest.fixture
def stripe_adapter():
    """MagicMock adapter installed on every ticketing service."""
    adapter = MagicMock()
    services = [PurchaseService, RefundService, PayoutReconciliationService]
    for service in services:
        service.set_stripe_adapter(adapter)
    yield adapter
    for service in services:
        service.set_stripe_adapter(None)


# =============================================================================
# Users
# =============================================================================


@pytest.fixture
def buyer(db):
    return UserFactory()


@pytest.fixture
def organizer(db):
    return UserFactory()


@pytest.fixture
def admin_user(db):
    return UserFactory(is_staff=True)


@pytest.fixture
def other_user(db):
    return UserFactory()


@pytest.fixture
def organizer_account(db, organizer):
    """Organizer with a connected account ready for payouts."""
    return OrganizerPayoutAccountFactory(organizer=organizer)


# =============================================================================
# Events
# =============================================================================


@pytest.fixture
def upcoming_event(db, organizer):
    """Published event starting next week."""
    return EventFactory(organizer=organizer)


@pytest.fixture
def ended_event(db, organizer):
    now = timezone.now()
    return EventFactory(
        organizer=organizer,
        status=EventStatus.COMPLETED,
        starts_at=now - timedelta(days=2),
        ends_at=now - timedelta(days=1),
    )


# =============================================================================
# Ticket groups
# =============================================================================


@pytest.fixture
def paid_group(db, upcoming_event, buyer):
    """Three paid admissions at 100.00 to an upcoming event."""
    return TicketGroupFactory(event=upcoming_event, buyer=buyer, quantity=3)


@pytest.fixture
def ended_paid_group(db, ended_event, buyer):
    return TicketGroupFactory(event=ended_event, buyer=buyer, quantity=3)


# =============================================================================
# API
# =============================================================================


@pytest.fixture
def api_client():
    return APIClient()
