"""Tests for ticketing Celery tasks."""

from decimal import Decimal

import pytest

from ticketing.scheduler import get_payout_scheduler
from ticketing.tasks import run_scheduled_payouts
from ticketing.tests.factories import make_transfer


@pytest.mark.django_db
class TestRunScheduledPayouts:
    def test_returns_batch_summary(self, ended_paid_group, organizer_account, stripe_adapter):
        stripe_adapter.create_transfer.return_value = make_transfer()

        result = run_scheduled_payouts(mode="automated")

        assert result["status"] == "completed"
        assert result["mode"] == "automated"
        assert result["success_count"] == 1
        assert Decimal(result["total_amount"]) == Decimal("270.00")

    def test_manual_mode(self, paid_group, organizer_account, stripe_adapter):
        stripe_adapter.create_transfer.return_value = make_transfer()

        result = run_scheduled_payouts(mode="manual")

        assert result["mode"] == "manual"
        assert result["total_processed"] == 1

    def test_skipped_when_run_in_progress(self, mocker):
        mocker.patch.object(get_payout_scheduler(), "run_scheduled", return_value=None)

        assert run_scheduled_payouts() == {"status": "skipped", "mode": "automated"}
