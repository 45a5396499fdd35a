"""
API tests for the ticketing endpoints.

Services run for real against the test database; only the Stripe adapter
is mocked.
"""

import uuid

import pytest
from django.db import IntegrityError
from django.urls import reverse

from ticketing.exceptions import GatewayTimeoutError
from ticketing.locks import DistributedLock
from ticketing.models import TicketGroup
from ticketing.services import PAYOUT_RUN_LOCK_KEY
from ticketing.state_machines import PaymentState, PayoutState, RefundState
from ticketing.tests.factories import (
    TicketGroupFactory,
    make_payment_intent,
    make_refund,
    make_transfer,
)


def refund_url(group_id):
    return reverse("ticketing:refund-request", kwargs={"pk": group_id})


def process_url(group_id):
    return reverse("ticketing:refund-process", kwargs={"pk": group_id})


@pytest.fixture
def first_ticket(paid_group):
    return paid_group.line_items.first().ticket_number


@pytest.mark.django_db
class TestPurchaseCreateView:
    def test_creates_purchase(self, api_client, buyer, upcoming_event, stripe_adapter):
        stripe_adapter.create_payment_intent.return_value = make_payment_intent("pi_api")
        api_client.force_authenticate(buyer)

        response = api_client.post(
            reverse("ticketing:purchase-create", kwargs={"event_id": upcoming_event.id}),
            {"holders": [{"name": "Ada Lovelace", "email": "ada@example.com"}]},
            format="json",
        )

        assert response.status_code == 201
        assert response.data["client_secret"] == "pi_api_secret_abc"
        ticket_group = response.data["ticket_group"]
        assert ticket_group["payment_state"] == "pending"
        assert ticket_group["gross_amount"] == "100.00"
        assert ticket_group["line_items"][0]["ticket_number"] == "su_1"

    def test_unknown_event_is_404(self, api_client, buyer, stripe_adapter):
        api_client.force_authenticate(buyer)

        response = api_client.post(
            reverse("ticketing:purchase-create", kwargs={"event_id": uuid.uuid4()}),
            {"holders": [{"name": "Ada", "email": "ada@example.com"}]},
            format="json",
        )

        assert response.status_code == 404
        assert response.data["error_code"] == "EVENT_NOT_FOUND"

    def test_own_event_is_400(self, api_client, organizer, upcoming_event, stripe_adapter):
        api_client.force_authenticate(organizer)

        response = api_client.post(
            reverse("ticketing:purchase-create", kwargs={"event_id": upcoming_event.id}),
            {"holders": [{"name": "Ada", "email": "ada@example.com"}]},
            format="json",
        )

        assert response.status_code == 400
        assert response.data == {
            "success": False,
            "error": "Organizers cannot buy tickets for their own event",
            "error_code": "OWN_EVENT",
        }

    def test_ticket_number_conflict_is_409(
        self, api_client, buyer, upcoming_event, stripe_adapter, mocker
    ):
        stripe_adapter.create_payment_intent.return_value = make_payment_intent("pi_api")
        mocker.patch(
            "ticketing.services.purchase_service.PurchaseService._record_purchase",
            side_effect=IntegrityError("duplicate ticket_number"),
        )
        api_client.force_authenticate(buyer)

        response = api_client.post(
            reverse("ticketing:purchase-create", kwargs={"event_id": upcoming_event.id}),
            {"holders": [{"name": "Ada", "email": "ada@example.com"}]},
            format="json",
        )

        assert response.status_code == 409
        assert response.data["error_code"] == "TICKET_NUMBER_CONFLICT"

    def test_requires_holders(self, api_client, buyer, upcoming_event):
        api_client.force_authenticate(buyer)

        response = api_client.post(
            reverse("ticketing:purchase-create", kwargs={"event_id": upcoming_event.id}),
            {"holders": []},
            format="json",
        )

        assert response.status_code == 400
        assert "holders" in response.data

    def test_requires_authentication(self, api_client, upcoming_event):
        response = api_client.post(
            reverse("ticketing:purchase-create", kwargs={"event_id": upcoming_event.id}),
            {"holders": [{"name": "Ada", "email": "ada@example.com"}]},
            format="json",
        )

        assert response.status_code in (401, 403)


@pytest.mark.django_db
class TestConfirmPaymentView:
    def test_confirms_payment(self, api_client, buyer, upcoming_event, stripe_adapter):
        stripe_adapter.create_payment_intent.return_value = make_payment_intent("pi_api")
        stripe_adapter.retrieve_payment_intent.return_value = make_payment_intent(
            "pi_api", status="succeeded"
        )
        api_client.force_authenticate(buyer)
        created = api_client.post(
            reverse("ticketing:purchase-create", kwargs={"event_id": upcoming_event.id}),
            {"holders": [{"name": "Ada", "email": "ada@example.com"}]},
            format="json",
        )

        response = api_client.post(
            reverse(
                "ticketing:confirm-payment",
                kwargs={"pk": created.data["ticket_group"]["id"]},
            )
        )

        assert response.status_code == 200
        assert response.data["payment_state"] == "paid"

    def test_unfinished_payment_is_400(self, api_client, buyer, upcoming_event, stripe_adapter):
        group = TicketGroup.objects.create(
            event=upcoming_event,
            buyer=buyer,
            organizer=upcoming_event.organizer,
            quantity=1,
            gross_amount="100.00",
            platform_fee_amount="10.00",
            organizer_net_amount="90.00",
            payment_reference="pi_waiting",
        )
        stripe_adapter.retrieve_payment_intent.return_value = make_payment_intent(
            "pi_waiting", status="processing"
        )
        api_client.force_authenticate(buyer)

        response = api_client.post(reverse("ticketing:confirm-payment", kwargs={"pk": group.id}))

        assert response.status_code == 400
        assert response.data["error_code"] == "PAYMENT_NOT_SUCCEEDED"

    def test_unknown_group_is_404(self, api_client, buyer, stripe_adapter):
        api_client.force_authenticate(buyer)

        response = api_client.post(reverse("ticketing:confirm-payment", kwargs={"pk": uuid.uuid4()}))

        assert response.status_code == 404
        assert response.data["error_code"] == "TICKET_GROUP_NOT_FOUND"

    def test_other_user_is_403(self, api_client, other_user, buyer, upcoming_event, stripe_adapter):
        group = TicketGroupFactory(
            event=upcoming_event,
            buyer=buyer,
            payment_state=PaymentState.PENDING,
            payment_reference="pi_not_yours",
        )
        api_client.force_authenticate(other_user)

        response = api_client.post(reverse("ticketing:confirm-payment", kwargs={"pk": group.id}))

        assert response.status_code == 403
        assert response.data["error_code"] == "PURCHASE_NOT_AUTHORIZED"
        stripe_adapter.retrieve_payment_intent.assert_not_called()
        assert TicketGroup.objects.get(pk=group.pk).payment_state == PaymentState.PENDING

    def test_admin_can_confirm(self, api_client, admin_user, buyer, upcoming_event, stripe_adapter):
        group = TicketGroupFactory(
            event=upcoming_event,
            buyer=buyer,
            payment_state=PaymentState.PENDING,
            payment_reference="pi_admin",
        )
        stripe_adapter.retrieve_payment_intent.return_value = make_payment_intent(
            "pi_admin", status="succeeded"
        )
        api_client.force_authenticate(admin_user)

        response = api_client.post(reverse("ticketing:confirm-payment", kwargs={"pk": group.id}))

        assert response.status_code == 200
        assert response.data["payment_state"] == "paid"


@pytest.mark.django_db
class TestRefundRequestView:
    def test_buyer_requests_single_ticket(
        self, api_client, buyer, paid_group, first_ticket, stripe_adapter
    ):
        api_client.force_authenticate(buyer)

        response = api_client.post(
            refund_url(paid_group.id),
            {"reason": "Cannot attend", "ticket_numbers": [first_ticket]},
            format="json",
        )

        assert response.status_code == 200
        assert response.data["refund_state"] == "requested"
        assert response.data["refund_amount"] == "97.50"
        assert response.data["cancellation_fee_amount"] == "2.50"
        states = {item["ticket_number"]: item["refund_state"] for item in response.data["line_items"]}
        assert states[first_ticket] == "requested"
        stripe_adapter.create_refund.assert_not_called()

    def test_empty_scope_requests_all(self, api_client, buyer, paid_group):
        api_client.force_authenticate(buyer)

        response = api_client.post(refund_url(paid_group.id), {"reason": "Sick"}, format="json")

        assert response.status_code == 200
        assert response.data["refund_amount"] == "292.50"

    def test_other_user_gets_403(self, api_client, other_user, paid_group):
        api_client.force_authenticate(other_user)

        response = api_client.post(refund_url(paid_group.id), {"reason": "Mine"}, format="json")

        assert response.status_code == 403
        assert response.data["error_code"] == "REFUND_NOT_AUTHORIZED"

    def test_blank_reason_is_400(self, api_client, buyer, paid_group):
        api_client.force_authenticate(buyer)

        response = api_client.post(refund_url(paid_group.id), {"reason": "   "}, format="json")

        assert response.status_code == 400
        assert response.data["error_code"] == "REFUND_REASON_REQUIRED"

    def test_unknown_group_is_404(self, api_client, buyer):
        api_client.force_authenticate(buyer)

        response = api_client.post(refund_url(uuid.uuid4()), {"reason": "Sick"}, format="json")

        assert response.status_code == 404

    def test_second_request_is_409(self, api_client, buyer, paid_group):
        api_client.force_authenticate(buyer)
        api_client.post(refund_url(paid_group.id), {"reason": "Sick"}, format="json")

        response = api_client.post(refund_url(paid_group.id), {"reason": "Again"}, format="json")

        assert response.status_code == 409
        assert response.data["error_code"] == "INVALID_STATE"

    def test_ended_event_is_400(self, api_client, buyer, ended_paid_group):
        api_client.force_authenticate(buyer)

        response = api_client.post(refund_url(ended_paid_group.id), {"reason": "Late"}, format="json")

        assert response.status_code == 400
        assert response.data["error_code"] == "EVENT_ENDED"


@pytest.mark.django_db
class TestProcessRefundView:
    @pytest.fixture
    def requested(self, api_client, buyer, paid_group, first_ticket):
        api_client.force_authenticate(buyer)
        api_client.post(
            refund_url(paid_group.id),
            {"reason": "Cannot attend", "ticket_numbers": [first_ticket]},
            format="json",
        )
        api_client.force_authenticate(None)
        return paid_group

    def test_organizer_approves(self, api_client, organizer, requested, stripe_adapter):
        stripe_adapter.create_refund.return_value = make_refund("re_api")
        api_client.force_authenticate(organizer)

        response = api_client.post(process_url(requested.id), {"action": "approve"}, format="json")

        assert response.status_code == 200
        assert response.data["refund_state"] == "completed"
        assert response.data["payment_state"] == "partially_refunded"
        assert response.data["refund_reference"] == "re_api"

    def test_organizer_rejects(self, api_client, organizer, requested, stripe_adapter):
        api_client.force_authenticate(organizer)

        response = api_client.post(process_url(requested.id), {"action": "reject"}, format="json")

        assert response.status_code == 200
        assert response.data["refund_state"] == "rejected"
        stripe_adapter.create_refund.assert_not_called()

    def test_buyer_cannot_approve(self, api_client, buyer, requested, stripe_adapter):
        api_client.force_authenticate(buyer)

        response = api_client.post(process_url(requested.id), {"action": "approve"}, format="json")

        assert response.status_code == 403

    def test_unknown_action_is_400(self, api_client, organizer, requested):
        api_client.force_authenticate(organizer)

        response = api_client.post(process_url(requested.id), {"action": "maybe"}, format="json")

        assert response.status_code == 400
        assert "action" in response.data

    def test_gateway_failure_is_502(self, api_client, organizer, requested, stripe_adapter):
        stripe_adapter.create_refund.side_effect = GatewayTimeoutError("Stripe request timed out")
        api_client.force_authenticate(organizer)

        response = api_client.post(process_url(requested.id), {"action": "approve"}, format="json")

        assert response.status_code == 502
        assert response.data["error_code"] == "GATEWAY_TIMEOUT"
        assert TicketGroup.objects.get(pk=requested.pk).refund_state == RefundState.REQUESTED


@pytest.mark.django_db
class TestRefundRequestListView:
    def test_organizer_sees_own_requests(self, api_client, buyer, organizer, paid_group):
        api_client.force_authenticate(buyer)
        api_client.post(refund_url(paid_group.id), {"reason": "Sick"}, format="json")
        api_client.force_authenticate(organizer)

        response = api_client.get(reverse("ticketing:refund-request-list"))

        assert response.status_code == 200
        assert response.data["count"] == 1
        assert response.data["results"][0]["id"] == str(paid_group.id)

    def test_other_organizer_sees_nothing(self, api_client, buyer, other_user, paid_group):
        api_client.force_authenticate(buyer)
        api_client.post(refund_url(paid_group.id), {"reason": "Sick"}, format="json")
        api_client.force_authenticate(other_user)

        response = api_client.get(reverse("ticketing:refund-request-list"))

        assert response.data["count"] == 0

    def test_admin_sees_all(self, api_client, buyer, admin_user, paid_group):
        api_client.force_authenticate(buyer)
        api_client.post(refund_url(paid_group.id), {"reason": "Sick"}, format="json")
        api_client.force_authenticate(admin_user)

        response = api_client.get(reverse("ticketing:refund-request-list"))

        assert response.data["count"] == 1


@pytest.mark.django_db
class TestPayoutRunView:
    def test_admin_runs_payouts(
        self, api_client, admin_user, paid_group, organizer_account, stripe_adapter
    ):
        stripe_adapter.create_transfer.return_value = make_transfer("tr_api")
        api_client.force_authenticate(admin_user)

        response = api_client.post(reverse("ticketing:payout-run"), {}, format="json")

        assert response.status_code == 200
        assert response.data["mode"] == "manual"
        assert response.data["success_count"] == 1
        assert response.data["total_amount"] == "270.00"
        assert TicketGroup.objects.get(pk=paid_group.pk).payout_state == PayoutState.COMPLETED

    def test_automated_mode(self, api_client, admin_user, paid_group, organizer_account, stripe_adapter):
        api_client.force_authenticate(admin_user)

        response = api_client.post(
            reverse("ticketing:payout-run"), {"mode": "automated"}, format="json"
        )

        assert response.data["total_processed"] == 0

    def test_non_admin_forbidden(self, api_client, organizer, stripe_adapter):
        api_client.force_authenticate(organizer)

        response = api_client.post(reverse("ticketing:payout-run"), {}, format="json")

        assert response.status_code == 403
        stripe_adapter.create_transfer.assert_not_called()

    def test_run_in_progress_is_409(self, api_client, admin_user, stripe_adapter):
        DistributedLock(PAYOUT_RUN_LOCK_KEY, blocking=False).acquire()
        api_client.force_authenticate(admin_user)

        response = api_client.post(reverse("ticketing:payout-run"), {}, format="json")

        assert response.status_code == 409
        assert response.data["error_code"] == "PAYOUT_RUN_IN_PROGRESS"

    def test_invalid_mode_is_400(self, api_client, admin_user):
        api_client.force_authenticate(admin_user)

        response = api_client.post(reverse("ticketing:payout-run"), {"mode": "hourly"}, format="json")

        assert response.status_code == 400


@pytest.mark.django_db
class TestPayoutSchedulerViews:
    def test_status(self, api_client, admin_user):
        api_client.force_authenticate(admin_user)

        response = api_client.get(reverse("ticketing:payout-scheduler-status"))

        assert response.status_code == 200
        assert response.data["is_running"] is True
        assert response.data["next_scheduled_run_time"] is not None
        assert response.data["active_jobs"] == ["ticketing-daily-automated-payouts"]

    def test_stop_then_start(self, api_client, admin_user):
        api_client.force_authenticate(admin_user)

        stopped = api_client.post(reverse("ticketing:payout-scheduler-stop"))
        stopped_again = api_client.post(reverse("ticketing:payout-scheduler-stop"))
        started = api_client.post(reverse("ticketing:payout-scheduler-start"))
        started_again = api_client.post(reverse("ticketing:payout-scheduler-start"))

        assert stopped.data["stopped"] is True
        assert stopped.data["is_running"] is False
        assert stopped.data["next_scheduled_run_time"] is None
        assert stopped_again.data["stopped"] is False
        assert started.data["started"] is True
        assert started.data["is_running"] is True
        assert started_again.data["started"] is False

    def test_non_admin_forbidden(self, api_client, organizer):
        api_client.force_authenticate(organizer)

        assert api_client.get(reverse("ticketing:payout-scheduler-status")).status_code == 403
        assert api_client.post(reverse("ticketing:payout-scheduler-stop")).status_code == 403
