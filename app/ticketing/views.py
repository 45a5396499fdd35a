"""
DRF views for the ticketing app.

Endpoints:
    POST /api/v1/ticketing/events/{event_id}/purchases/            - Buy tickets
    POST /api/v1/ticketing/ticket-groups/{id}/confirm-payment/     - Confirm payment
    POST /api/v1/ticketing/ticket-groups/{id}/refund/              - Request a refund
    POST /api/v1/ticketing/ticket-groups/{id}/refund/process/      - Approve/reject
    GET  /api/v1/ticketing/refund-requests/                        - Open requests
    POST /api/v1/ticketing/payouts/run/                            - Run payouts (admin)
    GET  /api/v1/ticketing/payouts/scheduler/                      - Scheduler status
    POST /api/v1/ticketing/payouts/scheduler/start/                - Start scheduler
    POST /api/v1/ticketing/payouts/scheduler/stop/                 - Stop scheduler

Security:
    - All endpoints require authentication
    - Refund authorization (buyer / organizer / admin) is enforced by RefundService
    - Payment confirmation is limited to the buyer or an admin
    - Payout and scheduler endpoints are staff-only

Errors raised by services are BaseApplicationError subclasses and are
rendered with their to_dict() body and http_status.
"""

from __future__ import annotations

import logging

from rest_framework import generics, status
from rest_framework.permissions import IsAdminUser, IsAuthenticated
from rest_framework.response import Response
from rest_framework.views import APIView

from core.exceptions import BaseApplicationError

from ticketing.scheduler import get_payout_scheduler
from ticketing.serializers import (
    PayoutRunSerializer,
    ProcessRefundSerializer,
    PurchaseCreateSerializer,
    RefundRequestSerializer,
    TicketGroupSerializer,
)
from ticketing.services import (
    HolderDetails,
    PurchaseService,
    RefundService,
)

logger = logging.getLogger(__name__)

# Purchase failures that are not a 400
PURCHASE_FAILURE_STATUS = {
    "EVENT_NOT_FOUND": status.HTTP_404_NOT_FOUND,
    "TICKET_NUMBER_CONFLICT": status.HTTP_409_CONFLICT,
}


class ApplicationErrorMixin:
    """Render BaseApplicationError as its to_dict() body."""

    def handle_exception(self, exc):
        if isinstance(exc, BaseApplicationError):
            logger.info(
                "Request failed with application error",
                extra={"error_code": exc.error_code, "http_status": exc.http_status},
            )
            return Response(exc.to_dict(), status=exc.http_status)
        return super().handle_exception(exc)


# =============================================================================
# Purchases
# =============================================================================


class PurchaseCreateView(ApplicationErrorMixin, APIView):
    """
    Create a pending ticket group for an event.

    POST /api/v1/ticketing/events/{event_id}/purchases/

    Returns:
        201 {"ticket_group": {...}, "client_secret": "pi_..._secret_..."}
    """

    permission_classes = [IsAuthenticated]

    def post(self, request, event_id):
        serializer = PurchaseCreateSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        holders = [
            HolderDetails(name=holder["name"], email=holder["email"])
            for holder in serializer.validated_data["holders"]
        ]
        result = PurchaseService.create_purchase(
            event_id=event_id,
            buyer=request.user,
            holders=holders,
        )
        if not result.success:
            response_status = PURCHASE_FAILURE_STATUS.get(
                result.error_code, status.HTTP_400_BAD_REQUEST
            )
            return Response(result.to_response(), status=response_status)

        return Response(
            {
                "ticket_group": TicketGroupSerializer(result.data.ticket_group).data,
                "client_secret": result.data.client_secret,
            },
            status=status.HTTP_201_CREATED,
        )


class ConfirmPaymentView(ApplicationErrorMixin, APIView):
    """
    Confirm the payment of a ticket group after client-side checkout.

    POST /api/v1/ticketing/ticket-groups/{id}/confirm-payment/
    """

    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        result = PurchaseService.confirm_payment(pk, actor=request.user)
        if not result.success:
            return Response(result.to_response(), status=status.HTTP_400_BAD_REQUEST)
        return Response(TicketGroupSerializer(result.data).data)


# =============================================================================
# Refunds
# =============================================================================


class RefundRequestView(ApplicationErrorMixin, APIView):
    """
    Request a refund for some or all admissions of a ticket group.

    POST /api/v1/ticketing/ticket-groups/{id}/refund/

    Request body:
        {"reason": "Cannot attend", "ticket_numbers": ["su_2"]}
    """

    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        serializer = RefundRequestSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        scope = RefundService.resolve_scope(serializer.validated_data["ticket_numbers"])
        group = RefundService.request_refund(
            pk,
            request.user,
            serializer.validated_data["reason"],
            scope,
        )
        return Response(TicketGroupSerializer(group).data)


class ProcessRefundView(ApplicationErrorMixin, APIView):
    """
    Approve or reject an open refund request.

    POST /api/v1/ticketing/ticket-groups/{id}/refund/process/

    Request body:
        {"action": "approve"} or {"action": "reject"}
    """

    permission_classes = [IsAuthenticated]

    def post(self, request, pk):
        serializer = ProcessRefundSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        group = RefundService.process_refund(
            pk,
            request.user,
            serializer.validated_data["action"],
        )
        return Response(TicketGroupSerializer(group).data)


class RefundRequestListView(generics.ListAPIView):
    """
    Open refund requests.

    GET /api/v1/ticketing/refund-requests/

    Admins see every request, organizers the requests for their events.
    """

    permission_classes = [IsAuthenticated]
    serializer_class = TicketGroupSerializer

    def get_queryset(self):
        return RefundService.list_pending_requests(self.request.user)


# =============================================================================
# Payouts
# =============================================================================


class PayoutRunView(ApplicationErrorMixin, APIView):
    """
    Run a payout batch immediately.

    POST /api/v1/ticketing/payouts/run/

    Request body:
        {"mode": "manual"}  (default) or {"mode": "automated"}

    Returns:
        200 with the batch result, 409 if a run is already in progress
    """

    permission_classes = [IsAdminUser]

    def post(self, request):
        serializer = PayoutRunSerializer(data=request.data)
        serializer.is_valid(raise_exception=True)

        batch = get_payout_scheduler().run_now(serializer.validated_data["mode"])
        return Response(batch.to_dict())


class PayoutSchedulerStatusView(APIView):
    """GET /api/v1/ticketing/payouts/scheduler/"""

    permission_classes = [IsAdminUser]

    def get(self, request):
        return Response(get_payout_scheduler().get_status())


class PayoutSchedulerStartView(APIView):
    """POST /api/v1/ticketing/payouts/scheduler/start/"""

    permission_classes = [IsAdminUser]

    def post(self, request):
        scheduler = get_payout_scheduler()
        started = scheduler.start()
        return Response({"started": started, **scheduler.get_status()})


class PayoutSchedulerStopView(APIView):
    """POST /api/v1/ticketing/payouts/scheduler/stop/"""

    permission_classes = [IsAdminUser]

    def post(self, request):
        scheduler = get_payout_scheduler()
        stopped = scheduler.stop()
        return Response({"stopped": stopped, **scheduler.get_status()})
