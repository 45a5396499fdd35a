"""
URL configuration for the ticketing app.

Mounted at /api/v1/ticketing/ by config.urls.
"""

from django.urls import path

from ticketing import views
from ticketing.webhooks import stripe_webhook

app_name = "ticketing"

urlpatterns = [
    path(
        "events/<uuid:event_id>/purchases/",
        views.PurchaseCreateView.as_view(),
        name="purchase-create",
    ),
    path(
        "ticket-groups/<uuid:pk>/confirm-payment/",
        views.ConfirmPaymentView.as_view(),
        name="confirm-payment",
    ),
    path(
        "ticket-groups/<uuid:pk>/refund/",
        views.RefundRequestView.as_view(),
        name="refund-request",
    ),
    path(
        "ticket-groups/<uuid:pk>/refund/process/",
        views.ProcessRefundView.as_view(),
        name="refund-process",
    ),
    path(
        "refund-requests/",
        views.RefundRequestListView.as_view(),
        name="refund-request-list",
    ),
    path("payouts/run/", views.PayoutRunView.as_view(), name="payout-run"),
    path(
        "payouts/scheduler/",
        views.PayoutSchedulerStatusView.as_view(),
        name="payout-scheduler-status",
    ),
    path(
        "payouts/scheduler/start/",
        views.PayoutSchedulerStartView.as_view(),
        name="payout-scheduler-start",
    ),
    path(
        "payouts/scheduler/stop/",
        views.PayoutSchedulerStopView.as_view(),
        name="payout-scheduler-stop",
    ),
    path("webhooks/stripe/", stripe_webhook, name="stripe-webhook"),
]
