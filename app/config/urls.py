"""
Root URL configuration for the ticketing backend.

URL Structure:
    /admin/                                   - Django admin interface
    /api/v1/ticketing/                        - Ticketing endpoints
        events/{id}/purchases/                - Buy tickets for an event
        ticket-groups/{id}/confirm-payment/   - Confirm a completed checkout
        ticket-groups/{id}/refund/            - Request a refund (buyer or admin)
        ticket-groups/{id}/refund/process/    - Approve or reject a refund
        refund-requests/                      - Pending refund requests
        payouts/run/                          - Run a payout batch now (admin)
        payouts/scheduler/                    - Scheduler status (admin)
        payouts/scheduler/start/              - Start the daily payout timer
        payouts/scheduler/stop/               - Stop the daily payout timer
        webhooks/stripe/                      - Stripe webhook endpoint (POST)
"""

from django.contrib import admin
from django.urls import include, path

api_v1_patterns = [
    path("ticketing/", include("ticketing.urls")),
]

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Ticketing Admin"
admin.site.site_title = "Ticketing Admin"
admin.site.index_title = "Payments, refunds and payouts"
