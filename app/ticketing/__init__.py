"""
Ticketing app: ticket payments, refunds and organizer payouts.

This app handles:
- Ticket purchases and Stripe payment confirmation
- The refund workflow (request, approve, reject)
- Batch payout reconciliation to organizers
- The daily payout scheduler

Usage:
    from ticketing.services import RefundService, PayoutReconciliationService

    group = RefundService.request_refund(group_id, user, reason, scope)
    batch = PayoutReconciliationService.run_payouts("manual")
"""
