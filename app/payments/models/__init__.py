"""
Payment domain models.

This module contains all payment-related models:
- Payment: One gateway payment attempt for an application
- WebhookEvent: Stripe webhook event tracking for idempotent processing
- LedgerEntry: Recorded settlement (re-exported from payments.ledger)
"""

from payments.ledger.models import LedgerEntry
from payments.models.payment import Payment
from payments.models.webhook_event import WebhookEvent

__all__ = [
    "LedgerEntry",
    "Payment",
    "WebhookEvent",
]
