"""
Payments app configuration.

This app provides:
- Charge schedule and waterfall allocation over Payment rows
- Settlement ledger (exactly-once per payment key)
- Stripe PaymentIntent lifecycle and webhook reconciliation
- Payment gate evaluation for rental applications
"""

from django.apps import AppConfig


class PaymentsConfig(AppConfig):
    """Configuration for the payments application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "payments"
    verbose_name = "Payments"
