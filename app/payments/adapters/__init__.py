"""
Payment adapters for external services.

All Stripe API calls go through StripeAdapter so that error handling,
timeouts, idempotency and logging stay consistent.

Usage:
    from payments.adapters import StripeAdapter, CreatePaymentIntentParams

    result = StripeAdapter.create_payment_intent(
        CreatePaymentIntentParams(
            amount_cents=250000,
            currency="usd",
            idempotency_key="pay:6f1c...:deposit:deposit_minimum:a1b2",
        )
    )
"""

from payments.adapters.stripe_adapter import (
    ChargeResult,
    CreatePaymentIntentParams,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    StripeAdapter,
    backoff_delay,
    is_retryable_stripe_error,
    settlement_rail,
)

__all__ = [
    "ChargeResult",
    "CreatePaymentIntentParams",
    "IdempotencyKeyGenerator",
    "PaymentIntentResult",
    "StripeAdapter",
    "backoff_delay",
    "is_retryable_stripe_error",
    "settlement_rail",
]
