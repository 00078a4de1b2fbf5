"""
State enums for payment models.

This module defines the enums used by payment models with django-fsm.
These are Django TextChoices for database storage and admin integration.

State Machines Overview:

Payment States:
    created → processing → succeeded
    created/processing → failed
    created/processing/failed → canceled
    failed → processing / succeeded (gateway retried the debit)
    canceled → processing / succeeded (superseded intent the gateway did not cancel)
    succeeded → returned (bank debit reversed after settlement)

WebhookEvent States:
    pending → processing → processed
    pending → processing → failed (can retry)
"""

from django.db import models


class PaymentStatus(models.TextChoices):
    """
    States for the Payment model lifecycle.

    SUCCEEDED is the highest-priority state: a late PROCESSING, FAILED or
    CANCELED event never downgrades it.

    Allocation:
        SUCCEEDED money is posted against charges
        PROCESSING money is pending against charges
        everything else is ignored
    """

    CREATED = "created", "Created"
    PROCESSING = "processing", "Processing"
    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"
    CANCELED = "canceled", "Canceled"
    RETURNED = "returned", "Returned"


class PaymentKind(models.TextChoices):
    """
    What a payment was collected for.

    Closed set. Legacy or unknown values are mapped by normalize_kind()
    at the ingestion boundary, never compared ad hoc.
    """

    OPERATING = "operating", "Operating"
    DEPOSIT = "deposit", "Security Deposit"
    RENT = "rent", "Rent"
    FEE = "fee", "Fee"


class Bucket(models.TextChoices):
    """
    Top-level fund category a charge or payment belongs to.

    OPERATING money goes to the firm's operating account; DEPOSIT money
    is escrowed. The two are never waterfall-mixed.
    """

    OPERATING = "operating", "Operating"
    DEPOSIT = "deposit", "Deposit"


class WebhookEventStatus(models.TextChoices):
    """
    Processing status for WebhookEvent.

    State Flow:
        PENDING → PROCESSING → PROCESSED
        PENDING → PROCESSING → FAILED (can retry)
    """

    PENDING = "pending", "Pending"
    PROCESSING = "processing", "Processing"
    PROCESSED = "processed", "Processed"
    FAILED = "failed", "Failed"


# Statuses whose money counts toward charges
ALLOCATABLE_STATUSES: frozenset[str] = frozenset(
    {PaymentStatus.SUCCEEDED, PaymentStatus.PROCESSING}
)

# Gateway intent statuses that still await the payer
CONFIRMABLE_INTENT_STATUSES: frozenset[str] = frozenset(
    {"requires_payment_method", "requires_confirmation", "requires_action"}
)

# Gateway intent statuses that need no further confirmation
IN_FLIGHT_INTENT_STATUSES: frozenset[str] = frozenset(
    {"processing", "succeeded", "requires_capture"}
)

_LEGACY_KINDS = {
    "upfront": PaymentKind.OPERATING,
}


def normalize_kind(raw: str | None) -> PaymentKind:
    """
    Map a stored or incoming kind string onto PaymentKind.

    Legacy 'upfront' and anything unrecognised become OPERATING, so no
    payment is ever silently dropped from allocation.
    """
    value = (raw or "").strip().lower()
    if value in _LEGACY_KINDS:
        return _LEGACY_KINDS[value]
    try:
        return PaymentKind(value)
    except ValueError:
        return PaymentKind.OPERATING


def bucket_for_kind(raw: str | None) -> Bucket:
    """Return the allocation bucket for a payment kind (deposit or operating)."""
    if normalize_kind(raw) == PaymentKind.DEPOSIT:
        return Bucket.DEPOSIT
    return Bucket.OPERATING


__all__ = [
    "ALLOCATABLE_STATUSES",
    "Bucket",
    "CONFIRMABLE_INTENT_STATUSES",
    "IN_FLIGHT_INTENT_STATUSES",
    "PaymentKind",
    "PaymentStatus",
    "WebhookEventStatus",
    "bucket_for_kind",
    "normalize_kind",
]
