"""
State enums and helpers for payment models.

This module defines the state enums used by payment models with django-fsm.
"""

from payments.state_machines.states import (
    ALLOCATABLE_STATUSES,
    CONFIRMABLE_INTENT_STATUSES,
    IN_FLIGHT_INTENT_STATUSES,
    Bucket,
    PaymentKind,
    PaymentStatus,
    WebhookEventStatus,
    bucket_for_kind,
    normalize_kind,
)

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
