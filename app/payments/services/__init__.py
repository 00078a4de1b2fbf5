"""
Payment services.

This module provides:
- ObligationService: Charges, allocation, progress and amount policy
- PaymentIntentService: Starts, reuses and confirms payment intents
- PaymentReconciler: Applies gateway intent status to Payment rows
- GateEvaluator: Advances the application payment gate

Usage:
    from payments.services import PaymentIntentService

    result = PaymentIntentService.start_payment(
        application,
        bucket="operating",
        amount_cents=410000,
    )
"""

from payments.services.gate_evaluator import (
    GATES_SATISFIED_EVENT,
    GateDecision,
    GateEvaluator,
)
from payments.services.intent_service import IntentHandle, PaymentIntentService
from payments.services.obligations import ObligationService, ObligationSnapshot
from payments.services.reconciler import (
    PaymentReconciler,
    ReconcileAction,
    ReconciliationOutcome,
)

__all__ = [
    "GATES_SATISFIED_EVENT",
    "GateDecision",
    "GateEvaluator",
    "IntentHandle",
    "ObligationService",
    "ObligationSnapshot",
    "PaymentIntentService",
    "PaymentReconciler",
    "ReconcileAction",
    "ReconciliationOutcome",
]
