"""
Ledger - obligation tracking and settlement bookkeeping.

Charges are derived from the payment plan and never stored; what they owe
is recomputed by the waterfall allocator from the payment history. The
only persisted ledger state is the append-only LedgerEntry, one per
settlement.

Public API:
    Allocator:
        allocate - Waterfall payments over charges
        Allocation - posted/pending per charge and per-payment splits

    Models:
        LedgerEntry - A recorded settlement

    Service:
        LedgerService - apply_settlement (exactly once per payment key)

    Types:
        Money - Monetary amount in cents
        Split - Part of a payment applied to one charge
        SettlementResult - Outcome of apply_settlement

Usage:
    from payments.ledger import LedgerService, allocate

    allocation = allocate(charges, payments)
    result = LedgerService.apply_settlement(payment, payment.provider_intent_id)
"""

from .allocator import Allocation, allocate
from .models import LedgerEntry
from .services import LedgerService
from .types import Money, SettlementResult, Split

__all__ = [
    # Allocator
    "Allocation",
    "allocate",
    # Models
    "LedgerEntry",
    # Service
    "LedgerService",
    # Types
    "Money",
    "SettlementResult",
    "Split",
]
