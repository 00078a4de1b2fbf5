"""
Waterfall allocator.

Applies payments to charges strictly in priority order, fully satisfying
each charge before moving to the next. The allocator is a pure function of
(charges, payments): nothing is stored, so remaining and required amounts
can be recomputed from the payment history at any time and always agree.

Algorithm:
    1. Sort charges by (priority_index, code)
    2. Sort payments by created_at ascending (oldest money first), id as tie-break
    3. For each SUCCEEDED or PROCESSING payment, normalize its kind to a bucket
       and walk that bucket's charges:
           open = amount - posted - pending
           take = min(open, remaining)
       SUCCEEDED money is credited to posted, PROCESSING money to pending.
    4. Stop once the payment is exhausted.

Invariant:
    posted + pending <= amount_cents for every charge, for every input.
    Money beyond the open total of its bucket is reported as unapplied.

Usage:
    from payments.ledger.allocator import allocate

    allocation = allocate(charges, payments)
    allocation.posted_by_key["...:operating:key_fee"]    # 10000
    allocation.remaining_for(charge)                       # open cents
"""

from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any

from payments.charges import Charge, charge_sort_key
from payments.ledger.types import Split
from payments.state_machines.states import (
    ALLOCATABLE_STATUSES,
    Bucket,
    PaymentStatus,
    bucket_for_kind,
)

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


@dataclass
class Allocation:
    """
    Result of allocating a payment history against a charge schedule.

    Attributes:
        charges: Charges in waterfall order
        posted_by_key: charge_key → cents settled (succeeded money)
        pending_by_key: charge_key → cents in flight (processing money)
        splits_by_payment: payment id → splits applied from that payment
        unapplied_by_payment: payment id → cents with no open charge left
    """

    charges: list[Charge]
    posted_by_key: dict[str, int] = field(default_factory=dict)
    pending_by_key: dict[str, int] = field(default_factory=dict)
    splits_by_payment: dict[str, list[Split]] = field(default_factory=dict)
    unapplied_by_payment: dict[str, int] = field(default_factory=dict)

    def posted_for(self, charge: Charge) -> int:
        return self.posted_by_key.get(charge.charge_key, 0)

    def pending_for(self, charge: Charge) -> int:
        return self.pending_by_key.get(charge.charge_key, 0)

    def remaining_for(self, charge: Charge) -> int:
        """Cents still open on a charge (neither posted nor pending)."""
        return charge.amount_cents - self.posted_for(charge) - self.pending_for(charge)

    def committed_by_key(self) -> dict[str, int]:
        """posted + pending per charge."""
        return {
            charge.charge_key: self.posted_for(charge) + self.pending_for(charge)
            for charge in self.charges
        }

    def posted_total(self, bucket: str) -> int:
        return sum(self.posted_for(c) for c in self.charges if c.bucket == bucket)

    def pending_total(self, bucket: str) -> int:
        return sum(self.pending_for(c) for c in self.charges if c.bucket == bucket)

    def remaining_total(self, bucket: str) -> int:
        return sum(self.remaining_for(c) for c in self.charges if c.bucket == bucket)

    def splits_for(self, payment_id: Any) -> list[Split]:
        return list(self.splits_by_payment.get(str(payment_id), []))


def _payment_sort_key(payment: Any) -> tuple[datetime, str]:
    return (getattr(payment, "created_at", None) or _EPOCH, str(payment.id))


def _payment_bucket(payment: Any) -> str:
    return bucket_for_kind(getattr(payment, "kind", None))


def allocate(charges: Sequence[Charge], payments: Iterable[Any]) -> Allocation:
    """
    Allocate payments to charges with the waterfall.

    Args:
        charges: Charge schedule (any order; sorted here)
        payments: Objects with id, kind, status, amount_cents and created_at
                  (Payment rows, or lightweight stand-ins in tests)

    Returns:
        Allocation with posted/pending maps and per-payment splits
    """
    ordered_charges = sorted(charges, key=charge_sort_key)
    allocation = Allocation(charges=ordered_charges)
    by_bucket: dict[str, list[Charge]] = {Bucket.OPERATING: [], Bucket.DEPOSIT: []}
    for charge in ordered_charges:
        by_bucket.setdefault(charge.bucket, []).append(charge)

    for payment in sorted(payments, key=_payment_sort_key):
        if payment.status not in ALLOCATABLE_STATUSES:
            continue

        remaining = int(payment.amount_cents or 0)
        if remaining <= 0:
            continue

        settled = payment.status == PaymentStatus.SUCCEEDED
        target = allocation.posted_by_key if settled else allocation.pending_by_key
        splits: list[Split] = []

        for charge in by_bucket.get(_payment_bucket(payment), []):
            if remaining <= 0:
                break
            open_cents = allocation.remaining_for(charge)
            if open_cents <= 0:
                continue
            take = min(open_cents, remaining)
            target[charge.charge_key] = target.get(charge.charge_key, 0) + take
            remaining -= take
            splits.append(Split(charge_key=charge.charge_key, applied_cents=take))

        payment_id = str(payment.id)
        allocation.splits_by_payment[payment_id] = splits
        if remaining > 0:
            allocation.unapplied_by_payment[payment_id] = remaining

    return allocation
