"""
Amount policy for starting payments.

Decides which requested amounts a tenant may start a payment for. All
remaining amounts are net of posted AND pending money, so an in-flight
bank debit is never asked for twice.

Operating bucket, any of:
    - the remaining operating total of a milestone step
    - the remaining amount of a single operating line item
    - a whole-dollar amount in the top-up band
      [round(min(remaining, cap)), floor(remaining)]

Deposit bucket, either of:
    - the deposit gate amount, min(remaining, deposit threshold)
    - the full remaining deposit

Usage:
    from payments.policy import build_policy

    policy = build_policy(charges, allocation, committed_progress, deposit_min, cap)
    if not policy.allows(Bucket.OPERATING, 50000):
        details = policy.describe(Bucket.OPERATING)
"""

from __future__ import annotations

from collections.abc import Sequence
from dataclasses import dataclass, field
from typing import Any

from payments.charges import Charge
from payments.ledger.allocator import Allocation
from payments.progress import PaymentProgress
from payments.state_machines.states import Bucket

DEFAULT_MIN_TOP_UP_CENTS = 100000


def round_to_dollar(cents: int) -> int:
    """Nearest whole dollar, halves rounding up."""
    return ((cents + 50) // 100) * 100


def floor_to_dollar(cents: int) -> int:
    return (cents // 100) * 100


@dataclass(frozen=True)
class AmountPolicy:
    """
    Allowed amounts for one application at one point in time.

    Attributes:
        operating_remaining: Open operating cents (net of posted + pending)
        deposit_remaining: Open deposit cents (net of posted + pending)
        operating_exact: Step and line-item remainders accepted as-is
        min_top_up_cents / max_top_up_cents: Whole-dollar top-up band
        deposit_required: Deposit gate amount
    """

    operating_remaining: int
    deposit_remaining: int
    min_top_up_cents: int
    max_top_up_cents: int
    deposit_required: int
    operating_exact: tuple[int, ...] = field(default_factory=tuple)

    def allowed_deposit_amounts(self) -> list[int]:
        return sorted({a for a in (self.deposit_required, self.deposit_remaining) if a > 0})

    def allows(self, bucket: str, amount_cents: int) -> bool:
        if amount_cents <= 0:
            return False
        if bucket == Bucket.DEPOSIT:
            return amount_cents in self.allowed_deposit_amounts()
        if amount_cents in self.operating_exact:
            return True
        return (
            amount_cents % 100 == 0
            and self.min_top_up_cents <= amount_cents <= self.max_top_up_cents
        )

    def describe(self, bucket: str) -> dict[str, Any]:
        """Allowed amounts for a bucket, for error details."""
        if bucket == Bucket.DEPOSIT:
            return {
                "bucket": str(bucket),
                "required_cents": self.deposit_required,
                "remaining_cents": self.deposit_remaining,
                "allowed_cents": self.allowed_deposit_amounts(),
            }
        return {
            "bucket": str(bucket),
            "min_top_up_cents": self.min_top_up_cents,
            "max_top_up_cents": self.max_top_up_cents,
            "exact_cents": list(self.operating_exact),
        }


def build_policy(
    charges: Sequence[Charge],
    allocation: Allocation,
    committed_progress: PaymentProgress,
    deposit_min_cents: int | None,
    top_up_cap_cents: int = DEFAULT_MIN_TOP_UP_CENTS,
) -> AmountPolicy:
    """
    Build the policy from an allocation.

    Args:
        charges: Charge schedule
        allocation: Allocation over the payment history
        committed_progress: Step progress computed from posted + pending
        deposit_min_cents: Deposit countersign threshold (0/None: no gate)
        top_up_cap_cents: Ceiling of the minimum operating top-up
    """
    operating_remaining = max(allocation.remaining_total(Bucket.OPERATING), 0)
    deposit_remaining = max(allocation.remaining_total(Bucket.DEPOSIT), 0)

    line_items = [
        allocation.remaining_for(c) for c in charges if c.bucket == Bucket.OPERATING
    ]
    step_totals = [step.operating_remaining for step in committed_progress.steps]
    exact = tuple(sorted({a for a in line_items + step_totals if a > 0}))

    threshold = int(deposit_min_cents or 0)
    deposit_required = min(deposit_remaining, threshold) if threshold > 0 else deposit_remaining

    return AmountPolicy(
        operating_remaining=operating_remaining,
        deposit_remaining=deposit_remaining,
        min_top_up_cents=round_to_dollar(min(operating_remaining, top_up_cap_cents)),
        max_top_up_cents=floor_to_dollar(operating_remaining),
        deposit_required=deposit_required,
        operating_exact=exact,
    )
