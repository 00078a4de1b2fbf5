"""
Step progress calculator.

Splits an application's obligations into three named milestones and
reports how much of each is paid:

    1. SIGNING         countersign minimums (capped at the upfront totals)
    2. MOVE_IN         the rest of the upfront operating items and deposit
    3. RECURRING_RENT  monthly rent lines

Paid money per bucket is consumed strictly in step order, so step 2 never
shows progress while step 1 still has a balance.

Usage:
    from payments.progress import calculate_progress

    progress = calculate_progress(charges, allocation.posted_by_key, 410000, 250000)
    progress.current_step          # PaymentStep.MOVE_IN
    progress.step(PaymentStep.SIGNING).met
"""

from __future__ import annotations

from collections.abc import Mapping, Sequence
from dataclasses import dataclass, field
from enum import IntEnum
from typing import Any

from payments.charges import Charge
from payments.state_machines.states import Bucket


class PaymentStep(IntEnum):
    SIGNING = 1
    MOVE_IN = 2
    RECURRING_RENT = 3
    COMPLETE = 4


@dataclass
class StepProgress:
    """Totals for one milestone. All amounts in cents."""

    step: PaymentStep
    operating_total: int = 0
    deposit_total: int = 0
    operating_paid: int = 0
    deposit_paid: int = 0

    @property
    def operating_remaining(self) -> int:
        return self.operating_total - self.operating_paid

    @property
    def deposit_remaining(self) -> int:
        return self.deposit_total - self.deposit_paid

    @property
    def remaining_total(self) -> int:
        return self.operating_remaining + self.deposit_remaining

    @property
    def total(self) -> int:
        return self.operating_total + self.deposit_total

    @property
    def met(self) -> bool:
        return self.remaining_total <= 0

    def as_dict(self) -> dict[str, Any]:
        return {
            "step": int(self.step),
            "operating_total": self.operating_total,
            "deposit_total": self.deposit_total,
            "operating_paid": self.operating_paid,
            "deposit_paid": self.deposit_paid,
            "operating_remaining": self.operating_remaining,
            "deposit_remaining": self.deposit_remaining,
            "remaining_total": self.remaining_total,
            "met": self.met,
        }


@dataclass
class PaymentProgress:
    """Progress across all milestones."""

    steps: list[StepProgress] = field(default_factory=list)

    def step(self, step: PaymentStep) -> StepProgress:
        return next(s for s in self.steps if s.step == step)

    @property
    def current_step(self) -> PaymentStep:
        """Lowest step with money outstanding, else COMPLETE."""
        for step in self.steps:
            if step.remaining_total > 0:
                return step.step
        return PaymentStep.COMPLETE

    def as_dict(self) -> dict[str, Any]:
        return {
            "current_step": int(self.current_step),
            "steps": [step.as_dict() for step in self.steps],
        }


def _consume(available: int, total: int) -> tuple[int, int]:
    """Take up to total from available; return (taken, left)."""
    taken = min(max(available, 0), total)
    return taken, available - taken


def calculate_progress(
    charges: Sequence[Charge],
    paid_by_key: Mapping[str, int],
    upfront_min_cents: int | None,
    deposit_min_cents: int | None,
) -> PaymentProgress:
    """
    Compute milestone progress.

    Args:
        charges: Charge schedule for the application
        paid_by_key: charge_key -> cents counted as paid (posted, or
                     posted + pending for affordability views)
        upfront_min_cents: Operating countersign threshold
        deposit_min_cents: Deposit countersign threshold

    Returns:
        PaymentProgress with SIGNING, MOVE_IN and RECURRING_RENT steps
    """
    upfront_operating = sum(
        c.amount_cents for c in charges if c.bucket == Bucket.OPERATING and c.is_upfront
    )
    deposit_total = sum(c.amount_cents for c in charges if c.bucket == Bucket.DEPOSIT)
    rent_total = sum(c.amount_cents for c in charges if c.bucket == Bucket.OPERATING and c.is_rent)

    operating_paid = sum(
        paid_by_key.get(c.charge_key, 0) for c in charges if c.bucket == Bucket.OPERATING
    )
    deposit_paid = sum(
        paid_by_key.get(c.charge_key, 0) for c in charges if c.bucket == Bucket.DEPOSIT
    )

    signing = StepProgress(
        step=PaymentStep.SIGNING,
        operating_total=min(max(int(upfront_min_cents or 0), 0), upfront_operating),
        deposit_total=min(max(int(deposit_min_cents or 0), 0), deposit_total),
    )
    move_in = StepProgress(
        step=PaymentStep.MOVE_IN,
        operating_total=upfront_operating - signing.operating_total,
        deposit_total=deposit_total - signing.deposit_total,
    )
    rent = StepProgress(step=PaymentStep.RECURRING_RENT, operating_total=rent_total)

    for step in (signing, move_in, rent):
        step.operating_paid, operating_paid = _consume(operating_paid, step.operating_total)
        step.deposit_paid, deposit_paid = _consume(deposit_paid, step.deposit_total)

    return PaymentProgress(steps=[signing, move_in, rent])
