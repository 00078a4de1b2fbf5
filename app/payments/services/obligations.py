"""
Obligation snapshot service.

One canonical read model of what an application owes: charges, the
waterfall allocation, milestone progress and the amount policy are all
computed together from the same payment history, so callers never mix
figures from different moments.

Usage:
    from payments.services.obligations import ObligationService

    snapshot = ObligationService.snapshot(application)
    snapshot.progress.current_step
    snapshot.policy.allows(Bucket.OPERATING, 100000)
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from django.conf import settings

from core.services import BaseService
from payments.charges import Charge
from payments.ledger.allocator import Allocation
from payments.ledger.services import LedgerService
from payments.policy import DEFAULT_MIN_TOP_UP_CENTS, AmountPolicy, build_policy
from payments.progress import PaymentProgress, calculate_progress
from payments.state_machines.states import Bucket

if TYPE_CHECKING:
    from applications.models import Application


@dataclass
class ObligationSnapshot:
    """
    Everything known about an application's obligations at one instant.

    Attributes:
        charges: Charge schedule in waterfall order
        allocation: Posted/pending per charge
        progress: Milestones counting settled money only
        committed_progress: Milestones counting settled and in-flight money
        policy: Amounts a new payment may be started for
        upfront_min_cents / deposit_min_cents: Countersign thresholds
    """

    application_id: Any
    charges: list[Charge]
    allocation: Allocation
    progress: PaymentProgress
    committed_progress: PaymentProgress
    policy: AmountPolicy
    upfront_min_cents: int
    deposit_min_cents: int

    def due_total(self, bucket: str) -> int:
        return sum(c.amount_cents for c in self.charges if c.bucket == bucket)

    def paid_total(self, bucket: str) -> int:
        return self.allocation.posted_total(bucket)

    def as_dict(self) -> dict[str, Any]:
        return {
            "application_id": str(self.application_id),
            "charges": [
                {
                    "charge_key": c.charge_key,
                    "bucket": c.bucket,
                    "code": c.code,
                    "label": c.label,
                    "amount_cents": c.amount_cents,
                    "due_date": c.due_date.isoformat() if c.due_date else None,
                    "posted_cents": self.allocation.posted_for(c),
                    "pending_cents": self.allocation.pending_for(c),
                    "remaining_cents": self.allocation.remaining_for(c),
                }
                for c in self.charges
            ],
            "totals": {
                bucket: {
                    "due_cents": self.due_total(bucket),
                    "posted_cents": self.allocation.posted_total(bucket),
                    "pending_cents": self.allocation.pending_total(bucket),
                    "remaining_cents": self.allocation.remaining_total(bucket),
                }
                for bucket in (Bucket.OPERATING, Bucket.DEPOSIT)
            },
            "progress": self.progress.as_dict(),
        }


class ObligationService(BaseService):
    """Builds ObligationSnapshot for an application."""

    @classmethod
    def snapshot(cls, application: Application) -> ObligationSnapshot:
        allocation = LedgerService.allocation_for(application)
        charges = allocation.charges
        upfront_min, deposit_min = application.countersign_thresholds()

        progress = calculate_progress(charges, allocation.posted_by_key, upfront_min, deposit_min)
        committed_progress = calculate_progress(
            charges, allocation.committed_by_key(), upfront_min, deposit_min
        )
        policy = build_policy(
            charges,
            allocation,
            committed_progress,
            deposit_min,
            getattr(settings, "PAYMENTS_MIN_TOP_UP_CENTS", DEFAULT_MIN_TOP_UP_CENTS),
        )
        return ObligationSnapshot(
            application_id=application.id,
            charges=charges,
            allocation=allocation,
            progress=progress,
            committed_progress=committed_progress,
            policy=policy,
            upfront_min_cents=upfront_min,
            deposit_min_cents=deposit_min,
        )
