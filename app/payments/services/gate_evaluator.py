"""
Gate evaluator service.

Recomputes what an application has paid and owes, asks the rules engine
whether the payment gate is now satisfied, and persists a forward status
change. It is the only code in the payments app that writes
Application.status.

Safe to call any number of times: the status write is guarded by the
status that was read, so concurrent or repeated evaluations produce at
most one transition and one timeline event.

Usage:
    from payments.services.gate_evaluator import GateEvaluator

    decision = GateEvaluator.recompute_and_maybe_advance(app.id, app.firm_id)
    if decision.changed:
        logger.info(f"{decision.current_status} -> {decision.next_status}")
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

from django.db import transaction
from django.db.models import Sum
from django.utils import timezone

from applications.models import Application, ApplicationEvent
from applications.rules import (
    Action,
    GuardContext,
    MinRule,
    Role,
    compute_next_state,
    derive_min_rules,
)
from applications.states import is_forward_transition
from core.exceptions import NotFoundError
from core.services import BaseService
from payments.charges import build_charges
from payments.models import Payment
from payments.state_machines import Bucket, PaymentStatus, bucket_for_kind

if TYPE_CHECKING:
    from uuid import UUID

GATES_SATISFIED_EVENT = "payments.gates_satisfied"


@dataclass
class GateDecision:
    """
    Outcome of a gate evaluation.

    Attributes:
        current_status: Status read before evaluating
        next_status: Status the rules engine answered
        changed: True only if this call persisted the transition
        due: bucket -> cents still owed (charges minus settled money)
        paid: bucket -> settled cents
        min_rules: Countersign rules evaluated
    """

    current_status: str
    next_status: str
    changed: bool
    due: dict[str, int] = field(default_factory=dict)
    paid: dict[str, int] = field(default_factory=dict)
    min_rules: list[MinRule] = field(default_factory=list)

    def as_metadata(self) -> dict[str, Any]:
        return {
            "from": self.current_status,
            "to": self.next_status,
            "due": self.due,
            "paid": self.paid,
            "min_rules": [rule.as_dict() for rule in self.min_rules],
        }


class GateEvaluator(BaseService):
    """Advances applications through the payment gate."""

    @classmethod
    def paid_totals(cls, application_id: UUID | str, firm_id: UUID | str) -> dict[str, int]:
        """Sum succeeded payments per bucket."""
        totals = {Bucket.OPERATING.value: 0, Bucket.DEPOSIT.value: 0}
        rows = (
            Payment.objects.filter(
                application_id=application_id,
                firm_id=firm_id,
                status=PaymentStatus.SUCCEEDED,
            )
            .values("kind")
            .annotate(total=Sum("amount_cents"))
        )
        for row in rows:
            bucket = bucket_for_kind(row["kind"]).value
            totals[bucket] += int(row["total"] or 0)
        return totals

    @classmethod
    def due_totals(cls, application: Application, paid: dict[str, int]) -> dict[str, int]:
        charges = build_charges(application.id, application.get_payment_plan())
        due = {}
        for bucket in (Bucket.OPERATING.value, Bucket.DEPOSIT.value):
            owed = sum(c.amount_cents for c in charges if c.bucket == bucket)
            due[bucket] = max(owed - paid.get(bucket, 0), 0)
        return due

    @classmethod
    def recompute_and_maybe_advance(
        cls,
        application_id: UUID | str,
        firm_id: UUID | str,
    ) -> GateDecision:
        """
        Evaluate the payment gate and advance the application if satisfied.

        Args:
            application_id: Application to evaluate
            firm_id: Owning firm (applications of other firms are not found)

        Returns:
            GateDecision; changed=False when nothing moved

        Raises:
            NotFoundError: No such application for the firm
        """
        logger = cls.get_logger()

        application = (
            Application.objects.select_related("payment_plan")
            .filter(id=application_id, firm_id=firm_id)
            .first()
        )
        if application is None:
            raise NotFoundError(
                f"Application {application_id} not found",
                error_code="APPLICATION_NOT_FOUND",
                details={"application_id": str(application_id), "firm_id": str(firm_id)},
            )

        current = application.status
        paid = cls.paid_totals(application.id, firm_id)
        due = cls.due_totals(application, paid)
        min_rules = derive_min_rules(*application.countersign_thresholds())

        next_status = compute_next_state(
            current,
            Action.PAYMENT_UPDATED,
            Role.SYSTEM,
            GuardContext(min_rules=min_rules, payment_totals=paid),
        )
        decision = GateDecision(
            current_status=current,
            next_status=next_status,
            changed=False,
            due=due,
            paid=paid,
            min_rules=min_rules,
        )

        if next_status == current or not is_forward_transition(current, next_status):
            return decision

        with transaction.atomic():
            updated = Application.objects.filter(id=application.id, status=current).update(
                status=next_status,
                updated_at=timezone.now(),
            )
            if updated:
                ApplicationEvent.objects.create(
                    application_id=application.id,
                    event=GATES_SATISFIED_EVENT,
                    actor=Role.SYSTEM,
                    metadata=decision.as_metadata(),
                )

        decision.changed = bool(updated)
        if decision.changed:
            logger.info(
                f"Application advanced {current} -> {next_status}",
                extra={"application_id": str(application.id), "paid": paid, "due": due},
            )
        else:
            logger.info(
                "Application status moved concurrently; gate not applied",
                extra={"application_id": str(application.id), "expected_status": current},
            )
        return decision
