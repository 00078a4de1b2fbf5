"""
Application status rules engine.

Pure functions deciding the next application status for an action taken
by a role. Nothing here touches the database: callers gather the guard
context, ask compute_next_state, and persist the answer themselves.

Transition Table:
    submit                draft → submitted              tenant/system, members acknowledged
    admin_screen          submitted → admin_screened     admin
    approve_high          submitted/admin_screened → approved_high   manager
    set_terms             approved_high → terms_set      admin/manager, valid terms
    system_min_ready      terms_set → min_due            system, at least one min rule
                          terms_set → countersigned      system, no min rules
    payment_updated       min_due → min_paid             system, all min rules met
    signatures_completed  min_paid → countersigned       system, two or more signatures
    tick_clock            countersigned → occupied       system, lease start reached
    reject                submitted → rejected           manager
    withdraw              submitted → withdrawn          tenant

Anything not in the table leaves the status unchanged.

Usage:
    from applications.rules import Action, GuardContext, Role, compute_next_state

    next_status = compute_next_state(
        application.status,
        Action.PAYMENT_UPDATED,
        Role.SYSTEM,
        GuardContext(min_rules=rules, payment_totals={"operating": 410000}),
    )
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime

from django.db import models
from django.utils import timezone

from applications.states import ApplicationStatus
from payments.state_machines.states import Bucket


class Action(models.TextChoices):
    """Actions that may move an application between statuses."""

    SUBMIT = "submit", "Submit"
    ADMIN_SCREEN = "admin_screen", "Admin Screen"
    APPROVE_HIGH = "approve_high", "Approve"
    SET_TERMS = "set_terms", "Set Terms"
    SYSTEM_MIN_READY = "system_min_ready", "Minimums Ready"
    PAYMENT_UPDATED = "payment_updated", "Payment Updated"
    SIGNATURES_COMPLETED = "signatures_completed", "Signatures Completed"
    TICK_CLOCK = "tick_clock", "Clock Tick"
    REJECT = "reject", "Reject"
    WITHDRAW = "withdraw", "Withdraw"


class Role(models.TextChoices):
    """Who is taking an action."""

    TENANT = "tenant", "Tenant"
    ADMIN = "admin", "Admin"
    MANAGER = "manager", "Manager"
    SYSTEM = "system", "System"


@dataclass(frozen=True)
class MinRule:
    """A countersign minimum for one bucket."""

    bucket: str
    min_cents: int

    def as_dict(self) -> dict[str, int | str]:
        return {"bucket": self.bucket, "min_cents": self.min_cents}


@dataclass(frozen=True)
class Terms:
    """Lease terms snapshot supplied when terms are set."""

    address: str
    rent_cents: int
    start_date: date | None
    end_date: date | None = None
    deposit_cents: int | None = None


@dataclass
class GuardContext:
    """
    Facts known at call time.

    Only the fields relevant to the action need to be filled in;
    missing numbers are treated as zero.
    """

    members_ack: bool = False
    terms: Terms | None = None
    min_rules: list[MinRule] | None = None
    signatures_count: int = 0
    payment_totals: dict[str, int] = field(default_factory=dict)
    now: datetime | None = None


ALLOWED_ACTIONS: dict[str, tuple[str, ...]] = {
    ApplicationStatus.DRAFT: (Action.SUBMIT,),
    ApplicationStatus.SUBMITTED: (
        Action.ADMIN_SCREEN,
        Action.APPROVE_HIGH,
        Action.REJECT,
        Action.WITHDRAW,
    ),
    ApplicationStatus.ADMIN_SCREENED: (Action.APPROVE_HIGH,),
    ApplicationStatus.APPROVED_HIGH: (Action.SET_TERMS,),
    ApplicationStatus.TERMS_SET: (Action.SYSTEM_MIN_READY,),
    ApplicationStatus.MIN_DUE: (Action.PAYMENT_UPDATED,),
    ApplicationStatus.MIN_PAID: (Action.SIGNATURES_COMPLETED,),
    ApplicationStatus.COUNTERSIGNED: (Action.TICK_CLOCK,),
    ApplicationStatus.OCCUPIED: (),
    ApplicationStatus.REJECTED: (),
    ApplicationStatus.WITHDRAWN: (),
}


# =============================================================================
# Helpers
# =============================================================================


def derive_min_rules(upfront_min_cents: int | None, deposit_min_cents: int | None) -> list[MinRule]:
    """
    Build countersign rules from thresholds.

    A rule is emitted only for a positive threshold.
    """
    rules: list[MinRule] = []
    if (upfront_min_cents or 0) > 0:
        rules.append(MinRule(bucket=Bucket.OPERATING, min_cents=int(upfront_min_cents)))
    if (deposit_min_cents or 0) > 0:
        rules.append(MinRule(bucket=Bucket.DEPOSIT, min_cents=int(deposit_min_cents)))
    return rules


def countersign_minimum_satisfied(
    rules: list[MinRule] | None,
    totals: dict[str, int] | None,
) -> bool:
    """
    Check that every countersign rule is met.

    An empty rule list is never satisfied: with nothing configured there
    is no payment gate to pass, and system_min_ready skips straight to
    countersigned instead.
    """
    if not rules:
        return False
    totals = totals or {}
    return all(int(totals.get(rule.bucket) or 0) >= rule.min_cents for rule in rules)


def terms_are_valid(terms: Terms | None) -> bool:
    return bool(terms and terms.address and terms.rent_cents > 0 and terms.start_date)


def _lease_started(terms: Terms | None, now: datetime | None) -> bool:
    if not terms or not terms.start_date:
        return False
    today = timezone.localdate(now) if now else timezone.localdate()
    return terms.start_date <= today


# =============================================================================
# Core
# =============================================================================


def compute_next_state(
    current: str,
    action: str,
    role: str,
    ctx: GuardContext | None = None,
) -> str:
    """
    Return the status an application moves to, or current when nothing applies.

    Illegal actions and unsatisfied guards are not errors; the status
    simply stays put.
    """
    ctx = ctx or GuardContext()

    if action == Action.SUBMIT:
        if current == ApplicationStatus.DRAFT and role in (Role.TENANT, Role.SYSTEM) and ctx.members_ack:
            return ApplicationStatus.SUBMITTED

    elif action == Action.ADMIN_SCREEN:
        if current == ApplicationStatus.SUBMITTED and role == Role.ADMIN:
            return ApplicationStatus.ADMIN_SCREENED

    elif action == Action.APPROVE_HIGH:
        if (
            current in (ApplicationStatus.SUBMITTED, ApplicationStatus.ADMIN_SCREENED)
            and role == Role.MANAGER
        ):
            return ApplicationStatus.APPROVED_HIGH

    elif action == Action.SET_TERMS:
        if (
            current == ApplicationStatus.APPROVED_HIGH
            and role in (Role.ADMIN, Role.MANAGER)
            and terms_are_valid(ctx.terms)
        ):
            return ApplicationStatus.TERMS_SET

    elif action == Action.SYSTEM_MIN_READY:
        if current == ApplicationStatus.TERMS_SET and role == Role.SYSTEM:
            if ctx.min_rules:
                return ApplicationStatus.MIN_DUE
            return ApplicationStatus.COUNTERSIGNED

    elif action == Action.PAYMENT_UPDATED:
        if (
            current == ApplicationStatus.MIN_DUE
            and role == Role.SYSTEM
            and countersign_minimum_satisfied(ctx.min_rules, ctx.payment_totals)
        ):
            return ApplicationStatus.MIN_PAID

    elif action == Action.SIGNATURES_COMPLETED:
        if current == ApplicationStatus.MIN_PAID and role == Role.SYSTEM and ctx.signatures_count >= 2:
            return ApplicationStatus.COUNTERSIGNED

    elif action == Action.TICK_CLOCK:
        if (
            current == ApplicationStatus.COUNTERSIGNED
            and role == Role.SYSTEM
            and _lease_started(ctx.terms, ctx.now)
        ):
            return ApplicationStatus.OCCUPIED

    elif action == Action.REJECT:
        if current == ApplicationStatus.SUBMITTED and role == Role.MANAGER:
            return ApplicationStatus.REJECTED

    elif action == Action.WITHDRAW:
        if current == ApplicationStatus.SUBMITTED and role == Role.TENANT:
            return ApplicationStatus.WITHDRAWN

    return current


__all__ = [
    "ALLOWED_ACTIONS",
    "Action",
    "GuardContext",
    "MinRule",
    "Role",
    "Terms",
    "compute_next_state",
    "countersign_minimum_satisfied",
    "derive_min_rules",
    "terms_are_valid",
]
