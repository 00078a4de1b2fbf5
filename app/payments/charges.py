"""
Charge schedule builder.

Derives the ordered list of obligations (charges) for an application from
its payment plan. Charges are never stored: they are recomputed whenever
they are needed, so a plan edit is reflected everywhere at once.

Charge Keys:
    "{app_id}:{bucket}:{code}", for example
        "6f1c...:operating:key_fee"
        "6f1c...:deposit:security_deposit"
        "6f1c...:operating:rent:2025-03"

Ordering:
    Charges are totally ordered by (priority_index, code). Upfront items take
    their index from the plan's priority list (or DEFAULT_UPFRONT_PRIORITY);
    rent months come strictly after every upfront item.

Usage:
    from payments.charges import build_charges

    charges = build_charges(application.id, application.payment_plan)
    deposit_total = sum(c.amount_cents for c in charges if c.bucket == Bucket.DEPOSIT)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date
from typing import TYPE_CHECKING, Any

from payments.state_machines.states import Bucket

if TYPE_CHECKING:
    from uuid import UUID


# =============================================================================
# Constants
# =============================================================================

KEY_FEE = "key_fee"
FIRST_MONTH = "first_month"
LAST_MONTH = "last_month"
SECURITY_DEPOSIT = "security_deposit"
RENT_PREFIX = "rent:"

UPFRONT_CODES = (KEY_FEE, FIRST_MONTH, LAST_MONTH, SECURITY_DEPOSIT)

DEFAULT_UPFRONT_PRIORITY = (KEY_FEE, FIRST_MONTH, LAST_MONTH, SECURITY_DEPOSIT)

# Index given to an upfront code missing from an explicit priority list
UNLISTED_PRIORITY = 999

RENT_PRIORITY_BASE = 2000

_PLAN_FIELDS = {
    KEY_FEE: "key_fee_cents",
    FIRST_MONTH: "first_month_cents",
    LAST_MONTH: "last_month_cents",
    SECURITY_DEPOSIT: "security_deposit_cents",
}


# =============================================================================
# Data Types
# =============================================================================


@dataclass(frozen=True)
class Charge:
    """
    A single obligation line item.

    Attributes:
        charge_key: Deterministic key (app_id:bucket:code)
        bucket: operating or deposit
        code: key_fee, first_month, last_month, security_deposit or rent:YYYY-MM
        amount_cents: Amount owed, always positive
        priority_index: Waterfall position (lower is paid first)
        due_date: When the charge falls due, if the plan has a start date
    """

    charge_key: str
    bucket: str
    code: str
    amount_cents: int
    priority_index: int
    due_date: date | None = None

    @property
    def is_rent(self) -> bool:
        return self.code.startswith(RENT_PREFIX)

    @property
    def is_upfront(self) -> bool:
        return not self.is_rent

    @property
    def label(self) -> str:
        if self.is_rent:
            return f"Rent {self.code[len(RENT_PREFIX):]}"
        return self.code.replace("_", " ").title()


def charge_sort_key(charge: Charge) -> tuple[int, str]:
    return (charge.priority_index, charge.code)


# =============================================================================
# Helpers
# =============================================================================


def make_charge_key(app_id: UUID | str, bucket: str, code: str) -> str:
    return f"{app_id}:{bucket}:{code}"


def _cents(value: Any) -> int:
    """Coerce a stored amount to int cents; None and garbage become 0."""
    if value is None or isinstance(value, bool):
        return 0
    try:
        return int(value)
    except (TypeError, ValueError):
        return 0


def _add_months(start: date, months: int) -> date:
    """First day of the month `months` after start's month."""
    month_index = start.month - 1 + months
    return date(start.year + month_index // 12, month_index % 12 + 1, 1)


def _upfront_priorities(priority: list[str] | None) -> dict[str, int]:
    order = [code for code in (priority or []) if code in UPFRONT_CODES]
    if not order:
        order = list(DEFAULT_UPFRONT_PRIORITY)
    return {code: order.index(code) if code in order else UNLISTED_PRIORITY for code in UPFRONT_CODES}


# =============================================================================
# Builder
# =============================================================================


def build_charges(app_id: UUID | str, plan: Any) -> list[Charge]:
    """
    Build the ordered charge schedule for an application.

    Args:
        app_id: Application id used in charge keys
        plan: PaymentPlan (or any object with the same attributes); None
              yields no charges

    Returns:
        Charges sorted by (priority_index, code). Zero-amount items are
        omitted entirely.
    """
    if plan is None:
        return []

    start_date: date | None = getattr(plan, "start_date", None)
    priorities = _upfront_priorities(getattr(plan, "priority", None))
    charges: list[Charge] = []

    for code in UPFRONT_CODES:
        amount = _cents(getattr(plan, _PLAN_FIELDS[code], 0))
        if amount <= 0:
            continue
        bucket = Bucket.DEPOSIT if code == SECURITY_DEPOSIT else Bucket.OPERATING
        charges.append(
            Charge(
                charge_key=make_charge_key(app_id, bucket, code),
                bucket=bucket,
                code=code,
                amount_cents=amount,
                priority_index=priorities[code],
                due_date=start_date,
            )
        )

    charges.extend(_build_rent_charges(app_id, plan, charges, start_date))
    return sorted(charges, key=charge_sort_key)


def _build_rent_charges(
    app_id: UUID | str,
    plan: Any,
    upfront: list[Charge],
    start_date: date | None,
) -> list[Charge]:
    """
    One rent line per lease month not already collected upfront.

    The first lease month is skipped when a first_month charge exists and
    the final month when a last_month charge exists.
    """
    monthly_rent = _cents(getattr(plan, "monthly_rent_cents", 0))
    term_months = _cents(getattr(plan, "term_months", 0))
    if not start_date or term_months <= 0 or monthly_rent <= 0:
        return []

    upfront_codes = {charge.code for charge in upfront}
    first_offset = 1 if FIRST_MONTH in upfront_codes else 0
    last_offset = term_months - 1 if LAST_MONTH in upfront_codes else term_months

    base = max([RENT_PRIORITY_BASE] + [charge.priority_index + 1 for charge in upfront])

    rent: list[Charge] = []
    for offset in range(first_offset, last_offset):
        month_start = _add_months(start_date, offset)
        code = f"{RENT_PREFIX}{month_start:%Y-%m}"
        rent.append(
            Charge(
                charge_key=make_charge_key(app_id, Bucket.OPERATING, code),
                bucket=Bucket.OPERATING,
                code=code,
                amount_cents=monthly_rent,
                priority_index=base + len(rent),
                due_date=month_start,
            )
        )
    return rent
