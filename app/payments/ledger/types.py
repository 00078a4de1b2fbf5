"""
Data types for ledger operations.

Types:
    Money: A monetary amount in cents with currency
    Split: Part of a payment applied to one charge
    SettlementResult: Outcome of recording a settlement

Usage:
    from payments.ledger.types import Money, Split

    print(Money(cents=410000))  # "$4,100.00 USD"
    split = Split(charge_key="app:operating:key_fee", applied_cents=10000)
"""

from __future__ import annotations

from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Any

if TYPE_CHECKING:
    from payments.ledger.models import LedgerEntry


@dataclass(frozen=True)
class Money:
    """
    Represents a monetary amount.

    All amounts are stored in cents (smallest currency unit) to avoid
    floating-point precision issues.

    Attributes:
        cents: Amount in the smallest currency unit
        currency: ISO 4217 currency code (default: 'usd')

    Example:
        print(Money(cents=5000))           # "$50.00 USD"
        print(Money(cents=5000).display)   # "$50.00"
    """

    cents: int
    currency: str = "usd"

    @property
    def display(self) -> str:
        """Format without the currency code (e.g., '$1,250.00')."""
        sign = "-" if self.cents < 0 else ""
        dollars, cents = divmod(abs(self.cents), 100)
        return f"{sign}${dollars:,}.{cents:02d}"

    def __str__(self) -> str:
        """Format as currency string (e.g., '$50.00 USD')."""
        return f"{self.display} {self.currency.upper()}"


@dataclass(frozen=True)
class Split:
    """
    Amount of one payment applied to one charge.

    Attributes:
        charge_key: Charge the money was applied to
        applied_cents: Cents applied (always positive)
    """

    charge_key: str
    applied_cents: int

    def as_dict(self) -> dict[str, Any]:
        return {"charge_key": self.charge_key, "applied_cents": self.applied_cents}


@dataclass
class SettlementResult:
    """
    Result of LedgerService.apply_settlement.

    Attributes:
        entry: The LedgerEntry for the settlement (new or pre-existing)
        created: False when the settlement had already been recorded
        splits: Splits recorded on the entry
    """

    entry: LedgerEntry
    created: bool
    splits: list[Split] = field(default_factory=list)

    @property
    def applied_cents(self) -> int:
        return sum(split.applied_cents for split in self.splits)
