"""
Ledger models for settlement bookkeeping.

LedgerEntry is the append-only record of a settled payment having been
applied to an application's charges. One entry exists per settlement:
the unique constraint over (payment_key, application, firm, bucket) is
the exactly-once guarantee for crediting obligations.

Usage:
    from payments.ledger.models import LedgerEntry

    entries = LedgerEntry.objects.filter(application=application)
    applied = sum(entry.applied_cents for entry in entries)
"""

from __future__ import annotations

from django.db import models
from django.db.models import Q

from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines.states import Bucket


class LedgerEntry(UUIDPrimaryKeyMixin, models.Model):
    """
    A settlement applied to an application's charges.

    Entries are immutable once created. A replayed settlement hits the
    unique constraint and is treated as a no-op by LedgerService.

    Fields:
        payment_key: Natural key of the settlement (gateway intent id)
        application: Application whose charges were credited
        firm: Firm receiving the money
        bucket: operating or deposit
        payment: Payment row that settled
        applied_cents: Total cents applied to charges
        splits: [{"charge_key", "applied_cents"}, ...] in waterfall order
        metadata: Settlement context (charge id, source of the event)

    Example:
        entry = LedgerEntry.objects.create(
            payment_key="pi_123",
            application=application,
            firm=application.firm,
            bucket=Bucket.OPERATING,
            payment=payment,
            applied_cents=410000,
            splits=[{"charge_key": "...:operating:key_fee", "applied_cents": 10000}, ...],
        )
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="Timestamp when this settlement was recorded",
    )

    payment_key = models.CharField(
        max_length=255,
        help_text="Natural key of the settlement event (payment intent id)",
    )

    application = models.ForeignKey(
        "applications.Application",
        on_delete=models.PROTECT,
        related_name="ledger_entries",
    )

    firm = models.ForeignKey(
        "applications.Firm",
        on_delete=models.PROTECT,
        related_name="ledger_entries",
    )

    bucket = models.CharField(
        max_length=20,
        choices=Bucket.choices,
        help_text="Fund category the settlement was applied within",
    )

    payment = models.ForeignKey(
        "payments.Payment",
        on_delete=models.PROTECT,
        related_name="ledger_entries",
        null=True,
        blank=True,
    )

    applied_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Cents applied to charges (may be below the payment amount on overpayment)",
    )

    splits = models.JSONField(
        default=list,
        blank=True,
        help_text="Per-charge amounts applied from this settlement",
    )

    metadata = models.JSONField(
        default=dict,
        blank=True,
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Ledger Entry"
        verbose_name_plural = "Ledger Entries"
        indexes = [
            models.Index(fields=["application", "bucket"]),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["payment_key", "application", "firm", "bucket"],
                name="ledger_entry_unique_settlement",
            ),
            models.CheckConstraint(
                condition=Q(applied_cents__gte=0),
                name="ledger_entry_applied_cents_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"LedgerEntry({self.payment_key}, {self.bucket}, {self.applied_cents})"
