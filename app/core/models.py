"""
Abstract timestamped model shared by firms, applications and payments.

Usage:
    from core.models import BaseModel
    from core.model_mixins import UUIDPrimaryKeyMixin

    class PaymentPlan(UUIDPrimaryKeyMixin, BaseModel):
        monthly_rent_cents = models.PositiveBigIntegerField()

Mixins go before BaseModel in the bases list.
"""

from __future__ import annotations

from django.db import models


class BaseModel(models.Model):
    """
    created_at / updated_at bookkeeping.

    created_at is indexed: the waterfall orders payments by it and the
    webhook retry tasks filter events on updated_at windows.
    """

    created_at = models.DateTimeField(
        auto_now_add=True,
        db_index=True,
        help_text="When the row was inserted",
    )
    updated_at = models.DateTimeField(
        auto_now=True,
        help_text="When the row was last saved",
    )

    class Meta:
        abstract = True
        ordering = ["-created_at"]

    def __str__(self) -> str:
        return f"{type(self).__name__} {self.pk}"
