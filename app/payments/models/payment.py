"""
Payment model for gateway-backed money movements.

A Payment is one attempt to collect money for an application through a
Stripe PaymentIntent. Rows are written by PaymentIntentService (creation,
linking, cancellation) and PaymentReconciler (status from webhooks), and
are never deleted.

Usage:
    from payments.models import Payment
    from payments.state_machines import PaymentKind, PaymentStatus

    payment = Payment.objects.create(
        application=application,
        firm=application.firm,
        kind=PaymentKind.DEPOSIT,
        amount_cents=250000,
        idempotency_key="pay:6f1c...:deposit:deposit_minimum:abc123",
    )

    # State transitions using django-fsm
    payment.mark_processing()  # created -> processing
    payment.save()
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import (
    Bucket,
    PaymentKind,
    PaymentStatus,
    bucket_for_kind,
)


class Payment(UUIDPrimaryKeyMixin, BaseModel):
    """
    A single payment attempt for an application.

    State Flow:
        CREATED -> PROCESSING -> SUCCEEDED
        CREATED/PROCESSING -> FAILED
        CREATED/PROCESSING/FAILED -> CANCELED
        FAILED -> PROCESSING/SUCCEEDED (bank debit retried at the gateway)
        SUCCEEDED -> RETURNED

    SUCCEEDED has no transition back to PROCESSING, FAILED or CANCELED,
    so an out-of-order webhook cannot downgrade a settled payment.

    Idempotency:
        provider_intent_id and idempotency_key are both unique. The
        idempotency key is written before the gateway call and reused as
        the Stripe idempotency key.
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    application = models.ForeignKey(
        "applications.Application",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Application this payment is collected for",
    )

    firm = models.ForeignKey(
        "applications.Firm",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Firm receiving the funds",
    )

    # ==========================================================================
    # Amount & Classification
    # ==========================================================================

    kind = models.CharField(
        max_length=20,
        choices=PaymentKind.choices,
        default=PaymentKind.OPERATING,
        help_text="What the payment is for; deposit payments are escrowed",
    )

    amount_cents = models.PositiveBigIntegerField(
        help_text="Amount in cents",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code",
    )

    status = FSMField(
        default=PaymentStatus.CREATED,
        choices=PaymentStatus.choices,
        db_index=True,
        help_text="Current payment status (managed by FSM)",
    )

    # ==========================================================================
    # Stripe Integration
    # ==========================================================================

    provider_intent_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        unique=True,
        help_text="Stripe PaymentIntent ID (pi_xxx)",
    )

    provider_charge_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Stripe Charge ID (ch_xxx / py_xxx) once settled",
    )

    idempotency_key = models.CharField(
        max_length=255,
        unique=True,
        help_text="pay:{app}:{bucket}:{reason}:{token}, also sent to Stripe",
    )

    reason = models.CharField(
        max_length=50,
        blank=True,
        default="",
        help_text="Why the payment was started (e.g. 'deposit_minimum')",
    )

    # ==========================================================================
    # State Timestamps
    # ==========================================================================

    processing_at = models.DateTimeField(null=True, blank=True)
    succeeded_at = models.DateTimeField(null=True, blank=True)
    failed_at = models.DateTimeField(null=True, blank=True)
    canceled_at = models.DateTimeField(null=True, blank=True)

    receipt_sent_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the deposit receipt was delivered (set once)",
    )

    # ==========================================================================
    # Metadata & Error Info
    # ==========================================================================

    metadata = models.JSONField(
        default=dict,
        blank=True,
        help_text="Gateway details (receipt URL, transfer id, receipt errors)",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Gateway failure message if the payment failed",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["application", "kind", "status"]),
            models.Index(fields=["application", "created_at"]),
        ]
        constraints = [
            models.CheckConstraint(
                condition=models.Q(amount_cents__gt=0),
                name="payment_amount_positive",
            ),
        ]

    def __str__(self) -> str:
        return f"Payment({self.id}, {self.kind}, {self.status}, {self.amount_cents / 100:.2f})"

    @property
    def bucket(self) -> Bucket:
        """Allocation bucket derived from kind."""
        return bucket_for_kind(self.kind)

    @property
    def is_settled(self) -> bool:
        return self.status == PaymentStatus.SUCCEEDED

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=[PaymentStatus.CREATED, PaymentStatus.FAILED, PaymentStatus.CANCELED],
        target=PaymentStatus.PROCESSING,
    )
    def mark_processing(self):
        """
        Bank debit submitted and awaiting settlement.

        Transition: CREATED/FAILED/CANCELED -> PROCESSING

        A superseded row whose gateway cancel did not take can still be
        submitted by the tenant.
        """
        self.processing_at = timezone.now()

    @transition(
        field=status,
        source=[
            PaymentStatus.CREATED,
            PaymentStatus.PROCESSING,
            PaymentStatus.FAILED,
            PaymentStatus.CANCELED,
        ],
        target=PaymentStatus.SUCCEEDED,
    )
    def mark_succeeded(self, charge_id: str | None = None):
        """
        Funds settled.

        Transition: CREATED/PROCESSING/FAILED/CANCELED -> SUCCEEDED

        Settlement reported by the gateway always wins over a local cancel.

        Args:
            charge_id: Stripe charge id of the settlement, if known
        """
        self.succeeded_at = timezone.now()
        self.failure_reason = None
        if charge_id:
            self.provider_charge_id = charge_id

    @transition(
        field=status,
        source=[PaymentStatus.CREATED, PaymentStatus.PROCESSING],
        target=PaymentStatus.FAILED,
    )
    def mark_failed(self, reason: str | None = None):
        """
        Gateway rejected the payment or the debit bounced before settling.

        Transition: CREATED/PROCESSING -> FAILED
        """
        self.failed_at = timezone.now()
        if reason:
            self.failure_reason = reason

    @transition(
        field=status,
        source=[PaymentStatus.CREATED, PaymentStatus.PROCESSING, PaymentStatus.FAILED],
        target=PaymentStatus.CANCELED,
    )
    def mark_canceled(self):
        """
        Intent canceled (superseded or abandoned).

        Transition: CREATED/PROCESSING/FAILED -> CANCELED
        """
        self.canceled_at = timezone.now()

    @transition(
        field=status,
        source=PaymentStatus.SUCCEEDED,
        target=PaymentStatus.RETURNED,
    )
    def mark_returned(self, reason: str | None = None):
        """
        Settled bank debit was reversed.

        Transition: SUCCEEDED -> RETURNED
        """
        if reason:
            self.failure_reason = reason
