"""
Rental application models.

Models:
    Firm: Landlord organisation receiving payments
    Application: A rental application and its gate status
    PaymentPlan: Money terms of the lease, one per application
    ApplicationEvent: Append-only timeline entries for an application

The payments app mutates an Application only through its status (via the
gate evaluator) and by appending ApplicationEvent rows.

Usage:
    from applications.models import Application, PaymentPlan

    plan = application.payment_plan
    upfront_min, deposit_min = application.countersign_thresholds()
"""

from __future__ import annotations

from django.db import models

from applications.states import ApplicationStatus
from core.model_mixins import UUIDPrimaryKeyMixin
from core.models import BaseModel
from payments.state_machines.states import Bucket


class Firm(UUIDPrimaryKeyMixin, BaseModel):
    """
    Landlord organisation.

    Payments are routed to the firm's Stripe connected accounts: deposits
    to the escrow account, everything else to the operating account. The
    escrow disclosure fields appear on security deposit receipts.
    """

    name = models.CharField(
        max_length=200,
        help_text="Display name of the firm",
    )

    legal_name = models.CharField(
        max_length=200,
        blank=True,
        default="",
        help_text="Legal name printed on receipts (falls back to name)",
    )

    # ==========================================================================
    # Stripe Destinations
    # ==========================================================================

    stripe_operating_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Connected account (acct_xxx) receiving operating funds",
    )

    stripe_escrow_account_id = models.CharField(
        max_length=255,
        blank=True,
        default="",
        help_text="Connected account (acct_xxx) receiving security deposits",
    )

    # ==========================================================================
    # Escrow Disclosure
    # ==========================================================================

    escrow_bank_name = models.CharField(max_length=200, blank=True, default="")
    escrow_bank_address = models.CharField(max_length=300, blank=True, default="")
    escrow_account_last4 = models.CharField(max_length=4, blank=True, default="")
    escrow_interest_hundredths = models.PositiveIntegerField(
        null=True,
        blank=True,
        help_text="Annual interest rate in hundredths of a percent (e.g. 150 = 1.50%)",
    )

    class Meta:
        ordering = ["name"]

    def __str__(self) -> str:
        return self.name

    @property
    def display_legal_name(self) -> str:
        return self.legal_name or self.name

    def destination_account_for(self, bucket: str) -> str:
        """Return the connected account id for a payment bucket ('' if unset)."""
        if bucket == Bucket.DEPOSIT:
            return self.stripe_escrow_account_id
        return self.stripe_operating_account_id


class Application(UUIDPrimaryKeyMixin, BaseModel):
    """
    A rental application.

    Status follows the gate sequence in applications.states. The payments
    app is the only writer of the payment gates (MIN_DUE → MIN_PAID), and
    it writes through GateEvaluator with a status-comparison guard.

    Fields:
        firm: Landlord firm the application belongs to
        status: Current gate status
        premises: Free-form address of the unit
        tenant_name: Primary applicant display name for receipts
        contact_emails: Receipt recipients
        countersign_*_min_cents: Optional overrides of the plan's thresholds
    """

    firm = models.ForeignKey(
        Firm,
        on_delete=models.PROTECT,
        related_name="applications",
        help_text="Firm that owns this application",
    )

    status = models.CharField(
        max_length=20,
        choices=ApplicationStatus.choices,
        default=ApplicationStatus.DRAFT,
        db_index=True,
        help_text="Current position in the gate sequence",
    )

    premises = models.CharField(
        max_length=300,
        blank=True,
        default="",
        help_text="Free-form address of the leased unit",
    )

    tenant_name = models.CharField(
        max_length=200,
        blank=True,
        default="",
        help_text="Primary applicant name shown on receipts",
    )

    contact_emails = models.JSONField(
        default=list,
        blank=True,
        help_text="Email addresses that receive payment receipts",
    )

    # ==========================================================================
    # Countersign Overrides
    # ==========================================================================

    countersign_upfront_min_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Overrides the plan's upfront countersign threshold when set",
    )

    countersign_deposit_min_cents = models.PositiveBigIntegerField(
        null=True,
        blank=True,
        help_text="Overrides the plan's deposit countersign threshold when set",
    )

    class Meta:
        ordering = ["-created_at"]
        indexes = [
            models.Index(fields=["firm", "status"]),
        ]

    def __str__(self) -> str:
        return f"Application({self.id}, {self.status})"

    def get_payment_plan(self) -> PaymentPlan | None:
        """Return the payment plan, or None when terms have not been set."""
        try:
            return self.payment_plan
        except PaymentPlan.DoesNotExist:
            return None

    def countersign_thresholds(self) -> tuple[int, int]:
        """
        Resolve the (upfront, deposit) countersign minimums in cents.

        Application-level overrides win over the plan's thresholds; a
        missing value counts as zero (no gate for that bucket).
        """
        plan = self.get_payment_plan()
        upfront = self.countersign_upfront_min_cents
        deposit = self.countersign_deposit_min_cents
        if upfront is None:
            upfront = plan.countersign_upfront_threshold_cents if plan else 0
        if deposit is None:
            deposit = plan.countersign_deposit_threshold_cents if plan else 0
        return int(upfront or 0), int(deposit or 0)


class PaymentPlan(UUIDPrimaryKeyMixin, BaseModel):
    """
    Money terms of a lease.

    All amounts are non-negative integers in cents. Charges are derived
    from this record on demand (payments.charges.build_charges) and never
    stored.

    Fields:
        monthly_rent_cents / term_months / start_date: recurring rent inputs
        key_fee_cents / first_month_cents / last_month_cents: upfront items
        security_deposit_cents: escrowed deposit
        countersign_*_threshold_cents: minimums before countersigning
        priority: Optional ordering of upfront item codes
    """

    application = models.OneToOneField(
        Application,
        on_delete=models.CASCADE,
        related_name="payment_plan",
    )

    # ==========================================================================
    # Recurring Rent
    # ==========================================================================

    monthly_rent_cents = models.PositiveBigIntegerField(default=0)
    term_months = models.PositiveSmallIntegerField(default=0)
    start_date = models.DateField(
        null=True,
        blank=True,
        help_text="Lease start (move-in) date",
    )

    # ==========================================================================
    # Upfront Items
    # ==========================================================================

    key_fee_cents = models.PositiveBigIntegerField(default=0)
    first_month_cents = models.PositiveBigIntegerField(default=0)
    last_month_cents = models.PositiveBigIntegerField(default=0)
    security_deposit_cents = models.PositiveBigIntegerField(default=0)

    # ==========================================================================
    # Countersign Gates
    # ==========================================================================

    countersign_upfront_threshold_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Operating money required before the landlord may countersign",
    )
    countersign_deposit_threshold_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Deposit money required before the landlord may countersign",
    )

    priority = models.JSONField(
        default=list,
        blank=True,
        help_text="Upfront item codes in payment priority order",
    )

    class Meta:
        constraints = [
            models.CheckConstraint(
                condition=models.Q(monthly_rent_cents__gte=0)
                & models.Q(key_fee_cents__gte=0)
                & models.Q(first_month_cents__gte=0)
                & models.Q(last_month_cents__gte=0)
                & models.Q(security_deposit_cents__gte=0),
                name="payment_plan_amounts_non_negative",
            ),
        ]

    def __str__(self) -> str:
        return f"PaymentPlan(application={self.application_id})"


class ApplicationEvent(UUIDPrimaryKeyMixin, models.Model):
    """
    Append-only timeline entry for an application.

    Used as the audit trail for payment state changes and gate advances,
    e.g. event="payments.gates_satisfied" with metadata
    {"from", "to", "due", "paid", "min_rules"}.
    """

    application = models.ForeignKey(
        Application,
        on_delete=models.CASCADE,
        related_name="timeline",
    )

    event = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Event name (e.g., 'payment.succeeded')",
    )

    actor = models.CharField(
        max_length=20,
        default="system",
        help_text="Who caused the event (system, tenant, admin, manager)",
    )

    metadata = models.JSONField(default=dict, blank=True)

    created_at = models.DateTimeField(auto_now_add=True, db_index=True)

    class Meta:
        ordering = ["created_at"]
        indexes = [
            models.Index(fields=["application", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"ApplicationEvent({self.event}, {self.application_id})"
