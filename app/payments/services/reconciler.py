"""
Payment reconciler.

Applies a PaymentIntent's gateway status to the local Payment row. Both
the webhook pipeline and PaymentIntentService.confirm_payment feed
intents through reconcile_intent, so there is exactly one state machine
for gateway outcomes.

Status Mapping:
    processing               -> PROCESSING (never downgrades SUCCEEDED)
    succeeded                -> SUCCEEDED, settle the ledger, evaluate gates,
                                send the deposit receipt
    requires_payment_method  -> FAILED (after an attempt was made)
    canceled                 -> CANCELED
    anything else            -> gateway metadata only

A full refund or a dispute of a settled payment goes through
reconcile_return and moves it to RETURNED, which takes its money out of
the paid totals.

Events may arrive late, twice or out of order; every step is idempotent.

Usage:
    from payments.services.reconciler import PaymentReconciler

    result = PaymentReconciler.reconcile_intent(intent, source="webhook")
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import TYPE_CHECKING, Any

from django.db import transaction
from django_fsm import can_proceed

from applications.models import ApplicationEvent
from applications.rules import Role
from core.services import BaseService, ServiceResult
from payments.adapters import ChargeResult, PaymentIntentResult, StripeAdapter
from payments.exceptions import StripeError
from payments.ledger.services import LedgerService
from payments.models import Payment
from payments.notifications import ReceiptNotifier
from payments.services.gate_evaluator import GateDecision, GateEvaluator
from payments.state_machines import Bucket, PaymentKind, PaymentStatus, bucket_for_kind

if TYPE_CHECKING:
    from django.db.models import QuerySet


class ReconcileAction:
    IGNORED = "ignored"
    PROCESSING = "processing"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    CANCELED = "canceled"
    RETURNED = "returned"
    METADATA = "metadata"


@dataclass
class ReconciliationOutcome:
    """
    What reconcile_intent did.

    Attributes:
        payment: Matched Payment, None when the intent is not ours
        action: ReconcileAction value
        transitioned: True if the payment status changed in this call
        settlement_created: True if a new LedgerEntry was written
        gate_decision: Result of the gate evaluation after a settlement
        receipt_sent: True if this call sent the deposit receipt
    """

    payment: Payment | None
    action: str
    transitioned: bool = False
    settlement_created: bool = False
    gate_decision: GateDecision | None = None
    receipt_sent: bool = False


def _kinds_for_bucket(bucket: str) -> list[str]:
    if bucket == Bucket.DEPOSIT:
        return [PaymentKind.DEPOSIT]
    return [kind for kind in PaymentKind.values if kind != PaymentKind.DEPOSIT]


def _parse_uuid(value: Any) -> uuid.UUID | None:
    try:
        return uuid.UUID(str(value))
    except (TypeError, ValueError):
        return None


class PaymentReconciler(BaseService):
    """Reconciles gateway PaymentIntents with Payment rows."""

    # =========================================================================
    # Matching
    # =========================================================================

    @classmethod
    def _link(cls, queryset: QuerySet[Payment], intent_id: str) -> bool:
        """Conditionally link an unlinked row; False if it was taken."""
        return bool(queryset.filter(provider_intent_id__isnull=True).update(provider_intent_id=intent_id))

    @classmethod
    def resolve_payment(cls, intent: PaymentIntentResult) -> Payment | None:
        """
        Find the Payment for an intent, attaching by metadata if needed.

        Order:
            1. Row already linked to the intent id
            2. Row named by metadata["payment_id"]
            3. Oldest unlinked row of the same application, bucket and amount
        """
        payment = Payment.objects.filter(provider_intent_id=intent.id).first()
        if payment is not None:
            return payment

        metadata = intent.metadata or {}
        payment_id = _parse_uuid(metadata.get("payment_id"))
        if payment_id is not None and cls._link(Payment.objects.filter(pk=payment_id), intent.id):
            return Payment.objects.filter(provider_intent_id=intent.id).first()

        app_id = _parse_uuid(metadata.get("app_id"))
        if app_id is not None and intent.amount_cents > 0:
            bucket = bucket_for_kind(metadata.get("bucket"))
            candidates = Payment.objects.filter(
                application_id=app_id,
                kind__in=_kinds_for_bucket(bucket),
                amount_cents=intent.amount_cents,
                provider_intent_id__isnull=True,
            ).order_by("created_at", "id")
            for candidate in candidates.values_list("pk", flat=True)[:5]:
                if cls._link(Payment.objects.filter(pk=candidate), intent.id):
                    break

        return Payment.objects.filter(provider_intent_id=intent.id).first()

    # =========================================================================
    # Gateway Details
    # =========================================================================

    @classmethod
    def _fetch_charge(cls, charge_id: str | None) -> ChargeResult | None:
        """Best-effort charge lookup; failures never abort reconciliation."""
        if not charge_id:
            return None
        try:
            return StripeAdapter.retrieve_charge(charge_id)
        except StripeError as e:
            cls.get_logger().warning(
                "Charge details unavailable",
                extra={"charge_id": charge_id, "error_code": e.error_code},
            )
            return None

    @staticmethod
    def _gateway_metadata(intent: PaymentIntentResult, charge: ChargeResult | None) -> dict[str, Any]:
        details: dict[str, Any] = {"intent_status": intent.status}
        if charge is not None:
            details["receipt_url"] = charge.receipt_url
            details["transfer_id"] = charge.transfer_id
        return details

    # =========================================================================
    # Reconciliation
    # =========================================================================

    @classmethod
    def reconcile_intent(
        cls,
        intent: PaymentIntentResult,
        source: str = "webhook",
    ) -> ServiceResult[ReconciliationOutcome]:
        """
        Apply an intent's status to its Payment row.

        Args:
            intent: Intent from a webhook payload or an API response
            source: Where the intent came from (webhook, confirm), for logs

        Returns:
            ServiceResult with the ReconciliationOutcome. An intent with no
            matching payment is a successful IGNORED outcome.
        """
        logger = cls.get_logger()
        log_context = {"payment_intent_id": intent.id, "intent_status": intent.status, "source": source}

        payment = cls.resolve_payment(intent)
        if payment is None:
            logger.info("No payment matches intent; ignoring", extra=log_context)
            return ServiceResult.success(ReconciliationOutcome(payment=None, action=ReconcileAction.IGNORED))

        charge = cls._fetch_charge(intent.latest_charge_id) if intent.status == "succeeded" else None
        outcome = ReconciliationOutcome(payment=payment, action=ReconcileAction.METADATA)

        with transaction.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            outcome.payment = payment
            payment.metadata = {**(payment.metadata or {}), **cls._gateway_metadata(intent, charge)}
            event: str | None = None

            if intent.status == "processing":
                outcome.action = ReconcileAction.PROCESSING
                if payment.status != PaymentStatus.PROCESSING and can_proceed(payment.mark_processing):
                    payment.mark_processing()
                    outcome.transitioned = True
                    event = "payment.processing"

            elif intent.status == "succeeded":
                outcome.action = ReconcileAction.SUCCEEDED
                if payment.status != PaymentStatus.SUCCEEDED and can_proceed(payment.mark_succeeded):
                    payment.mark_succeeded(charge_id=intent.latest_charge_id)
                    outcome.transitioned = True
                elif intent.latest_charge_id and not payment.provider_charge_id:
                    payment.provider_charge_id = intent.latest_charge_id

            elif intent.status == "requires_payment_method":
                # A fresh intent also reports requires_payment_method before any debit was tried
                attempted = payment.status != PaymentStatus.CREATED or bool(intent.last_error)
                if attempted and can_proceed(payment.mark_failed):
                    payment.mark_failed(reason=intent.last_error)
                    outcome.action = ReconcileAction.FAILED
                    outcome.transitioned = True
                    event = "payment.failed"

            elif intent.status == "canceled":
                outcome.action = ReconcileAction.CANCELED
                if payment.status != PaymentStatus.CANCELED and can_proceed(payment.mark_canceled):
                    payment.mark_canceled()
                    outcome.transitioned = True
                    event = "payment.canceled"

            payment.save()

            if payment.status == PaymentStatus.SUCCEEDED and intent.status == "succeeded":
                settlement = LedgerService.apply_settlement(payment, payment_key=intent.id)
                outcome.settlement_created = settlement.created
                if outcome.transitioned or settlement.created:
                    event = "payment.succeeded"
                    splits = [split.as_dict() for split in settlement.splits]

            if event:
                metadata: dict[str, Any] = {
                    "payment_id": str(payment.id),
                    "payment_intent_id": intent.id,
                    "kind": payment.kind,
                    "amount_cents": payment.amount_cents,
                }
                if event == "payment.succeeded":
                    metadata["charge_id"] = payment.provider_charge_id or None
                    metadata["splits"] = splits
                ApplicationEvent.objects.create(
                    application_id=payment.application_id,
                    event=event,
                    actor=Role.SYSTEM,
                    metadata=metadata,
                )

        if outcome.transitioned:
            logger.info(f"Payment moved to {payment.status}", extra={**log_context, "payment_id": str(payment.id)})

        if payment.status == PaymentStatus.SUCCEEDED and intent.status == "succeeded":
            outcome.gate_decision = GateEvaluator.recompute_and_maybe_advance(
                payment.application_id, payment.firm_id
            )
            outcome.receipt_sent = cls._send_receipt(payment)

        return ServiceResult.success(outcome)

    @classmethod
    def reconcile_return(
        cls,
        payment_intent_id: str,
        reason: str,
        source: str = "webhook",
    ) -> ServiceResult[ReconciliationOutcome]:
        """
        Mark a settled payment RETURNED after a refund or dispute.

        The ledger entry stays in place; RETURNED payments are simply no
        longer allocated. Unknown intents and payments that never settled
        are acknowledged without change.
        """
        logger = cls.get_logger()
        log_context = {"payment_intent_id": payment_intent_id, "reason": reason, "source": source}

        payment = Payment.objects.filter(provider_intent_id=payment_intent_id).first()
        if payment is None:
            logger.info("No payment matches returned intent; ignoring", extra=log_context)
            return ServiceResult.success(ReconciliationOutcome(payment=None, action=ReconcileAction.IGNORED))

        outcome = ReconciliationOutcome(payment=payment, action=ReconcileAction.RETURNED)
        with transaction.atomic():
            payment = Payment.objects.select_for_update().get(pk=payment.pk)
            outcome.payment = payment
            if not can_proceed(payment.mark_returned):
                logger.info(
                    f"Payment in {payment.status} cannot be returned; ignoring",
                    extra={**log_context, "payment_id": str(payment.id)},
                )
                return ServiceResult.success(outcome)

            payment.mark_returned(reason=reason)
            payment.save()
            outcome.transitioned = True
            ApplicationEvent.objects.create(
                application_id=payment.application_id,
                event="payment.returned",
                actor=Role.SYSTEM,
                metadata={
                    "payment_id": str(payment.id),
                    "payment_intent_id": payment_intent_id,
                    "kind": payment.kind,
                    "amount_cents": payment.amount_cents,
                    "reason": reason,
                },
            )

        logger.warning("Settled payment returned", extra={**log_context, "payment_id": str(payment.id)})
        return ServiceResult.success(outcome)

    @classmethod
    def _send_receipt(cls, payment: Payment) -> bool:
        if payment.kind != PaymentKind.DEPOSIT or payment.receipt_sent_at is not None:
            return False
        payment = Payment.objects.select_related("application", "firm").get(pk=payment.pk)
        return ReceiptNotifier.send_deposit_receipt(payment)
