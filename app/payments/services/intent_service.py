"""
Payment intent lifecycle.

PaymentIntentService is the entry point for collecting money from a
tenant. It validates the requested amount against the application's
obligation snapshot, reuses or supersedes pending intents, creates the
Payment row and the Stripe PaymentIntent, and confirms intents.

Flow:
    1. Validate (amount, plan, destination account, amount policy)
    2. Replay check on the idempotency key
    3. Reuse a matching confirmable intent, cancel mismatched ones
    4. Create the Payment row (CREATED) with the idempotency key
    5. Create the PaymentIntent at Stripe (no row locks held)
    6. Link the row to the intent id with a conditional update

Usage:
    from payments.services import PaymentIntentService

    result = PaymentIntentService.start_payment(
        application,
        bucket="deposit",
        amount_cents=250000,
        idempotency_token=request_token,
    )
    if result.success:
        return {"client_secret": result.data.client_secret}
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings
from django.db import IntegrityError, transaction
from django_fsm import can_proceed

from core.services import BaseService, ServiceResult
from payments.adapters import (
    CreatePaymentIntentParams,
    IdempotencyKeyGenerator,
    PaymentIntentResult,
    StripeAdapter,
)
from payments.exceptions import PaymentNotFoundError, StripeError
from payments.models import Payment
from payments.services.obligations import ObligationService
from payments.services.reconciler import PaymentReconciler
from payments.state_machines import (
    CONFIRMABLE_INTENT_STATUSES,
    IN_FLIGHT_INTENT_STATUSES,
    Bucket,
    PaymentKind,
    PaymentStatus,
    bucket_for_kind,
)

if TYPE_CHECKING:
    from applications.models import Application
    from payments.policy import AmountPolicy

DEFAULT_REASONS = {
    Bucket.DEPOSIT: "deposit_minimum",
    Bucket.OPERATING: "operating_top_up",
}


@dataclass
class IntentHandle:
    """
    What a client needs to confirm a payment.

    Attributes:
        payment: The local Payment row
        payment_intent_id: Stripe PaymentIntent id (None if never linked)
        client_secret: Secret for client-side confirmation, when known
        status: Gateway intent status, or the row status when unknown
        reused: True if an existing intent was returned
    """

    payment: Payment
    payment_intent_id: str | None
    client_secret: str | None
    status: str
    reused: bool = False


def _allowed_amount_errors(policy: AmountPolicy, bucket: str) -> dict[str, list[str]]:
    if bucket == Bucket.DEPOSIT:
        return {"amount_cents": [str(amount) for amount in policy.allowed_deposit_amounts()]}
    allowed = [str(amount) for amount in policy.operating_exact]
    if policy.max_top_up_cents >= policy.min_top_up_cents > 0:
        allowed.append(f"whole dollars from {policy.min_top_up_cents} to {policy.max_top_up_cents}")
    return {"amount_cents": allowed}


class PaymentIntentService(BaseService):
    """Creates, reuses and confirms PaymentIntents for applications."""

    # =========================================================================
    # Start
    # =========================================================================

    @classmethod
    def start_payment(
        cls,
        application: Application,
        bucket: str,
        amount_cents: int,
        reason: str | None = None,
        idempotency_token: str | None = None,
    ) -> ServiceResult[IntentHandle]:
        """
        Start (or resume) a payment for an application.

        Args:
            application: Application paying
            bucket: 'operating' or 'deposit' (legacy 'upfront' is operating)
            amount_cents: Requested amount in cents
            reason: Free-form reason stored on the row and in the key
            idempotency_token: Client token; replays return the same payment

        Returns:
            ServiceResult with an IntentHandle, or a failure with one of
            INVALID_AMOUNT, PAYMENT_PLAN_MISSING, DESTINATION_ACCOUNT_MISSING,
            AMOUNT_NOT_ALLOWED or the Stripe error code.
        """
        logger = cls.get_logger()
        bucket = bucket_for_kind(bucket)

        if isinstance(amount_cents, bool) or not isinstance(amount_cents, int) or amount_cents <= 0:
            return ServiceResult.failure(
                "Amount must be a positive integer number of cents",
                error_code="INVALID_AMOUNT",
                errors={"amount_cents": ["Must be a positive integer"]},
            )

        if application.get_payment_plan() is None:
            return ServiceResult.failure(
                "Application has no payment plan",
                error_code="PAYMENT_PLAN_MISSING",
            )

        firm = application.firm
        destination = firm.destination_account_for(bucket)
        if not destination:
            return ServiceResult.failure(
                f"Firm has no connected account for {bucket} payments",
                error_code="DESTINATION_ACCOUNT_MISSING",
            )

        reason = reason or DEFAULT_REASONS[bucket]
        idempotency_key = IdempotencyKeyGenerator.for_payment(
            application.id, bucket, reason, idempotency_token
        )
        log_context = {
            "application_id": str(application.id),
            "bucket": str(bucket),
            "amount_cents": amount_cents,
            "idempotency_key": idempotency_key,
        }

        if idempotency_token:
            existing = Payment.objects.filter(idempotency_key=idempotency_key).first()
            if existing is not None:
                logger.info("Replayed payment request", extra=log_context)
                return ServiceResult.success(cls._handle_for(existing))

        policy = ObligationService.snapshot(application).policy
        if not policy.allows(bucket, amount_cents):
            logger.info("Requested amount not allowed", extra=log_context)
            return ServiceResult.failure(
                "Requested amount is not allowed",
                error_code="AMOUNT_NOT_ALLOWED",
                errors=_allowed_amount_errors(policy, bucket),
            )

        reused = cls._reuse_or_cancel_pending(application, bucket, amount_cents)
        if reused is not None:
            logger.info(
                "Reusing pending payment intent",
                extra={**log_context, "payment_id": str(reused.payment.id)},
            )
            return ServiceResult.success(reused)

        try:
            with transaction.atomic():
                payment = Payment.objects.create(
                    application=application,
                    firm=firm,
                    kind=PaymentKind.DEPOSIT if bucket == Bucket.DEPOSIT else PaymentKind.OPERATING,
                    amount_cents=amount_cents,
                    currency=getattr(settings, "PAYMENTS_CURRENCY", "usd"),
                    idempotency_key=idempotency_key,
                    reason=reason,
                )
        except IntegrityError:
            existing = Payment.objects.filter(idempotency_key=idempotency_key).first()
            if existing is None:
                raise
            return ServiceResult.success(cls._handle_for(existing))

        try:
            intent = StripeAdapter.create_payment_intent(
                CreatePaymentIntentParams(
                    amount_cents=amount_cents,
                    currency=payment.currency,
                    idempotency_key=idempotency_key,
                    metadata={
                        "app_id": str(application.id),
                        "firm_id": str(firm.id),
                        "payment_id": str(payment.id),
                        "bucket": str(bucket),
                        "reason": reason,
                    },
                    transfer_data={"destination": destination},
                )
            )
        except StripeError as e:
            logger.warning(
                "Payment intent creation failed",
                extra={**log_context, "payment_id": str(payment.id), "error_code": e.error_code},
            )
            cls._mark_failed(payment, e.message)
            return ServiceResult.from_exception(e)

        Payment.objects.filter(pk=payment.pk, provider_intent_id__isnull=True).update(
            provider_intent_id=intent.id
        )
        payment.refresh_from_db()

        logger.info(
            "Payment intent created",
            extra={**log_context, "payment_id": str(payment.id), "payment_intent_id": intent.id},
        )
        return ServiceResult.success(
            IntentHandle(
                payment=payment,
                payment_intent_id=intent.id,
                client_secret=intent.client_secret,
                status=intent.status,
            )
        )

    @classmethod
    def _reuse_or_cancel_pending(
        cls,
        application: Application,
        bucket: str,
        amount_cents: int,
    ) -> IntentHandle | None:
        """
        Inspect CREATED payments of the same bucket at the gateway.

        A confirmable intent for the same amount on the bank debit rail is
        returned for reuse. Confirmable intents that do not match are
        cancelled so the tenant cannot pay a stale amount. An intent that
        cannot be inspected is cancelled the same way, so at most one
        confirmable intent per bucket stays live.
        """
        logger = cls.get_logger()
        kinds = [PaymentKind.DEPOSIT] if bucket == Bucket.DEPOSIT else [
            kind for kind in PaymentKind.values if kind != PaymentKind.DEPOSIT
        ]
        pending = Payment.objects.filter(
            application=application,
            firm_id=application.firm_id,
            kind__in=kinds,
            status=PaymentStatus.CREATED,
            provider_intent_id__isnull=False,
        ).order_by("created_at")

        for payment in pending:
            try:
                intent = StripeAdapter.retrieve_payment_intent(payment.provider_intent_id)
            except StripeError as e:
                logger.warning(
                    "Could not inspect pending intent",
                    extra={"payment_id": str(payment.id), "error_code": e.error_code},
                )
                cls._supersede(payment, payment.provider_intent_id)
                continue

            if intent.status not in CONFIRMABLE_INTENT_STATUSES:
                continue

            if intent.amount_cents == amount_cents and intent.is_bank_debit_only:
                return IntentHandle(
                    payment=payment,
                    payment_intent_id=intent.id,
                    client_secret=intent.client_secret,
                    status=intent.status,
                    reused=True,
                )

            cls._supersede(payment, intent.id)

        return None

    @classmethod
    def _supersede(cls, payment: Payment, payment_intent_id: str) -> None:
        """
        Cancel a pending intent best-effort and mark its row canceled.

        A cancel the gateway rejects is only logged. Should that intent
        settle later, the reconciler still moves the row to SUCCEEDED.
        """
        logger = cls.get_logger()
        try:
            StripeAdapter.cancel_payment_intent(payment_intent_id)
        except StripeError as e:
            logger.warning(
                "Could not cancel superseded intent",
                extra={"payment_intent_id": payment_intent_id, "error_code": e.error_code},
            )

        with transaction.atomic():
            locked = Payment.objects.select_for_update().get(pk=payment.pk)
            if can_proceed(locked.mark_canceled):
                locked.mark_canceled()
                locked.save()
        logger.info(
            "Superseded pending payment canceled",
            extra={"payment_id": str(payment.id), "payment_intent_id": payment_intent_id},
        )

    @classmethod
    def _handle_for(cls, payment: Payment) -> IntentHandle:
        """Handle for an existing row; the client secret is best-effort."""
        client_secret = None
        status = payment.status
        if payment.provider_intent_id:
            try:
                intent = StripeAdapter.retrieve_payment_intent(payment.provider_intent_id)
                client_secret = intent.client_secret
                status = intent.status
            except StripeError as e:
                cls.get_logger().warning(
                    "Could not retrieve intent for replay",
                    extra={"payment_id": str(payment.id), "error_code": e.error_code},
                )
        return IntentHandle(
            payment=payment,
            payment_intent_id=payment.provider_intent_id,
            client_secret=client_secret,
            status=status,
            reused=True,
        )

    @staticmethod
    def _mark_failed(payment: Payment, reason: str | None) -> None:
        with transaction.atomic():
            locked = Payment.objects.select_for_update().get(pk=payment.pk)
            if can_proceed(locked.mark_failed):
                locked.mark_failed(reason=reason)
                locked.save()
        payment.refresh_from_db()

    # =========================================================================
    # Confirm
    # =========================================================================

    @classmethod
    def confirm_payment(
        cls,
        payment_intent_id: str,
        payment_method_id: str | None = None,
    ) -> ServiceResult[PaymentIntentResult]:
        """
        Confirm a PaymentIntent and reconcile the outcome.

        An intent that is already processing or settled is returned as-is.
        The resulting status goes through PaymentReconciler, the same path
        as webhooks, so the gate evaluator runs on settlement.
        """
        logger = cls.get_logger()
        payment = Payment.objects.filter(provider_intent_id=payment_intent_id).first()
        if payment is None:
            return ServiceResult.from_exception(
                PaymentNotFoundError(
                    f"No payment for intent {payment_intent_id}",
                    details={"payment_intent_id": payment_intent_id},
                )
            )

        try:
            intent = StripeAdapter.retrieve_payment_intent(payment_intent_id)
            if intent.status not in IN_FLIGHT_INTENT_STATUSES:
                intent = StripeAdapter.confirm_payment_intent(
                    payment_intent_id,
                    payment_method_id=payment_method_id,
                    idempotency_key=IdempotencyKeyGenerator.for_operation("confirm", payment.id),
                )
        except StripeError as e:
            logger.warning(
                "Payment intent confirmation failed",
                extra={
                    "payment_id": str(payment.id),
                    "payment_intent_id": payment_intent_id,
                    "error_code": e.error_code,
                },
            )
            cls._mark_failed(payment, e.message)
            return ServiceResult.from_exception(e)

        PaymentReconciler.reconcile_intent(intent, source="confirm")
        return ServiceResult.success(intent)
