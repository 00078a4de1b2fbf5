"""
Receipt notifications.

NotificationService is the delivery interface; EmailNotificationService
sends through Django's email framework and is the default. The concrete
class is chosen by the PAYMENTS_NOTIFICATION_SERVICE setting so tests and
deployments can swap it out.

ReceiptNotifier sends the security deposit receipt once per payment.
receipt_sent_at is claimed with a conditional update before anything is
sent, so concurrent settlements of the same deposit cannot both send; the
claim is released when no recipient was reached. Every send carries the
idempotency key "dep-receipt:{payment_id}:{recipient}".

Usage:
    from payments.notifications import ReceiptNotifier

    sent = ReceiptNotifier.send_deposit_receipt(payment)
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from functools import lru_cache
from typing import Protocol, runtime_checkable

from django.conf import settings
from django.core.mail import EmailMessage
from django.template.loader import render_to_string
from django.utils import timezone
from django.utils.module_loading import import_string

from payments.ledger.types import Money
from payments.models import Payment
from payments.state_machines import PaymentKind, PaymentStatus

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class NotificationResult:
    ok: bool
    error: str | None = None


@runtime_checkable
class NotificationService(Protocol):
    """
    Delivery interface for outbound notifications.

    Implementations must treat idempotency_key as a deduplication key:
    the same key may be sent more than once after a retry.
    """

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        idempotency_key: str,
    ) -> NotificationResult: ...


class EmailNotificationService:
    """Sends notifications as plain-text email via the configured EMAIL_BACKEND."""

    def __init__(self, from_email: str | None = None):
        self.from_email = from_email or getattr(
            settings, "PAYMENTS_RECEIPT_FROM_EMAIL", settings.DEFAULT_FROM_EMAIL
        )

    def send(
        self,
        to: str,
        subject: str,
        body: str,
        idempotency_key: str,
    ) -> NotificationResult:
        message = EmailMessage(
            subject=subject,
            body=body,
            from_email=self.from_email,
            to=[to],
            headers={"X-Idempotency-Key": idempotency_key},
        )
        try:
            message.send(fail_silently=False)
        except Exception as e:
            logger.warning(
                f"Email delivery failed: {type(e).__name__}",
                extra={"to": to, "idempotency_key": idempotency_key},
            )
            return NotificationResult(ok=False, error=str(e) or type(e).__name__)
        return NotificationResult(ok=True)


@lru_cache(maxsize=4)
def _service_class(path: str) -> type:
    return import_string(path)


def get_notification_service() -> NotificationService:
    """Instantiate the class named by PAYMENTS_NOTIFICATION_SERVICE."""
    path = getattr(
        settings,
        "PAYMENTS_NOTIFICATION_SERVICE",
        "payments.notifications.EmailNotificationService",
    )
    return _service_class(path)()


# =============================================================================
# Deposit Receipt
# =============================================================================


def _interest_display(hundredths: int | None) -> str:
    if hundredths is None:
        return "Up to 5% or the bank rate"
    return f"{hundredths / 100:.2f}%"


class ReceiptNotifier:
    """Builds and sends security deposit receipts."""

    TEMPLATE = "payments/emails/deposit_receipt.txt"

    @classmethod
    def build_deposit_receipt(cls, payment: Payment) -> tuple[str, str]:
        """Return (subject, body) for a deposit payment."""
        application = payment.application
        firm = payment.firm
        premises = application.premises or "Premises"
        received = timezone.localtime(payment.succeeded_at or timezone.now())
        context = {
            "landlord": firm.display_legal_name,
            "tenant": application.tenant_name or "Tenant",
            "premises": premises,
            "amount": Money(cents=payment.amount_cents, currency=payment.currency).display,
            "received_on": received.date().isoformat(),
            "bank_name": firm.escrow_bank_name,
            "bank_address": firm.escrow_bank_address,
            "account_display": (
                f"**** {firm.escrow_account_last4}" if firm.escrow_account_last4 else ""
            ),
            "interest_display": _interest_display(firm.escrow_interest_hundredths),
        }
        subject = f"Security Deposit Receipt - {premises}"
        return subject, render_to_string(cls.TEMPLATE, context).strip() + "\n"

    @classmethod
    def send_deposit_receipt(
        cls,
        payment: Payment,
        service: NotificationService | None = None,
    ) -> bool:
        """
        Send the deposit receipt to every application contact.

        Skipped for non-deposit or unsettled payments, when the receipt
        was already sent, or when there are no recipients. Failures are
        recorded in payment.metadata["receipt_error"].

        Returns:
            True if this call marked the receipt as sent
        """
        log_context = {"payment_id": str(payment.id)}
        if payment.kind != PaymentKind.DEPOSIT or payment.status != PaymentStatus.SUCCEEDED:
            return False
        if payment.receipt_sent_at is not None:
            logger.debug("Deposit receipt already sent", extra=log_context)
            return False

        recipients = [
            str(email).strip()
            for email in payment.application.contact_emails or []
            if str(email).strip()
        ]
        if not recipients:
            logger.info("Deposit receipt skipped: no recipients", extra=log_context)
            return False

        service = service or get_notification_service()
        subject, body = cls.build_deposit_receipt(payment)

        # Claim the receipt before sending; only one caller wins the update.
        claimed_at = timezone.now()
        claimed = Payment.objects.filter(pk=payment.pk, receipt_sent_at__isnull=True).update(
            receipt_sent_at=claimed_at,
        )
        if not claimed:
            logger.debug("Deposit receipt claimed by another worker", extra=log_context)
            return False

        failures: list[str] = []
        delivered: list[str] = []
        for recipient in recipients:
            result = service.send(
                to=recipient,
                subject=subject,
                body=body,
                idempotency_key=f"dep-receipt:{payment.id}:{recipient}",
            )
            if result.ok:
                delivered.append(recipient)
            else:
                failures.append(f"{recipient}:{result.error or 'unknown'}")

        metadata = dict(payment.metadata or {})
        if failures:
            metadata["receipt_error"] = ", ".join(failures)

        if not delivered:
            # Release the claim so a later settlement replay can try again
            Payment.objects.filter(pk=payment.pk, receipt_sent_at=claimed_at).update(
                receipt_sent_at=None,
                metadata=metadata,
            )
            payment.metadata = metadata
            logger.warning("Deposit receipt not delivered", extra={**log_context, "errors": failures})
            return False

        metadata["receipt_sent_to"] = delivered
        Payment.objects.filter(pk=payment.pk).update(metadata=metadata)
        payment.receipt_sent_at = claimed_at
        payment.metadata = metadata
        logger.info(
            f"Deposit receipt sent to {len(delivered)} recipient(s)",
            extra=log_context,
        )
        return True
