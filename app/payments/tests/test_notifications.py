"""
Tests for deposit receipt notifications.

Tests cover:
- Receipt content (landlord, tenant, premises, escrow disclosure)
- One send per recipient with a stable idempotency key
- receipt_sent_at gating and failure recording
- Notification service selection by setting
"""

from unittest.mock import MagicMock

import pytest
from django.utils import timezone

from payments.notifications import (
    EmailNotificationService,
    NotificationResult,
    NotificationService,
    ReceiptNotifier,
    get_notification_service,
)
from payments.state_machines import PaymentKind, PaymentStatus
from payments.tests.factories import PaymentFactory


class RecordingService:
    """NotificationService that records sends and can fail per recipient."""

    def __init__(self, failing: set[str] | None = None):
        self.sent: list[dict] = []
        self.failing = failing or set()

    def send(self, to, subject, body, idempotency_key):
        self.sent.append({"to": to, "subject": subject, "body": body, "key": idempotency_key})
        if to in self.failing:
            return NotificationResult(ok=False, error="mailbox unavailable")
        return NotificationResult(ok=True)


@pytest.fixture
def deposit_payment(application):
    application.premises = "12 Elm St, Apt 3"
    application.tenant_name = "Sam Renter"
    application.contact_emails = ["sam@example.com", "co-signer@example.com"]
    application.save()
    return PaymentFactory(
        application=application,
        kind=PaymentKind.DEPOSIT,
        status=PaymentStatus.SUCCEEDED,
        amount_cents=200000,
        succeeded_at=timezone.now(),
    )


@pytest.mark.django_db
class TestBuildDepositReceipt:
    def test_subject_and_body(self, deposit_payment):
        firm = deposit_payment.firm
        firm.escrow_interest_hundredths = 150
        firm.save()

        subject, body = ReceiptNotifier.build_deposit_receipt(deposit_payment)

        assert subject == "Security Deposit Receipt - 12 Elm St, Apt 3"
        assert "Tenant: Sam Renter" in body
        assert f"Landlord: {firm.display_legal_name}" in body
        assert "Amount received: $2,000.00" in body
        assert "Bank: First Escrow Bank" in body
        assert "Account: **** 6789" in body
        assert "Interest rate: 1.50%" in body

    def test_missing_interest_rate_has_statutory_text(self, deposit_payment):
        _, body = ReceiptNotifier.build_deposit_receipt(deposit_payment)

        assert "Interest rate: Up to 5% or the bank rate" in body


@pytest.mark.django_db
class TestSendDepositReceipt:
    def test_sends_to_every_contact(self, deposit_payment):
        service = RecordingService()

        sent = ReceiptNotifier.send_deposit_receipt(deposit_payment, service=service)

        assert sent is True
        assert [s["to"] for s in service.sent] == ["sam@example.com", "co-signer@example.com"]
        assert service.sent[0]["key"] == f"dep-receipt:{deposit_payment.id}:sam@example.com"
        deposit_payment.refresh_from_db()
        assert deposit_payment.receipt_sent_at is not None
        assert deposit_payment.metadata["receipt_sent_to"] == ["sam@example.com", "co-signer@example.com"]

    def test_sent_once(self, deposit_payment):
        service = RecordingService()

        ReceiptNotifier.send_deposit_receipt(deposit_payment, service=service)
        again = ReceiptNotifier.send_deposit_receipt(deposit_payment, service=service)

        assert again is False
        assert len(service.sent) == 2

    def test_flag_set_elsewhere_wins(self, deposit_payment):
        """A concurrent sender that already set the flag keeps it."""
        type(deposit_payment).objects.filter(pk=deposit_payment.pk).update(receipt_sent_at=timezone.now())

        service = RecordingService()

        sent = ReceiptNotifier.send_deposit_receipt(deposit_payment, service=service)

        assert sent is False
        assert service.sent == []

    def test_concurrent_senders_email_each_contact_once(self, deposit_payment):
        """Two workers holding the same unsent row: only the first sends."""
        stale = type(deposit_payment).objects.get(pk=deposit_payment.pk)
        service = RecordingService()

        first = ReceiptNotifier.send_deposit_receipt(deposit_payment, service=service)
        second = ReceiptNotifier.send_deposit_receipt(stale, service=service)

        assert first is True
        assert second is False
        assert sorted(s["to"] for s in service.sent) == ["co-signer@example.com", "sam@example.com"]

    def test_total_failure_releases_claim_for_retry(self, deposit_payment):
        failing = RecordingService(failing={"sam@example.com", "co-signer@example.com"})
        ReceiptNotifier.send_deposit_receipt(deposit_payment, service=failing)
        deposit_payment.refresh_from_db()

        assert ReceiptNotifier.send_deposit_receipt(deposit_payment, service=RecordingService()) is True

    def test_partial_failure_still_marks_sent(self, deposit_payment):
        service = RecordingService(failing={"co-signer@example.com"})

        assert ReceiptNotifier.send_deposit_receipt(deposit_payment, service=service)

        deposit_payment.refresh_from_db()
        assert deposit_payment.receipt_sent_at is not None
        assert "co-signer@example.com" in deposit_payment.metadata["receipt_error"]

    def test_total_failure_recorded(self, deposit_payment):
        service = RecordingService(failing={"sam@example.com", "co-signer@example.com"})

        assert ReceiptNotifier.send_deposit_receipt(deposit_payment, service=service) is False

        deposit_payment.refresh_from_db()
        assert deposit_payment.receipt_sent_at is None
        assert "mailbox unavailable" in deposit_payment.metadata["receipt_error"]

    def test_operating_payments_have_no_receipt(self, application):
        payment = PaymentFactory(application=application, status=PaymentStatus.SUCCEEDED)
        service = RecordingService()

        assert ReceiptNotifier.send_deposit_receipt(payment, service=service) is False
        assert service.sent == []

    def test_unsettled_deposit_has_no_receipt(self, application):
        payment = PaymentFactory(application=application, kind=PaymentKind.DEPOSIT)

        assert ReceiptNotifier.send_deposit_receipt(payment, service=RecordingService()) is False

    def test_no_recipients(self, deposit_payment):
        deposit_payment.application.contact_emails = ["  "]
        deposit_payment.application.save()
        service = RecordingService()

        assert ReceiptNotifier.send_deposit_receipt(deposit_payment, service=service) is False
        assert service.sent == []


@pytest.mark.django_db
class TestEmailNotificationService:
    def test_sends_email_with_idempotency_header(self, mailoutbox, settings):
        settings.PAYMENTS_RECEIPT_FROM_EMAIL = "receipts@example.com"

        result = EmailNotificationService().send(
            to="sam@example.com",
            subject="Receipt",
            body="Body",
            idempotency_key="dep-receipt:1:sam@example.com",
        )

        assert result.ok
        assert len(mailoutbox) == 1
        message = mailoutbox[0]
        assert message.to == ["sam@example.com"]
        assert message.from_email == "receipts@example.com"
        assert message.extra_headers["X-Idempotency-Key"] == "dep-receipt:1:sam@example.com"

    def test_delivery_error_is_returned(self, monkeypatch):
        monkeypatch.setattr(
            "payments.notifications.EmailMessage.send",
            MagicMock(side_effect=ConnectionRefusedError("smtp down")),
        )

        result = EmailNotificationService().send("a@example.com", "s", "b", "k")

        assert result == NotificationResult(ok=False, error="smtp down")

    def test_default_service_from_settings(self, settings):
        settings.PAYMENTS_NOTIFICATION_SERVICE = "payments.notifications.EmailNotificationService"

        service = get_notification_service()

        assert isinstance(service, EmailNotificationService)
        assert isinstance(service, NotificationService)
