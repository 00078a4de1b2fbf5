"""
Pytest fixtures shared by all payments test packages.

The default plan (see PaymentPlanFactory) yields these charges:

    key_fee            10000   operating  priority 0
    first_month       200000   operating  priority 1
    last_month        200000   operating  priority 2
    security_deposit  200000   deposit    priority 3
    rent:2025-04 .. rent:2026-01 (10 x 200000)  operating  priority 2000+

Usage:
    def test_deposit(application_with_plan, succeeded_payment):
        payment = succeeded_payment(kind=PaymentKind.DEPOSIT, amount_cents=200000)
"""

import pytest

from applications.tests.factories import ApplicationFactory, FirmFactory, PaymentPlanFactory
from payments.state_machines import PaymentStatus
from payments.tests.factories import PaymentFactory


@pytest.fixture
def firm(db):
    return FirmFactory()


@pytest.fixture
def application(db, firm):
    """Application in MIN_DUE without a plan."""
    return ApplicationFactory(firm=firm)


@pytest.fixture
def payment_plan(db, application):
    return PaymentPlanFactory(application=application)


@pytest.fixture
def application_with_plan(application, payment_plan):
    """MIN_DUE application with the default plan and no thresholds."""
    return application


@pytest.fixture
def gated_application(application):
    """MIN_DUE application gated on $4,100 operating and $2,000 deposit."""
    PaymentPlanFactory(
        application=application,
        countersign_upfront_threshold_cents=410000,
        countersign_deposit_threshold_cents=200000,
    )
    return application


@pytest.fixture
def succeeded_payment(application):
    """Factory fixture for SUCCEEDED payments on the application fixture."""

    def _create(**kwargs):
        kwargs.setdefault("application", application)
        kwargs.setdefault("status", PaymentStatus.SUCCEEDED)
        return PaymentFactory(**kwargs)

    return _create


@pytest.fixture
def mock_notification_settings(settings):
    """Route receipts through Django's locmem email backend."""
    settings.EMAIL_BACKEND = "django.core.mail.backends.locmem.EmailBackend"
    settings.PAYMENTS_NOTIFICATION_SERVICE = "payments.notifications.EmailNotificationService"
    settings.PAYMENTS_RECEIPT_FROM_EMAIL = "receipts@example.com"
    return settings
