"""
Pytest fixtures for rental application tests.
"""

import pytest

from applications.tests.factories import ApplicationFactory, FirmFactory, PaymentPlanFactory


@pytest.fixture
def firm(db):
    """Firm with operating and escrow accounts configured."""
    return FirmFactory()


@pytest.fixture
def application(db, firm):
    """Application in MIN_DUE with no plan yet."""
    return ApplicationFactory(firm=firm)


@pytest.fixture
def payment_plan(db, application):
    """Default plan for the application fixture."""
    return PaymentPlanFactory(application=application)
