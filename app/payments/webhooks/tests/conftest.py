"""
Pytest fixtures for webhook tests.

Provides stored WebhookEvent rows in each processing state and a
request factory for the webhook endpoint.
"""

import json

import pytest
from django.test import RequestFactory

from payments.state_machines import WebhookEventStatus
from payments.tests.factories import WebhookEventFactory


# =============================================================================
# WebhookEvent Fixtures
# =============================================================================


@pytest.fixture
def pending_webhook_event(db):
    """A stored, not yet processed payment_intent.succeeded event."""
    return WebhookEventFactory()


@pytest.fixture
def processed_webhook_event(db):
    return WebhookEventFactory(status=WebhookEventStatus.PROCESSED, retry_count=1)


@pytest.fixture
def failed_webhook_event(db):
    return WebhookEventFactory(
        status=WebhookEventStatus.FAILED,
        retry_count=1,
        error_message="Previous failure",
    )


# =============================================================================
# Request Fixtures
# =============================================================================


@pytest.fixture
def rf():
    """Request factory for creating test requests."""
    return RequestFactory()


@pytest.fixture
def make_webhook_request(rf):
    """Build a POST to the webhook endpoint with a Stripe-Signature header."""

    def _make(payload: dict, signature: str | None = "t=1,v1=test_sig"):
        headers = {"HTTP_STRIPE_SIGNATURE": signature} if signature else {}
        return rf.post(
            "/api/v1/payments/webhooks/stripe/",
            data=json.dumps(payload),
            content_type="application/json",
            **headers,
        )

    return _make
