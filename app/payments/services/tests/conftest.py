"""
Fixtures for payment service tests.

Stripe is never called: every adapter method used by the services is
patched on StripeAdapter and the mocks are yielded for assertions.
"""

from unittest.mock import patch

import pytest

from payments.adapters import StripeAdapter


@pytest.fixture
def mock_stripe_adapter():
    """Patch the StripeAdapter methods the services call."""
    with (
        patch.object(StripeAdapter, "create_payment_intent") as create,
        patch.object(StripeAdapter, "retrieve_payment_intent") as retrieve,
        patch.object(StripeAdapter, "confirm_payment_intent") as confirm,
        patch.object(StripeAdapter, "cancel_payment_intent") as cancel,
        patch.object(StripeAdapter, "retrieve_charge") as retrieve_charge,
    ):
        retrieve_charge.return_value = None
        yield {
            "create": create,
            "retrieve": retrieve,
            "confirm": confirm,
            "cancel": cancel,
            "retrieve_charge": retrieve_charge,
        }
