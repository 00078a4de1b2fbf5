"""Fixtures for the payments integration tests."""

from payments.services.tests.conftest import mock_stripe_adapter  # noqa: F401
