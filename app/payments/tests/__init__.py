"""
Tests for payments app.

This package contains test modules for:
- test_charges.py: Charge materialization from a payment plan
- test_progress.py: Step progress milestones
- test_policy.py: Amount policy for deposit and operating payments
- test_models.py: Payment and WebhookEvent model tests
- test_notifications.py: Deposit receipt delivery
- test_integration.py: Payment journeys across services, webhooks and tasks

Service, ledger and webhook tests live beside their packages
(adapters/tests, services/tests, ledger/tests, webhooks/tests).

Usage:
    pytest app/payments/
    pytest app/payments/tests/test_progress.py
"""
