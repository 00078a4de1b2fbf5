"""
Factory Boy factories for rental application test data.

Usage:
    from applications.tests.factories import ApplicationFactory, PaymentPlanFactory

    application = ApplicationFactory(status=ApplicationStatus.MIN_DUE)
    plan = PaymentPlanFactory(application=application, security_deposit_cents=0)
"""

from datetime import date

import factory

from applications.models import Application, ApplicationEvent, Firm, PaymentPlan
from applications.states import ApplicationStatus


class FirmFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Firm instances.

    Both connected accounts and the escrow disclosure are filled in, so
    payments can be started for either bucket out of the box.
    """

    class Meta:
        model = Firm

    name = factory.Sequence(lambda n: f"Firm {n}")
    legal_name = factory.LazyAttribute(lambda o: f"{o.name} LLC")
    stripe_operating_account_id = factory.Sequence(lambda n: f"acct_operating_{n:06d}")
    stripe_escrow_account_id = factory.Sequence(lambda n: f"acct_escrow_{n:06d}")
    escrow_bank_name = "First Escrow Bank"
    escrow_bank_address = "1 Wall St, New York, NY"
    escrow_account_last4 = "6789"
    escrow_interest_hundredths = None


class ApplicationFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Application instances.

    Defaults to MIN_DUE, the status in which payments are collected.
    """

    class Meta:
        model = Application

    firm = factory.SubFactory(FirmFactory)
    status = ApplicationStatus.MIN_DUE
    premises = factory.Sequence(lambda n: f"{n} Main St, Apt 4B")
    tenant_name = "Jordan Tenant"
    contact_emails = factory.LazyFunction(lambda: ["tenant@example.com"])


class PaymentPlanFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating PaymentPlan instances.

    Defaults describe a 12 month lease at $2,000/month with a $100 key
    fee, first and last month upfront and a $2,000 security deposit.
    Countersign thresholds default to zero (no payment gate).
    """

    class Meta:
        model = PaymentPlan

    application = factory.SubFactory(ApplicationFactory)
    monthly_rent_cents = 200000
    term_months = 12
    start_date = date(2025, 3, 1)
    key_fee_cents = 10000
    first_month_cents = 200000
    last_month_cents = 200000
    security_deposit_cents = 200000
    countersign_upfront_threshold_cents = 0
    countersign_deposit_threshold_cents = 0
    priority = factory.LazyFunction(list)


class ApplicationEventFactory(factory.django.DjangoModelFactory):
    class Meta:
        model = ApplicationEvent

    application = factory.SubFactory(ApplicationFactory)
    event = "application.note"
    actor = "system"
    metadata = factory.LazyFunction(dict)
