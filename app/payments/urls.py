"""
Payments URLconf.

Stripe is the only HTTP caller of this service. Tenant and landlord
surfaces call PaymentIntentService and ObligationService in-process.

Mounted under /api/v1/payments/ by config.urls, so the webhook is
reversed as "payments:stripe_webhook".
"""

from django.urls import path

from payments.webhooks.views import stripe_webhook

app_name = "payments"

urlpatterns = [
    path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
]
