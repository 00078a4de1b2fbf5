"""
URL configuration for the payments engine.

URL Structure:
    /admin/                              - Django admin interface
    /api/v1/payments/                    - Payment endpoints
        webhooks/stripe/                 - Stripe webhook endpoint (POST)

Tenant and landlord facing request handlers live outside this service and
call the payment services directly.
"""

from django.contrib import admin
from django.urls import include, path

api_v1_patterns = [
    path("payments/", include("payments.urls")),
]

urlpatterns = [
    path("admin/", admin.site.urls),
    path("api/v1/", include(api_v1_patterns)),
]

admin.site.site_header = "Payments Admin"
admin.site.site_title = "Payments Admin"
admin.site.index_title = "Applications, payments and ledger"
