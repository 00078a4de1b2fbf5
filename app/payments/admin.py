"""
Payment admin configuration.

Payments and webhook events are written by the service layer; the admin
is a read-mostly view for support staff. Ledger admin lives in
payments.ledger.admin and is re-exported here.
"""

from django.contrib import admin

from payments.ledger.admin import LedgerEntryAdmin
from payments.ledger.types import Money
from payments.models import Payment, WebhookEvent
from payments.state_machines import WebhookEventStatus

__all__ = [
    "LedgerEntryAdmin",
    "PaymentAdmin",
    "WebhookEventAdmin",
]


@admin.register(Payment)
class PaymentAdmin(admin.ModelAdmin):
    """
    Admin configuration for Payment.

    State changes go through PaymentReconciler, never the admin.
    """

    list_display = [
        "id",
        "application",
        "kind",
        "amount_display",
        "status",
        "provider_intent_id",
        "receipt_sent_at",
        "created_at",
    ]
    list_filter = ["status", "kind", "created_at"]
    search_fields = ["id", "provider_intent_id", "provider_charge_id", "idempotency_key", "application__id"]
    readonly_fields = [
        "id",
        "application",
        "firm",
        "kind",
        "amount_cents",
        "currency",
        "status",
        "provider_intent_id",
        "provider_charge_id",
        "idempotency_key",
        "reason",
        "processing_at",
        "succeeded_at",
        "failed_at",
        "canceled_at",
        "receipt_sent_at",
        "failure_reason",
        "metadata",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "application", "firm", "kind", "reason"),
            },
        ),
        (
            "Amount",
            {
                "fields": ("amount_cents", "currency", "status"),
            },
        ),
        (
            "Stripe",
            {
                "fields": ("provider_intent_id", "provider_charge_id", "idempotency_key"),
            },
        ),
        (
            "Timeline",
            {
                "fields": ("processing_at", "succeeded_at", "failed_at", "canceled_at", "receipt_sent_at"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("failure_reason", "metadata"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    @admin.display(description="Amount")
    def amount_display(self, obj: Payment) -> str:
        return str(Money(cents=obj.amount_cents, currency=obj.currency))

    def has_delete_permission(self, request, obj=None) -> bool:
        return False

    def has_add_permission(self, request) -> bool:
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """Webhook processing status, with a manual re-queue action."""

    list_display = [
        "id",
        "stripe_event_id",
        "event_type",
        "status",
        "retry_count",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "event_type", "created_at"]
    search_fields = ["id", "stripe_event_id", "event_type"]
    readonly_fields = [
        "id",
        "stripe_event_id",
        "event_type",
        "status",
        "payload",
        "processed_at",
        "retry_count",
        "error_message",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["requeue_events"]

    @admin.action(description="Re-queue selected events for processing")
    def requeue_events(self, request, queryset):
        from payments.tasks import process_webhook_event

        count = 0
        for event in queryset.exclude(status=WebhookEventStatus.PROCESSED):
            process_webhook_event.delay(str(event.id))
            count += 1
        self.message_user(request, f"Queued {count} webhook events.")

    def has_delete_permission(self, request, obj=None) -> bool:
        """Webhook events are the audit trail of gateway notifications."""
        return False

    def has_add_permission(self, request) -> bool:
        return False
