"""
WebhookEvent model for Stripe webhook event tracking.

Every verified webhook is stored before it is processed. The unique
stripe_event_id makes redelivery of the same event a lookup instead of a
second processing run, and failed events stay behind for the retry task.

Usage:
    from payments.models import WebhookEvent

    event, created = WebhookEvent.objects.get_or_create(
        stripe_event_id="evt_1234567890",
        defaults={
            "event_type": "payment_intent.succeeded",
            "payload": payload,
        },
    )
    if event.is_processed:
        return  # duplicate delivery
"""

from __future__ import annotations

from django.conf import settings
from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from payments.state_machines import WebhookEventStatus


def max_webhook_retries() -> int:
    return int(getattr(settings, "PAYMENTS_WEBHOOK_MAX_RETRIES", 5))


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    A verified Stripe event and its processing status.

    Processing Flow:
        1. Endpoint verifies the signature and get_or_creates the row
        2. process_webhook_event marks it PROCESSING and dispatches
        3. Handler success marks it PROCESSED, an exception marks it FAILED
        4. retry_failed_webhooks re-queues FAILED rows below the retry limit

    Fields:
        stripe_event_id: Stripe Event ID (evt_xxx), unique
        event_type: e.g. 'payment_intent.succeeded'
        payload: Full event JSON
        status: Processing status
        processed_at: When processing succeeded
        error_message: Last failure message
        retry_count: Number of processing attempts
    """

    stripe_event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Stripe Event ID (evt_xxx)",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
    )

    payload = models.JSONField(
        help_text="Full webhook payload from Stripe",
    )

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.PENDING,
        db_index=True,
    )

    processed_at = models.DateTimeField(null=True, blank=True)

    error_message = models.TextField(null=True, blank=True)

    retry_count = models.PositiveSmallIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "retry_count"]),
            models.Index(fields=["event_type", "created_at"]),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.stripe_event_id}, {self.event_type})"

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    @property
    def can_retry(self) -> bool:
        """Failed and still below PAYMENTS_WEBHOOK_MAX_RETRIES attempts."""
        return self.is_failed and self.retry_count < max_webhook_retries()

    # Mutators below do not save; the caller saves.

    def mark_processing(self) -> None:
        self.status = WebhookEventStatus.PROCESSING
        self.retry_count += 1

    def mark_processed(self) -> None:
        self.status = WebhookEventStatus.PROCESSED
        self.processed_at = timezone.now()
        self.error_message = None

    def mark_failed(self, error_message: str) -> None:
        self.status = WebhookEventStatus.FAILED
        self.error_message = error_message[:2000]

    @property
    def data_object(self) -> dict:
        """payload.data.object, or {} for a malformed payload."""
        data = self.payload.get("data") if isinstance(self.payload, dict) else None
        obj = data.get("object") if isinstance(data, dict) else None
        return obj if isinstance(obj, dict) else {}

    def get_object_id(self) -> str | None:
        return self.data_object.get("id")
