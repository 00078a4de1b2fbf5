"""
Celery tasks for payment processing.

This module provides async tasks for:
- Processing stored Stripe webhook events
- Retrying failed webhook events (celery beat, every 5 minutes)
- Resetting events stuck in PROCESSING after a worker crash (every 15 minutes)

Usage:
    from payments.tasks import process_webhook_event

    process_webhook_event.delay(str(webhook_event.id))
"""

from __future__ import annotations

import logging
from datetime import timedelta
from uuid import UUID

from celery import shared_task
from django.utils import timezone

from payments.adapters import backoff_delay, is_retryable_stripe_error
from payments.models import WebhookEvent
from payments.models.webhook_event import max_webhook_retries
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

STUCK_PROCESSING_THRESHOLD_MINUTES = 15
RETRY_BATCH_SIZE = 100


# =============================================================================
# Webhook Processing Tasks
# =============================================================================


@shared_task(bind=True, acks_late=True, max_retries=5)
def process_webhook_event(self, webhook_event_id: str) -> dict:
    """
    Process a stored Stripe webhook event.

    Steps:
        1. Load the WebhookEvent (missing -> not_found)
        2. Skip if already processed
        3. Mark processing, dispatch, mark processed or failed

    Transient Stripe errors are retried by Celery with exponential
    backoff; anything else leaves the event FAILED for
    retry_failed_webhooks.
    """
    from payments.webhooks.handlers import dispatch_webhook

    webhook_event_id = str(UUID(str(webhook_event_id)))
    log_context = {"webhook_event_id": webhook_event_id}

    webhook_event = WebhookEvent.objects.filter(id=webhook_event_id).first()
    if webhook_event is None:
        logger.error("WebhookEvent not found", extra=log_context)
        return {"status": "not_found", "webhook_event_id": webhook_event_id}

    log_context.update(
        stripe_event_id=webhook_event.stripe_event_id,
        event_type=webhook_event.event_type,
    )

    if webhook_event.is_processed:
        logger.info("WebhookEvent already processed, skipping", extra=log_context)
        return {"status": "already_processed", "webhook_event_id": webhook_event_id}

    webhook_event.mark_processing()
    webhook_event.save(update_fields=["status", "retry_count", "updated_at"])

    try:
        result = dispatch_webhook(webhook_event)
    except Exception as e:
        webhook_event.mark_failed(f"{type(e).__name__}: {e}")
        webhook_event.save(update_fields=["status", "error_message", "updated_at"])
        logger.exception("Webhook processing failed with exception", extra=log_context)

        if is_retryable_stripe_error(e):
            raise self.retry(exc=e, countdown=backoff_delay(self.request.retries))
        return {"status": "failed", "webhook_event_id": webhook_event_id, "error": str(e)}

    if not result.success:
        error_msg = result.error or "Handler returned failure"
        webhook_event.mark_failed(error_msg)
        webhook_event.save(update_fields=["status", "error_message", "updated_at"])
        logger.warning(
            f"Webhook handler failed: {error_msg}",
            extra={**log_context, "error_code": result.error_code},
        )
        return {"status": "handler_failed", "webhook_event_id": webhook_event_id, "error": error_msg}

    webhook_event.mark_processed()
    webhook_event.save(update_fields=["status", "processed_at", "error_message", "updated_at"])
    logger.info("Webhook processed successfully", extra=log_context)
    return {"status": "processed", "webhook_event_id": webhook_event_id}


@shared_task
def retry_failed_webhooks() -> dict:
    """
    Re-queue FAILED webhook events below PAYMENTS_WEBHOOK_MAX_RETRIES.

    Returns:
        Dict with count of webhooks queued for retry
    """
    failed_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.FAILED,
        retry_count__lt=max_webhook_retries(),
    ).order_by("created_at")[:RETRY_BATCH_SIZE]

    queued_count = 0
    for webhook in failed_webhooks:
        try:
            process_webhook_event.delay(str(webhook.id))
        except Exception as e:
            logger.error(
                f"Failed to queue webhook for retry: {e}",
                extra={"webhook_event_id": str(webhook.id)},
            )
            continue
        queued_count += 1
        logger.info(
            "Queued failed webhook for retry",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
                "retry_count": webhook.retry_count,
            },
        )

    if queued_count:
        logger.info(f"Queued {queued_count} failed webhooks for retry")
    return {"queued_count": queued_count}


@shared_task
def reset_stuck_webhooks() -> dict:
    """
    Reset webhook events stuck in PROCESSING.

    A worker that dies mid-event leaves it PROCESSING forever. Such events
    are marked FAILED so retry_failed_webhooks picks them up again.

    Returns:
        Dict with count of webhooks reset
    """
    threshold = timezone.now() - timedelta(minutes=STUCK_PROCESSING_THRESHOLD_MINUTES)
    stuck_webhooks = WebhookEvent.objects.filter(
        status=WebhookEventStatus.PROCESSING,
        updated_at__lt=threshold,
    )

    reset_count = 0
    for webhook in stuck_webhooks:
        webhook.mark_failed("Processing timed out - reset for retry")
        webhook.save(update_fields=["status", "error_message", "updated_at"])
        reset_count += 1
        logger.warning(
            "Reset stuck webhook",
            extra={
                "webhook_event_id": str(webhook.id),
                "stripe_event_id": webhook.stripe_event_id,
            },
        )

    return {"reset_count": reset_count}
