"""
Stripe webhook endpoint.

The view only verifies and stores. Business logic runs in the
process_webhook_event Celery task so Stripe gets its 2xx quickly and
failures are retried from the stored WebhookEvent.

Responses:
    400: Missing or invalid Stripe-Signature, or an event without id/type
    200: Event stored (new or duplicate), even if queueing failed

Usage:
    from payments.webhooks.views import stripe_webhook

    urlpatterns = [
        path("webhooks/stripe/", stripe_webhook, name="stripe_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from payments.adapters import StripeAdapter
from payments.exceptions import StripeInvalidRequestError
from payments.models import WebhookEvent
from payments.state_machines import WebhookEventStatus

logger = logging.getLogger(__name__)


def _bad_request(error: str) -> JsonResponse:
    return JsonResponse({"received": False, "error": error}, status=400)


@csrf_exempt
@require_POST
def stripe_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive, store and queue a Stripe webhook event.

    Duplicate deliveries are recognised by WebhookEvent.stripe_event_id.
    An already processed duplicate is acknowledged without queueing.
    """
    signature = request.headers.get("Stripe-Signature", "")
    if not signature:
        logger.warning("Webhook received without Stripe-Signature header")
        return _bad_request("missing_signature")

    try:
        event_data = StripeAdapter.verify_webhook_signature(request.body, signature)
    except StripeInvalidRequestError as e:
        logger.warning("Webhook signature verification failed", extra={"error": e.message})
        return _bad_request("invalid_signature")
    except Exception as e:
        logger.error(
            f"Unexpected error verifying webhook: {type(e).__name__}",
            exc_info=True,
        )
        return _bad_request("verification_error")

    stripe_event_id = event_data.get("id")
    event_type = event_data.get("type")
    if not stripe_event_id or not event_type:
        logger.warning("Webhook missing id or type")
        return _bad_request("invalid_event")

    webhook_event, created = WebhookEvent.objects.get_or_create(
        stripe_event_id=stripe_event_id,
        defaults={
            "event_type": event_type,
            "payload": event_data,
            "status": WebhookEventStatus.PENDING,
        },
    )
    log_context = {
        "stripe_event_id": stripe_event_id,
        "event_type": event_type,
        "webhook_event_id": str(webhook_event.id),
    }

    if not created and webhook_event.is_processed:
        logger.info("Duplicate webhook already processed", extra=log_context)
        return JsonResponse({"received": True, "duplicate": True})

    try:
        from payments.tasks import process_webhook_event

        process_webhook_event.delay(str(webhook_event.id))
        logger.info("Webhook queued for processing", extra=log_context)
    except Exception as e:
        # FAILED events are picked up again by retry_failed_webhooks.
        logger.error("Failed to queue webhook", extra=log_context, exc_info=True)
        webhook_event.mark_failed(f"Queueing failed: {type(e).__name__}: {e}")
        webhook_event.save(update_fields=["status", "error_message", "updated_at"])

    return JsonResponse({"received": True, "duplicate": not created})
