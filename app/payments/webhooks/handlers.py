"""
Webhook event handlers for Stripe events.

Every handled event ends up in PaymentReconciler: reconcile_intent for
intent and charge status, reconcile_return for refunds and disputes. The
reconciler, not the event type, decides what changes. Handlers only find
the PaymentIntent the event is about.

Routing:
    payment_intent.*                        -> the event object is the intent
    charge.succeeded / pending / failed     -> retrieve the charge's intent
    charge.refunded (full)                  -> settled payment RETURNED
    charge.dispute.created                  -> settled payment RETURNED
    anything else                           -> acknowledged no-op

Usage:
    from payments.webhooks.handlers import dispatch_webhook, register_handler

    @register_handler("custom.event")
    def handle_custom_event(webhook_event: WebhookEvent) -> ServiceResult:
        ...

    result = dispatch_webhook(webhook_event)
"""

from __future__ import annotations

import logging
from typing import Callable

from core.services import ServiceResult
from payments.adapters import StripeAdapter
from payments.exceptions import PaymentValidationError
from payments.models import WebhookEvent
from payments.services.reconciler import PaymentReconciler

logger = logging.getLogger(__name__)

PAYMENT_INTENT_PREFIX = "payment_intent."


# =============================================================================
# Handler Registry
# =============================================================================


WebhookHandler = Callable[[WebhookEvent], ServiceResult]

# Maps event type strings to handler functions
WEBHOOK_HANDLERS: dict[str, WebhookHandler] = {}


def register_handler(event_type: str) -> Callable[[WebhookHandler], WebhookHandler]:
    """
    Decorator to register a webhook event handler.

    Args:
        event_type: The Stripe event type (e.g., "charge.succeeded")
    """

    def decorator(func: WebhookHandler) -> WebhookHandler:
        WEBHOOK_HANDLERS[event_type] = func
        return func

    return decorator


def resolve_handler(event_type: str) -> WebhookHandler | None:
    """Exact registration first, then the payment_intent.* family."""
    handler = WEBHOOK_HANDLERS.get(event_type)
    if handler is None and event_type.startswith(PAYMENT_INTENT_PREFIX):
        return handle_payment_intent_event
    return handler


def dispatch_webhook(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Dispatch a webhook event to its handler.

    Unknown event types return success so they are marked processed
    instead of being retried forever.
    """
    handler = resolve_handler(webhook_event.event_type)

    if handler is None:
        logger.info(
            f"No handler registered for event type: {webhook_event.event_type}",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    logger.info(
        f"Dispatching {webhook_event.event_type} to handler",
        extra={"stripe_event_id": webhook_event.stripe_event_id},
    )
    return handler(webhook_event)


# =============================================================================
# Payment Intent Events
# =============================================================================


def handle_payment_intent_event(webhook_event: WebhookEvent) -> ServiceResult:
    """Reconcile the PaymentIntent carried in the event payload."""
    try:
        intent = StripeAdapter.payment_intent_from_payload(webhook_event.data_object)
    except PaymentValidationError as e:
        logger.error(
            f"{webhook_event.event_type}: payload has no payment intent",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.from_exception(e)

    return PaymentReconciler.reconcile_intent(intent, source="webhook")


# =============================================================================
# Charge Events
# =============================================================================


def _object_id(value) -> str | None:
    """Id of an expandable field, given as an id string or an object."""
    if isinstance(value, dict):
        return value.get("id")
    return value or None


@register_handler("charge.succeeded")
@register_handler("charge.pending")
@register_handler("charge.failed")
def handle_charge_event(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Reconcile the intent behind a charge.

    Charge payloads do not carry the intent status, so the intent is
    retrieved from Stripe. Retrieval errors propagate so the task can
    retry transient failures.
    """
    payment_intent_id = _object_id(webhook_event.data_object.get("payment_intent"))

    if not payment_intent_id:
        logger.info(
            f"{webhook_event.event_type}: charge has no payment intent; ignoring",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    intent = StripeAdapter.retrieve_payment_intent(payment_intent_id)
    return PaymentReconciler.reconcile_intent(intent, source="webhook")


# =============================================================================
# Return Events
# =============================================================================


@register_handler("charge.refunded")
def handle_charge_refunded(webhook_event: WebhookEvent) -> ServiceResult:
    """
    Return a settled payment whose charge was fully refunded.

    Partial refunds leave the payment settled and are only logged.
    """
    charge = webhook_event.data_object
    payment_intent_id = _object_id(charge.get("payment_intent"))
    if not payment_intent_id:
        return ServiceResult.success(None)

    if not charge.get("refunded"):
        logger.info(
            "Partial refund; payment stays settled",
            extra={
                "stripe_event_id": webhook_event.stripe_event_id,
                "payment_intent_id": payment_intent_id,
                "amount_refunded": charge.get("amount_refunded"),
            },
        )
        return ServiceResult.success(None)

    return PaymentReconciler.reconcile_return(payment_intent_id, reason="refunded")


@register_handler("charge.dispute.created")
def handle_charge_dispute(webhook_event: WebhookEvent) -> ServiceResult:
    """Return a settled payment as soon as its charge is disputed."""
    dispute = webhook_event.data_object
    payment_intent_id = _object_id(dispute.get("payment_intent"))
    if not payment_intent_id:
        logger.info(
            "Dispute has no payment intent; ignoring",
            extra={"stripe_event_id": webhook_event.stripe_event_id},
        )
        return ServiceResult.success(None)

    reason = f"dispute: {dispute.get('reason') or 'unknown'}"
    return PaymentReconciler.reconcile_return(payment_intent_id, reason=reason)

