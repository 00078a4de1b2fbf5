"""
Stripe API adapter for payment operations.

This module provides the StripeAdapter class which encapsulates all
Stripe API interactions. All Stripe calls go through this adapter so
that timeouts, idempotency, error translation and logging are handled
in one place.

Features:
- Configurable timeouts on all API calls
- Automatic error translation to domain exceptions
- Structured logging with timing metrics
- Idempotency support for safe retries
- Thread-safe for use from Celery workers

Configuration (via settings):
- STRIPE_SECRET_KEY: Stripe API secret key
- STRIPE_WEBHOOK_SECRET: Webhook signing secret
- STRIPE_API_TIMEOUT_SECONDS: API call timeout (default: 10)
- STRIPE_MAX_RETRIES: Network retries inside the SDK (default: 3)
- PAYMENTS_SETTLEMENT_RAIL: Payment method type for intents (default: us_bank_account)

Usage:
    from payments.adapters import StripeAdapter, CreatePaymentIntentParams

    result = StripeAdapter.create_payment_intent(
        CreatePaymentIntentParams(
            amount_cents=250000,
            currency="usd",
            idempotency_key="pay:6f1c...:deposit:deposit_minimum:a1b2",
            metadata={"payment_id": str(payment.id)},
            transfer_data={"destination": "acct_escrow"},
        )
    )

    result = StripeAdapter.retrieve_payment_intent("pi_xxx")
"""

from __future__ import annotations

import logging
import random
import time
import uuid
from collections.abc import Callable
from dataclasses import dataclass, field
from typing import Any, TypeVar

import stripe
from django.conf import settings

from payments.exceptions import (
    PaymentValidationError,
    StripeAPIUnavailableError,
    StripeCardDeclinedError,
    StripeError,
    StripeInsufficientFundsError,
    StripeInvalidAccountError,
    StripeInvalidRequestError,
    StripeRateLimitError,
    StripeTimeoutError,
)

R = TypeVar("R")


def settlement_rail() -> list[str]:
    return [getattr(settings, "PAYMENTS_SETTLEMENT_RAIL", "us_bank_account")]


# =============================================================================
# Data Types
# =============================================================================


@dataclass
class CreatePaymentIntentParams:
    """
    Parameters for creating a Stripe PaymentIntent.

    Attributes:
        amount_cents: Payment amount in cents
        currency: ISO 4217 currency code
        idempotency_key: Unique key for idempotent creation
        metadata: Key-value pairs to attach to the PaymentIntent
        payment_method_types: Allowed payment methods (default: settlement rail)
        transfer_data: Connect transfer destination
        description: Statement description shown in the dashboard
    """

    amount_cents: int
    currency: str
    idempotency_key: str
    metadata: dict[str, str] = field(default_factory=dict)
    payment_method_types: list[str] = field(default_factory=settlement_rail)
    transfer_data: dict[str, Any] | None = None
    description: str | None = None

    def __post_init__(self) -> None:
        if not isinstance(self.amount_cents, int) or self.amount_cents <= 0:
            raise PaymentValidationError(
                "amount_cents must be a positive integer",
                details={"amount_cents": self.amount_cents},
            )
        if not self.idempotency_key:
            raise PaymentValidationError("idempotency_key is required")
        if not self.currency:
            raise PaymentValidationError("currency is required")


@dataclass
class PaymentIntentResult:
    """
    A PaymentIntent as seen by this service.

    Built from SDK responses and from webhook payloads alike, so the
    reconciler handles both through one code path.

    Attributes:
        id: PaymentIntent ID (pi_xxx)
        status: requires_payment_method, processing, succeeded, canceled, ...
        amount_cents: Amount in cents
        currency: Currency code
        client_secret: Secret for client-side confirmation
        payment_method_types: Rails the intent accepts
        latest_charge_id: Most recent charge (ch_xxx / py_xxx), if any
        last_error: Gateway failure message, if any
        metadata: Attached metadata
        raw_response: Full Stripe response dict (for debugging)
    """

    id: str
    status: str
    amount_cents: int
    currency: str
    client_secret: str | None = None
    payment_method_types: list[str] = field(default_factory=list)
    latest_charge_id: str | None = None
    last_error: str | None = None
    metadata: dict[str, str] = field(default_factory=dict)
    raw_response: dict[str, Any] = field(default_factory=dict)

    @property
    def is_bank_debit_only(self) -> bool:
        return sorted(self.payment_method_types) == sorted(settlement_rail())


@dataclass
class ChargeResult:
    """
    Supplementary details of a settled charge.

    Attributes:
        id: Charge ID
        status: Charge status
        payment_intent_id: Owning PaymentIntent
        receipt_url: Hosted receipt, if Stripe issued one
        transfer_id: Connect transfer created for the charge, if any
    """

    id: str
    status: str
    payment_intent_id: str | None = None
    receipt_url: str | None = None
    transfer_id: str | None = None
    raw_response: dict[str, Any] = field(default_factory=dict)


def _object_id(value: Any) -> str | None:
    """Return the id of an expandable field (plain id string or object)."""
    if value is None:
        return None
    if isinstance(value, str):
        return value
    if isinstance(value, dict):
        return value.get("id")
    return getattr(value, "id", None)


def _last_error_message(value: Any) -> str | None:
    if not value:
        return None
    if isinstance(value, dict):
        return value.get("message") or value.get("code")
    return getattr(value, "message", None) or getattr(value, "code", None)


# =============================================================================
# Idempotency Key Generator
# =============================================================================


class IdempotencyKeyGenerator:
    """
    Build idempotency keys for payment creation.

    Format: "pay:{app_id}:{bucket}:{reason}:{token}"

    The same key is stored on Payment.idempotency_key (unique) and sent
    to Stripe, so a client replaying the same token can never create a
    second row or a second intent. Without a token a random nonce is used.

    Example:
        key = IdempotencyKeyGenerator.for_payment(app.id, "deposit", "deposit_minimum", "tok-1")
        # "pay:6f1c...:deposit:deposit_minimum:tok-1"
    """

    PREFIX = "pay"

    @classmethod
    def for_payment(
        cls,
        app_id: uuid.UUID | str,
        bucket: str,
        reason: str,
        token: str | None = None,
    ) -> str:
        suffix = (token or "").strip() or uuid.uuid4().hex
        return f"{cls.PREFIX}:{app_id}:{bucket}:{reason}:{suffix}"

    @staticmethod
    def for_operation(operation: str, entity_id: uuid.UUID | str) -> str:
        """Key for follow-up calls on an existing intent (confirm, cancel)."""
        return f"{operation}:{entity_id}:{uuid.uuid4().hex[:12]}"


# =============================================================================
# Retry Logic Helpers
# =============================================================================


def is_retryable_stripe_error(error: Exception) -> bool:
    """
    Check if an error is a transient Stripe error worth retrying.

    Used by the webhook task to choose between a Celery retry and
    leaving the event FAILED for retry_failed_webhooks.
    """
    if isinstance(error, StripeError):
        return getattr(error, "is_retryable", False)
    return False


def backoff_delay(attempt: int, base: float = 1.0, max_delay: float = 60.0) -> float:
    """
    Exponential backoff with 0-25% jitter.

    Example:
        # Attempt 0: 1.0 - 1.25 seconds
        # Attempt 2: 4.0 - 5.0 seconds
        delay = backoff_delay(attempt=2)
    """
    delay = min(base * (2**attempt), max_delay)
    return delay + delay * random.uniform(0, 0.25)


# =============================================================================
# Stripe Adapter
# =============================================================================


class StripeAdapter:
    """
    Adapter for Stripe API operations.

    All methods are classmethods - no instance state is maintained.
    Every call logs a start and a completion line with duration_ms and
    raises a payments.exceptions.StripeError subclass on failure.
    """

    @staticmethod
    def _configure_stripe() -> None:
        stripe.api_key = settings.STRIPE_SECRET_KEY
        stripe.max_network_retries = getattr(settings, "STRIPE_MAX_RETRIES", 3)
        timeout = getattr(settings, "STRIPE_API_TIMEOUT_SECONDS", 10)
        stripe.default_http_client = stripe.RequestsClient(timeout=timeout)

    @classmethod
    def get_logger(cls) -> logging.Logger:
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    def _call(cls, log_context: dict[str, Any], fn: Callable[[], R], level: int = logging.INFO) -> R:
        """Run one SDK call with timing, logging and error translation."""
        cls._configure_stripe()
        logger = cls.get_logger()
        start_time = time.time()
        logger.log(level, "Starting Stripe operation", extra=log_context)
        try:
            response = fn()
        except Exception as e:
            duration_ms = (time.time() - start_time) * 1000
            cls._handle_stripe_error(e, log_context, duration_ms)
            raise
        duration_ms = (time.time() - start_time) * 1000
        logger.log(
            level,
            "Stripe operation completed",
            extra={
                **log_context,
                "status": getattr(response, "status", None),
                "duration_ms": duration_ms,
            },
        )
        return response

    # =========================================================================
    # Result Builders
    # =========================================================================

    @staticmethod
    def payment_intent_from_payload(obj: Any) -> PaymentIntentResult:
        """
        Build a PaymentIntentResult from an SDK object or a webhook dict.

        Raises:
            PaymentValidationError: The object has no intent id
        """
        data = obj.to_dict() if hasattr(obj, "to_dict") else dict(obj or {})
        intent_id = data.get("id")
        if not intent_id:
            raise PaymentValidationError("Payment intent payload has no id")
        return PaymentIntentResult(
            id=intent_id,
            status=data.get("status") or "",
            amount_cents=int(data.get("amount") or 0),
            currency=data.get("currency") or "usd",
            client_secret=data.get("client_secret"),
            payment_method_types=list(data.get("payment_method_types") or []),
            latest_charge_id=_object_id(data.get("latest_charge")),
            last_error=_last_error_message(data.get("last_payment_error")),
            metadata={str(k): str(v) for k, v in (data.get("metadata") or {}).items()},
            raw_response=data,
        )

    # =========================================================================
    # Payment Intents
    # =========================================================================

    @classmethod
    def create_payment_intent(
        cls,
        params: CreatePaymentIntentParams,
        trace_id: str | None = None,
    ) -> PaymentIntentResult:
        """
        Create a Stripe PaymentIntent.

        Raises:
            StripeInvalidAccountError: Destination account unusable
            StripeInvalidRequestError: Invalid parameters
            StripeAPIUnavailableError: Stripe service unavailable
        """
        log_context = {
            "operation": "create_payment_intent",
            "amount_cents": params.amount_cents,
            "currency": params.currency,
            "idempotency_key": params.idempotency_key,
            "trace_id": trace_id,
        }
        create_kwargs: dict[str, Any] = {
            "amount": params.amount_cents,
            "currency": params.currency,
            "metadata": params.metadata,
            "payment_method_types": params.payment_method_types,
            "idempotency_key": params.idempotency_key,
        }
        if params.transfer_data:
            create_kwargs["transfer_data"] = params.transfer_data
        if params.description:
            create_kwargs["description"] = params.description

        intent = cls._call(log_context, lambda: stripe.PaymentIntent.create(**create_kwargs))
        return cls.payment_intent_from_payload(intent)

    @classmethod
    def retrieve_payment_intent(
        cls,
        payment_intent_id: str,
        trace_id: str | None = None,
    ) -> PaymentIntentResult:
        """
        Retrieve a PaymentIntent by ID.

        Raises:
            StripeInvalidRequestError: PaymentIntent not found
        """
        log_context = {
            "operation": "retrieve_payment_intent",
            "payment_intent_id": payment_intent_id,
            "trace_id": trace_id,
        }
        intent = cls._call(
            log_context,
            lambda: stripe.PaymentIntent.retrieve(payment_intent_id),
            level=logging.DEBUG,
        )
        return cls.payment_intent_from_payload(intent)

    @classmethod
    def confirm_payment_intent(
        cls,
        payment_intent_id: str,
        payment_method_id: str | None = None,
        idempotency_key: str | None = None,
        trace_id: str | None = None,
    ) -> PaymentIntentResult:
        """
        Confirm a PaymentIntent, optionally attaching a payment method.

        Raises:
            StripeCardDeclinedError / StripeInvalidRequestError: Confirmation refused
        """
        log_context = {
            "operation": "confirm_payment_intent",
            "payment_intent_id": payment_intent_id,
            "idempotency_key": idempotency_key,
            "trace_id": trace_id,
        }
        confirm_kwargs: dict[str, Any] = {}
        if payment_method_id:
            confirm_kwargs["payment_method"] = payment_method_id
        if idempotency_key:
            confirm_kwargs["idempotency_key"] = idempotency_key

        intent = cls._call(
            log_context,
            lambda: stripe.PaymentIntent.confirm(payment_intent_id, **confirm_kwargs),
        )
        return cls.payment_intent_from_payload(intent)

    @classmethod
    def cancel_payment_intent(
        cls,
        payment_intent_id: str,
        cancellation_reason: str = "abandoned",
        trace_id: str | None = None,
    ) -> PaymentIntentResult:
        """
        Cancel a PaymentIntent that has not settled.

        Raises:
            StripeInvalidRequestError: Intent is not cancelable
        """
        log_context = {
            "operation": "cancel_payment_intent",
            "payment_intent_id": payment_intent_id,
            "cancellation_reason": cancellation_reason,
            "trace_id": trace_id,
        }
        intent = cls._call(
            log_context,
            lambda: stripe.PaymentIntent.cancel(
                payment_intent_id,
                cancellation_reason=cancellation_reason,
            ),
        )
        return cls.payment_intent_from_payload(intent)

    # =========================================================================
    # Charges
    # =========================================================================

    @classmethod
    def retrieve_charge(
        cls,
        charge_id: str,
        trace_id: str | None = None,
    ) -> ChargeResult:
        """
        Retrieve a Charge for its receipt URL and transfer id.

        Raises:
            StripeInvalidRequestError: Charge not found
        """
        log_context = {
            "operation": "retrieve_charge",
            "charge_id": charge_id,
            "trace_id": trace_id,
        }
        charge = cls._call(
            log_context,
            lambda: stripe.Charge.retrieve(charge_id),
            level=logging.DEBUG,
        )
        data = charge.to_dict()
        return ChargeResult(
            id=data.get("id") or charge_id,
            status=data.get("status") or "",
            payment_intent_id=_object_id(data.get("payment_intent")),
            receipt_url=data.get("receipt_url"),
            transfer_id=_object_id(data.get("transfer")),
            raw_response=data,
        )

    # =========================================================================
    # Webhooks
    # =========================================================================

    @classmethod
    def verify_webhook_signature(
        cls,
        payload: bytes,
        signature: str,
    ) -> dict[str, Any]:
        """
        Verify and parse a Stripe webhook event.

        Raises:
            StripeInvalidRequestError: Invalid signature or malformed payload
        """
        try:
            event = stripe.Webhook.construct_event(
                payload,
                signature,
                settings.STRIPE_WEBHOOK_SECRET,
            )
        except stripe.SignatureVerificationError as e:
            raise StripeInvalidRequestError(
                "Invalid webhook signature",
                stripe_code="signature_verification_failed",
                details={"error": str(e)},
            ) from e
        except ValueError as e:
            raise StripeInvalidRequestError(
                "Malformed webhook payload",
                stripe_code="invalid_payload",
                details={"error": str(e)},
            ) from e
        return event.to_dict()

    # =========================================================================
    # Error Handling
    # =========================================================================

    @classmethod
    def _handle_stripe_error(
        cls,
        error: Exception,
        log_context: dict[str, Any],
        duration_ms: float,
    ) -> None:
        """
        Translate Stripe SDK exceptions to domain exceptions.

        Raises:
            StripeCardDeclinedError / StripeInsufficientFundsError: Payment method refused
            StripeInvalidAccountError: Invalid Connect account
            StripeInvalidRequestError: Invalid request or authentication failure
            StripeRateLimitError: Rate limited
            StripeTimeoutError: Request timed out
            StripeAPIUnavailableError: Network or Stripe server failure
        """
        logger = cls.get_logger()
        log_context = {**log_context, "duration_ms": duration_ms}

        if isinstance(error, StripeError):
            raise error

        if isinstance(error, stripe.CardError):
            decline_code = getattr(error, "decline_code", None)
            logger.warning(
                "Payment method error from Stripe",
                extra={**log_context, "decline_code": decline_code},
            )
            message = str(getattr(error, "user_message", None) or error)
            if decline_code == "insufficient_funds":
                raise StripeInsufficientFundsError(
                    message, stripe_code=error.code, decline_code=decline_code
                ) from error
            raise StripeCardDeclinedError(
                message, stripe_code=error.code, decline_code=decline_code
            ) from error

        if isinstance(error, stripe.InvalidRequestError):
            logger.error(
                "Invalid request to Stripe",
                extra={**log_context, "stripe_code": error.code},
            )
            if "account" in str(error).lower():
                raise StripeInvalidAccountError(str(error), stripe_code=error.code) from error
            raise StripeInvalidRequestError(str(error), stripe_code=error.code) from error

        if isinstance(error, stripe.RateLimitError):
            logger.warning("Rate limited by Stripe", extra=log_context)
            raise StripeRateLimitError(
                "Stripe rate limit exceeded. Please retry.",
                stripe_code="rate_limit",
            ) from error

        if isinstance(error, stripe.APIConnectionError):
            logger.error("Connection error to Stripe", extra=log_context, exc_info=True)
            if "timed out" in str(error).lower() or "timeout" in str(error).lower():
                raise StripeTimeoutError(
                    "Stripe request timed out. Please retry.",
                    stripe_code="timeout",
                ) from error
            raise StripeAPIUnavailableError(
                "Could not connect to Stripe. Please retry.",
                stripe_code="api_connection_error",
            ) from error

        if isinstance(error, stripe.AuthenticationError):
            logger.critical("Stripe authentication failed - check API key", extra=log_context)
            raise StripeInvalidRequestError(
                "Stripe authentication failed",
                stripe_code="authentication_error",
            ) from error

        if isinstance(error, stripe.APIError):
            logger.error("Stripe API error", extra=log_context, exc_info=True)
            raise StripeAPIUnavailableError(
                "Stripe service error. Please retry.",
                stripe_code="api_error",
            ) from error

        logger.error(
            f"Unexpected error from Stripe: {type(error).__name__}",
            extra=log_context,
            exc_info=True,
        )
        raise StripeAPIUnavailableError(
            f"Unexpected Stripe error: {error}",
            stripe_code="unknown_error",
        ) from error
