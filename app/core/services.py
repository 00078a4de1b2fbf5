"""
Service layer base classes.

Services hold the payment and application logic; models hold data and the
webhook view only does HTTP. Expected outcomes such as a declined debit,
a disallowed amount or a missing plan come back as ServiceResult failures.
Bugs and infrastructure errors are raised.

Usage:
    from core.services import BaseService, ServiceResult

    class ReceiptService(BaseService):
        @classmethod
        def resend_receipt(cls, payment: Payment) -> ServiceResult[Payment]:
            if payment.status != PaymentStatus.SUCCEEDED:
                return ServiceResult.failure(
                    "Receipts are only issued for settled payments",
                    error_code="PAYMENT_NOT_SETTLED",
                )

            with cls.atomic():
                ...

            cls.get_logger().info(f"Receipt resent for {payment.id}")
            return ServiceResult.success(payment)
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, Generic, TypeVar

from django.db import transaction

if TYPE_CHECKING:
    from collections.abc import Generator

T = TypeVar("T")


@dataclass
class ServiceResult(Generic[T]):
    """
    Outcome of a service call.

    Attributes:
        success: True when data holds the result
        data: Result payload on success
        error: Human-readable message on failure
        error_code: Machine-readable code (AMOUNT_NOT_ALLOWED, card_declined, ...)
        errors: Field-level detail, e.g. {"amount_cents": ["200000"]}

    Truthiness follows success:

        result = PaymentIntentService.start_payment(application, "deposit", 200000)
        if not result:
            logger.warning(f"{result.error_code}: {result.error}")
    """

    success: bool
    data: T | None = None
    error: str | None = None
    error_code: str | None = None
    errors: dict[str, list[str]] | None = field(default=None)

    @classmethod
    def success(cls, data: T) -> ServiceResult[T]:
        return cls(success=True, data=data)

    @classmethod
    def failure(
        cls,
        error: str,
        error_code: str | None = None,
        errors: dict[str, list[str]] | None = None,
    ) -> ServiceResult[T]:
        return cls(success=False, error=error, error_code=error_code, errors=errors)

    @classmethod
    def from_exception(cls, exc: Exception, error_code: str | None = None) -> ServiceResult[T]:
        """
        Failure built from a caught exception.

        An explicit error_code wins, then the exception's own error_code
        (BaseApplicationError subclasses), then the upper-cased class name.
        """
        code = error_code or getattr(exc, "error_code", None) or type(exc).__name__.upper()
        message = getattr(exc, "message", None) or str(exc)
        return cls(success=False, error=message, error_code=code)

    def __bool__(self) -> bool:
        return self.success


class BaseService:
    """
    Stateless base for service classes.

    Subclasses expose classmethods only. Row locks are taken inside
    cls.atomic(); gateway calls are made outside it.
    """

    @classmethod
    def get_logger(cls) -> logging.Logger:
        """Logger named "<module>.<ServiceClass>"."""
        return logging.getLogger(f"{cls.__module__}.{cls.__name__}")

    @classmethod
    @contextmanager
    def atomic(cls) -> Generator[None, None, None]:
        """
        transaction.atomic() as a service-level boundary.

        Example:
            with cls.atomic():
                payment = Payment.objects.select_for_update().get(pk=pk)
                payment.mark_processing()
                payment.save()
        """
        with transaction.atomic():
            yield
