"""
Application exception hierarchy.

Every domain error carries a human message, a machine-readable
error_code and an optional details dict, so services, Celery tasks and
the webhook view can log or return it the same way.

Hierarchy:
    BaseApplicationError
    ├── ValidationError        bad input, nothing was persisted
    ├── NotFoundError          lookup failed (scoped by firm where relevant)
    └── ExternalServiceError   Stripe or another provider failed

Domain apps subclass these (see payments.exceptions); a payment error is
also one of the categories above, so callers can catch either.

Expected failures in service methods are returned as ServiceResult
failures rather than raised (see core.services).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Root of all application errors.

    Attributes:
        message: Human-readable description
        error_code: Machine-readable code, defaulting to the class's
            default_error_code
        details: Extra context such as ids or field errors

    Example:
        raise NotFoundError(
            f"Application {application_id} not found",
            error_code="APPLICATION_NOT_FOUND",
            details={"application_id": str(application_id)},
        )
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """Serializable form for logs and JSON bodies; details only when set."""
        payload: dict[str, Any] = {"error": self.message, "error_code": self.error_code}
        if self.details:
            payload["details"] = self.details
        return payload

    def __str__(self) -> str:
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        return (
            f"{type(self).__name__}(message={self.message!r}, "
            f"error_code={self.error_code!r}, details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    default_error_code: str = "VALIDATION_ERROR"


class NotFoundError(BaseApplicationError):
    default_error_code: str = "NOT_FOUND"


class ExternalServiceError(BaseApplicationError):
    """
    A third-party call failed.

    Log the provider's raw error; only message and error_code are meant
    for callers.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
