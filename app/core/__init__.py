"""
Shared infrastructure for the applications and payments apps.

Exports the service layer (BaseService, ServiceResult) and the exception
hierarchy. Abstract models live in core.models and core.model_mixins and
are not re-exported here, since importing models before the app registry
is ready raises AppRegistryNotReady.
"""

from .exceptions import (
    BaseApplicationError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)
from .services import BaseService, ServiceResult

__all__ = [
    "BaseService",
    "ServiceResult",
    "BaseApplicationError",
    "ValidationError",
    "NotFoundError",
    "ExternalServiceError",
]
