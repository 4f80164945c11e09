"""
Error taxonomy for the allocation engine.

Services raise these; the API layer turns them into structured JSON
responses through the handlers registered in `register_exception_handlers`.
"""

import logging
from typing import Optional

from fastapi import FastAPI, Request
from fastapi.responses import JSONResponse

logger = logging.getLogger(__name__)


class ErrorCategory:
    """Error categories for structured error handling"""
    VALIDATION = "validation_error"
    NOT_FOUND = "not_found_error"
    CONFLICT = "conflict_error"
    NO_ITEM_AVAILABLE = "no_item_available"
    NOT_ELIGIBLE = "not_eligible_error"
    CAPACITY = "capacity_error"
    CONFIG = "config_error"
    CONFIRMATION_MISMATCH = "confirmation_mismatch"
    CASCADE_BLOCKED = "cascade_blocked_error"


class AllocationError(Exception):
    """Base application error with structured information"""

    category = "internal_error"
    status_code = 500

    def __init__(self, message: str, details: Optional[dict] = None):
        self.message = message
        self.details = details or {}
        super().__init__(self.message)


class ValidationError(AllocationError):
    """Malformed code/URL/phone, or a badly formed confirmation phrase."""
    category = ErrorCategory.VALIDATION
    status_code = 400


class NotFoundError(AllocationError):
    category = ErrorCategory.NOT_FOUND
    status_code = 404


class ConflictError(AllocationError):
    """The target is no longer in a state that allows the operation."""
    category = ErrorCategory.CONFLICT
    status_code = 409


class NoItemAvailableError(ConflictError):
    """Pool exhausted. Raised only at the HTTP boundary; services return NO_ITEM_AVAILABLE."""
    category = ErrorCategory.NO_ITEM_AVAILABLE


class NotEligibleError(AllocationError):
    category = ErrorCategory.NOT_ELIGIBLE
    status_code = 422


class CapacityError(AllocationError):
    """Enrollment is full or disabled."""
    category = ErrorCategory.CAPACITY
    status_code = 403


class ConfigError(AllocationError):
    category = ErrorCategory.CONFIG
    status_code = 400


class ConfirmationMismatchError(AllocationError):
    category = ErrorCategory.CONFIRMATION_MISMATCH
    status_code = 400


class CascadeBlockedError(AllocationError):
    """Direct deletion of a pool item that is still ASSIGNED."""
    category = ErrorCategory.CASCADE_BLOCKED
    status_code = 409


async def allocation_error_handler(request: Request, exc: AllocationError) -> JSONResponse:
    if exc.status_code >= 500:
        logger.error(f"{exc.category} on {request.method} {request.url.path}: {exc.message}")
    else:
        logger.info(f"{exc.category} on {request.method} {request.url.path}: {exc.message}")

    content = {"detail": exc.message, "category": exc.category}
    if exc.details:
        content["details"] = exc.details
    return JSONResponse(status_code=exc.status_code, content=content)


def register_exception_handlers(app: FastAPI) -> None:
    app.add_exception_handler(AllocationError, allocation_error_handler)
