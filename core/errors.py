"""
Error taxonomy for the DhanSetu gateway.

Validation and not-found errors surface to callers directly. External
service errors are always retryable and are converted into typed failure
results at the boundary of the call that made them.
"""

from typing import Any, Dict, Optional


class DhanSetuError(Exception):
    """Base class for all gateway errors."""

    code = "error"
    retryable = False

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        return {
            "error": self.code,
            "message": self.message,
            "details": self.details,
        }


class ValidationError(DhanSetuError):
    """Malformed or out-of-range input. Raised before any mutation."""

    code = "validation_error"


class NotFoundError(DhanSetuError):
    """Unknown plan, subscription, payment or merchant id."""

    code = "not_found"


class ConflictError(DhanSetuError):
    """Operation conflicts with current state (e.g. deleting a plan in use)."""

    code = "conflict"


class UnsupportedChainError(DhanSetuError):
    """Requested chain is not configured."""

    code = "unsupported_chain"


class ExternalServiceError(DhanSetuError):
    """RPC or webhook endpoint unreachable or erroring."""

    code = "external_service_error"
    retryable = True

    def __init__(
        self,
        message: str,
        service: str = "",
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message, details)
        self.service = service
