"""Custom exception hierarchy for Brandworks."""

from enum import Enum
from typing import Optional, Dict, Any, Iterable, List


class ErrorCode(str, Enum):
    """Standardized error codes for API responses."""

    # Queue errors
    UNKNOWN_QUEUE = "UNKNOWN_QUEUE"
    JOB_VALIDATION_FAILED = "JOB_VALIDATION_FAILED"
    JOB_NOT_FOUND = "JOB_NOT_FOUND"

    # Webhook errors
    WEBHOOK_NOT_FOUND = "WEBHOOK_NOT_FOUND"

    # CRM errors
    CRM_AUTH_FAILED = "CRM_AUTH_FAILED"

    # Ledger errors
    UNKNOWN_TIER = "UNKNOWN_TIER"
    LEDGER_ERROR = "LEDGER_ERROR"

    # Validation errors
    VALIDATION_ERROR = "VALIDATION_ERROR"

    # Generic errors
    INTERNAL_ERROR = "INTERNAL_ERROR"


class BrandworksError(Exception):
    """
    Base exception for all Brandworks errors.

    Provides structured error responses with:
    - Human-readable message
    - Machine-readable error code
    - HTTP status code
    - Optional additional details
    """

    def __init__(
        self,
        message: str,
        error_code: ErrorCode,
        status_code: int = 500,
        details: Optional[Dict[str, Any]] = None
    ):
        """
        Initialize exception.

        Args:
            message: Human-readable error message
            error_code: Machine-readable error code
            status_code: HTTP status code to return
            details: Optional additional context/details
        """
        super().__init__(message)
        self.message = message
        self.error_code = error_code
        self.status_code = status_code
        self.details = details or {}

    def to_dict(self) -> Dict[str, Any]:
        """
        Convert exception to dictionary for JSON response.

        Returns:
            Dictionary with error, message, and details fields
        """
        return {
            "error": self.error_code.value,
            "message": self.message,
            "details": self.details
        }


class UnknownQueueError(BrandworksError):
    """Job submitted to a queue name that is not registered."""

    def __init__(self, queue_name: str, valid_queues: Iterable[str]):
        valid = list(valid_queues)
        super().__init__(
            f'Unknown queue: "{queue_name}". Available: {", ".join(valid)}',
            ErrorCode.UNKNOWN_QUEUE,
            status_code=404,
            details={"queue_name": queue_name, "valid_queues": valid}
        )
        self.queue_name = queue_name
        self.valid_queues = valid


class JobValidationError(BrandworksError):
    """Job payload does not conform to the queue's schema.

    ``errors`` holds the structured violations reported by pydantic; the
    original ``pydantic.ValidationError`` is kept as ``__cause__``.
    """

    def __init__(self, queue_name: str, errors: List[Dict[str, Any]]):
        super().__init__(
            f"Invalid payload for queue {queue_name}: {len(errors)} validation error(s)",
            ErrorCode.JOB_VALIDATION_FAILED,
            status_code=422,
            details={"queue_name": queue_name, "errors": errors}
        )
        self.queue_name = queue_name
        self.errors = errors


class JobNotFoundError(BrandworksError):
    """Job id unknown to the queue (never added, or already cleaned up)."""

    def __init__(self, queue_name: str, job_id: str):
        super().__init__(
            f"Job not found: {job_id}",
            ErrorCode.JOB_NOT_FOUND,
            status_code=404,
            details={"queue_name": queue_name, "job_id": job_id}
        )


class FatalJobError(BrandworksError):
    """Raised by a processor when retrying the job cannot succeed.

    The worker moves the job straight to ``failed`` instead of scheduling
    the queue's remaining attempts.
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message,
            ErrorCode.INTERNAL_ERROR,
            status_code=500,
            details=details
        )


class WebhookConfigNotFoundError(BrandworksError):
    """Webhook configuration not found in database."""

    def __init__(self, webhook_id: str):
        super().__init__(
            f"Webhook configuration not found: {webhook_id}",
            ErrorCode.WEBHOOK_NOT_FOUND,
            status_code=404,
            details={"webhook_id": webhook_id}
        )


class UnknownTierError(BrandworksError):
    """Subscription tier has no credit allocation."""

    def __init__(self, tier: str, valid_tiers: Iterable[str]):
        valid = list(valid_tiers)
        super().__init__(
            f"Unknown subscription tier: {tier}",
            ErrorCode.UNKNOWN_TIER,
            status_code=400,
            details={"tier": tier, "valid_tiers": valid}
        )


class LedgerError(BrandworksError):
    """Credit ledger storage failed; the operation did not happen."""

    def __init__(self, message: str, original_error: Optional[Exception] = None):
        details = {}
        if original_error:
            details["original_error"] = str(original_error)

        super().__init__(
            message,
            ErrorCode.LEDGER_ERROR,
            status_code=500,
            details=details
        )


class ValidationError(BrandworksError):
    """Validation failed for caller input."""

    def __init__(self, message: str, field: Optional[str] = None):
        details = {"field": field} if field else {}
        super().__init__(
            message,
            ErrorCode.VALIDATION_ERROR,
            status_code=400,
            details=details
        )


class CrmAuthError(BrandworksError):
    """No usable CRM access token: OAuth never completed or refresh failed."""

    def __init__(self, message: str):
        super().__init__(
            message,
            ErrorCode.CRM_AUTH_FAILED,
            status_code=502,
        )
