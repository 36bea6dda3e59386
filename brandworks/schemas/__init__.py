"""Pydantic schemas for queue payloads and API validation."""

from .credits import (
    CreditCheckResult,
    DeductResult,
    CreditBalanceResponse,
    CreditSummary,
    CreditCheckRequest,
)
from .jobs import (
    DispatchOptions,
    DispatchResult,
    DispatchRequest,
    JobResponse,
)
from .webhook import (
    WebhookEvent,
    WebhookCreate,
    WebhookResponse,
    WebhookCreatedResponse,
    VerificationResult,
)

__all__ = [
    "CreditCheckResult",
    "DeductResult",
    "CreditBalanceResponse",
    "CreditSummary",
    "CreditCheckRequest",
    "DispatchOptions",
    "DispatchResult",
    "DispatchRequest",
    "JobResponse",
    "WebhookEvent",
    "WebhookCreate",
    "WebhookResponse",
    "WebhookCreatedResponse",
    "VerificationResult",
]
