"""Outbound webhook schemas."""

from datetime import datetime
from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field, HttpUrl


class WebhookEvent(str, Enum):
    """Domain events subscribers can receive."""
    BRAND_CREATED = "brand.created"
    BRAND_UPDATED = "brand.updated"
    LOGO_GENERATED = "logo.generated"
    MOCKUP_GENERATED = "mockup.generated"
    ORDER_CREATED = "order.created"
    SUBSCRIPTION_CHANGED = "subscription.changed"


# Sent only by verify(); never delivered to subscriptions.
WEBHOOK_TEST_EVENT = "webhook.test"


class WebhookCreate(BaseModel):
    """Request to register a webhook endpoint."""
    user_id: str = Field(min_length=1, max_length=50)
    url: HttpUrl
    events: List[WebhookEvent] = Field(min_length=1)


class WebhookResponse(BaseModel):
    """Schema for a webhook configuration. The secret is never included."""
    id: str
    user_id: str
    url: str
    events: List[str]
    active: bool
    created_at: Optional[datetime] = None

    class Config:
        from_attributes = True


class WebhookCreatedResponse(WebhookResponse):
    """Returned once, on creation: the only time the signing secret is shown."""
    secret: str


class WebhookVerifyRequest(BaseModel):
    url: HttpUrl
    secret: str = Field(min_length=1)


class VerificationResult(BaseModel):
    """Outcome of a one-shot connectivity probe."""
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    status_code: int = Field(serialization_alias="statusCode")
    message: str


class WebhookDeliveryResponse(BaseModel):
    """Schema for one delivery attempt."""
    id: int
    webhook_config_id: str
    event: str
    attempt: int
    status_code: int
    response_body: Optional[str] = None
    success: bool
    error_message: Optional[str] = None
    delivered_at: Optional[datetime] = None

    class Config:
        from_attributes = True
