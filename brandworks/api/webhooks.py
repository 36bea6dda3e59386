"""Outbound webhook management endpoints."""

import logging
from typing import List

from fastapi import APIRouter, Depends, Query
from sqlalchemy.orm import Session

from ..database import get_db
from ..repositories.webhook_repository import WebhookConfigRepository
from ..schemas.webhook import (
    VerificationResult,
    WebhookCreate,
    WebhookCreatedResponse,
    WebhookDeliveryResponse,
    WebhookResponse,
    WebhookVerifyRequest,
)
from ..services import audit_service
from ..services.webhook_dispatcher import WebhookDispatcher
from .dependencies import get_webhook_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/webhooks", tags=["webhooks"])


@router.post("", response_model=WebhookCreatedResponse, status_code=201)
def create_webhook(request: WebhookCreate, db: Session = Depends(get_db)):
    """Register an endpoint. The signing secret is returned once, here."""
    repo = WebhookConfigRepository(db)
    config = repo.create(
        user_id=request.user_id,
        url=str(request.url),
        events=[event.value for event in request.events],
    )
    audit_service.log(
        db,
        user_id=request.user_id,
        action="webhook_created",
        resource_type="webhook",
        resource_id=config.id,
        details={"url": config.url, "events": config.events},
    )
    return config


@router.get("", response_model=List[WebhookResponse])
def list_webhooks(user_id: str = Query(..., min_length=1), db: Session = Depends(get_db)):
    """List a user's webhook endpoints (without secrets)."""
    return WebhookConfigRepository(db).list_for_user(user_id)


@router.delete("/{webhook_id}", response_model=WebhookResponse)
def deactivate_webhook(webhook_id: str, db: Session = Depends(get_db)):
    """Stop deliveries to an endpoint. Its delivery history is kept."""
    config = WebhookConfigRepository(db).deactivate(webhook_id)
    audit_service.log(
        db,
        user_id=config.user_id,
        action="webhook_deactivated",
        resource_type="webhook",
        resource_id=config.id,
    )
    return config


@router.get("/{webhook_id}/deliveries", response_model=List[WebhookDeliveryResponse])
def list_deliveries(
    webhook_id: str,
    limit: int = Query(50, ge=1, le=500),
    db: Session = Depends(get_db),
):
    """Most recent delivery attempts for an endpoint, newest first."""
    repo = WebhookConfigRepository(db)
    repo.get_by_id(webhook_id)
    return repo.list_deliveries(webhook_id, limit)


@router.post("/verify", response_model=VerificationResult, response_model_by_alias=True)
async def verify_webhook(
    request: WebhookVerifyRequest,
    webhooks: WebhookDispatcher = Depends(get_webhook_dispatcher),
):
    """Send one signed test event to a URL and report whether it answered with 2xx."""
    result = await webhooks.verify(str(request.url), request.secret)
    logger.info(
        f"Webhook verification {'succeeded' if result.success else 'failed'}",
        extra={"status_code": result.status_code},
    )
    return result
