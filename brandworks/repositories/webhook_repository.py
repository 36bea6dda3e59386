"""Repository for webhook configurations and their delivery log."""

import logging
import secrets
import uuid
from datetime import datetime, timedelta, timezone
from typing import Any, Dict, List, Optional

from ..exceptions import WebhookConfigNotFoundError
from ..models.webhook import WebhookConfig, WebhookDelivery
from .base import BaseRepository

logger = logging.getLogger(__name__)


def generate_secret() -> str:
    return f"whsec_{secrets.token_hex(24)}"


class WebhookConfigRepository(BaseRepository[WebhookConfig]):
    """Data access for webhook configs and delivery rows."""

    model_class = WebhookConfig
    not_found_error = WebhookConfigNotFoundError

    def create(self, user_id: str, url: str, events: List[str], secret: Optional[str] = None) -> WebhookConfig:
        config = WebhookConfig(
            id=str(uuid.uuid4()),
            user_id=user_id,
            url=url,
            secret=secret or generate_secret(),
            events=sorted(set(events)),
            active=True,
        )
        self.db.add(config)
        self.db.commit()
        self.db.refresh(config)
        logger.info(f"Created webhook {config.id} for user {user_id}", extra={"events": config.events})
        return config

    def list_for_user(self, user_id: str) -> List[WebhookConfig]:
        return (
            self.db.query(WebhookConfig)
            .filter(WebhookConfig.user_id == user_id)
            .order_by(WebhookConfig.created_at.asc())
            .all()
        )

    def list_subscribers(self, user_id: str, event: str) -> List[WebhookConfig]:
        """Active configs of ``user_id`` subscribed to ``event``.

        Event membership is checked in Python: JSON containment is not
        portable between SQLite and PostgreSQL, and a user has few configs.
        """
        active = (
            self.db.query(WebhookConfig)
            .filter(WebhookConfig.user_id == user_id, WebhookConfig.active.is_(True))
            .all()
        )
        return [config for config in active if event in (config.events or [])]

    def deactivate(self, webhook_id: str) -> WebhookConfig:
        config = self.get_by_id(webhook_id)
        config.active = False
        self.db.commit()
        self.db.refresh(config)
        logger.info(f"Deactivated webhook {webhook_id}")
        return config

    # -- delivery log ---------------------------------------------------------

    def record_delivery(
        self,
        webhook_config_id: str,
        event: str,
        payload: Dict[str, Any],
        attempt: int,
        status_code: int,
        response_body: Optional[str],
        success: bool,
        error_message: Optional[str],
    ) -> WebhookDelivery:
        delivery = WebhookDelivery(
            webhook_config_id=webhook_config_id,
            event=event,
            payload=payload,
            attempt=attempt,
            status_code=status_code,
            response_body=response_body,
            success=success,
            error_message=error_message,
            delivered_at=datetime.now(timezone.utc),
        )
        self.db.add(delivery)
        self.db.commit()
        return delivery

    def list_deliveries(self, webhook_config_id: str, limit: int = 50) -> List[WebhookDelivery]:
        return (
            self.db.query(WebhookDelivery)
            .filter(WebhookDelivery.webhook_config_id == webhook_config_id)
            .order_by(WebhookDelivery.id.desc())
            .limit(limit)
            .all()
        )

    def purge_deliveries(self, days: int) -> int:
        """Delete delivery rows older than ``days``. Skipped when days <= 0."""
        if days <= 0:
            return 0
        cutoff = datetime.now(timezone.utc) - timedelta(days=days)
        count = self.db.query(WebhookDelivery).filter(WebhookDelivery.delivered_at < cutoff).delete()
        self.db.commit()
        return count
