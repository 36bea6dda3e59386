"""Outbound webhook configuration and delivery audit models."""

from sqlalchemy import Column, String, Text, Integer, Boolean, DateTime, JSON, ForeignKey
from sqlalchemy.sql import func
from ..database import Base


class WebhookConfig(Base):
    """A user-registered endpoint subscribed to a set of domain events.

    Only receives events listed in ``events`` and only while ``active``.
    ``secret`` is the per-config HMAC key; it must never be logged or
    returned from list endpoints.
    """

    __tablename__ = "webhook_configs"

    id = Column(String(50), primary_key=True)
    user_id = Column(String(50), nullable=False, index=True)
    url = Column(Text, nullable=False)
    secret = Column(String(128), nullable=False)

    # JSON list of event names, e.g. ["brand.created", "logo.generated"]
    events = Column(JSON, nullable=False, default=list)

    active = Column(Boolean, nullable=False, default=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())


class WebhookDelivery(Base):
    """One HTTP attempt to notify a webhook config of an event.

    Append-only. A delivery that needs three attempts leaves three rows,
    numbered by ``attempt`` starting at 1. ``status_code`` is 0 when no
    HTTP response was received (network failure or timeout).
    """

    __tablename__ = "webhook_deliveries"

    id = Column(Integer, primary_key=True, autoincrement=True)
    webhook_config_id = Column(
        String(50),
        ForeignKey("webhook_configs.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    event = Column(String(50), nullable=False)
    payload = Column(JSON, nullable=False)
    attempt = Column(Integer, nullable=False)
    status_code = Column(Integer, nullable=False, default=0)
    response_body = Column(Text, nullable=True)
    success = Column(Boolean, nullable=False, default=False)
    error_message = Column(Text, nullable=True)
    delivered_at = Column(DateTime(timezone=True), server_default=func.now())
