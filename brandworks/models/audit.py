"""Audit log model."""

from sqlalchemy import Column, String, DateTime, Integer, Text
from sqlalchemy.sql import func
from ..database import Base


class AuditLog(Base):
    """Immutable record of notable operations.

    Written by the service layer, never modified.
    Fields:
        action        agent_session_complete, webhook_created, webhook_deactivated
        resource_type brand, webhook
        resource_id   ID of the affected resource
        details       JSON string with additional context
    """

    __tablename__ = "audit_log"

    id = Column(Integer, primary_key=True, autoincrement=True)
    user_id = Column(String(50), nullable=True, index=True)
    action = Column(String(50), nullable=False)
    resource_type = Column(String(50), nullable=False)
    resource_id = Column(String(255), nullable=True)
    details = Column(Text, nullable=True)
    ip_address = Column(String(45), nullable=True)
    created_at = Column(DateTime(timezone=True), server_default=func.now())
