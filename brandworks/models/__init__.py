"""Database models."""

from .profile import Profile
from .credit import CreditBalance
from .webhook import WebhookConfig, WebhookDelivery
from .audit import AuditLog

__all__ = [
    "Profile", "CreditBalance",
    "WebhookConfig", "WebhookDelivery",
    "AuditLog",
]
