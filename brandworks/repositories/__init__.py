"""Data access repositories."""

from .base import BaseRepository
from .credit_repository import CreditRepository
from .webhook_repository import WebhookConfigRepository

__all__ = [
    "BaseRepository",
    "CreditRepository",
    "WebhookConfigRepository",
]
