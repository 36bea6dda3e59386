"""Business logic services."""

from .credit_ledger import CreditLedger
from .webhook_dispatcher import WebhookDispatcher

__all__ = ["CreditLedger", "WebhookDispatcher"]
