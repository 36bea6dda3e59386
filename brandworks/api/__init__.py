"""API routes."""

from .jobs import router as jobs_router
from .webhooks import router as webhooks_router
from .credits import router as credits_router

__all__ = [
    "jobs_router",
    "webhooks_router",
    "credits_router",
]
