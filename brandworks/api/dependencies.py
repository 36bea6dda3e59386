"""FastAPI dependency providers for process-wide services.

The broker and webhook dispatcher are created once in the application
lifespan and kept on ``app.state``; routes receive them through these
providers so tests can swap them with ``app.dependency_overrides``.
"""

from fastapi import Depends, Request

from ..queues.broker import Broker
from ..queues.dispatch import JobDispatcher
from ..services.webhook_dispatcher import WebhookDispatcher


def get_broker(request: Request) -> Broker:
    return request.app.state.broker


def get_job_dispatcher(broker: Broker = Depends(get_broker)) -> JobDispatcher:
    return JobDispatcher(broker)


def get_webhook_dispatcher(request: Request) -> WebhookDispatcher:
    return request.app.state.webhooks
