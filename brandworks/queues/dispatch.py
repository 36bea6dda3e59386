"""Job dispatcher: admission control and enqueueing for the registered queues.

No business logic about what a queue does lives here. ``dispatch`` only
checks that the queue exists, validates the payload against the queue's
schema, fills in the job id and priority, and hands the job to the broker.
"""

import logging
import uuid
from typing import Any, Dict, Optional

import pydantic

from ..exceptions import JobValidationError, UnknownQueueError
from ..schemas.jobs import DispatchOptions, DispatchResult
from .broker import Broker
from .registry import lookup, queue_names

logger = logging.getLogger(__name__)


class JobDispatcher:
    """Validates and enqueues jobs onto named queues.

    Error contract:
        UnknownQueueError   queue name not registered (lists valid names)
        JobValidationError  payload violates the queue schema; nothing enqueued
        anything else       raised by the broker (connection refused, timeout)
                            and propagated unchanged
    """

    def __init__(self, broker: Broker):
        self.broker = broker

    async def dispatch(
        self,
        queue_name: str,
        payload: Dict[str, Any],
        options: Optional[DispatchOptions] = None,
    ) -> DispatchResult:
        """
        Validate ``payload`` for ``queue_name`` and enqueue it.

        Args:
            queue_name: Registered queue name, e.g. "brand-wizard"
            payload: Job data in the queue's wire format (camelCase keys)
            options: Optional job id / priority / delay overrides

        Returns:
            DispatchResult with the job id (generated as ``<queue>-<uuid4>``
            unless supplied) and the queue name
        """
        definition = lookup(queue_name)
        if definition is None:
            raise UnknownQueueError(queue_name, queue_names())

        try:
            validated = definition.schema.model_validate(payload)
        except pydantic.ValidationError as exc:
            logger.warning(
                f"Rejected job for {queue_name}: {exc.error_count()} validation error(s)",
                extra={"queue": queue_name},
            )
            raise JobValidationError(
                queue_name,
                exc.errors(include_url=False, include_context=False, include_input=False),
            ) from exc

        options = options or DispatchOptions()
        name = definition.name.value
        job_id = options.job_id or f"{name}-{uuid.uuid4()}"
        priority = options.priority if options.priority is not None else definition.config.priority

        job, created = await self.broker.add(
            name,
            validated.model_dump(mode="json", by_alias=True, exclude_none=True),
            job_id=job_id,
            priority=priority,
            delay_ms=options.delay_ms or 0,
        )

        if created:
            logger.info(
                f"Job {job.id} queued on {name}",
                extra={"queue": name, "priority": priority, "delay_ms": options.delay_ms or 0},
            )
        else:
            logger.info(
                f"Job {job.id} already exists on {name} ({job.status.value}), not re-queued",
                extra={"queue": name},
            )

        return DispatchResult(job_id=job.id, queue_name=name)
