"""Processor for the ``cleanup`` queue and its hourly scheduler."""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional

from ..schemas.jobs import CleanupJob, CleanupType, DispatchOptions
from .broker import Broker, Job, JobStatus
from .dispatch import JobDispatcher
from .registry import QUEUE_REGISTRY, QueueName
from .worker import JobContext

logger = logging.getLogger(__name__)

CLEANUP_INTERVAL_SECONDS = 60 * 60

CleanupHandler = Callable[[], Awaitable[Any]]


class CleanupProcessor:
    """Runs maintenance tasks by cleanup type.

    ``expired-jobs`` is handled here: finished jobs older than each queue's
    retention age are removed from the broker. Other types (orphaned assets,
    stale sessions, ...) belong to storage and session services and are run
    through ``handlers``; a type with no handler is skipped with a warning.
    """

    def __init__(self, broker: Broker, handlers: Optional[Dict[CleanupType, CleanupHandler]] = None):
        self.broker = broker
        self.handlers = dict(handlers or {})

    async def __call__(self, job: Job, ctx: JobContext) -> Dict[str, Any]:
        task = CleanupJob.model_validate(job.payload).type

        if task == CleanupType.EXPIRED_JOBS:
            removed = await self.clean_expired_jobs()
            return {"type": task.value, "removed": removed}

        handler = self.handlers.get(task)
        if handler is None:
            logger.warning(f"No handler registered for cleanup type {task.value}, skipping")
            return {"type": task.value, "skipped": True}
        return {"type": task.value, "result": await handler()}

    async def clean_expired_jobs(self) -> int:
        removed = 0
        for name, definition in QUEUE_REGISTRY.items():
            policy = definition.config.cleanup
            removed += await self.broker.clean(name.value, JobStatus.COMPLETED, policy.completed_age_seconds)
            removed += await self.broker.clean(name.value, JobStatus.FAILED, policy.failed_age_seconds)
        if removed:
            logger.info(f"Removed {removed} expired job(s)")
        return removed


def recurring_cleanup_job_id(now: float) -> str:
    """One id per hour, so every worker process can schedule without duplicates."""
    return f"recurring-cleanup-{int(now // CLEANUP_INTERVAL_SECONDS)}"


async def schedule_cleanup(dispatcher: JobDispatcher, stop: asyncio.Event,
                           clock: Callable[[], float]) -> None:
    """Enqueue an ``expired-jobs`` cleanup once per hour until ``stop`` is set."""
    while not stop.is_set():
        try:
            await dispatcher.dispatch(
                QueueName.CLEANUP.value,
                {"type": CleanupType.EXPIRED_JOBS.value},
                DispatchOptions(job_id=recurring_cleanup_job_id(clock())),
            )
        except Exception as exc:
            logger.error(f"Failed to schedule recurring cleanup: {exc}")
        try:
            await asyncio.wait_for(stop.wait(), timeout=CLEANUP_INTERVAL_SECONDS)
        except asyncio.TimeoutError:
            pass
