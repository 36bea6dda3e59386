"""Job submission and status endpoints."""

import logging
from datetime import datetime, timezone
from typing import Optional

from fastapi import APIRouter, Depends

from ..exceptions import JobNotFoundError, UnknownQueueError
from ..queues.broker import Broker, Job
from ..queues.dispatch import JobDispatcher
from ..queues.registry import lookup, queue_names
from ..schemas.jobs import DispatchRequest, DispatchResult, JobResponse
from .dependencies import get_broker, get_job_dispatcher

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/jobs", tags=["jobs"])


def _timestamp(value: Optional[float]) -> Optional[datetime]:
    if value is None:
        return None
    return datetime.fromtimestamp(value, tz=timezone.utc)


def _to_response(job: Job) -> JobResponse:
    return JobResponse(
        id=job.id,
        queue_name=job.queue_name,
        status=job.status.value,
        priority=job.priority,
        attempts_made=job.attempts_made,
        progress=job.progress,
        result=job.result,
        failed_reason=job.failed_reason,
        created_at=_timestamp(job.created_at),
        processed_at=_timestamp(job.processed_at),
        finished_at=_timestamp(job.finished_at),
    )


@router.post("/{queue_name}", response_model=DispatchResult, status_code=202, response_model_by_alias=True)
async def submit_job(
    queue_name: str,
    request: DispatchRequest,
    dispatcher: JobDispatcher = Depends(get_job_dispatcher),
):
    """Validate a payload against the queue's schema and enqueue it.

    Re-submitting with the same ``options.jobId`` returns the existing job
    instead of creating a second one.
    """
    return await dispatcher.dispatch(queue_name, request.payload, request.options)


@router.get("/{queue_name}/{job_id}", response_model=JobResponse, response_model_by_alias=True)
async def get_job(
    queue_name: str,
    job_id: str,
    broker: Broker = Depends(get_broker),
):
    """Get the status of a job."""
    if lookup(queue_name) is None:
        raise UnknownQueueError(queue_name, queue_names())

    job = await broker.get_job(queue_name, job_id)
    if job is None:
        raise JobNotFoundError(queue_name, job_id)
    return _to_response(job)
