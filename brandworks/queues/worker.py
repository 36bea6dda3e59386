"""Queue workers: claim jobs, run their processor, record the outcome.

One ``QueueWorker`` serves one queue and never runs more than the queue's
configured concurrency at once. Each execution is bounded by the queue's
``timeout_ms``; a timeout counts as a failed attempt and goes through the
queue's retry policy like any other failure.
"""

import asyncio
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Set

from ..core.logging_config import job_id_var
from ..exceptions import FatalJobError
from .broker import Broker, Job
from .registry import QueueName, get_config

logger = logging.getLogger(__name__)


class JobContext:
    """Handle given to a processor for reporting on the job it runs."""

    def __init__(self, broker: Broker, job: Job):
        self.broker = broker
        self.job = job

    async def update_progress(self, progress: Any) -> None:
        await self.broker.update_progress(self.job.queue_name, self.job.id, progress)
        self.job.progress = progress


Processor = Callable[[Job, JobContext], Awaitable[Any]]


class QueueWorker:
    """Consumes one queue with bounded concurrency."""

    def __init__(
        self,
        broker: Broker,
        queue_name: str,
        processor: Processor,
        *,
        concurrency: Optional[int] = None,
        poll_interval: float = 1.0,
    ):
        self.broker = broker
        self.queue_name = QueueName(queue_name).value
        self.processor = processor
        self.config = get_config(self.queue_name)
        self.concurrency = concurrency or self.config.concurrency
        self.poll_interval = poll_interval

    async def process_job(self, job: Job) -> None:
        """Run the processor for a claimed job and complete or fail it."""
        token = job_id_var.set(job.id)
        timeout = self.config.timeout_ms / 1000
        try:
            logger.info(f"Processing job {job.id}", extra={"queue": self.queue_name})
            try:
                result = await asyncio.wait_for(
                    self.processor(job, JobContext(self.broker, job)),
                    timeout=timeout,
                )
            except asyncio.TimeoutError:
                await self.broker.fail(self.queue_name, job.id, f"Job timed out after {timeout:g}s")
            except FatalJobError as exc:
                await self.broker.fail(self.queue_name, job.id, exc.message, retry=False)
            except Exception as exc:
                logger.error(f"Job {job.id} error: {exc}", exc_info=True, extra={"queue": self.queue_name})
                await self.broker.fail(self.queue_name, job.id, str(exc) or type(exc).__name__)
            else:
                await self.broker.complete(self.queue_name, job.id, result)
                logger.info(f"Job {job.id} completed successfully", extra={"queue": self.queue_name})
        except Exception as exc:
            # The broker itself failed while recording the outcome.
            logger.error(f"Could not record outcome of job {job.id}: {exc}", extra={"queue": self.queue_name})
        finally:
            job_id_var.reset(token)

    async def _idle(self, stop: asyncio.Event) -> None:
        try:
            await asyncio.wait_for(stop.wait(), timeout=self.poll_interval)
        except asyncio.TimeoutError:
            pass

    async def run(self, stop: asyncio.Event) -> None:
        """Claim and process jobs until ``stop`` is set, then drain in-flight jobs."""
        slots = asyncio.Semaphore(self.concurrency)
        in_flight: Set[asyncio.Task] = set()

        def _finished(task: asyncio.Task) -> None:
            in_flight.discard(task)
            slots.release()

        logger.info(
            f"Worker started for {self.queue_name}",
            extra={"concurrency": self.concurrency, "timeout_ms": self.config.timeout_ms},
        )
        while not stop.is_set():
            await slots.acquire()
            try:
                job = await self.broker.claim(self.queue_name)
            except Exception as exc:
                logger.error(f"Worker error on {self.queue_name}: {exc}")
                job = None
            if job is None:
                slots.release()
                await self._idle(stop)
                continue

            task = asyncio.create_task(self.process_job(job))
            in_flight.add(task)
            task.add_done_callback(_finished)

        if in_flight:
            await asyncio.gather(*in_flight, return_exceptions=True)
        logger.info(f"Worker stopped for {self.queue_name}")


async def run_workers(
    broker: Broker,
    processors: Dict[QueueName, Processor],
    stop: asyncio.Event,
    poll_interval: float = 1.0,
) -> None:
    """Run one worker per queue that has a processor until ``stop`` is set."""
    workers = [
        QueueWorker(broker, name.value, processor, poll_interval=poll_interval)
        for name, processor in processors.items()
    ]
    await asyncio.gather(*(worker.run(stop) for worker in workers))
