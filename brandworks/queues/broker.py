"""Job storage backends.

A broker holds the jobs of every registered queue and implements the job
lifecycle::

    waiting -> active -> completed
                      -> delayed -> waiting      (failed attempt, retries left)
                      -> failed                  (attempts exhausted / fatal)

Two implementations share the same async interface:

- ``InMemoryBroker``: process-local, for tests and local development.
- ``RedisBroker``: durable and shared between API and worker processes.

Both de-duplicate by job id: adding a job whose id is already known to the
queue returns the existing job instead of creating a second one.
"""

import asyncio
import heapq
import json
import logging
import time
from abc import ABC, abstractmethod
from collections import deque
from dataclasses import asdict, dataclass, field
from enum import Enum
from typing import Any, Callable, Deque, Dict, List, Optional, Tuple

import redis.asyncio as aioredis
from redis.exceptions import WatchError

from ..core.config import BrokerBackend, Settings
from ..exceptions import JobNotFoundError
from .registry import QueueConfig, get_config

logger = logging.getLogger(__name__)

# Waiting-set score = priority * stride + insertion sequence, so lower
# priority values are claimed first and equal priorities stay FIFO.
PRIORITY_STRIDE = 2 ** 32


class JobStatus(str, Enum):
    WAITING = "waiting"
    ACTIVE = "active"
    COMPLETED = "completed"
    FAILED = "failed"
    DELAYED = "delayed"


@dataclass
class Job:
    """A unit of work stored in a queue. Timestamps are epoch seconds."""

    id: str
    queue_name: str
    payload: Dict[str, Any]
    priority: int
    status: JobStatus = JobStatus.WAITING
    attempts_made: int = 0
    delay_ms: int = 0
    progress: Any = None
    result: Any = None
    failed_reason: Optional[str] = None
    created_at: float = field(default_factory=time.time)
    processed_at: Optional[float] = None
    finished_at: Optional[float] = None

    def to_json(self) -> str:
        data = asdict(self)
        data["status"] = self.status.value
        return json.dumps(data, separators=(",", ":"), default=str)

    @classmethod
    def from_json(cls, raw: str) -> "Job":
        data = json.loads(raw)
        data["status"] = JobStatus(data["status"])
        return cls(**data)


def priority_score(priority: int, sequence: int) -> int:
    return priority * PRIORITY_STRIDE + sequence


class Broker(ABC):
    """Async job storage shared by the dispatcher and the workers."""

    def __init__(self, clock: Callable[[], float] = time.time):
        self._clock = clock

    @abstractmethod
    async def add(
        self,
        queue_name: str,
        payload: Dict[str, Any],
        *,
        job_id: str,
        priority: int,
        delay_ms: int = 0,
    ) -> Tuple[Job, bool]:
        """Store a new job. Returns ``(job, created)``; ``created`` is False
        when a job with the same id already exists in the queue."""

    @abstractmethod
    async def get_job(self, queue_name: str, job_id: str) -> Optional[Job]:
        """Current state of a job, or None if unknown."""

    @abstractmethod
    async def claim(self, queue_name: str) -> Optional[Job]:
        """Move the next waiting job (lowest priority value first) to active.

        Delayed jobs whose delay has elapsed are promoted to waiting first.
        """

    @abstractmethod
    async def complete(self, queue_name: str, job_id: str, result: Any = None) -> Job:
        """Mark an active job completed and apply the retention count."""

    @abstractmethod
    async def fail(self, queue_name: str, job_id: str, reason: str, *, retry: bool = True) -> Job:
        """Record a failed attempt.

        With ``retry`` and attempts left under the queue's retry policy the job
        is rescheduled (delayed) with backoff; otherwise it ends up failed.
        """

    @abstractmethod
    async def update_progress(self, queue_name: str, job_id: str, progress: Any) -> None:
        """Replace the job's progress value."""

    @abstractmethod
    async def counts(self, queue_name: str) -> Dict[str, int]:
        """Number of jobs per status."""

    @abstractmethod
    async def clean(self, queue_name: str, status: JobStatus, older_than_seconds: float) -> int:
        """Remove completed or failed jobs finished more than ``older_than_seconds`` ago."""

    async def close(self) -> None:
        """Release backend connections."""

    # -- shared lifecycle rules ------------------------------------------

    def _new_job(self, queue_name: str, payload: Dict[str, Any], job_id: str,
                 priority: int, delay_ms: int) -> Job:
        return Job(
            id=job_id,
            queue_name=queue_name,
            payload=payload,
            priority=priority,
            status=JobStatus.DELAYED if delay_ms > 0 else JobStatus.WAITING,
            delay_ms=delay_ms,
            created_at=self._clock(),
        )

    def _record_failure(self, job: Job, config: QueueConfig, reason: str, retry: bool) -> Optional[float]:
        """Apply a failed attempt to ``job``. Returns the due time if rescheduled."""
        job.attempts_made += 1
        job.failed_reason = reason

        if retry and job.attempts_made < config.retry.attempts:
            delay_ms = config.retry.delay_ms(job.attempts_made)
            job.status = JobStatus.DELAYED
            job.delay_ms = delay_ms
            logger.info(
                f"Job {job.id} failed (attempt {job.attempts_made}/{config.retry.attempts}), "
                f"retrying in {delay_ms}ms",
                extra={"queue": job.queue_name, "reason": reason},
            )
            return self._clock() + delay_ms / 1000

        job.status = JobStatus.FAILED
        job.finished_at = self._clock()
        logger.warning(
            f"Job {job.id} failed permanently after {job.attempts_made} attempt(s): {reason}",
            extra={"queue": job.queue_name},
        )
        return None


# ---------------------------------------------------------------------------
# In-memory backend
# ---------------------------------------------------------------------------

@dataclass
class _MemoryQueue:
    jobs: Dict[str, Job] = field(default_factory=dict)
    waiting: List[Tuple[int, str]] = field(default_factory=list)
    delayed: Dict[str, float] = field(default_factory=dict)
    completed: Deque[str] = field(default_factory=deque)
    failed: Deque[str] = field(default_factory=deque)
    sequence: int = 0


class InMemoryBroker(Broker):
    """Process-local broker. Jobs vanish on restart; use for tests and dev."""

    def __init__(self, clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self._queues: Dict[str, _MemoryQueue] = {}
        self._lock = asyncio.Lock()

    def _queue(self, queue_name: str) -> _MemoryQueue:
        return self._queues.setdefault(queue_name, _MemoryQueue())

    def _push_waiting(self, queue: _MemoryQueue, job: Job) -> None:
        queue.sequence += 1
        heapq.heappush(queue.waiting, (priority_score(job.priority, queue.sequence), job.id))

    def _get(self, queue_name: str, job_id: str) -> Job:
        job = self._queue(queue_name).jobs.get(job_id)
        if job is None:
            raise JobNotFoundError(queue_name, job_id)
        return job

    def _retain(self, queue: _MemoryQueue, finished: Deque[str], job_id: str, keep: int) -> None:
        finished.append(job_id)
        while len(finished) > keep:
            queue.jobs.pop(finished.popleft(), None)

    async def add(self, queue_name, payload, *, job_id, priority, delay_ms=0):
        async with self._lock:
            queue = self._queue(queue_name)
            existing = queue.jobs.get(job_id)
            if existing is not None:
                return existing, False

            job = self._new_job(queue_name, payload, job_id, priority, delay_ms)
            queue.jobs[job_id] = job
            if job.status == JobStatus.DELAYED:
                queue.delayed[job_id] = job.created_at + delay_ms / 1000
            else:
                self._push_waiting(queue, job)
            return job, True

    async def get_job(self, queue_name, job_id):
        return self._queue(queue_name).jobs.get(job_id)

    async def claim(self, queue_name):
        async with self._lock:
            queue = self._queue(queue_name)
            now = self._clock()
            for job_id, due in sorted(queue.delayed.items(), key=lambda item: item[1]):
                if due <= now:
                    del queue.delayed[job_id]
                    job = queue.jobs[job_id]
                    job.status = JobStatus.WAITING
                    self._push_waiting(queue, job)

            while queue.waiting:
                _, job_id = heapq.heappop(queue.waiting)
                job = queue.jobs.get(job_id)
                if job is None:
                    continue
                job.status = JobStatus.ACTIVE
                job.processed_at = now
                return job
            return None

    async def complete(self, queue_name, job_id, result=None):
        config = get_config(queue_name)
        async with self._lock:
            queue = self._queue(queue_name)
            job = self._get(queue_name, job_id)
            job.status = JobStatus.COMPLETED
            job.result = result
            job.finished_at = self._clock()
            self._retain(queue, queue.completed, job_id, config.cleanup.completed_count)
            return job

    async def fail(self, queue_name, job_id, reason, *, retry=True):
        config = get_config(queue_name)
        async with self._lock:
            queue = self._queue(queue_name)
            job = self._get(queue_name, job_id)
            due = self._record_failure(job, config, reason, retry)
            if due is not None:
                queue.delayed[job_id] = due
            else:
                self._retain(queue, queue.failed, job_id, config.cleanup.failed_count)
            return job

    async def update_progress(self, queue_name, job_id, progress):
        async with self._lock:
            self._get(queue_name, job_id).progress = progress

    async def counts(self, queue_name):
        queue = self._queue(queue_name)
        counts = {status.value: 0 for status in JobStatus}
        for job in queue.jobs.values():
            counts[job.status.value] += 1
        return counts

    async def clean(self, queue_name, status, older_than_seconds):
        async with self._lock:
            queue = self._queue(queue_name)
            finished = queue.completed if status == JobStatus.COMPLETED else queue.failed
            cutoff = self._clock() - older_than_seconds
            kept: Deque[str] = deque()
            removed = 0
            for job_id in finished:
                job = queue.jobs.get(job_id)
                if job is not None and (job.finished_at or 0) < cutoff:
                    del queue.jobs[job_id]
                    removed += 1
                elif job is not None:
                    kept.append(job_id)
            if status == JobStatus.COMPLETED:
                queue.completed = kept
            else:
                queue.failed = kept
            return removed


# ---------------------------------------------------------------------------
# Redis backend
# ---------------------------------------------------------------------------

class RedisBroker(Broker):
    """Redis-backed broker.

    Key layout per queue (``<prefix>:<queue>:...``):
        job:<id>   JSON-serialized Job
        waiting    sorted set, score = priority * stride + sequence
        delayed    sorted set, score = due time (epoch seconds)
        active     set of job ids being processed
        completed  list of finished ids, newest first
        failed     list of failed ids, newest first
        seq        insertion counter
    """

    def __init__(self, client: aioredis.Redis, prefix: str = "bmn",
                 clock: Callable[[], float] = time.time):
        super().__init__(clock)
        self._client = client
        self._prefix = prefix

    def _key(self, queue_name: str, suffix: str) -> str:
        return f"{self._prefix}:{queue_name}:{suffix}"

    def _job_key(self, queue_name: str, job_id: str) -> str:
        return self._key(queue_name, f"job:{job_id}")

    async def _load(self, queue_name: str, job_id: str) -> Optional[Job]:
        raw = await self._client.get(self._job_key(queue_name, job_id))
        return Job.from_json(raw) if raw else None

    async def _require(self, queue_name: str, job_id: str) -> Job:
        job = await self._load(queue_name, job_id)
        if job is None:
            raise JobNotFoundError(queue_name, job_id)
        return job

    async def _save(self, job: Job) -> None:
        await self._client.set(self._job_key(job.queue_name, job.id), job.to_json())

    async def _enqueue_waiting(self, job: Job) -> None:
        sequence = await self._client.incr(self._key(job.queue_name, "seq"))
        await self._client.zadd(
            self._key(job.queue_name, "waiting"),
            {job.id: priority_score(job.priority, sequence)},
        )

    async def _retain(self, queue_name: str, list_suffix: str, job_id: str, keep: int) -> None:
        list_key = self._key(queue_name, list_suffix)
        await self._client.lpush(list_key, job_id)
        stale = await self._client.lrange(list_key, keep, -1)
        if stale:
            await self._client.delete(*(self._job_key(queue_name, stale_id) for stale_id in stale))
            await self._client.ltrim(list_key, 0, keep - 1)

    async def add(self, queue_name, payload, *, job_id, priority, delay_ms=0):
        job_key = self._job_key(queue_name, job_id)
        async with self._client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(job_key)
                    existing = await pipe.get(job_key)
                    if existing is not None:
                        return Job.from_json(existing), False

                    job = self._new_job(queue_name, payload, job_id, priority, delay_ms)
                    sequence = await self._client.incr(self._key(queue_name, "seq"))
                    pipe.multi()
                    pipe.set(job_key, job.to_json())
                    if job.status == JobStatus.DELAYED:
                        pipe.zadd(self._key(queue_name, "delayed"),
                                  {job_id: job.created_at + delay_ms / 1000})
                    else:
                        pipe.zadd(self._key(queue_name, "waiting"),
                                  {job_id: priority_score(priority, sequence)})
                    await pipe.execute()
                    return job, True
                except WatchError:
                    # Another producer wrote the same id; re-read it.
                    continue

    async def get_job(self, queue_name, job_id):
        return await self._load(queue_name, job_id)

    async def _promote_delayed(self, queue_name: str) -> None:
        delayed_key = self._key(queue_name, "delayed")
        due_ids = await self._client.zrangebyscore(delayed_key, "-inf", self._clock())
        for job_id in due_ids:
            # ZREM is the claim: only the caller that removes the id promotes it.
            if not await self._client.zrem(delayed_key, job_id):
                continue
            job = await self._load(queue_name, job_id)
            if job is None:
                continue
            job.status = JobStatus.WAITING
            await self._save(job)
            await self._enqueue_waiting(job)

    async def claim(self, queue_name):
        await self._promote_delayed(queue_name)
        waiting_key = self._key(queue_name, "waiting")
        active_key = self._key(queue_name, "active")
        # The move from waiting to active is one transaction, so a worker that
        # dies mid-claim leaves the job waiting.
        async with self._client.pipeline(transaction=True) as pipe:
            while True:
                try:
                    await pipe.watch(waiting_key)
                    head = await pipe.zrange(waiting_key, 0, 0)
                    if not head:
                        return None
                    job_id = head[0]
                    job_key = self._job_key(queue_name, job_id)
                    raw = await pipe.get(job_key)
                    pipe.multi()
                    pipe.zrem(waiting_key, job_id)
                    if raw is None:
                        await pipe.execute()
                        continue
                    job = Job.from_json(raw)
                    job.status = JobStatus.ACTIVE
                    job.processed_at = self._clock()
                    pipe.set(job_key, job.to_json())
                    pipe.sadd(active_key, job_id)
                    await pipe.execute()
                    return job
                except WatchError:
                    # Another worker took the head of the queue.
                    continue

    async def complete(self, queue_name, job_id, result=None):
        config = get_config(queue_name)
        job = await self._require(queue_name, job_id)
        job.status = JobStatus.COMPLETED
        job.result = result
        job.finished_at = self._clock()
        await self._save(job)
        await self._client.srem(self._key(queue_name, "active"), job_id)
        await self._retain(queue_name, "completed", job_id, config.cleanup.completed_count)
        return job

    async def fail(self, queue_name, job_id, reason, *, retry=True):
        config = get_config(queue_name)
        job = await self._require(queue_name, job_id)
        due = self._record_failure(job, config, reason, retry)
        await self._save(job)
        await self._client.srem(self._key(queue_name, "active"), job_id)
        if due is not None:
            await self._client.zadd(self._key(queue_name, "delayed"), {job_id: due})
        else:
            await self._retain(queue_name, "failed", job_id, config.cleanup.failed_count)
        return job

    async def update_progress(self, queue_name, job_id, progress):
        job = await self._require(queue_name, job_id)
        job.progress = progress
        await self._save(job)

    async def counts(self, queue_name):
        return {
            JobStatus.WAITING.value: await self._client.zcard(self._key(queue_name, "waiting")),
            JobStatus.DELAYED.value: await self._client.zcard(self._key(queue_name, "delayed")),
            JobStatus.ACTIVE.value: await self._client.scard(self._key(queue_name, "active")),
            JobStatus.COMPLETED.value: await self._client.llen(self._key(queue_name, "completed")),
            JobStatus.FAILED.value: await self._client.llen(self._key(queue_name, "failed")),
        }

    async def clean(self, queue_name, status, older_than_seconds):
        list_key = self._key(queue_name, status.value)
        cutoff = self._clock() - older_than_seconds
        removed = 0
        for job_id in await self._client.lrange(list_key, 0, -1):
            job = await self._load(queue_name, job_id)
            if job is None or (job.finished_at or 0) < cutoff:
                await self._client.lrem(list_key, 0, job_id)
                await self._client.delete(self._job_key(queue_name, job_id))
                if job is not None:
                    removed += 1
        return removed

    async def close(self) -> None:
        await self._client.aclose()


def create_broker(config: Settings) -> Broker:
    """Build the broker selected by ``BROKER_BACKEND``."""
    if config.broker_backend == BrokerBackend.REDIS:
        client = aioredis.from_url(config.redis_url, decode_responses=True)
        logger.info("Using Redis job broker", extra={"prefix": config.queue_key_prefix})
        return RedisBroker(client, prefix=config.queue_key_prefix)
    logger.info("Using in-memory job broker")
    return InMemoryBroker()
