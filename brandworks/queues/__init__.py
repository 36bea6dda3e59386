"""Named work queues: registry, broker backends, dispatcher and workers."""

from .registry import QueueName, QUEUE_REGISTRY, QueueConfig, RetryPolicy, CleanupPolicy, BackoffType
from .broker import Broker, InMemoryBroker, RedisBroker, Job, JobStatus, create_broker
from .dispatch import JobDispatcher
from .worker import QueueWorker, JobContext, run_workers

__all__ = [
    "QueueName", "QUEUE_REGISTRY", "QueueConfig", "RetryPolicy", "CleanupPolicy", "BackoffType",
    "Broker", "InMemoryBroker", "RedisBroker", "Job", "JobStatus", "create_broker",
    "JobDispatcher",
    "QueueWorker", "JobContext", "run_workers",
]
