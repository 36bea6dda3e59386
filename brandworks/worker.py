"""
Queue worker process.

Runs one consumer per queue that has a processor in this deployment and
enqueues the hourly ``expired-jobs`` cleanup. Processors for queues whose
executors live elsewhere (image generation, email, ...) are not registered
here; their jobs wait until a worker that has them picks them up.

    brand-wizard  needs AGENT_RUNTIME_FACTORY
    crm-sync      needs CRM_SENDER_FACTORY
    cleanup       always

Usage:
    brandworks-worker
    python -m brandworks.worker
"""

import asyncio
import importlib
import logging
import signal
import time
from typing import Any, Callable, Dict

import redis.asyncio as aioredis
from dotenv import load_dotenv

load_dotenv()

from . import models  # noqa: E402,F401  (registers tables on Base.metadata)
from .agents.notifier import LoggingNotifier, RedisNotifier  # noqa: E402
from .agents.wizard import WizardProcessor  # noqa: E402
from .core.config import BrokerBackend, ConfigurationError, settings  # noqa: E402
from .core.logging_config import setup_logging  # noqa: E402
from .database import Base, SessionLocal, engine  # noqa: E402
from .queues.broker import Broker, create_broker  # noqa: E402
from .queues.cleanup import CleanupProcessor, schedule_cleanup  # noqa: E402
from .queues.dispatch import JobDispatcher  # noqa: E402
from .queues.registry import QueueName  # noqa: E402
from .queues.worker import Processor, run_workers  # noqa: E402
from .services.crm import CrmSyncProcessor  # noqa: E402
from .services.webhook_dispatcher import WebhookDispatcher, build_dispatcher  # noqa: E402

logger = logging.getLogger("brandworks.worker")


def load_factory(path: str) -> Callable[[], Any]:
    """Resolve ``"package.module:attribute"`` to a callable.

    Raises:
        ConfigurationError: If the path is malformed or does not resolve.
    """
    module_name, sep, attr = path.partition(":")
    if not sep or not module_name or not attr:
        raise ConfigurationError(f"Factory path must look like 'package.module:factory', got {path!r}")
    try:
        module = importlib.import_module(module_name)
        factory = getattr(module, attr)
    except (ImportError, AttributeError) as e:
        raise ConfigurationError(f"Cannot load factory {path!r}: {e}") from e
    if not callable(factory):
        raise ConfigurationError(f"Factory {path!r} is not callable")
    return factory


def build_processors(broker: Broker, webhooks: WebhookDispatcher, redis_client=None) -> Dict[QueueName, Processor]:
    processors: Dict[QueueName, Processor] = {
        QueueName.CLEANUP: CleanupProcessor(broker),
    }

    if settings.agent_runtime_factory:
        runtime = load_factory(settings.agent_runtime_factory)()
        notifier = RedisNotifier(redis_client) if redis_client is not None else LoggingNotifier()
        processors[QueueName.BRAND_WIZARD] = WizardProcessor(runtime, SessionLocal, webhooks, notifier)
    else:
        logger.warning("AGENT_RUNTIME_FACTORY not set: brand-wizard jobs will not be processed here")

    if settings.crm_sender_factory:
        sender = load_factory(settings.crm_sender_factory)()
        processors[QueueName.CRM_SYNC] = CrmSyncProcessor(sender)

    return processors


async def run() -> None:
    stop = asyncio.Event()
    loop = asyncio.get_running_loop()
    for sig in (signal.SIGINT, signal.SIGTERM):
        try:
            loop.add_signal_handler(sig, stop.set)
        except NotImplementedError:
            # Windows event loops have no signal handlers; rely on KeyboardInterrupt.
            pass

    Base.metadata.create_all(bind=engine)

    broker = create_broker(settings)
    webhooks = build_dispatcher()
    redis_client = None
    if settings.broker_backend == BrokerBackend.REDIS:
        redis_client = aioredis.from_url(settings.redis_url, decode_responses=True)

    processors = build_processors(broker, webhooks, redis_client)
    logger.info(
        "Worker started",
        extra={"queues": [name.value for name in processors], "broker": settings.broker_backend.value},
    )

    try:
        await asyncio.gather(
            run_workers(broker, processors, stop, poll_interval=settings.worker_poll_interval),
            schedule_cleanup(JobDispatcher(broker), stop, time.time),
        )
    finally:
        await webhooks.aclose()
        await broker.close()
        if redis_client is not None:
            await redis_client.aclose()
        logger.info("Worker shut down")


def main() -> None:
    setup_logging(log_level=settings.log_level, log_format=settings.log_format)
    try:
        settings.validate_production_config()
    except ConfigurationError as e:
        logger.critical(f"STARTUP BLOCKED: {e}")
        raise SystemExit(1) from e

    try:
        asyncio.run(run())
    except KeyboardInterrupt:
        logger.info("Worker interrupted")


if __name__ == "__main__":
    main()
