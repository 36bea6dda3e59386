"""Static queue registry.

Every queue the platform knows about is a member of ``QueueName``, and every
member has exactly one ``QueueDefinition`` (payload schema + runtime policy)
in ``QUEUE_REGISTRY``. Adding a queue means adding an enum member and a
registry entry; tests/test_queue_registry.py fails if either is missing.
"""

from dataclasses import dataclass, field
from enum import Enum
from typing import Dict, Optional, Type

from ..schemas.jobs import (
    BrandWizardJob,
    BundleCompositionJob,
    CleanupJob,
    CrmSyncJob,
    EmailSendJob,
    ImageUploadJob,
    JobPayload,
    LogoGenerationJob,
    MockupGenerationJob,
    PrintExportJob,
    VideoGenerationJob,
)


class QueueName(str, Enum):
    BRAND_WIZARD = "brand-wizard"
    LOGO_GENERATION = "logo-generation"
    MOCKUP_GENERATION = "mockup-generation"
    BUNDLE_COMPOSITION = "bundle-composition"
    VIDEO_GENERATION = "video-generation"
    CRM_SYNC = "crm-sync"
    EMAIL_SEND = "email-send"
    IMAGE_UPLOAD = "image-upload"
    PRINT_EXPORT = "print-export"
    CLEANUP = "cleanup"


class BackoffType(str, Enum):
    FIXED = "fixed"
    EXPONENTIAL = "exponential"


@dataclass(frozen=True)
class RetryPolicy:
    """How many times a job runs and how long to wait between runs."""
    attempts: int
    backoff_delay_ms: int
    backoff_type: BackoffType = BackoffType.EXPONENTIAL

    def delay_ms(self, attempts_made: int) -> int:
        """Delay before the next run, after ``attempts_made`` failed runs (>= 1)."""
        if self.backoff_type == BackoffType.FIXED:
            return self.backoff_delay_ms
        return self.backoff_delay_ms * 2 ** max(attempts_made - 1, 0)


@dataclass(frozen=True)
class CleanupPolicy:
    """Retention for finished jobs: newest N kept, anything older than the age dropped."""
    completed_count: int
    failed_count: int
    completed_age_seconds: int = 24 * 60 * 60
    failed_age_seconds: int = 7 * 24 * 60 * 60


@dataclass(frozen=True)
class QueueConfig:
    concurrency: int
    timeout_ms: int
    priority: int
    retry: RetryPolicy
    cleanup: CleanupPolicy


@dataclass(frozen=True)
class QueueDefinition:
    name: QueueName
    schema: Type[JobPayload]
    config: QueueConfig
    description: str = field(default="", compare=False)


def _define(name, schema, description, *, concurrency, timeout_ms, priority,
            attempts, backoff_delay_ms, backoff_type=BackoffType.EXPONENTIAL,
            keep_completed, keep_failed) -> QueueDefinition:
    return QueueDefinition(
        name=name,
        schema=schema,
        description=description,
        config=QueueConfig(
            concurrency=concurrency,
            timeout_ms=timeout_ms,
            priority=priority,
            retry=RetryPolicy(attempts, backoff_delay_ms, backoff_type),
            cleanup=CleanupPolicy(completed_count=keep_completed, failed_count=keep_failed),
        ),
    )


QUEUE_REGISTRY: Dict[QueueName, QueueDefinition] = {
    QueueName.BRAND_WIZARD: _define(
        QueueName.BRAND_WIZARD, BrandWizardJob, "Agent session for one wizard step",
        concurrency=2, timeout_ms=300_000, priority=1,
        attempts=2, backoff_delay_ms=5_000,
        keep_completed=200, keep_failed=500,
    ),
    QueueName.LOGO_GENERATION: _define(
        QueueName.LOGO_GENERATION, LogoGenerationJob, "Logo image generation",
        concurrency=4, timeout_ms=120_000, priority=1,
        attempts=3, backoff_delay_ms=3_000,
        keep_completed=500, keep_failed=500,
    ),
    QueueName.MOCKUP_GENERATION: _define(
        QueueName.MOCKUP_GENERATION, MockupGenerationJob, "Product mockup generation",
        concurrency=4, timeout_ms=120_000, priority=1,
        attempts=3, backoff_delay_ms=3_000,
        keep_completed=500, keep_failed=500,
    ),
    QueueName.BUNDLE_COMPOSITION: _define(
        QueueName.BUNDLE_COMPOSITION, BundleCompositionJob, "Multi-product bundle composite",
        concurrency=2, timeout_ms=120_000, priority=2,
        attempts=3, backoff_delay_ms=5_000,
        keep_completed=200, keep_failed=200,
    ),
    QueueName.VIDEO_GENERATION: _define(
        QueueName.VIDEO_GENERATION, VideoGenerationJob, "Product video generation",
        concurrency=1, timeout_ms=300_000, priority=2,
        attempts=2, backoff_delay_ms=10_000,
        keep_completed=100, keep_failed=100,
    ),
    QueueName.CRM_SYNC: _define(
        QueueName.CRM_SYNC, CrmSyncJob, "CRM contact sync",
        concurrency=5, timeout_ms=30_000, priority=5,
        attempts=5, backoff_delay_ms=10_000,
        keep_completed=1000, keep_failed=1000,
    ),
    QueueName.EMAIL_SEND: _define(
        QueueName.EMAIL_SEND, EmailSendJob, "Transactional email",
        concurrency=10, timeout_ms=15_000, priority=3,
        attempts=5, backoff_delay_ms=5_000,
        keep_completed=2000, keep_failed=1000,
    ),
    QueueName.IMAGE_UPLOAD: _define(
        QueueName.IMAGE_UPLOAD, ImageUploadJob, "Generated asset upload to storage",
        concurrency=5, timeout_ms=60_000, priority=2,
        attempts=3, backoff_delay_ms=3_000,
        keep_completed=500, keep_failed=500,
    ),
    QueueName.PRINT_EXPORT: _define(
        QueueName.PRINT_EXPORT, PrintExportJob, "Print-ready artwork export",
        concurrency=2, timeout_ms=120_000, priority=3,
        attempts=3, backoff_delay_ms=5_000,
        keep_completed=200, keep_failed=200,
    ),
    QueueName.CLEANUP: _define(
        QueueName.CLEANUP, CleanupJob, "Periodic maintenance",
        concurrency=1, timeout_ms=120_000, priority=10,
        attempts=1, backoff_delay_ms=60_000, backoff_type=BackoffType.FIXED,
        keep_completed=50, keep_failed=50,
    ),
}


def queue_names() -> list[str]:
    """Registered queue names, in declaration order."""
    return [name.value for name in QueueName]


def lookup(queue_name: str) -> Optional[QueueDefinition]:
    """Definition for ``queue_name``, or None if it is not registered."""
    try:
        return QUEUE_REGISTRY[QueueName(queue_name)]
    except ValueError:
        return None


def get_config(queue_name: str) -> QueueConfig:
    """Config for a registered queue. Raises KeyError for unknown names."""
    definition = lookup(queue_name)
    if definition is None:
        raise KeyError(queue_name)
    return definition.config
