"""Application configuration with validation."""

from enum import Enum
from pydantic_settings import BaseSettings
from pydantic import Field, field_validator
from typing import List


class Environment(str, Enum):
    """Application environment."""
    DEVELOPMENT = "development"
    PRODUCTION = "production"


class BrokerBackend(str, Enum):
    """Storage backend for job queues."""
    MEMORY = "memory"
    REDIS = "redis"


class ConfigurationError(Exception):
    """Raised when application configuration is invalid for the environment."""
    pass


class Settings(BaseSettings):
    """
    Application settings with validation.

    Values are read from the environment (or a ``.env`` file) and validated
    once at import time, so a bad deployment fails at startup instead of at
    the first job or webhook.
    """

    # Environment
    environment: Environment = Field(
        default=Environment.DEVELOPMENT,
        description="Application environment (development/production)"
    )

    # CORS Configuration
    cors_allowed_origins: str = Field(
        default="http://localhost:3000,http://localhost:5173",
        description="Allowed CORS origins (comma-separated)"
    )

    # Database Configuration
    database_url: str = Field(
        default="sqlite:///./brandworks.db",
        description="Database connection URL"
    )
    # Connection pool tuning (PostgreSQL only; ignored for SQLite).
    db_pool_size: int = Field(
        default=5,
        description="Number of persistent database connections"
    )
    db_max_overflow: int = Field(
        default=10,
        description="Extra connections allowed during traffic bursts"
    )
    db_pool_timeout: int = Field(
        default=30,
        description="Seconds to wait for a connection from the pool before raising"
    )
    db_pool_recycle: int = Field(
        default=1800,
        description="Seconds before a connection is recycled (prevents stale connections)"
    )

    # Queue Configuration
    # BROKER_BACKEND=memory keeps jobs in-process (tests, local dev only).
    broker_backend: BrokerBackend = Field(
        default=BrokerBackend.MEMORY,
        description="Job queue backend (memory/redis)"
    )
    redis_url: str = Field(
        default="redis://localhost:6379/0",
        description="Redis connection URL for queues, live updates and token storage"
    )
    queue_key_prefix: str = Field(
        default="bmn",
        description="Namespace prefix for queue keys in Redis"
    )
    worker_poll_interval: float = Field(
        default=1.0,
        description="Seconds an idle worker waits before polling its queue again"
    )

    # Outbound Webhooks
    webhook_max_attempts: int = Field(
        default=3,
        description="Delivery attempts per subscriber before giving up"
    )
    webhook_base_delay_ms: int = Field(
        default=1000,
        description="Backoff before the second attempt; doubles for each further attempt"
    )
    webhook_timeout_seconds: float = Field(
        default=10.0,
        description="Hard timeout for a single delivery request"
    )
    webhook_max_concurrency: int = Field(
        default=10,
        description="Maximum subscribers notified in parallel for one event"
    )
    webhook_user_agent: str = Field(
        default="BrandMeNow-Webhooks/1.0",
        description="User-Agent header sent with every delivery"
    )
    webhook_response_body_limit: int = Field(
        default=1000,
        description="Characters of the subscriber's response kept in the delivery log"
    )
    webhook_delivery_retention_days: int = Field(
        default=30,
        description="Days to keep webhook delivery rows (0 = keep forever)"
    )

    # Agent runtime
    # Dotted path "package.module:factory" returning an AgentRuntime.
    # Empty = the brand-wizard queue has no processor in this worker.
    agent_runtime_factory: str = Field(
        default="",
        description="Import path of the agent runtime factory used by the brand wizard worker"
    )
    agent_cost_limit_usd: float = Field(
        default=2.50,
        description="Session cost after which further tool calls are denied (0 = no limit)"
    )

    # CRM token storage
    crm_token_key: str = Field(
        default="ghl:tokens",
        description="Redis key holding the CRM OAuth token pair"
    )
    # Dotted path "package.module:factory" returning an async CRM sender.
    crm_sender_factory: str = Field(
        default="",
        description="Import path of the CRM sender factory used by the crm-sync worker"
    )

    # Audit Log Retention
    audit_retention_days: int = Field(
        default=365,
        description="Days to keep audit log entries (0 = keep forever)"
    )

    # Logging Configuration
    log_level: str = Field(
        default="INFO",
        description="Logging level (DEBUG, INFO, WARNING, ERROR, CRITICAL)"
    )
    log_format: str = Field(
        default="json",
        description="Log output format: 'json' for structured, 'text' for human-readable"
    )

    def get_cors_origins(self) -> List[str]:
        """
        Get CORS origins as a list.

        Parses comma-separated string and validates no wildcards.
        """
        origins = [origin.strip() for origin in self.cors_allowed_origins.split(',') if origin.strip()]

        if "*" in origins:
            raise ValueError(
                "Wildcard CORS (*) not allowed. "
                "Specify explicit origins in CORS_ALLOWED_ORIGINS"
            )

        return origins

    @field_validator('log_level')
    @classmethod
    def validate_log_level(cls, v: str) -> str:
        """Validate log level is one of the standard Python logging levels."""
        valid_levels = ['DEBUG', 'INFO', 'WARNING', 'ERROR', 'CRITICAL']
        v_upper = v.upper()
        if v_upper not in valid_levels:
            raise ValueError(f"Invalid log level. Must be one of: {valid_levels}")
        return v_upper

    @field_validator('webhook_max_attempts', 'webhook_max_concurrency')
    @classmethod
    def validate_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("Must be at least 1")
        return v

    def validate_production_config(self) -> None:
        """Validate configuration for production environment.

        In production, fails startup if settings only suitable for local
        development are still in place. In development this is a no-op;
        main.py logs warnings instead.

        Raises:
            ConfigurationError: If production config is unsafe.
        """
        errors: list[str] = []

        if self.broker_backend == BrokerBackend.MEMORY:
            errors.append(
                "BROKER_BACKEND is 'memory'. Jobs would be lost on restart "
                "and invisible to other workers. Set BROKER_BACKEND=redis."
            )

        if self.database_url.startswith("sqlite"):
            errors.append(
                "DATABASE_URL points at SQLite. The credit ledger must be shared "
                "by every worker process; use PostgreSQL."
            )

        origins = self.get_cors_origins()
        localhost_origins = [o for o in origins if "localhost" in o or "127.0.0.1" in o]
        if localhost_origins:
            errors.append(
                f"CORS allows localhost origins: {localhost_origins}. "
                "Remove localhost origins for production."
            )

        if errors and self.environment == Environment.PRODUCTION:
            raise ConfigurationError(
                "Production configuration is unsafe:\n  - " + "\n  - ".join(errors)
            )

    class Config:
        """Pydantic configuration."""
        env_file = ".env"
        env_file_encoding = "utf-8"
        case_sensitive = False


# Global settings instance
settings = Settings()
