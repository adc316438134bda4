"""
Configuration management for microservices.

Provides typed configuration classes with environment variable
injection and validation.
"""

import os
from dataclasses import dataclass, field
from typing import Optional


@dataclass
class DatabaseConfig:
    """Database configuration."""
    postgres_dsn: str = field(default_factory=lambda: os.getenv("DISTMOD_POSTGRES_DSN", "postgresql://localhost:5432/distribution"))
    redis_url: str = field(default_factory=lambda: os.getenv("DISTMOD_REDIS_URL", "redis://localhost:6379/0"))
    redis_max_connections: int = field(default_factory=lambda: int(os.getenv("DISTMOD_REDIS_MAX_CONNECTIONS", "20")))


@dataclass
class QueueConfig:
    """Job queue configuration."""
    poll_interval: float = field(default_factory=lambda: float(os.getenv("DISTMOD_QUEUE_POLL_INTERVAL", "0.1")))
    job_retention_seconds: int = field(default_factory=lambda: int(os.getenv("DISTMOD_QUEUE_JOB_RETENTION", "86400")))
    drain_timeout: float = field(default_factory=lambda: float(os.getenv("DISTMOD_QUEUE_DRAIN_TIMEOUT", "30")))
    lease_seconds: float = field(default_factory=lambda: float(os.getenv("DISTMOD_QUEUE_JOB_LEASE", "30")))


@dataclass
class ObservabilityConfig:
    """Observability configuration."""
    log_level: str = field(default_factory=lambda: os.getenv("DISTMOD_LOG_LEVEL", "info"))
    log_format: str = field(default_factory=lambda: os.getenv("DISTMOD_LOG_FORMAT", "json"))
    trace_enabled: bool = field(default_factory=lambda: os.getenv("DISTMOD_TRACE_ENABLED", "false").lower() == "true")
    trace_endpoint: Optional[str] = field(default_factory=lambda: os.getenv("DISTMOD_TRACE_ENDPOINT"))
    health_port: int = field(default_factory=lambda: int(os.getenv("DISTMOD_HTTP_PORT", "8080")))


@dataclass
class ServiceConfig:
    """Base service configuration."""
    service_name: str
    environment: str = field(default_factory=lambda: os.getenv("DISTMOD_ENV", "local"))
    version: str = field(default_factory=lambda: os.getenv("DISTMOD_VERSION", "1.0.0"))

    # Sub-configurations
    database: DatabaseConfig = field(default_factory=DatabaseConfig)
    queue: QueueConfig = field(default_factory=QueueConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    processing_timeout: int = field(default_factory=lambda: int(os.getenv("DISTMOD_PROCESSING_TIMEOUT", "30")))

    def __post_init__(self):
        """Validate configuration after initialization."""
        if not self.service_name:
            raise ValueError("service_name is required")

        if self.environment not in ["local", "dev", "staging", "prod"]:
            raise ValueError(f"Invalid environment: {self.environment}")

        if self.observability.log_format not in ["json", "console"]:
            raise ValueError(f"Invalid log format: {self.observability.log_format}")

        if self.queue.lease_seconds <= 0:
            raise ValueError(f"Invalid job lease: {self.queue.lease_seconds}")
