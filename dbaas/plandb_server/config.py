"""
Configuration management for PlanDB Server.

All configuration is done via environment variables - no config files inside containers.
This module provides typed configuration classes with validation.

Invariants:
    - All settings have sensible defaults for local development
    - Production deployments MUST set explicit values for critical settings
    - Secrets are never logged or exposed in error messages

How to change safely:
    - Add new settings with defaults that maintain backward compatibility
    - Deprecate settings by logging warnings but continuing to support them
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass, field
from enum import Enum

logger = logging.getLogger(__name__)


class KvBackend(Enum):
    """Supported key-value store backends."""

    REDIS = "redis"
    MEMORY = "memory"


class IndexBackend(Enum):
    """Supported backends for search-index notifications."""

    KAFKA = "kafka"
    MEMORY = "memory"
    DISABLED = "disabled"


@dataclass(frozen=True)
class RedisConfig:
    """Redis key-value store configuration.

    Attributes:
        url: Redis connection URL (redis:// or rediss://)
        socket_timeout: Socket timeout in seconds (None waits forever)
        max_connections: Maximum connections in the client pool
    """

    url: str = "redis://localhost:6379/0"
    socket_timeout: float | None = None
    max_connections: int = 50

    @classmethod
    def from_env(cls) -> RedisConfig:
        """Load configuration from environment variables."""
        timeout = os.getenv("REDIS_SOCKET_TIMEOUT")
        return cls(
            url=os.getenv("REDIS_URL", "redis://localhost:6379/0"),
            socket_timeout=float(timeout) if timeout else None,
            max_connections=int(os.getenv("REDIS_MAX_CONNECTIONS", "50")),
        )


@dataclass(frozen=True)
class KafkaConfig:
    """Kafka/Redpanda configuration for index notifications.

    Attributes:
        brokers: Comma-separated list of broker addresses
        topic: Topic that the indexing worker consumes
        sasl_mechanism: SASL authentication mechanism (PLAIN, SCRAM-SHA-256, etc.)
        sasl_username: SASL username (if authentication enabled)
        sasl_password: SASL password (if authentication enabled)
        security_protocol: Security protocol (PLAINTEXT, SSL, SASL_PLAINTEXT, SASL_SSL)
        ssl_cafile: Path to CA certificate file
        acks: Producer acknowledgment level ('all' for strongest durability)
        enable_idempotence: Enable idempotent producer
    """

    brokers: str = "localhost:9092"
    topic: str = "plan-indexing"
    sasl_mechanism: str | None = None
    sasl_username: str | None = None
    sasl_password: str | None = None
    security_protocol: str = "PLAINTEXT"
    ssl_cafile: str | None = None
    acks: str = "all"
    enable_idempotence: bool = True

    @classmethod
    def from_env(cls) -> KafkaConfig:
        """Load configuration from environment variables."""
        return cls(
            brokers=os.getenv("KAFKA_BROKERS", "localhost:9092"),
            topic=os.getenv("KAFKA_TOPIC", "plan-indexing"),
            sasl_mechanism=os.getenv("KAFKA_SASL_MECHANISM"),
            sasl_username=os.getenv("KAFKA_SASL_USERNAME"),
            sasl_password=os.getenv("KAFKA_SASL_PASSWORD"),
            security_protocol=os.getenv("KAFKA_SECURITY_PROTOCOL", "PLAINTEXT"),
            ssl_cafile=os.getenv("KAFKA_SSL_CAFILE"),
            acks=os.getenv("KAFKA_ACKS", "all"),
            enable_idempotence=os.getenv("KAFKA_ENABLE_IDEMPOTENCE", "true").lower() == "true",
        )


@dataclass(frozen=True)
class StoreConfig:
    """Plan store transaction configuration.

    Attributes:
        max_attempts: Read-merge-write cycles before a CAS race is reported
        retry_backoff_ms: Upper bound of the jittered sleep between attempts (0 disables)
    """

    max_attempts: int = 3
    retry_backoff_ms: int = 0

    @classmethod
    def from_env(cls) -> StoreConfig:
        """Load configuration from environment variables."""
        return cls(
            max_attempts=int(os.getenv("STORE_MAX_ATTEMPTS", "3")),
            retry_backoff_ms=int(os.getenv("STORE_RETRY_BACKOFF_MS", "0")),
        )


@dataclass(frozen=True)
class HttpConfig:
    """HTTP server configuration.

    Attributes:
        host: Address to bind
        port: Port to listen on
        max_body_bytes: Largest accepted request body
    """

    host: str = "0.0.0.0"
    port: int = 8080
    max_body_bytes: int = 1024 * 1024

    @classmethod
    def from_env(cls) -> HttpConfig:
        """Load configuration from environment variables."""
        return cls(
            host=os.getenv("HTTP_HOST", "0.0.0.0"),
            port=int(os.getenv("HTTP_PORT", "8080")),
            max_body_bytes=int(os.getenv("HTTP_MAX_BODY_BYTES", str(1024 * 1024))),
        )


@dataclass(frozen=True)
class ObservabilityConfig:
    """Logging configuration.

    Attributes:
        log_level: Logging level (DEBUG, INFO, WARNING, ERROR)
        log_format: Log format (json, text)
    """

    log_level: str = "INFO"
    log_format: str = "json"

    @classmethod
    def from_env(cls) -> ObservabilityConfig:
        """Load configuration from environment variables."""
        return cls(
            log_level=os.getenv("LOG_LEVEL", "INFO"),
            log_format=os.getenv("LOG_FORMAT", "json"),
        )


@dataclass
class ServerConfig:
    """Complete server configuration.

    Attributes:
        kv_backend: Which key-value backend holds plan records
        index_backend: Where index notifications are published
        redis: Redis configuration (if kv_backend is REDIS)
        kafka: Kafka configuration (if index_backend is KAFKA)
        store: Transaction retry configuration
        http: HTTP server configuration
        observability: Logging configuration
    """

    kv_backend: KvBackend = KvBackend.REDIS
    index_backend: IndexBackend = IndexBackend.KAFKA
    redis: RedisConfig = field(default_factory=RedisConfig)
    kafka: KafkaConfig = field(default_factory=KafkaConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    http: HttpConfig = field(default_factory=HttpConfig)
    observability: ObservabilityConfig = field(default_factory=ObservabilityConfig)

    @classmethod
    def from_env(cls) -> ServerConfig:
        """Load complete configuration from environment variables.

        Returns:
            ServerConfig with all sections populated from environment.

        Raises:
            ValueError: If required configuration is missing or invalid.
        """
        kv_str = os.getenv("KV_BACKEND", "redis").lower()
        try:
            kv_backend = KvBackend(kv_str)
        except ValueError:
            raise ValueError(f"Invalid KV_BACKEND '{kv_str}'. Must be one of: redis, memory")

        index_str = os.getenv("INDEX_BACKEND", "kafka").lower()
        try:
            index_backend = IndexBackend(index_str)
        except ValueError:
            raise ValueError(
                f"Invalid INDEX_BACKEND '{index_str}'. Must be one of: kafka, memory, disabled"
            )

        config = cls(
            kv_backend=kv_backend,
            index_backend=index_backend,
            redis=RedisConfig.from_env(),
            kafka=KafkaConfig.from_env(),
            store=StoreConfig.from_env(),
            http=HttpConfig.from_env(),
            observability=ObservabilityConfig.from_env(),
        )

        config.validate()
        return config

    def validate(self) -> None:
        """Validate configuration consistency.

        Raises:
            ValueError: If configuration is invalid.
        """
        if self.kv_backend == KvBackend.REDIS and not self.redis.url:
            raise ValueError("REDIS_URL is required when KV_BACKEND=redis")

        if self.index_backend == IndexBackend.KAFKA:
            if not self.kafka.brokers:
                raise ValueError("KAFKA_BROKERS is required when INDEX_BACKEND=kafka")
            if not self.kafka.topic:
                raise ValueError("KAFKA_TOPIC is required when INDEX_BACKEND=kafka")

        if self.store.max_attempts < 1:
            raise ValueError("STORE_MAX_ATTEMPTS must be at least 1")
        if self.store.retry_backoff_ms < 0:
            raise ValueError("STORE_RETRY_BACKOFF_MS must not be negative")

        if self.kv_backend == KvBackend.MEMORY:
            logger.warning("KV_BACKEND=memory: plan data is lost when the process exits")

    def log_config(self) -> None:
        """Log configuration (redacting secrets)."""
        logger.info(
            "Server configuration loaded",
            extra={
                "kv_backend": self.kv_backend.value,
                "redis_url": _redact_url(self.redis.url)
                if self.kv_backend == KvBackend.REDIS
                else None,
                "index_backend": self.index_backend.value,
                "kafka_brokers": self.kafka.brokers
                if self.index_backend == IndexBackend.KAFKA
                else None,
                "kafka_topic": self.kafka.topic
                if self.index_backend == IndexBackend.KAFKA
                else None,
                "max_attempts": self.store.max_attempts,
                "http_bind": f"{self.http.host}:{self.http.port}",
                "log_level": self.observability.log_level,
            },
        )


def _redact_url(url: str) -> str:
    """Drop the credentials part of a connection URL."""
    scheme, sep, rest = url.partition("://")
    if not sep or "@" not in rest:
        return url
    return f"{scheme}://***@{rest.rsplit('@', 1)[1]}"
