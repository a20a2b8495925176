"""
Kafka/Redpanda publisher for index notifications.

Works with Apache Kafka, Amazon MSK, Redpanda, or any Kafka API-compatible
system.

Invariants:
    - Producer uses acks=all and idempotence by default
    - publish() returns only after the broker acknowledged the event
    - Events are keyed by plan id

How to change safely:
    - Test with an actual Kafka/Redpanda cluster before deploying
    - Keep the event encoding in IndexEvent.to_bytes()
"""

from __future__ import annotations

import asyncio
import logging
from typing import Any

from aiokafka import AIOKafkaProducer
from aiokafka.errors import KafkaConnectionError, KafkaError, KafkaTimeoutError

from .base import IndexConnectionError, IndexEvent, IndexPublishError

logger = logging.getLogger(__name__)


class KafkaIndexPublisher:
    """Kafka implementation of IndexPublisher protocol.

    Example:
        >>> config = KafkaConfig(brokers="localhost:9092", topic="plan-indexing")
        >>> publisher = KafkaIndexPublisher(config)
        >>> await publisher.connect()
    """

    def __init__(self, config: Any) -> None:
        """Initialize Kafka publisher.

        Args:
            config: KafkaConfig instance with connection settings
        """
        self.config = config
        self._producer: AIOKafkaProducer | None = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Whether connected to Kafka."""
        return self._connected and self._producer is not None

    async def connect(self) -> None:
        """Start the producer.

        Raises:
            IndexConnectionError: If connection fails
        """
        if self._connected:
            return

        producer_config: dict[str, Any] = {
            "bootstrap_servers": self.config.brokers,
            "acks": self.config.acks,
            "enable_idempotence": self.config.enable_idempotence,
            "linger_ms": 5,
            "request_timeout_ms": 30000,
            "retry_backoff_ms": 100,
        }

        if self.config.security_protocol != "PLAINTEXT":
            producer_config["security_protocol"] = self.config.security_protocol

        if self.config.sasl_mechanism:
            producer_config["sasl_mechanism"] = self.config.sasl_mechanism
            producer_config["sasl_plain_username"] = self.config.sasl_username
            producer_config["sasl_plain_password"] = self.config.sasl_password

        if self.config.ssl_cafile:
            producer_config["ssl_cafile"] = self.config.ssl_cafile

        try:
            self._producer = AIOKafkaProducer(**producer_config)
            await self._producer.start()
            self._connected = True
            logger.info(
                "Connected to Kafka",
                extra={"brokers": self.config.brokers, "topic": self.config.topic},
            )
        except KafkaError as e:
            self._connected = False
            self._producer = None
            raise IndexConnectionError(f"Failed to connect to Kafka: {e}") from e

    async def close(self) -> None:
        """Flush and stop the producer."""
        if self._producer:
            try:
                await self._producer.stop()
            except KafkaError as e:
                logger.warning(f"Error closing producer: {e}")
            self._producer = None

        self._connected = False
        logger.info("Kafka producer closed")

    async def publish(self, event: IndexEvent) -> None:
        """Send the event and wait for the broker acknowledgment.

        Raises:
            IndexConnectionError: If not connected or the connection dropped
            IndexPublishError: For timeouts and other Kafka errors
        """
        if not self._producer:
            raise IndexConnectionError("Not connected to Kafka")

        try:
            metadata = await self._producer.send_and_wait(
                self.config.topic,
                value=event.to_bytes(),
                key=event.key.encode("utf-8"),
                headers=[("x-operation", event.operation.value.encode("utf-8"))],
            )
        except KafkaTimeoutError as e:
            raise IndexPublishError(f"Kafka send timed out: {e}") from e
        except KafkaConnectionError as e:
            self._connected = False
            raise IndexConnectionError(f"Kafka connection lost: {e}") from e
        except KafkaError as e:
            raise IndexPublishError(f"Kafka send failed: {e}") from e

        logger.debug(
            "Index event published",
            extra={
                "message_id": event.message_id,
                "partition": metadata.partition,
                "offset": metadata.offset,
            },
        )

    async def health_check(self) -> bool:
        """Check if the Kafka connection is healthy."""
        if not self._producer:
            return False

        try:
            partitions = await asyncio.wait_for(
                self._producer.partitions_for(self.config.topic), timeout=5.0
            )
            return partitions is not None
        except (KafkaError, asyncio.TimeoutError):
            return False
