#!/usr/bin/env python3
"""
alertmanager2kafka - Publisher

Owns the Kafka producer for the process lifetime and writes outbound
messages to a single topic.

Usage:
    producer = get_kafka_producer(brokers=[...], security=NoAuth())
    with Publisher(producer, topic="alerts", publish_timeout=10) as publisher:
        publisher.publish(OutboundMessage(value=b'{"status": "firing", ...}'))

KafkaProducer is thread-safe and batches internally, so one Publisher is
shared by all request threads without locking.
"""

import logging
import threading
import time
from typing import Optional

from kafka.errors import KafkaError

from am2kafka.models import OutboundMessage

logger = logging.getLogger(__name__)


class PublishError(Exception):
    """Raised when the broker did not acknowledge a message in time."""
    pass


class Publisher:
    """
    Writes messages to one Kafka topic and waits for acknowledgement.

    Attributes:
        producer: kafka.KafkaProducer (or anything with send/flush/close)
        topic: Topic bound for the lifetime of this publisher
        publish_timeout: Seconds to wait for all acks of one publish() call
        close_timeout: Seconds to flush buffered messages on close()
    """

    def __init__(self, producer, topic: str, publish_timeout: float = 10.0, close_timeout: float = 10.0):
        if not topic:
            raise ValueError("topic is required")
        self.producer = producer
        self.topic = topic
        self.publish_timeout = publish_timeout
        self.close_timeout = close_timeout
        self._closed = False
        self._close_lock = threading.Lock()

    @property
    def closed(self) -> bool:
        return self._closed

    def publish(self, *messages: OutboundMessage) -> int:
        """
        Send messages to the topic and block until the broker acknowledges
        all of them or the publish timeout expires.

        Each message is sent exactly once; failures are not retried here.

        Returns:
            Number of messages acknowledged.

        Raises:
            PublishError: send failed, the broker rejected a message, or the
                deadline passed. The original error is chained.
        """
        if self._closed:
            raise PublishError("Publisher is closed")

        deadline = time.monotonic() + self.publish_timeout
        try:
            futures = [
                self.producer.send(self.topic, value=message.value, key=message.key)
                for message in messages
            ]
            for future in futures:
                metadata = future.get(timeout=max(deadline - time.monotonic(), 0))
                logger.debug(
                    f"Message acknowledged: topic={metadata.topic} "
                    f"partition={metadata.partition} offset={metadata.offset}"
                )
        except KafkaError as e:
            raise PublishError(f"Failed to publish to topic {self.topic}: {e}") from e

        return len(messages)

    def close(self, timeout: Optional[float] = None) -> None:
        """Flush buffered messages and close the producer. Safe to call more than once."""
        with self._close_lock:
            if self._closed:
                return
            self._closed = True

        grace = self.close_timeout if timeout is None else timeout
        logger.info(f"Closing Kafka producer (flush timeout: {grace}s)...")
        try:
            self.producer.flush(timeout=grace)
        except KafkaError as e:
            logger.error(f"Failed to flush Kafka producer on close: {e}")
        finally:
            self.producer.close(timeout=grace)
        logger.info("Kafka producer closed")

    def __enter__(self) -> "Publisher":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()
