# enrolment_waitlist/core/kafka_producer.py

import json
import logging
from typing import Optional

from kafka import KafkaProducer
from kafka.errors import KafkaError

from enrolment_waitlist.core.config import settings

logger = logging.getLogger(__name__)

_producer: Optional[KafkaProducer] = None


def _build_producer() -> KafkaProducer:
    return KafkaProducer(
        bootstrap_servers=settings.KAFKA_BOOTSTRAP_SERVERS.split(","),
        value_serializer=lambda v: json.dumps(v, default=str).encode("utf-8"),
        key_serializer=lambda k: k.encode("utf-8") if k else None,
        # Fail fast when the broker is down; events are best-effort.
        request_timeout_ms=5000,
    )


def get_kafka_singleton() -> Optional[KafkaProducer]:
    """
    Return the process-wide producer, creating it on first use.
    Returns None when Kafka is disabled or unreachable.
    """
    global _producer

    if not settings.KAFKA_ENABLED:
        return None

    if _producer is None:
        try:
            _producer = _build_producer()
            logger.info("Kafka producer connected")
        except KafkaError as e:
            logger.warning(f"Kafka unavailable: {e}")
            return None

    return _producer


def close_kafka_producer():
    """Flush and close the shared producer on shutdown."""
    global _producer

    if _producer is not None:
        try:
            _producer.flush()
            _producer.close()
        finally:
            _producer = None
