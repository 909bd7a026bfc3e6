"""
Publishing of order lifecycle events.

Events are published after the database transaction commits. A failed
publish is logged and never undoes the committed change.
"""

import logging

from aiokafka import AIOKafkaProducer
from opentelemetry.propagate import inject

from cafeteria.metrics import EVENTS_PUBLISHED
from shared.events import EventBase

logger = logging.getLogger(__name__)

ORDER_PLACED_TOPIC = "order.placed"
ORDER_STATUS_CHANGED_TOPIC = "order.status_changed"


class EventPublisher:
    """Publishes events by logging them. Used when Kafka is disabled."""

    async def publish(self, topic: str, key: str, event: EventBase) -> None:
        logger.info(
            "Event not delivered (no broker configured)",
            extra={"topic": topic, "key": key, "event_id": str(event.event_id)},
        )
        EVENTS_PUBLISHED.labels(topic, "skipped").inc()


class KafkaEventPublisher(EventPublisher):
    def __init__(self, producer: AIOKafkaProducer) -> None:
        self._producer = producer

    async def publish(self, topic: str, key: str, event: EventBase) -> None:
        # Propagate trace context into the outgoing Kafka message
        outgoing_headers: dict[str, str] = {}
        inject(outgoing_headers)
        kafka_headers = [(k, v.encode()) for k, v in outgoing_headers.items()]

        try:
            await self._producer.send_and_wait(
                topic,
                key=key.encode(),
                value=event.model_dump_json().encode(),
                headers=kafka_headers,
            )
        except Exception as exc:
            logger.error(
                "Failed to publish event",
                extra={
                    "topic": topic,
                    "key": key,
                    "correlation_id": event.correlation_id,
                    "error": str(exc),
                },
            )
            EVENTS_PUBLISHED.labels(topic, "failed").inc()
            return

        EVENTS_PUBLISHED.labels(topic, "published").inc()
        logger.info(
            "Published event",
            extra={"topic": topic, "key": key, "correlation_id": event.correlation_id},
        )
