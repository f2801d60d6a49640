"""Topics and envelope for events the monetization core hands to other subsystems.

Activation results, bulk notification requests and transactional emails are
consumed by independently deployed services; this module owns the wire shape
and the producer that the outbox publisher drives.
"""

import json
from datetime import datetime, timezone
from typing import Any
from uuid import uuid4

from aiokafka import AIOKafkaProducer
from pydantic import BaseModel, Field

from wavepay.common.config import settings
from wavepay.common.metrics import events_published_total


ACTIVATION_COMPLETED_TOPIC = "monetization.activation.completed"
BULK_NOTIFICATION_TOPIC = "notifications.bulk.requested"
EMAIL_REQUESTED_TOPIC = "email.requested"


class EventEnvelope(BaseModel):
    event_id: str = Field(default_factory=lambda: str(uuid4()))
    event_type: str
    # Purchase, listing or subscription id; also the Kafka message key.
    aggregate_id: str
    occurred_at: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    trace_id: str
    payload: dict[str, Any]

    def encode(self) -> tuple[bytes, bytes]:
        """(key, value) pair; keying by aggregate keeps one purchase's events in order."""

        return self.aggregate_id.encode("utf-8"), json.dumps(self.model_dump()).encode("utf-8")


class KafkaBus:
    """Producer started on first publish so importing the app never dials Kafka."""

    def __init__(self, bootstrap_servers: str | None = None) -> None:
        self.bootstrap_servers = bootstrap_servers or settings.kafka_bootstrap_servers
        self._producer: AIOKafkaProducer | None = None

    async def _started(self) -> AIOKafkaProducer:
        if self._producer is None:
            producer = AIOKafkaProducer(bootstrap_servers=self.bootstrap_servers, request_timeout_ms=10_000, acks="all")
            await producer.start()
            self._producer = producer
        return self._producer

    async def publish(self, topic: str, event: EventEnvelope) -> None:
        producer = await self._started()
        key, value = event.encode()
        await producer.send_and_wait(topic, value=value, key=key)
        events_published_total.labels(service=settings.service_name, topic=topic).inc()

    async def close(self) -> None:
        if self._producer is not None:
            await self._producer.stop()
            self._producer = None
