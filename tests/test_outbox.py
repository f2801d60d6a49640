"""Outbox staging and publishing against an in-memory bus."""

import asyncio

from sqlalchemy import select

from wavepay.common.events import EMAIL_REQUESTED_TOPIC
from wavepay.common.outbox import OutboxPublisher, enqueue_event
from wavepay.services.monetization.models import OutboxEvent


class MemoryBus:
    def __init__(self, fail_topics=()) -> None:
        self.sent = []
        self.fail_topics = set(fail_topics)

    async def publish(self, topic, event) -> None:
        if topic in self.fail_topics:
            raise RuntimeError("broker unavailable")
        self.sent.append((topic, event))

    async def close(self) -> None:
        return None


def stage(session_factory, topic, aggregate_id):
    with session_factory() as db:
        enqueue_event(db, OutboxEvent, topic=topic, aggregate_type="test", aggregate_id=aggregate_id, payload={"n": 1})
        db.commit()


def test_published_rows_are_marked_sent(session_factory):
    stage(session_factory, EMAIL_REQUESTED_TOPIC, "sub-1")
    bus = MemoryBus()
    publisher = OutboxPublisher(session_factory, OutboxEvent, "monetization", kafka=bus)

    assert asyncio.run(publisher.publish_pending()) == 1
    assert asyncio.run(publisher.publish_pending()) == 0

    topic, envelope = bus.sent[0]
    assert topic == EMAIL_REQUESTED_TOPIC
    assert envelope.aggregate_id == "sub-1"
    assert envelope.payload == {"n": 1}
    with session_factory() as db:
        assert db.execute(select(OutboxEvent.status)).scalar_one() == "SENT"


def test_failed_publish_is_requeued(session_factory):
    stage(session_factory, "broken.topic", "agg-1")
    publisher = OutboxPublisher(session_factory, OutboxEvent, "monetization", kafka=MemoryBus({"broken.topic"}))

    assert asyncio.run(publisher.publish_pending()) == 0

    with session_factory() as db:
        assert db.execute(select(OutboxEvent.status)).scalar_one() == "PENDING"
