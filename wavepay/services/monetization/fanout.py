"""Notification fan-out seam.

Delivery itself belongs to the notification subsystem; this service only
hands it a recipient list through the outbox so the request never waits on a
push/in-app transport.
"""

from typing import Any, Protocol

from wavepay.common.events import BULK_NOTIFICATION_TOPIC
from wavepay.common.outbox import enqueue_event
from wavepay.services.monetization.models import OutboxEvent


class NotificationFanout(Protocol):
    def dispatch(self, db, user_ids: list[str], kind: str, payload: dict[str, Any]) -> int:
        """Queue one notification per user id; returns how many were accepted."""
        ...


class OutboxNotificationFanout:
    """Stages a `notifications.bulk.requested` event in the caller's transaction."""

    def dispatch(self, db, user_ids: list[str], kind: str, payload: dict[str, Any]) -> int:
        if not user_ids:
            return 0
        enqueue_event(
            db,
            OutboxEvent,
            topic=BULK_NOTIFICATION_TOPIC,
            aggregate_type="listing",
            aggregate_id=str(payload.get("listingId", "")),
            payload={"userIds": list(user_ids), "kind": kind, "data": payload},
        )
        return len(user_ids)
