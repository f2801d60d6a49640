"""Premium subscription janitor: expiry downgrades and renewal reminders."""

import asyncio
from datetime import timedelta

from sqlalchemy import select, update

from wavepay.common.config import settings
from wavepay.common.db import utcnow
from wavepay.common.events import EMAIL_REQUESTED_TOPIC
from wavepay.common.logging import logger
from wavepay.common.metrics import subscriptions_downgraded_total
from wavepay.common.outbox import enqueue_event
from wavepay.services.monetization.models import OutboxEvent, Subscription, User
from wavepay.services.monetization.pricing import Tier

DOWNGRADE_INTERVAL_SECONDS = 3600
REMINDER_INTERVAL_SECONDS = 24 * 3600


class SubscriptionJanitor:
    def __init__(
        self,
        session_factory,
        batch_size: int | None = None,
        reminder_days: int | None = None,
        clock=utcnow,
        service_name: str = "monetization",
    ) -> None:
        self.session_factory = session_factory
        self.batch_size = batch_size or settings.subscription_batch_size
        self.reminder_window = timedelta(days=reminder_days or settings.subscription_reminder_days)
        self.clock = clock
        self.service_name = service_name

    def downgrade_expired(self) -> int:
        """Downgrade one bounded batch of expired subscriptions.

        Each user is handled in its own transaction; a failure is logged and
        the rest of the batch continues.
        """

        now = self.clock()
        with self.session_factory() as db:
            expired_ids = (
                db.execute(
                    select(Subscription.id)
                    .where(Subscription.status == "active", Subscription.expires_at < now)
                    .order_by(Subscription.expires_at)
                    .limit(self.batch_size)
                )
                .scalars()
                .all()
            )
        if not expired_ids:
            logger.info("subscription_check expired=0")
            return 0

        downgraded = 0
        for subscription_id in expired_ids:
            try:
                with self.session_factory() as db:
                    subscription = db.get(Subscription, subscription_id)
                    claimed = db.execute(
                        update(Subscription)
                        .where(Subscription.id == subscription_id, Subscription.status == "active")
                        .values(status="expired")
                    )
                    if claimed.rowcount != 1:
                        db.rollback()
                        continue
                    renewed = db.execute(
                        select(Subscription.id).where(
                            Subscription.user_id == subscription.user_id,
                            Subscription.status == "active",
                            Subscription.expires_at >= now,
                        )
                    ).first()
                    if renewed is not None:
                        db.commit()
                        continue
                    db.execute(update(User).where(User.id == subscription.user_id).values(tier=Tier.FREE.value))
                    enqueue_event(
                        db,
                        OutboxEvent,
                        topic=EMAIL_REQUESTED_TOPIC,
                        aggregate_type="subscription",
                        aggregate_id=subscription.id,
                        payload={
                            "template": "premium_expired",
                            "to": subscription.user.email,
                            "firstName": subscription.user.first_name or "User",
                        },
                    )
                    db.commit()
                downgraded += 1
                subscriptions_downgraded_total.labels(service=self.service_name).inc()
            except Exception as exc:
                logger.error("subscription_downgrade_failed subscription_id=%s error=%s", subscription_id, exc)
        logger.info("subscription_check expired=%s downgraded=%s", len(expired_ids), downgraded)
        return downgraded

    def send_expiry_reminders(self) -> int:
        """Queue one reminder email per subscription expiring inside the window."""

        now = self.clock()
        with self.session_factory() as db:
            expiring = (
                db.execute(
                    select(Subscription).where(
                        Subscription.status == "active",
                        Subscription.expires_at >= now,
                        Subscription.expires_at <= now + self.reminder_window,
                        Subscription.reminder_sent_at.is_(None),
                    )
                )
                .unique()
                .scalars()
                .all()
            )
            for subscription in expiring:
                subscription.reminder_sent_at = now
                enqueue_event(
                    db,
                    OutboxEvent,
                    topic=EMAIL_REQUESTED_TOPIC,
                    aggregate_type="subscription",
                    aggregate_id=subscription.id,
                    payload={
                        "template": "premium_expiring",
                        "to": subscription.user.email,
                        "firstName": subscription.user.first_name or "there",
                        "expiresAt": subscription.expires_at.isoformat(),
                    },
                )
            db.commit()
        logger.info("subscription_reminders sent=%s", len(expiring))
        return len(expiring)

    async def run(self) -> None:
        """Hourly downgrades, daily reminders, for the app lifetime."""

        last_reminder = None
        while True:
            try:
                await asyncio.to_thread(self.downgrade_expired)
                now = self.clock()
                if last_reminder is None or (now - last_reminder).total_seconds() >= REMINDER_INTERVAL_SECONDS:
                    await asyncio.to_thread(self.send_expiry_reminders)
                    last_reminder = now
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.error("subscription_janitor_error error=%s", exc)
            await asyncio.sleep(DOWNGRADE_INTERVAL_SECONDS)
