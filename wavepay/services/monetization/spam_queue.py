"""Bounded background queue for boost anti-spam counter updates.

Counter updates are best-effort relative to the notification they describe:
each job runs in its own transaction, failures are logged and counted on the
queue's error channel, and a full queue drops jobs rather than blocking the
activation that produced them.
"""

import asyncio
from dataclasses import dataclass
from datetime import datetime, timedelta

from sqlalchemy import case, update

from wavepay.common.config import settings
from wavepay.common.logging import logger
from wavepay.common.metrics import spam_counter_updates_total
from wavepay.services.monetization.models import User


@dataclass(frozen=True)
class SpamCounterJob:
    user_id: str
    notified_at: datetime


class SpamCounterQueue:
    def __init__(
        self,
        session_factory,
        maxsize: int | None = None,
        window_hours: int | None = None,
        service_name: str = "monetization",
    ) -> None:
        self.session_factory = session_factory
        self.window = timedelta(hours=window_hours or settings.boost_window_hours)
        self.service_name = service_name
        self.queue: asyncio.Queue[SpamCounterJob] = asyncio.Queue(maxsize=maxsize or settings.spam_queue_maxsize)
        self.errors: list[tuple[SpamCounterJob, str]] = []

    def submit(self, user_ids: list[str], notified_at: datetime) -> int:
        """Enqueue one job per user; returns how many were accepted."""

        accepted = 0
        for user_id in user_ids:
            try:
                self.queue.put_nowait(SpamCounterJob(user_id=user_id, notified_at=notified_at))
                accepted += 1
            except asyncio.QueueFull:
                spam_counter_updates_total.labels(service=self.service_name, outcome="dropped").inc()
                logger.warning("spam_counter_dropped user_id=%s queue_full=true", user_id)
        return accepted

    def apply(self, job: SpamCounterJob) -> None:
        """Start a fresh window or count one more notification inside it."""

        window_expired = (User.boost_notification_reset_at.is_(None)) | (
            User.boost_notification_reset_at < job.notified_at - self.window
        )
        with self.session_factory() as db:
            db.execute(
                update(User)
                .where(User.id == job.user_id)
                .values(
                    last_boost_notification_at=job.notified_at,
                    boost_notification_count_24h=case(
                        (window_expired, 1), else_=User.boost_notification_count_24h + 1
                    ),
                    boost_notification_reset_at=case(
                        (window_expired, job.notified_at), else_=User.boost_notification_reset_at
                    ),
                )
            )
            db.commit()

    def _process(self, job: SpamCounterJob) -> bool:
        try:
            self.apply(job)
        except Exception as exc:
            self._record_error(job, exc)
            return False
        spam_counter_updates_total.labels(service=self.service_name, outcome="applied").inc()
        return True

    def _record_error(self, job: SpamCounterJob, exc: Exception) -> None:
        spam_counter_updates_total.labels(service=self.service_name, outcome="failed").inc()
        logger.error("spam_counter_update_failed user_id=%s error=%s", job.user_id, exc)
        self.errors.append((job, str(exc)))
        # Keep only recent failures for inspection.
        del self.errors[:-100]

    def drain(self) -> int:
        """Apply everything currently queued; returns how many jobs succeeded."""

        applied = 0
        while True:
            try:
                job = self.queue.get_nowait()
            except asyncio.QueueEmpty:
                return applied
            applied += int(self._process(job))
            self.queue.task_done()

    async def run(self) -> None:
        """Worker loop started with the app lifespan."""

        while True:
            job = await self.queue.get()
            try:
                await asyncio.to_thread(self._process, job)
            finally:
                self.queue.task_done()
