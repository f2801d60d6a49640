"""Wires the monetization components around one session factory."""

import asyncio

from wavepay.common.outbox import OutboxPublisher
from wavepay.services.monetization.activation import ActivationDispatcher
from wavepay.services.monetization.boost import BoostTargetingEngine
from wavepay.services.monetization.directory import SqlUserDirectory, UserDirectory
from wavepay.services.monetization.fanout import NotificationFanout, OutboxNotificationFanout
from wavepay.services.monetization.gateway import PaystackGateway
from wavepay.services.monetization.ledger import PurchaseLedger
from wavepay.services.monetization.models import OutboxEvent
from wavepay.services.monetization.pricing import DEFAULT_CATALOG, PricingCatalog
from wavepay.services.monetization.quota import QuotaTracker
from wavepay.services.monetization.scheduler import SubscriptionJanitor
from wavepay.services.monetization.spam_queue import SpamCounterQueue


class MonetizationService:
    """Owns the purchase ledger, quotas, activation and their background workers."""

    def __init__(
        self,
        session_factory,
        gateway: PaystackGateway | None = None,
        directory: UserDirectory | None = None,
        fanout: NotificationFanout | None = None,
        catalog: PricingCatalog = DEFAULT_CATALOG,
        service_name: str = "monetization",
    ) -> None:
        self.session_factory = session_factory
        self.service_name = service_name
        self.catalog = catalog
        self.gateway = gateway or PaystackGateway(service_name=service_name)
        self.spam_queue = SpamCounterQueue(session_factory, service_name=service_name)
        self.boost_engine = BoostTargetingEngine(
            directory or SqlUserDirectory(),
            fanout or OutboxNotificationFanout(),
            service_name=service_name,
        )
        self.dispatcher = ActivationDispatcher(
            session_factory, self.boost_engine, self.spam_queue, catalog=catalog, service_name=service_name
        )
        self.ledger = PurchaseLedger(
            session_factory, self.gateway, self.dispatcher, catalog=catalog, service_name=service_name
        )
        self.quota = QuotaTracker(session_factory, catalog=catalog, service_name=service_name)
        self.janitor = SubscriptionJanitor(session_factory, service_name=service_name)
        self.publisher = OutboxPublisher(session_factory, OutboxEvent, service_name)
        self._tasks: list[asyncio.Task] = []

    def start_background(self) -> None:
        self._tasks = [
            asyncio.create_task(self.publisher.run()),
            asyncio.create_task(self.spam_queue.run()),
            asyncio.create_task(self.janitor.run()),
        ]

    async def stop_background(self) -> None:
        for task in self._tasks:
            task.cancel()
        await asyncio.gather(*self._tasks, return_exceptions=True)
        self._tasks = []
        # Flush counter updates accepted before shutdown.
        self.spam_queue.drain()
        await self.publisher.close()
