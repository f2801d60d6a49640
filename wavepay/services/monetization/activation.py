"""Purchase activation routing.

`activate` applies exactly one effect per purchase type inside the caller's
transaction and reports a typed `ActivationResult`. Side effects that must
only happen once the transaction commits (anti-spam bookkeeping) are returned
as `after_commit` callbacks instead of being run here.
"""

from calendar import monthrange
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Callable

from sqlalchemy import select, update

from wavepay.common.db import utcnow
from wavepay.common.logging import logger
from wavepay.common.metrics import activations_total
from wavepay.services.monetization.boost import BoostTargetingEngine
from wavepay.services.monetization.errors import (
    ListingNotFound,
    MonetizationError,
    NoCreditsRemaining,
    NotPremium,
    UserNotFound,
)
from wavepay.services.monetization.models import Listing, Purchase, Subscription, User
from wavepay.services.monetization.pricing import DEFAULT_CATALOG, SPOTLIGHT_DAYS, PricingCatalog, PurchaseType, Tier
from wavepay.services.monetization.schemas import (
    ActivationFailed,
    ActivationResult,
    AggressiveBoostActivation,
    ChatPassActivation,
    CrossListActivation,
    CrossListData,
    PremiumActivation,
    PremiumData,
    SpotlightActivation,
    SpotlightData,
)
from wavepay.services.monetization.spam_queue import SpamCounterQueue


@dataclass
class ActivationOutcome:
    result: ActivationResult
    after_commit: list[Callable[[], object]] = field(default_factory=list)


def add_one_month(value: datetime) -> datetime:
    """Same day next month, clamped to that month's last day."""

    year = value.year + value.month // 12
    month = value.month % 12 + 1
    day = min(value.day, monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


class ActivationDispatcher:
    def __init__(
        self,
        session_factory,
        boost_engine: BoostTargetingEngine,
        spam_queue: SpamCounterQueue,
        catalog: PricingCatalog = DEFAULT_CATALOG,
        clock=utcnow,
        service_name: str = "monetization",
    ) -> None:
        self.session_factory = session_factory
        self.boost_engine = boost_engine
        self.spam_queue = spam_queue
        self.catalog = catalog
        self.clock = clock
        self.service_name = service_name

    def activate(self, db, purchase: Purchase, now: datetime | None = None) -> ActivationOutcome:
        """Route one confirmed purchase to its effect; never commits."""

        now = now or self.clock()
        purchase_type = PurchaseType.parse(purchase.type)
        try:
            if purchase_type is PurchaseType.CHAT_PASS:
                outcome = ActivationOutcome(
                    ChatPassActivation(
                        message="All good! You already have access to a high daily chat limit on the free tier."
                    )
                )
            elif purchase_type is PurchaseType.PREMIUM:
                outcome = ActivationOutcome(self._upgrade_to_premium(db, purchase.user_id, now))
            elif purchase_type is PurchaseType.CROSS_LIST:
                outcome = ActivationOutcome(self._cross_list(db, purchase.listing_id))
            elif purchase_type in SPOTLIGHT_DAYS:
                outcome = ActivationOutcome(
                    self._spotlight(db, purchase.listing_id, SPOTLIGHT_DAYS[purchase_type], now)
                )
            else:
                outcome = self._aggressive_boost(db, purchase.listing_id, now)
        except MonetizationError as exc:
            outcome = ActivationOutcome(ActivationFailed(message=exc.message, error=type(exc).__name__))

        activations_total.labels(
            service=self.service_name,
            purchase_type=purchase_type.value,
            outcome="success" if outcome.result.success else "failed",
        ).inc()
        return outcome

    def _load_listing(self, db, listing_id: str | None) -> Listing:
        listing = db.get(Listing, listing_id) if listing_id else None
        if listing is None:
            raise ListingNotFound()
        return listing

    def _cross_list(self, db, listing_id: str | None) -> CrossListActivation:
        listing = self._load_listing(db, listing_id)
        listing.is_cross_listed = True
        return CrossListActivation(
            message="Your distress sale has been cross-listed to the main marketplace for maximum visibility!",
            data=CrossListData(listing_id=listing.id),
        )

    def _spotlight(self, db, listing_id: str | None, days: int, now: datetime) -> SpotlightActivation:
        listing = self._load_listing(db, listing_id)
        listing.spotlight_expiry = now + timedelta(days=days)
        listing.is_featured = True
        return SpotlightActivation(
            message=f"Your listing is now spotlighted! It will stay at the top of search results for {days} days.",
            data=SpotlightData(listing_id=listing.id, days=days, spotlight_expiry=listing.spotlight_expiry),
        )

    def _aggressive_boost(self, db, listing_id: str | None, now: datetime) -> ActivationOutcome:
        listing = self._load_listing(db, listing_id)
        listing.is_cross_listed = True
        listing.push_notification_sent = True
        db.flush()

        boost = self.boost_engine.run(db, listing, now)
        region_name = boost.data.region_name or "your area"
        if boost.notified_user_ids:
            message = f"Your listing is now boosted! We notified {boost.data.notified_count} active buyers in {region_name}."
        else:
            message = (
                "Your listing is now boosted and cross-listed! Potential buyers in your area "
                "will be notified as they browse."
            )
        notified = list(boost.notified_user_ids)
        return ActivationOutcome(
            AggressiveBoostActivation(message=message, data=boost.data),
            after_commit=[lambda: self.spam_queue.submit(notified, now)] if notified else [],
        )

    def _upgrade_to_premium(self, db, user_id: str, now: datetime) -> PremiumActivation:
        """Tier, credits and subscription row change together or not at all."""

        user = db.get(User, user_id)
        if user is None:
            raise UserNotFound()
        credits = self.catalog.limits(Tier.PREMIUM).premium_spotlight_credits
        user.tier = Tier.PREMIUM.value
        user.spotlight_credits = (user.spotlight_credits or 0) + credits
        subscription = Subscription(user_id=user_id, status="active", expires_at=add_one_month(now))
        db.add(subscription)
        db.flush()
        return PremiumActivation(
            message=(
                "Welcome to Empire Status! Your premium benefits, including unlimited listings "
                "and chats, are now active."
            ),
            data=PremiumData(
                subscription_id=subscription.id,
                expires_at=subscription.expires_at,
                spotlight_credits=user.spotlight_credits,
            ),
        )

    def use_spotlight_credit(self, user_id: str, listing_id: str) -> ActivationResult:
        """Spend one premium spotlight credit on a 7-day spotlight.

        Preconditions are checked with the user row locked; any failure leaves
        both the credit balance and the listing untouched.
        """

        now = self.clock()
        with self.session_factory() as db:
            user = db.execute(select(User).where(User.id == user_id).with_for_update()).scalar_one_or_none()
            try:
                if user is None or user.tier != Tier.PREMIUM.value:
                    raise NotPremium()
                if user.spotlight_credits <= 0:
                    raise NoCreditsRemaining()
                debited = db.execute(
                    update(User)
                    .where(User.id == user_id, User.spotlight_credits > 0)
                    .values(spotlight_credits=User.spotlight_credits - 1)
                )
                if debited.rowcount != 1:
                    raise NoCreditsRemaining()
                remaining = db.execute(select(User.spotlight_credits).where(User.id == user_id)).scalar_one()
                result = self._spotlight(db, listing_id, SPOTLIGHT_DAYS[PurchaseType.SPOTLIGHT_7], now)
            except MonetizationError as exc:
                db.rollback()
                logger.info("spotlight_credit_rejected user_id=%s reason=%s", user_id, type(exc).__name__)
                activations_total.labels(
                    service=self.service_name, purchase_type="spotlight_credit", outcome="failed"
                ).inc()
                return ActivationFailed(message=exc.message, error=type(exc).__name__)
            db.commit()

        activations_total.labels(service=self.service_name, purchase_type="spotlight_credit", outcome="success").inc()
        result.data.used_credit = True
        result.data.credits_remaining = remaining
        return result
