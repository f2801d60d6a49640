"""Per-user daily quotas with tier bypass and forward-only midnight resets."""

from datetime import datetime, time, timezone
from zoneinfo import ZoneInfo

from sqlalchemy import func, or_, select, update

from wavepay.common.config import settings
from wavepay.common.db import as_utc, utcnow
from wavepay.common.logging import logger
from wavepay.common.metrics import quota_denied_total
from wavepay.services.monetization.models import Listing, User
from wavepay.services.monetization.pricing import DEFAULT_CATALOG, PricingCatalog, Tier
from wavepay.services.monetization.schemas import ChatQuotaCheck, ListingQuotaCheck, MonetizationStatus, QuotaCheck

# Reported as `remaining` whenever a quota does not apply.
UNLIMITED_REMAINING = 999

CHAT = "chat"
POST = "post"
OFFER = "offer"

# quota family -> (counter column, reset timestamp column, TierLimits attribute)
QUOTA_COLUMNS = {
    CHAT: ("daily_chat_count", "daily_chat_reset_at", "free_daily_chats"),
    POST: ("daily_post_count", "daily_post_reset_at", "daily_community_posts"),
    OFFER: ("daily_offer_count", "daily_offer_reset_at", "daily_community_offers"),
}


class QuotaTracker:
    """Checks and counts chat starts, community posts and community offers.

    `check_*` performs the day-boundary reset inside the same transaction as
    the read, with the user row locked, so two concurrent checks cannot both
    observe a stale counter. `increment_*` is a single relative UPDATE and
    never resets.
    """

    def __init__(
        self,
        session_factory,
        catalog: PricingCatalog = DEFAULT_CATALOG,
        tz_name: str | None = None,
        clock=utcnow,
        service_name: str = "monetization",
    ) -> None:
        self.session_factory = session_factory
        self.catalog = catalog
        self.tz = ZoneInfo(tz_name or settings.quota_timezone)
        self.clock = clock
        self.service_name = service_name

    def start_of_today(self, now: datetime | None = None) -> datetime:
        """Local midnight for `now` in the reference timezone, expressed in UTC."""

        local_now = (now or self.clock()).astimezone(self.tz)
        midnight = datetime.combine(local_now.date(), time.min, tzinfo=self.tz)
        return midnight.astimezone(timezone.utc)

    def _check(self, user_id: str, quota: str, honor_chat_pass: bool = False) -> tuple[QuotaCheck, bool]:
        """Returns the check plus whether an active chat pass granted it."""

        count_col, reset_col, limit_attr = QUOTA_COLUMNS[quota]
        now = self.clock()
        with self.session_factory() as db:
            user = db.execute(select(User).where(User.id == user_id).with_for_update()).scalar_one_or_none()
            if user is None:
                quota_denied_total.labels(service=self.service_name, quota=quota).inc()
                return QuotaCheck(allowed=False, remaining=0, is_premium=False), False

            is_premium = user.tier == Tier.PREMIUM.value
            chat_pass_expiry = as_utc(user.chat_pass_expiry)
            has_pass = honor_chat_pass and chat_pass_expiry is not None and chat_pass_expiry > now
            if is_premium or has_pass:
                return QuotaCheck(allowed=True, remaining=UNLIMITED_REMAINING, is_premium=is_premium), has_pass

            reset_attr = getattr(User, reset_col)
            boundary = self.start_of_today(now)
            reset = db.execute(
                update(User)
                .where(User.id == user_id, or_(reset_attr.is_(None), reset_attr < boundary))
                .values({count_col: 0, reset_col: now})
                .execution_options(synchronize_session=False)
            )
            current = 0 if reset.rowcount == 1 else getattr(user, count_col)
            db.commit()
        if reset.rowcount == 1:
            logger.info("quota_reset quota=%s user_id=%s", quota, user_id)

        limit = getattr(self.catalog.limits(Tier.FREE), limit_attr)
        allowed = current < limit
        if not allowed:
            quota_denied_total.labels(service=self.service_name, quota=quota).inc()
        return QuotaCheck(allowed=allowed, remaining=max(0, limit - current), is_premium=False), False

    def _increment(self, user_id: str, quota: str) -> None:
        count_col, _, _ = QUOTA_COLUMNS[quota]
        with self.session_factory() as db:
            db.execute(update(User).where(User.id == user_id).values({count_col: getattr(User, count_col) + 1}))
            db.commit()

    def check_chat_limit(self, user_id: str) -> ChatQuotaCheck:
        """Whether the user may start another chat today.

        Premium users and holders of an unexpired legacy chat pass are
        unlimited.
        """

        result, has_pass = self._check(user_id, CHAT, honor_chat_pass=True)
        return ChatQuotaCheck(**result.model_dump(), has_chat_pass=has_pass)

    def increment_chat_count(self, user_id: str) -> None:
        self._increment(user_id, CHAT)

    def check_post_limit(self, user_id: str) -> QuotaCheck:
        result, _ = self._check(user_id, POST)
        return result

    def increment_post_count(self, user_id: str) -> None:
        self._increment(user_id, POST)

    def check_offer_limit(self, user_id: str) -> QuotaCheck:
        result, _ = self._check(user_id, OFFER)
        return result

    def increment_offer_count(self, user_id: str) -> None:
        self._increment(user_id, OFFER)

    def _active_listing_count(self, db, user_id: str) -> int:
        return db.execute(
            select(func.count()).select_from(Listing).where(Listing.seller_id == user_id, Listing.status == "active")
        ).scalar_one()

    def check_listing_limit(self, user_id: str) -> ListingQuotaCheck:
        """Active-listing cap for free sellers; premium sellers are unlimited."""

        with self.session_factory() as db:
            user = db.get(User, user_id)
            if user is None:
                quota_denied_total.labels(service=self.service_name, quota="listing").inc()
                return ListingQuotaCheck(allowed=False, remaining=0, is_premium=False, current_count=0)
            if user.tier == Tier.PREMIUM.value:
                return ListingQuotaCheck(
                    allowed=True, remaining=UNLIMITED_REMAINING, is_premium=True, current_count=0
                )
            current = self._active_listing_count(db, user_id)

        limit = self.catalog.limits(Tier.FREE).free_listings
        allowed = current < limit
        if not allowed:
            quota_denied_total.labels(service=self.service_name, quota="listing").inc()
        return ListingQuotaCheck(
            allowed=allowed, remaining=max(0, limit - current), is_premium=False, current_count=current
        )

    def status(self, user_id: str) -> MonetizationStatus | None:
        """Read-only snapshot of tier, credits and quota usage."""

        now = self.clock()
        with self.session_factory() as db:
            user = db.get(User, user_id)
            if user is None:
                return None
            active_listings = self._active_listing_count(db, user_id)

        free_limits = self.catalog.limits(Tier.FREE)
        is_premium = user.tier == Tier.PREMIUM.value
        chat_pass_expiry = as_utc(user.chat_pass_expiry)
        # A stale counter from a previous day reads as zero used.
        reset_at = as_utc(user.daily_chat_reset_at)
        chats_used = user.daily_chat_count if reset_at and reset_at >= self.start_of_today(now) else 0
        return MonetizationStatus(
            tier=user.tier,
            is_premium=is_premium,
            has_chat_pass=bool(chat_pass_expiry and chat_pass_expiry > now),
            chat_pass_expiry=chat_pass_expiry,
            daily_chats_used=chats_used,
            daily_chats_remaining=max(0, free_limits.free_daily_chats - chats_used),
            spotlight_credits=user.spotlight_credits,
            active_listings=active_listings,
            listings_remaining=(
                UNLIMITED_REMAINING if is_premium else max(0, free_limits.free_listings - active_listings)
            ),
        )
