"""Aggressive-boost audience selection (cold-start waterfall).

One pass per activation: broad fetch of eligible users, in-memory intent
scoring, stable top-N selection, a single fan-out call, then anti-spam
bookkeeping handed to the spam-counter queue once the activation commits.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from wavepay.common.config import settings
from wavepay.common.logging import logger
from wavepay.common.metrics import boost_notified_users, boost_pool_size
from wavepay.common.tracing import traced
from wavepay.services.monetization.directory import BoostCandidate, UserDirectory
from wavepay.services.monetization.fanout import NotificationFanout
from wavepay.services.monetization.models import Listing
from wavepay.services.monetization.schemas import BoostData

BASE_SCORE = 10
WANT_BONUS = 7
CART_BONUS = 5

NOTIFICATION_KIND = "aggressive_boost"


@dataclass(frozen=True)
class ScoredCandidate:
    candidate: BoostCandidate
    score: int


@dataclass
class BoostOutcome:
    data: BoostData
    notified_user_ids: list[str] = field(default_factory=list)


def score_candidate(candidate: BoostCandidate) -> int:
    # Passing the region/anti-spam filter is worth the base score on its own.
    score = BASE_SCORE
    if candidate.has_matching_want:
        score += WANT_BONUS
    if candidate.has_matching_cart:
        score += CART_BONUS
    return score


def select_top(candidates: list[BoostCandidate], top_n: int) -> list[ScoredCandidate]:
    """Highest score first; ties keep the pool's recency order."""

    scored = [ScoredCandidate(candidate=c, score=score_candidate(c)) for c in candidates]
    return sorted(scored, key=lambda s: s.score, reverse=True)[:top_n]


class BoostTargetingEngine:
    def __init__(
        self,
        directory: UserDirectory,
        fanout: NotificationFanout,
        pool_size: int | None = None,
        top_n: int | None = None,
        max_per_window: int | None = None,
        window_hours: int | None = None,
        service_name: str = "monetization",
    ) -> None:
        self.directory = directory
        self.fanout = fanout
        self.pool_size = pool_size or settings.boost_pool_size
        self.top_n = top_n or settings.boost_top_n
        self.max_per_window = max_per_window or settings.boost_max_per_window
        self.window = timedelta(hours=window_hours or settings.boost_window_hours)
        self.service_name = service_name

    def run(self, db, listing: Listing, now: datetime) -> BoostOutcome:
        """Select and notify the audience for one boosted listing.

        Runs inside the activation's transaction; the returned user ids are
        what the caller must hand to the spam-counter queue after commit.
        """

        with traced("boost.targeting", {"listing.id": listing.id}) as span:
            pool = self.directory.fetch_boost_candidates(
                db,
                listing,
                now=now,
                limit=self.pool_size,
                max_per_window=self.max_per_window,
                window=self.window,
            )
            boost_pool_size.labels(service=self.service_name).observe(len(pool))
            top = select_top(pool, self.top_n)
            user_ids = [s.candidate.user_id for s in top]
            high_intent = sum(1 for s in top if s.score > BASE_SCORE)
            top_score = top[0].score if top else 0
            span.set_attribute("boost.pool_size", len(pool))
            span.set_attribute("boost.selected", len(user_ids))

            logger.info(
                "boost_scored listing_id=%s category=%s region=%s pool=%s selected=%s high_intent=%s top_score=%s",
                listing.id,
                listing.category.name,
                listing.region.name if listing.region else "none",
                len(pool),
                len(user_ids),
                high_intent,
                top_score,
            )

            delivered = 0
            if user_ids:
                delivered = self.fanout.dispatch(
                    db,
                    user_ids,
                    NOTIFICATION_KIND,
                    {
                        "listingId": listing.id,
                        "listingTitle": listing.title,
                        "categoryName": listing.category.name,
                        "sellerName": listing.seller.display_name,
                        "message": f'Hot deal: "{listing.title}" in {listing.category.name}!',
                    },
                )
                logger.info("boost_notified listing_id=%s delivered=%s", listing.id, delivered)
            else:
                logger.warning("boost_no_eligible_users listing_id=%s", listing.id)
            boost_notified_users.labels(service=self.service_name).observe(len(user_ids))

        return BoostOutcome(
            data=BoostData(
                listing_id=listing.id,
                pool_size=len(pool),
                notified_count=len(user_ids),
                high_intent_count=high_intent,
                top_score=top_score,
                region_name=listing.region.name if listing.region else None,
            ),
            notified_user_ids=user_ids,
        )
