"""Candidate pool queries against the marketplace user tables."""

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Protocol

from sqlalchemy import and_, exists, or_, select

from wavepay.services.monetization.models import Cart, CartItem, Listing, User, Want


@dataclass(frozen=True)
class BoostCandidate:
    user_id: str
    last_active_at: datetime | None
    has_matching_want: bool
    has_matching_cart: bool


class UserDirectory(Protocol):
    def fetch_boost_candidates(
        self,
        db,
        listing: Listing,
        now: datetime,
        limit: int,
        max_per_window: int,
        window: timedelta,
    ) -> list[BoostCandidate]:
        """Eligible users for one boost, most recently active first."""
        ...


class SqlUserDirectory:
    """Broad-fetch query over `users` with want/cart intent flags attached."""

    def fetch_boost_candidates(
        self,
        db,
        listing: Listing,
        now: datetime,
        limit: int,
        max_per_window: int,
        window: timedelta,
    ) -> list[BoostCandidate]:
        window_start = now - window
        category_name = listing.category.name
        matching_want = exists().where(
            Want.user_id == User.id,
            Want.is_resolved.is_(False),
            Want.category.icontains(category_name, autoescape=True),
        )
        matching_cart = (
            exists()
            .where(Cart.user_id == User.id)
            .where(CartItem.cart_id == Cart.id)
            .where(CartItem.listing_id == Listing.id)
            .where(Listing.category_id == listing.category_id)
        )
        filters = [
            User.id != listing.seller_id,
            User.status == "active",
            or_(
                User.boost_notification_reset_at.is_(None),
                User.boost_notification_reset_at < window_start,
                User.boost_notification_count_24h < max_per_window,
            ),
        ]
        if listing.region_id:
            filters.append(User.region_id == listing.region_id)

        rows = db.execute(
            select(
                User.id,
                User.last_active_at,
                matching_want.label("has_matching_want"),
                matching_cart.label("has_matching_cart"),
            )
            .where(and_(*filters))
            .order_by(User.last_active_at.desc(), User.id)
            .limit(limit)
        ).all()
        return [
            BoostCandidate(
                user_id=row.id,
                last_active_at=row.last_active_at,
                has_matching_want=bool(row.has_matching_want),
                has_matching_cart=bool(row.has_matching_cart),
            )
            for row in rows
        ]
