"""Monetization database models.

`purchases`, `purchase_timeline`, `subscriptions` and `outbox_events` are owned
by this service. `users`, `listings`, `categories`, `regions`, `wants`, `carts`
and `cart_items` belong to sibling marketplace subsystems; only the columns
this service reads or updates are mapped.
"""

from datetime import datetime
from uuid import uuid4

from sqlalchemy import Boolean, DateTime, ForeignKey, Integer, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from wavepay.common.db import Base, JSONPayload


class Region(Base):
    __tablename__ = "regions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String)


class Category(Base):
    __tablename__ = "categories"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    name: Mapped[str] = mapped_column(String)


class User(Base):
    """Marketplace user row: tier, daily quota counters and boost spam counters."""

    __tablename__ = "users"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    email: Mapped[str] = mapped_column(String, unique=True)
    first_name: Mapped[str | None] = mapped_column(String, nullable=True)
    last_name: Mapped[str | None] = mapped_column(String, nullable=True)
    status: Mapped[str] = mapped_column(String, default="active", index=True)
    region_id: Mapped[str | None] = mapped_column(ForeignKey("regions.id"), nullable=True, index=True)

    tier: Mapped[str] = mapped_column(String, default="free")
    chat_pass_expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    daily_chat_count: Mapped[int] = mapped_column(Integer, default=0)
    daily_chat_reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    daily_post_count: Mapped[int] = mapped_column(Integer, default=0)
    daily_post_reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    daily_offer_count: Mapped[int] = mapped_column(Integer, default=0)
    daily_offer_reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    spotlight_credits: Mapped[int] = mapped_column(Integer, default=0)

    last_boost_notification_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    boost_notification_count_24h: Mapped[int] = mapped_column(Integer, default=0)
    boost_notification_reset_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    last_active_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    @property
    def display_name(self) -> str:
        return " ".join(part for part in (self.first_name, self.last_name) if part) or "A seller"


class Listing(Base):
    """Listing row with its additive boost flags."""

    __tablename__ = "listings"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    seller_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    title: Mapped[str] = mapped_column(String)
    category_id: Mapped[str] = mapped_column(ForeignKey("categories.id"), index=True)
    region_id: Mapped[str | None] = mapped_column(ForeignKey("regions.id"), nullable=True)
    status: Mapped[str] = mapped_column(String, default="active", index=True)

    spotlight_expiry: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    is_featured: Mapped[bool] = mapped_column(Boolean, default=False)
    is_cross_listed: Mapped[bool] = mapped_column(Boolean, default=False)
    push_notification_sent: Mapped[bool] = mapped_column(Boolean, default=False)

    category: Mapped[Category] = relationship(lazy="joined")
    region: Mapped[Region | None] = relationship(lazy="joined")
    seller: Mapped[User] = relationship(lazy="joined")


class Want(Base):
    """A user's posted "looking for" request."""

    __tablename__ = "wants"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    category: Mapped[str] = mapped_column(String)
    is_resolved: Mapped[bool] = mapped_column(Boolean, default=False)


class Cart(Base):
    __tablename__ = "carts"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)


class CartItem(Base):
    __tablename__ = "cart_items"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    cart_id: Mapped[str] = mapped_column(ForeignKey("carts.id"), index=True)
    listing_id: Mapped[str] = mapped_column(ForeignKey("listings.id"), index=True)


class Purchase(Base):
    """One paid action, tracked pending -> completed | failed and never deleted."""

    __tablename__ = "purchases"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(String, index=True)
    type: Mapped[str] = mapped_column(String)
    amount_minor_units: Mapped[int] = mapped_column(Integer)
    currency: Mapped[str] = mapped_column(String(3))
    listing_id: Mapped[str | None] = mapped_column(String, nullable=True)
    external_reference: Mapped[str] = mapped_column(String, unique=True, index=True)
    status: Mapped[str] = mapped_column(String, index=True, default="pending")
    state_version: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), server_default=func.now(), onupdate=func.now()
    )


class PurchaseTimeline(Base):
    """Immutable audit trail of every purchase state transition."""

    __tablename__ = "purchase_timeline"

    timeline_id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    purchase_id: Mapped[str] = mapped_column(ForeignKey("purchases.id"), index=True)
    from_state: Mapped[str | None] = mapped_column(String, nullable=True)
    to_state: Mapped[str] = mapped_column(String)
    reason: Mapped[str] = mapped_column(String)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())


class Subscription(Base):
    __tablename__ = "subscriptions"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    user_id: Mapped[str] = mapped_column(ForeignKey("users.id"), index=True)
    status: Mapped[str] = mapped_column(String, default="active", index=True)
    expires_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), index=True)
    reminder_sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())

    user: Mapped[User] = relationship(lazy="joined")


class OutboxEvent(Base):
    """Events waiting to be published to Kafka by the monetization service."""

    __tablename__ = "outbox_events"

    id: Mapped[str] = mapped_column(String, primary_key=True, default=lambda: str(uuid4()))
    aggregate_type: Mapped[str] = mapped_column(String)
    aggregate_id: Mapped[str] = mapped_column(String, index=True)
    event_type: Mapped[str] = mapped_column(String, index=True)
    topic: Mapped[str] = mapped_column(String)
    payload: Mapped[dict] = mapped_column(JSONPayload)
    status: Mapped[str] = mapped_column(String, default="PENDING", index=True)
    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now())
    sent_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
