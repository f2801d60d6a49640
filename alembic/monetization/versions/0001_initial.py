"""initial monetization schema

Revision ID: 0001_monetization
Revises:
Create Date: 2026-10-18
"""

from alembic import op
import sqlalchemy as sa
from sqlalchemy.dialects import postgresql


revision = "0001_monetization"
down_revision = None
branch_labels = None
depends_on = None


def upgrade() -> None:
    # Marketplace-owned tables gain the monetization columns this service maintains.
    op.add_column("users", sa.Column("tier", sa.String(), server_default="free", nullable=False))
    op.add_column("users", sa.Column("chat_pass_expiry", sa.DateTime(timezone=True), nullable=True))
    for prefix in ("chat", "post", "offer"):
        op.add_column("users", sa.Column(f"daily_{prefix}_count", sa.Integer(), server_default="0", nullable=False))
        op.add_column("users", sa.Column(f"daily_{prefix}_reset_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column("users", sa.Column("spotlight_credits", sa.Integer(), server_default="0", nullable=False))
    op.add_column("users", sa.Column("last_boost_notification_at", sa.DateTime(timezone=True), nullable=True))
    op.add_column(
        "users", sa.Column("boost_notification_count_24h", sa.Integer(), server_default="0", nullable=False)
    )
    op.add_column("users", sa.Column("boost_notification_reset_at", sa.DateTime(timezone=True), nullable=True))
    op.create_index("ix_users_status_region_last_active", "users", ["status", "region_id", "last_active_at"])

    op.add_column("listings", sa.Column("spotlight_expiry", sa.DateTime(timezone=True), nullable=True))
    op.add_column("listings", sa.Column("is_featured", sa.Boolean(), server_default=sa.false(), nullable=False))
    op.add_column("listings", sa.Column("is_cross_listed", sa.Boolean(), server_default=sa.false(), nullable=False))
    op.add_column(
        "listings", sa.Column("push_notification_sent", sa.Boolean(), server_default=sa.false(), nullable=False)
    )

    op.create_table(
        "purchases",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("type", sa.String(), nullable=False),
        sa.Column("amount_minor_units", sa.Integer(), nullable=False),
        sa.Column("currency", sa.String(length=3), nullable=False),
        sa.Column("listing_id", sa.String(), nullable=True),
        sa.Column("external_reference", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("state_version", sa.Integer(), server_default="0", nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("updated_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.PrimaryKeyConstraint("id"),
        sa.CheckConstraint("status IN ('pending', 'completed', 'failed')", name="ck_purchases_status"),
        sa.CheckConstraint("amount_minor_units >= 0", name="ck_purchases_amount"),
    )
    op.create_index("ix_purchases_user_id", "purchases", ["user_id"])
    op.create_index("ix_purchases_status", "purchases", ["status"])
    op.create_index("ix_purchases_external_reference", "purchases", ["external_reference"], unique=True)

    op.create_table(
        "purchase_timeline",
        sa.Column("timeline_id", sa.String(), nullable=False),
        sa.Column("purchase_id", sa.String(), nullable=False),
        sa.Column("from_state", sa.String(), nullable=True),
        sa.Column("to_state", sa.String(), nullable=False),
        sa.Column("reason", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["purchase_id"], ["purchases.id"]),
        sa.PrimaryKeyConstraint("timeline_id"),
    )
    op.create_index("ix_purchase_timeline_purchase_id", "purchase_timeline", ["purchase_id"])

    op.create_table(
        "subscriptions",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("user_id", sa.String(), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("expires_at", sa.DateTime(timezone=True), nullable=False),
        sa.Column("reminder_sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.ForeignKeyConstraint(["user_id"], ["users.id"]),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_subscriptions_user_id", "subscriptions", ["user_id"])
    op.create_index("ix_subscriptions_status_expires_at", "subscriptions", ["status", "expires_at"])

    op.create_table(
        "outbox_events",
        sa.Column("id", sa.String(), nullable=False),
        sa.Column("aggregate_type", sa.String(), nullable=False),
        sa.Column("aggregate_id", sa.String(), nullable=False),
        sa.Column("event_type", sa.String(), nullable=False),
        sa.Column("topic", sa.String(), nullable=False),
        sa.Column("payload", postgresql.JSONB(astext_type=sa.Text()), nullable=False),
        sa.Column("status", sa.String(), nullable=False),
        sa.Column("created_at", sa.DateTime(timezone=True), server_default=sa.func.now(), nullable=False),
        sa.Column("sent_at", sa.DateTime(timezone=True), nullable=True),
        sa.PrimaryKeyConstraint("id"),
    )
    op.create_index("ix_outbox_events_aggregate_id", "outbox_events", ["aggregate_id"])
    op.create_index("ix_outbox_events_event_type", "outbox_events", ["event_type"])
    op.create_index("ix_outbox_events_status_created_at", "outbox_events", ["status", "created_at"])


def downgrade() -> None:
    op.drop_index("ix_outbox_events_status_created_at", table_name="outbox_events")
    op.drop_index("ix_outbox_events_event_type", table_name="outbox_events")
    op.drop_index("ix_outbox_events_aggregate_id", table_name="outbox_events")
    op.drop_table("outbox_events")
    op.drop_index("ix_subscriptions_status_expires_at", table_name="subscriptions")
    op.drop_index("ix_subscriptions_user_id", table_name="subscriptions")
    op.drop_table("subscriptions")
    op.drop_index("ix_purchase_timeline_purchase_id", table_name="purchase_timeline")
    op.drop_table("purchase_timeline")
    op.drop_index("ix_purchases_external_reference", table_name="purchases")
    op.drop_index("ix_purchases_status", table_name="purchases")
    op.drop_index("ix_purchases_user_id", table_name="purchases")
    op.drop_table("purchases")

    for column in ("push_notification_sent", "is_cross_listed", "is_featured", "spotlight_expiry"):
        op.drop_column("listings", column)
    op.drop_index("ix_users_status_region_last_active", table_name="users")
    for column in (
        "boost_notification_reset_at",
        "boost_notification_count_24h",
        "last_boost_notification_at",
        "spotlight_credits",
        "daily_offer_reset_at",
        "daily_offer_count",
        "daily_post_reset_at",
        "daily_post_count",
        "daily_chat_reset_at",
        "daily_chat_count",
        "chat_pass_expiry",
        "tier",
    ):
        op.drop_column("users", column)
