"""Subscription expiry downgrades and renewal reminders."""

from datetime import timedelta

from sqlalchemy import select

from conftest import NOW

from wavepay.common.events import EMAIL_REQUESTED_TOPIC
from wavepay.services.monetization.models import OutboxEvent, Subscription, User
from wavepay.services.monetization.scheduler import SubscriptionJanitor


def add_subscription(session_factory, user_id, expires_at, status="active"):
    with session_factory() as db:
        subscription = Subscription(user_id=user_id, status=status, expires_at=expires_at)
        db.add(subscription)
        db.commit()
        return subscription.id


def emails(session_factory, template):
    with session_factory() as db:
        events = db.execute(select(OutboxEvent).where(OutboxEvent.topic == EMAIL_REQUESTED_TOPIC)).scalars().all()
    return [e.payload["payload"] for e in events if e.payload["payload"]["template"] == template]


def test_expired_subscription_downgrades_user(session_factory, clock, make_user):
    make_user("lapsed", tier="premium", first_name="Tunde")
    make_user("current", tier="premium")
    add_subscription(session_factory, "lapsed", NOW - timedelta(hours=1))
    add_subscription(session_factory, "current", NOW + timedelta(days=10))
    janitor = SubscriptionJanitor(session_factory, batch_size=10, reminder_days=3, clock=clock)

    assert janitor.downgrade_expired() == 1

    with session_factory() as db:
        assert db.get(User, "lapsed").tier == "free"
        assert db.get(User, "current").tier == "premium"
        statuses = db.execute(select(Subscription.user_id, Subscription.status)).all()
    assert dict(statuses) == {"lapsed": "expired", "current": "active"}
    assert emails(session_factory, "premium_expired") == [
        {"template": "premium_expired", "to": "lapsed@example.com", "firstName": "Tunde"}
    ]
    assert janitor.downgrade_expired() == 0


def test_renewed_user_keeps_premium(session_factory, clock, make_user):
    make_user("renewed", tier="premium")
    add_subscription(session_factory, "renewed", NOW - timedelta(days=1))
    add_subscription(session_factory, "renewed", NOW + timedelta(days=29))
    janitor = SubscriptionJanitor(session_factory, batch_size=10, reminder_days=3, clock=clock)

    assert janitor.downgrade_expired() == 0

    with session_factory() as db:
        assert db.get(User, "renewed").tier == "premium"
    assert emails(session_factory, "premium_expired") == []


def test_reminder_is_sent_once(session_factory, clock, make_user):
    make_user("soon", tier="premium")
    make_user("later", tier="premium")
    add_subscription(session_factory, "soon", NOW + timedelta(days=2))
    add_subscription(session_factory, "later", NOW + timedelta(days=20))
    janitor = SubscriptionJanitor(session_factory, batch_size=10, reminder_days=3, clock=clock)

    assert janitor.send_expiry_reminders() == 1
    assert janitor.send_expiry_reminders() == 0

    reminders = emails(session_factory, "premium_expiring")
    assert [r["to"] for r in reminders] == ["soon@example.com"]
