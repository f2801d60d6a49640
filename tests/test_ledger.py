"""Purchase lifecycle: initialize, verify, webhook and idempotent activation."""

import asyncio
import json
from concurrent.futures import ThreadPoolExecutor
from datetime import timedelta

import httpx
import pytest
from sqlalchemy import func, select

from conftest import NOW, FakePaystack

from wavepay.common.db import as_utc
from wavepay.common.events import ACTIVATION_COMPLETED_TOPIC
from wavepay.services.monetization.activation import ActivationDispatcher
from wavepay.services.monetization.boost import BoostTargetingEngine
from wavepay.services.monetization.directory import SqlUserDirectory
from wavepay.services.monetization.errors import GatewayUnavailable, ListingNotFound, ListingRequired, PurchaseNotFound
from wavepay.services.monetization.fanout import OutboxNotificationFanout
from wavepay.services.monetization.gateway import PaystackGateway, sign_payload
from wavepay.services.monetization.ledger import ALREADY_COMPLETED_MESSAGE, PurchaseLedger
from wavepay.services.monetization.models import Listing, OutboxEvent, Purchase, PurchaseTimeline, Subscription, User
from wavepay.services.monetization.spam_queue import SpamCounterQueue

SECRET = "sk_test_ledger"


@pytest.fixture
def paystack():
    return FakePaystack()


@pytest.fixture
def spam_queue(session_factory):
    return SpamCounterQueue(session_factory, maxsize=100, window_hours=24)


@pytest.fixture
def ledger(session_factory, clock, paystack, spam_queue):
    gateway = PaystackGateway(
        secret_key=SECRET, base_url="https://paystack.test", transport=httpx.MockTransport(paystack.handler)
    )
    engine = BoostTargetingEngine(
        SqlUserDirectory(), OutboxNotificationFanout(), pool_size=50, top_n=10, max_per_window=2, window_hours=24
    )
    dispatcher = ActivationDispatcher(session_factory, engine, spam_queue, clock=clock)
    return PurchaseLedger(session_factory, gateway, dispatcher, clock=clock)


def initialize(ledger, user_id="seller-1", purchase_type="spotlight_3", listing_id="listing-1", currency="NGN"):
    return asyncio.run(ledger.initialize(user_id, f"{user_id}@example.com", purchase_type, listing_id, currency))


def load_purchase(session_factory, reference) -> Purchase:
    with session_factory() as db:
        return db.execute(select(Purchase).where(Purchase.external_reference == reference)).scalar_one()


def webhook_body(reference: str, event: str = "charge.success") -> bytes:
    return json.dumps({"event": event, "data": {"reference": reference}}).encode("utf-8")


def test_spotlight_purchase_end_to_end(session_factory, ledger, paystack, marketplace):
    """Pending until the processor confirms, then a 3-day spotlight."""

    checkout = initialize(ledger)
    purchase = load_purchase(session_factory, checkout.reference)
    assert checkout.authorization_url.endswith(checkout.reference)
    assert purchase.status == "pending"
    assert purchase.amount_minor_units == 50_000
    assert purchase.currency == "NGN"

    first = asyncio.run(ledger.verify(checkout.reference))
    assert not first.success
    assert load_purchase(session_factory, checkout.reference).status == "pending"

    paystack.pay(checkout.reference)
    second = asyncio.run(ledger.verify(checkout.reference))

    assert second.success
    assert "3 days" in second.message
    assert load_purchase(session_factory, checkout.reference).status == "completed"
    with session_factory() as db:
        listing = db.get(Listing, "listing-1")
        assert listing.is_featured
        assert as_utc(listing.spotlight_expiry) == NOW + timedelta(days=3)


def test_repeated_verify_and_webhook_activate_once(session_factory, ledger, paystack, marketplace):
    checkout = initialize(ledger)
    paystack.pay(checkout.reference)
    body = webhook_body(checkout.reference)
    signature = sign_payload(body, SECRET)

    results = [asyncio.run(ledger.verify(checkout.reference)) for _ in range(3)]
    acks = [asyncio.run(ledger.handle_webhook(body, signature)) for _ in range(2)]

    assert all(r.success for r in results)
    assert results[1].message == ALREADY_COMPLETED_MESSAGE
    assert acks == [{"status": "ok"}, {"status": "ok"}]
    assert paystack.verify_calls == 1
    with session_factory() as db:
        purchase = db.execute(select(Purchase).where(Purchase.external_reference == checkout.reference)).scalar_one()
        assert purchase.state_version == 1
        transitions = db.execute(
            select(func.count()).select_from(PurchaseTimeline).where(PurchaseTimeline.purchase_id == purchase.id)
        ).scalar_one()
        assert transitions == 2
        activations = db.execute(
            select(func.count()).select_from(OutboxEvent).where(OutboxEvent.topic == ACTIVATION_COMPLETED_TOPIC)
        ).scalar_one()
        assert activations == 1


def test_losing_caller_sees_idempotent_success(session_factory, ledger, paystack, marketplace):
    """A caller holding a stale pending copy cannot complete it twice."""

    checkout = initialize(ledger)
    stale = load_purchase(session_factory, checkout.reference)
    paystack.pay(checkout.reference)
    asyncio.run(ledger.verify(checkout.reference))

    result = ledger._complete(stale, "webhook")

    assert result.success
    assert result.message == ALREADY_COMPLETED_MESSAGE
    assert load_purchase(session_factory, checkout.reference).state_version == 1


def test_concurrent_verifies_activate_once(session_factory, ledger, paystack, marketplace):
    """Four threads verifying the same paid reference yield one activation."""

    checkout = initialize(ledger)
    paystack.pay(checkout.reference)

    with ThreadPoolExecutor(max_workers=4) as pool:
        results = list(pool.map(lambda _: asyncio.run(ledger.verify(checkout.reference)), range(4)))

    assert all(r.success for r in results)
    with session_factory() as db:
        purchase = db.execute(select(Purchase).where(Purchase.external_reference == checkout.reference)).scalar_one()
        assert purchase.status == "completed"
        assert purchase.state_version == 1
        transitions = db.execute(
            select(func.count()).select_from(PurchaseTimeline).where(PurchaseTimeline.purchase_id == purchase.id)
        ).scalar_one()
        assert transitions == 2
        activations = db.execute(
            select(func.count()).select_from(OutboxEvent).where(OutboxEvent.topic == ACTIVATION_COMPLETED_TOPIC)
        ).scalar_one()
        assert activations == 1


def test_webhook_with_bad_signature_changes_nothing(session_factory, ledger, paystack, marketplace):
    checkout = initialize(ledger)
    paystack.pay(checkout.reference)
    body = webhook_body(checkout.reference)

    ack = asyncio.run(ledger.handle_webhook(body, sign_payload(body, "forged")))

    assert ack == {"status": "invalid signature"}
    assert paystack.verify_calls == 0
    assert load_purchase(session_factory, checkout.reference).status == "pending"


def test_webhook_completes_purchase(session_factory, ledger, paystack, marketplace):
    checkout = initialize(ledger, purchase_type="cross_list")
    paystack.pay(checkout.reference)
    body = webhook_body(checkout.reference)

    ack = asyncio.run(ledger.handle_webhook(body, sign_payload(body, SECRET)))

    assert ack == {"status": "ok"}
    assert load_purchase(session_factory, checkout.reference).status == "completed"
    with session_factory() as db:
        assert db.get(Listing, "listing-1").is_cross_listed


def test_webhook_ignores_other_events_and_unknown_references(session_factory, ledger, paystack, marketplace):
    checkout = initialize(ledger)
    transfer = webhook_body(checkout.reference, event="transfer.success")
    unknown = webhook_body("BW_nope")

    assert asyncio.run(ledger.handle_webhook(transfer, sign_payload(transfer, SECRET))) == {"status": "ok"}
    assert asyncio.run(ledger.handle_webhook(unknown, sign_payload(unknown, SECRET))) == {"status": "ok"}
    assert paystack.verify_calls == 0


def test_definitive_gateway_failure_is_terminal(session_factory, ledger, paystack, marketplace):
    checkout = initialize(ledger)
    paystack.statuses[checkout.reference] = "failed"

    assert not asyncio.run(ledger.verify(checkout.reference)).success
    assert load_purchase(session_factory, checkout.reference).status == "failed"

    paystack.pay(checkout.reference)
    assert not asyncio.run(ledger.verify(checkout.reference)).success
    assert paystack.verify_calls == 1
    assert load_purchase(session_factory, checkout.reference).status == "failed"


def test_underpayment_fails_the_purchase(session_factory, ledger, paystack, marketplace):
    checkout = initialize(ledger)
    paystack.pay(checkout.reference)
    paystack.amount_overrides[checkout.reference] = 100

    assert not asyncio.run(ledger.verify(checkout.reference)).success
    assert load_purchase(session_factory, checkout.reference).status == "failed"
    with session_factory() as db:
        assert not db.get(Listing, "listing-1").is_featured


def test_listing_purchase_needs_existing_listing(session_factory, ledger, marketplace):
    with pytest.raises(ListingRequired):
        initialize(ledger, listing_id=None)
    with pytest.raises(ListingNotFound):
        initialize(ledger, listing_id="no-such-listing")
    with session_factory() as db:
        assert db.execute(select(func.count()).select_from(Purchase)).scalar_one() == 0


def test_gateway_outage_leaves_purchase_pending(session_factory, ledger, paystack, marketplace):
    paystack.down = True
    with pytest.raises(GatewayUnavailable):
        initialize(ledger)
    with session_factory() as db:
        assert db.execute(select(Purchase.status)).scalars().all() == ["pending"]

    paystack.down = False
    checkout = initialize(ledger)
    paystack.pay(checkout.reference)
    paystack.down = True
    with pytest.raises(GatewayUnavailable):
        asyncio.run(ledger.verify(checkout.reference))
    assert load_purchase(session_factory, checkout.reference).status == "pending"


def test_rejected_secret_key_does_not_fail_purchase(session_factory, ledger, paystack, marketplace):
    """A 401 from the processor is an outage, so the paid purchase can still complete later."""

    checkout = initialize(ledger)
    paystack.pay(checkout.reference)
    paystack.key_rejected = True
    with pytest.raises(GatewayUnavailable):
        asyncio.run(ledger.verify(checkout.reference))
    assert load_purchase(session_factory, checkout.reference).status == "pending"

    paystack.key_rejected = False
    assert asyncio.run(ledger.verify(checkout.reference)).success
    assert load_purchase(session_factory, checkout.reference).status == "completed"


def test_unknown_reference(ledger):
    with pytest.raises(PurchaseNotFound):
        asyncio.run(ledger.verify("BW_missing"))


def test_activation_failure_keeps_purchase_pending(session_factory, ledger, paystack, marketplace):
    """Effects and the completed transition roll back together."""

    checkout = initialize(ledger)
    paystack.pay(checkout.reference)
    with session_factory() as db:
        db.delete(db.get(Listing, "listing-1"))
        db.commit()

    result = asyncio.run(ledger.verify(checkout.reference))

    assert not result.success
    assert result.message == "Listing not found."
    purchase = load_purchase(session_factory, checkout.reference)
    assert purchase.status == "pending"
    assert purchase.state_version == 0


def test_premium_purchase_upgrades_user(session_factory, ledger, paystack, marketplace):
    checkout = initialize(ledger, purchase_type="premium", listing_id=None)
    assert load_purchase(session_factory, checkout.reference).amount_minor_units == 250_000
    paystack.pay(checkout.reference)

    assert asyncio.run(ledger.verify(checkout.reference)).success

    with session_factory() as db:
        user = db.get(User, "seller-1")
        assert user.tier == "premium"
        assert user.spotlight_credits == 2
        subscription = db.execute(select(Subscription)).unique().scalar_one()
        assert as_utc(subscription.expires_at) == NOW.replace(month=11)


def test_premium_member_pays_discounted_boost(session_factory, ledger, marketplace):
    with session_factory() as db:
        db.get(User, "seller-1").tier = "premium"
        db.commit()

    checkout = initialize(ledger, purchase_type="aggressive_boost", currency="USD")

    purchase = load_purchase(session_factory, checkout.reference)
    assert purchase.amount_minor_units == 149
    assert purchase.currency == "USD"
