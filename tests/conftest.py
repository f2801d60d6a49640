"""Shared fixtures: a throwaway SQLite schema and seeded marketplace rows."""

import json
import os
import tempfile
from datetime import datetime, timedelta, timezone

_DB_DIR = tempfile.mkdtemp(prefix="wavepay-tests-")
os.environ.setdefault("POSTGRES_DSN", f"sqlite+pysqlite:///{_DB_DIR}/monetization.db")
os.environ.setdefault("API_KEY", "test-api-key")
os.environ.setdefault("PAYSTACK_SECRET_KEY", "sk_test_secret")
os.environ.setdefault("REDIS_URL", "redis://localhost:6399/0")
os.environ.setdefault("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4318/v1/traces")

import httpx  # noqa: E402
import pytest  # noqa: E402

from wavepay.common.db import Base, SessionLocal, engine  # noqa: E402
from wavepay.services.monetization.models import (  # noqa: E402
    Cart,
    CartItem,
    Category,
    Listing,
    Region,
    User,
    Want,
)

NOW = datetime(2026, 10, 18, 12, 0, tzinfo=timezone.utc)


class FixedClock:
    """Callable clock tests can move forward."""

    def __init__(self, now: datetime = NOW) -> None:
        self.now = now

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class FakePaystack:
    """In-memory processor: records checkouts and answers verify by reference."""

    def __init__(self) -> None:
        self.checkouts: dict[str, dict] = {}
        self.statuses: dict[str, str] = {}
        self.amount_overrides: dict[str, int] = {}
        self.verify_calls = 0
        self.down = False
        self.key_rejected = False

    def handler(self, request: httpx.Request) -> httpx.Response:
        if self.down:
            raise httpx.ConnectError("connection refused", request=request)
        if self.key_rejected:
            return httpx.Response(401, json={"status": False, "message": "Invalid key"})
        if request.url.path == "/transaction/initialize":
            body = json.loads(request.content)
            self.checkouts[body["reference"]] = body
            return httpx.Response(
                200,
                json={
                    "status": True,
                    "data": {
                        "authorization_url": f"https://checkout.test/{body['reference']}",
                        "reference": body["reference"],
                    },
                },
            )
        self.verify_calls += 1
        reference = request.url.path.rsplit("/", 1)[-1]
        checkout = self.checkouts[reference]
        return httpx.Response(
            200,
            json={
                "status": True,
                "data": {
                    "status": self.statuses.get(reference, "ongoing"),
                    "amount": self.amount_overrides.get(reference, checkout["amount"]),
                    "currency": checkout["currency"],
                },
            },
        )

    def pay(self, reference: str) -> None:
        self.statuses[reference] = "success"


@pytest.fixture(autouse=True)
def schema():
    Base.metadata.drop_all(engine)
    Base.metadata.create_all(engine)
    yield
    Base.metadata.drop_all(engine)


@pytest.fixture
def session_factory():
    return SessionLocal


@pytest.fixture
def clock():
    return FixedClock()


@pytest.fixture
def make_user(session_factory):
    def _make(user_id: str, **fields) -> str:
        fields.setdefault("email", f"{user_id}@example.com")
        fields.setdefault("last_active_at", NOW - timedelta(hours=1))
        with session_factory() as db:
            db.add(User(id=user_id, **fields))
            db.commit()
        return user_id

    return _make


@pytest.fixture
def marketplace(session_factory, make_user):
    """One seller in Lagos with an electronics listing."""

    with session_factory() as db:
        db.add_all(
            [
                Region(id="lagos", name="Lagos"),
                Region(id="abuja", name="Abuja"),
                Category(id="electronics", name="Electronics"),
                Category(id="furniture", name="Furniture"),
            ]
        )
        db.commit()
    make_user("seller-1", first_name="Ada", last_name="Obi", region_id="lagos")
    with session_factory() as db:
        db.add(
            Listing(
                id="listing-1",
                seller_id="seller-1",
                title="iPhone 13",
                category_id="electronics",
                region_id="lagos",
            )
        )
        db.commit()
    return {"seller_id": "seller-1", "listing_id": "listing-1"}


@pytest.fixture
def add_want(session_factory):
    def _add(user_id: str, category: str, resolved: bool = False) -> None:
        with session_factory() as db:
            db.add(Want(user_id=user_id, category=category, is_resolved=resolved))
            db.commit()

    return _add


@pytest.fixture
def add_cart_item(session_factory):
    def _add(user_id: str, listing_id: str) -> None:
        with session_factory() as db:
            cart = Cart(user_id=user_id)
            db.add(cart)
            db.flush()
            db.add(CartItem(cart_id=cart.id, listing_id=listing_id))
            db.commit()

    return _add
