"""
Shared fixtures: in-memory SQLite, entitlement cache, a Stripe gateway that
records commands instead of calling Stripe, and an API client wired to them.
"""
import hashlib
import hmac
import json
import time
from datetime import timedelta
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from worksheetgen.core.errors import GatewayCommandFailed
from worksheetgen.core.security import TokenIdentityVerifier, create_access_token
from worksheetgen.core.timeutils import utcnow
from worksheetgen.db.base import Base
from worksheetgen.db.models.subscription import Subscription
from worksheetgen.db.models.user import User
from worksheetgen.db.session import enable_sqlite_foreign_keys, get_db
from worksheetgen.main import app
from worksheetgen.services.entitlement_cache import EntitlementCache
from worksheetgen.services.stripe_gateway import StripeGateway

import worksheetgen.db.models  # noqa: F401


# Setup in-memory SQLite database for testing
TEST_DATABASE_URL = "sqlite:///:memory:"
test_engine = create_engine(
    TEST_DATABASE_URL,
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
event.listen(test_engine, "connect", enable_sqlite_foreign_keys)
TestSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=test_engine)

TEST_SECRET_KEY = "test-secret-key"
TEST_WEBHOOK_SECRET = "whsec_test_secret"


def override_get_db():
    """Override get_db dependency for testing."""
    db = TestSessionLocal()
    try:
        yield db
    finally:
        db.close()


class RecordingGateway(StripeGateway):
    """
    StripeGateway with real webhook verification and recorded commands.

    Set `fail` to make every command raise GatewayCommandFailed.
    """

    def __init__(self, webhook_secret=TEST_WEBHOOK_SECRET):
        super().__init__(api_key=None, webhook_secret=webhook_secret, price_id="price_pro")
        self.calls = []
        self.fail = False

    def _record(self, *call):
        self.calls.append(call)
        if self.fail:
            raise GatewayCommandFailed(f"{call[0]}: simulated Stripe outage")

    def set_cancel_at_period_end(self, provider_subscription_id, cancel_at_period_end):
        self._record("set_cancel_at_period_end", provider_subscription_id, cancel_at_period_end)

    def cancel_now(self, provider_subscription_id):
        self._record("cancel_now", provider_subscription_id)

    def find_or_create_customer(self, email, user_id):
        self._record("find_or_create_customer", email, user_id)
        return "cus_test_123"

    def create_checkout_session(self, customer_id, user_id, success_url, cancel_url, price_id=None):
        self._record("create_checkout_session", customer_id, user_id)
        return SimpleNamespace(id="cs_test_123", url="https://checkout.stripe.test/cs_test_123")

    def retrieve_checkout_session(self, session_id):
        self._record("retrieve_checkout_session", session_id)
        return {"status": "paid", "customer_email": "buyer@example.com", "subscription_id": "sub_123"}

    def retrieve_price(self, price_id=None):
        self._record("retrieve_price", price_id)
        return {
            "price_id": "price_pro",
            "amount": 499,
            "currency": "eur",
            "interval": "month",
            "interval_count": 1,
            "product": {"id": "prod_pro", "name": "Pro", "description": "Unlimited documents"},
        }

    def list_prices(self):
        self._record("list_prices")
        return [self.retrieve_price()]


@pytest.fixture(scope="function", autouse=True)
def setup_db():
    """Create and drop tables for each test."""
    Base.metadata.create_all(bind=test_engine)
    yield
    Base.metadata.drop_all(bind=test_engine)


@pytest.fixture
def db():
    """Provide a database session for tests."""
    session = TestSessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture
def cache():
    return EntitlementCache(default_ttl_seconds=300)


@pytest.fixture
def gateway():
    return RecordingGateway()


@pytest.fixture
def make_user(db):
    """Factory for users."""
    def _make_user(user_id="user-1", email=None, role="user", usage_count=0):
        user = User(
            id=user_id,
            email=email or f"{user_id}@example.com",
            name=f"Educator {user_id}",
            role=role,
            usage_count=usage_count,
        )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user

    return _make_user


@pytest.fixture
def make_subscription(db):
    """Factory for subscriptions; defaults to an active Pro subscription for 30 more days."""
    def _make_subscription(user, **overrides):
        fields = {
            "user_id": user.id,
            "status": "active",
            "plan": "pro",
            "stripe_customer_id": "cus_test_123",
            "stripe_subscription_id": "sub_123",
            "current_period_end": utcnow() + timedelta(days=30),
            "cancel_at_period_end": False,
        }
        fields.update(overrides)
        subscription = Subscription(**fields)
        db.add(subscription)
        db.commit()
        db.refresh(subscription)
        return subscription

    return _make_subscription


@pytest.fixture
def auth_headers():
    """Factory for bearer headers accepted by TokenIdentityVerifier."""
    def _auth_headers(user_id="user-1", email=None, name=None):
        token = create_access_token(
            {"sub": user_id, "email": email or f"{user_id}@example.com", "name": name or f"Educator {user_id}"},
            secret_key=TEST_SECRET_KEY,
        )
        return {"Authorization": f"Bearer {token}"}

    return _auth_headers


@pytest.fixture
def client(cache, gateway):
    """API client on the test database, cache and recording gateway."""
    app.dependency_overrides[get_db] = override_get_db
    app.state.entitlement_cache = cache
    app.state.stripe_gateway = gateway
    app.state.identity_verifier = TokenIdentityVerifier(secret_key=TEST_SECRET_KEY)
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


def sign_payload(payload: str, secret: str = TEST_WEBHOOK_SECRET, timestamp: int = None) -> str:
    """Build a Stripe-Signature header for a raw payload."""
    timestamp = timestamp or int(time.time())
    signed = f"{timestamp}.{payload}".encode("utf-8")
    signature = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={signature}"


@pytest.fixture
def signed_webhook():
    """Factory returning (raw_body, headers) for a webhook event dict."""
    def _signed_webhook(event_payload, secret=TEST_WEBHOOK_SECRET):
        body = json.dumps(event_payload)
        return body, {"Stripe-Signature": sign_payload(body, secret), "Content-Type": "application/json"}

    return _signed_webhook


@pytest.fixture
def subscription_event():
    """Factory for customer.subscription.* webhook payloads."""
    def _subscription_event(
        event_type="customer.subscription.created",
        subscription_id="sub_123",
        user_id="user-1",
        status="active",
        period_end=None,
        cancel_at_period_end=False,
        event_id="evt_test_1",
    ):
        if period_end is None:
            period_end = int(time.time()) + 30 * 24 * 3600
        metadata = {"userId": user_id} if user_id else {}
        return {
            "id": event_id,
            "type": event_type,
            "data": {
                "object": {
                    "id": subscription_id,
                    "object": "subscription",
                    "customer": "cus_test_123",
                    "status": status,
                    "current_period_end": period_end,
                    "cancel_at_period_end": cancel_at_period_end,
                    "metadata": metadata,
                    "items": {"data": [{"price": {"id": "price_pro"}}]},
                }
            },
        }

    return _subscription_event


@pytest.fixture
def invoice_event():
    """Factory for invoice.payment_* webhook payloads."""
    def _invoice_event(event_type="invoice.payment_failed", subscription_id="sub_123", event_id="evt_inv_1"):
        return {
            "id": event_id,
            "type": event_type,
            "data": {"object": {"id": "in_test_1", "object": "invoice", "subscription": subscription_id}},
        }

    return _invoice_event
