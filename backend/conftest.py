from __future__ import annotations

import hashlib
import hmac
import json
import os
import sys
import time
from pathlib import Path
from typing import Dict, List, Optional

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

ROOT = Path(__file__).resolve().parent
sys.path.append(str(ROOT))

WEBHOOK_SECRET = "whsec_test_secret"
JWT_SECRET = "test-jwt-secret"

os.environ["DATABASE_URL"] = "sqlite+pysqlite:///:memory:"
os.environ["IDENTITY_BACKEND"] = "jwt"
os.environ["SUPABASE_JWT_SECRET"] = JWT_SECRET
os.environ["STRIPE_SECRET_KEY"] = "sk_test_dummy"
os.environ["STRIPE_WEBHOOK_SECRET"] = WEBHOOK_SECRET
os.environ["STRIPE_PRICE_PRO"] = "price_test_pro"
os.environ["STRIPE_PRICE_ENTERPRISE"] = "price_test_enterprise"

from bizledger.database import Base, get_db  # noqa: E402
from bizledger.apps.accounts import models as account_models  # noqa: E402
from bizledger.apps.billing.gateway import StripeGateway  # noqa: E402
from bizledger.errors import InvalidToken, UpstreamError  # noqa: E402
from bizledger.main import create_app  # noqa: E402
from bizledger.ratelimit import RateLimiter  # noqa: E402
from bizledger.security import Identity, IdentityVerifier  # noqa: E402


@pytest.fixture()
def db_session():
    engine = create_engine(
        "sqlite+pysqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(
        bind=engine,
        tables=[
            account_models.Account.__table__,
            account_models.Business.__table__,
            account_models.UserBusinessRole.__table__,
            account_models.Transaction.__table__,
            account_models.BillingAuditLog.__table__,
        ],
    )
    TestingSession = sessionmaker(
        bind=engine,
        autoflush=False,
        autocommit=False,
        expire_on_commit=False,
    )
    session = TestingSession()
    try:
        yield session
    finally:
        session.close()
        engine.dispose()


# ---------------------------------------------------------------------------
# Seed data
# ---------------------------------------------------------------------------


def seed_business(
    db,
    *,
    user_id: Optional[str] = None,
    role: str = "owner",
    name: str = "Acme Ltd",
    customer_id: Optional[str] = None,
    plan: str = "FREE",
    with_account: bool = True,
):
    """Account -> business -> optional membership for `user_id`."""
    account = None
    if with_account:
        account = account_models.Account(stripe_customer_id=customer_id, plan=plan)
        db.add(account)
        db.flush()
    business = account_models.Business(name=name, account_id=account.id if account else None)
    db.add(business)
    db.flush()
    if user_id:
        db.add(account_models.UserBusinessRole(user_id=user_id, business_id=business.id, role=role))
    db.commit()
    return account, business


# ---------------------------------------------------------------------------
# Collaborator fakes
# ---------------------------------------------------------------------------


class FakeVerifier(IdentityVerifier):
    """Accepts the tokens it was given, rejects everything else."""

    def __init__(self) -> None:
        self.tokens: Dict[str, Identity] = {}
        self.calls = 0

    def add(self, token: str, user_id: str, email: str = "") -> Identity:
        identity = Identity(id=user_id, email=email or f"{user_id}@example.com")
        self.tokens[token] = identity
        return identity

    def verify(self, token: str) -> Identity:
        self.calls += 1
        try:
            return self.tokens[token]
        except KeyError:
            raise InvalidToken() from None


class FakeGateway(StripeGateway):
    """Records Stripe calls; webhook parsing is the real signature check."""

    def __init__(self) -> None:
        super().__init__("sk_test_fake", webhook_secret=WEBHOOK_SECRET)
        self.customers: List[Dict[str, object]] = []
        self.checkouts: List[Dict[str, object]] = []
        self.portals: List[Dict[str, object]] = []
        self.subscription: Optional[Dict[str, object]] = None
        self.fail = False
        self.before_customer_returns = None

    def _maybe_fail(self) -> None:
        if self.fail:
            raise UpstreamError()

    def create_customer(self, *, email, metadata):
        self._maybe_fail()
        customer_id = f"cus_test_{len(self.customers) + 1}"
        self.customers.append({"id": customer_id, "email": email, "metadata": metadata})
        if self.before_customer_returns is not None:
            self.before_customer_returns(customer_id)
        return customer_id

    def create_checkout_session(self, *, customer_id, price_id, success_url, cancel_url, metadata):
        self._maybe_fail()
        self.checkouts.append(
            {
                "customer_id": customer_id,
                "price_id": price_id,
                "success_url": success_url,
                "cancel_url": cancel_url,
                "metadata": metadata,
            }
        )
        return f"https://checkout.stripe.test/c/{len(self.checkouts)}"

    def create_portal_session(self, *, customer_id, return_url):
        self._maybe_fail()
        self.portals.append({"customer_id": customer_id, "return_url": return_url})
        return f"https://billing.stripe.test/p/{customer_id}"

    def latest_subscription(self, customer_id):
        self._maybe_fail()
        return self.subscription


@pytest.fixture()
def verifier() -> FakeVerifier:
    return FakeVerifier()


@pytest.fixture()
def gateway() -> FakeGateway:
    return FakeGateway()


@pytest.fixture()
def make_client(db_session, verifier, gateway):
    """Build a TestClient bound to the test session; pass a limiter to override."""

    def _override_db():
        yield db_session

    def _make(rate_limiter: Optional[RateLimiter] = None) -> TestClient:
        app = create_app(
            rate_limiter=rate_limiter or RateLimiter(),
            identity_verifier=verifier,
            stripe_gateway=gateway,
        )
        app.dependency_overrides[get_db] = _override_db
        return TestClient(app)

    return _make


@pytest.fixture()
def client(make_client) -> TestClient:
    return make_client()


# ---------------------------------------------------------------------------
# Webhook signing
# ---------------------------------------------------------------------------


def sign_payload(payload: bytes, *, secret: str = WEBHOOK_SECRET, timestamp: Optional[int] = None) -> str:
    """Stripe-Signature header value for `payload` (t=<ts>,v1=<hmac>)."""
    ts = int(time.time()) if timestamp is None else timestamp
    signed = f"{ts}.{payload.decode('utf-8')}".encode("utf-8")
    digest = hmac.new(secret.encode("utf-8"), signed, hashlib.sha256).hexdigest()
    return f"t={ts},v1={digest}"


def event_payload(event_type: str, obj: Dict[str, object], *, event_id: str = "evt_test_1") -> bytes:
    return json.dumps(
        {"id": event_id, "object": "event", "type": event_type, "data": {"object": obj}}
    ).encode("utf-8")


@pytest.fixture()
def seed(db_session):
    def _seed(**kwargs):
        return seed_business(db_session, **kwargs)

    return _seed


@pytest.fixture()
def post_webhook(client):
    """POST a signed event to /billing/webhook."""

    def _post(event_type: str, obj: Dict[str, object], *, event_id: str = "evt_test_1", signature=None):
        payload = event_payload(event_type, obj, event_id=event_id)
        header = sign_payload(payload) if signature is None else signature
        return client.post(
            "/billing/webhook",
            content=payload,
            headers={"Stripe-Signature": header, "Content-Type": "application/json"},
        )

    return _post
