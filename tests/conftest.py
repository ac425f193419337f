"""Shared fixtures: in-memory database, authenticated users, fake Stripe and SMTP."""
import os

os.environ["DATABASE_URL"] = "sqlite://"
os.environ["SKIP_DB_INIT"] = "1"
os.environ["JWT_SECRET"] = "test-secret"
os.environ["ADMIN_EMAILS"] = "admin@example.com"
os.environ["APP_BASE_URL"] = "http://app.test"
os.environ["SITE_URL"] = "http://site.test"
os.environ.pop("ENVIRONMENT", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from db.init import Base, get_db
from main import app
from models.user import User, Address
from utils import email as mailer
from utils import stripe_client
from utils.security import create_access_token, hash_password

engine = create_engine(
    "sqlite://",
    connect_args={"check_same_thread": False},
    poolclass=StaticPool,
)
TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


@pytest.fixture()
def db():
    Base.metadata.create_all(bind=engine)
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.close()
        Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def client(db):
    def override_get_db():
        session = TestingSessionLocal()
        try:
            yield session
        finally:
            session.close()

    app.dependency_overrides[get_db] = override_get_db
    try:
        yield TestClient(app)
    finally:
        app.dependency_overrides.clear()


@pytest.fixture()
def make_user(db):
    def _make_user(email="customer@example.com", first_name="Casey", last_name="Rivers", password="password123",
                   with_address=True):
        user = User(
            first_name=first_name,
            last_name=last_name,
            email=email,
            password_hash=hash_password(password),
        )
        if with_address:
            user.addresses.append(
                Address(label="Home", street="12 Elm St", city="Tacoma", state="WA", postal_code="98402")
            )
        db.add(user)
        db.commit()
        db.refresh(user)
        return user
    return _make_user


@pytest.fixture()
def auth_headers():
    def _auth_headers(user):
        token = create_access_token(data={"sub": user.email, "id": user.id})
        return {"Authorization": f"Bearer {token}"}
    return _auth_headers


@pytest.fixture()
def customer(make_user):
    return make_user()


@pytest.fixture()
def admin(make_user):
    return make_user(email="admin@example.com", first_name="Avery", last_name="Admin", with_address=False)


@pytest.fixture()
def sent_emails(monkeypatch):
    """Captures outgoing mail instead of opening an SMTP connection."""
    sent = []

    def fake_send_email(to, subject, html, text, reply_to=None):
        sent.append({"to": to, "subject": subject, "html": html, "text": text, "reply_to": reply_to})
        return f"<message-{len(sent)}@test>"

    monkeypatch.setattr(mailer, "send_email", fake_send_email)
    return sent


@pytest.fixture()
def failing_email(monkeypatch):
    def fake_send_email(*args, **kwargs):
        raise RuntimeError("SMTP configuration is incomplete.")

    monkeypatch.setattr(mailer, "send_email", fake_send_email)


class FakeStripe:
    """In-memory stand-in for the Stripe REST wrapper, returning the same result dicts."""

    def __init__(self):
        self.created = []
        self.sessions = {}
        self.retrieved = []
        self.updated = []
        self.cancelled = []
        self.create_result = None
        self.update_result = {"success": True, "status": "active"}
        self.cancel_result = {"success": True, "status": "canceled"}

    def create_checkout_session(self, items, success_url, cancel_url, customer_email=None, metadata=None,
                                idempotency_key=None):
        self.created.append({
            "items": items,
            "success_url": success_url,
            "cancel_url": cancel_url,
            "customer_email": customer_email,
            "metadata": metadata or {},
            "idempotency_key": idempotency_key,
        })
        if self.create_result is not None:
            return self.create_result
        session_id = f"cs_test_{len(self.created)}"
        metadata = {key: str(value) for key, value in (metadata or {}).items() if value is not None}
        self.sessions[session_id] = {
            "status": "open",
            "payment_status": "unpaid",
            "customer_id": None,
            "subscription_id": None,
            "metadata": metadata,
        }
        return {"success": True, "session_id": session_id, "url": f"https://checkout.stripe.test/{session_id}",
                "session": {"id": session_id}}

    def pay(self, session_id, subscription_id="sub_test_1", customer_id="cus_test_1", **overrides):
        self.sessions[session_id].update({
            "status": "complete",
            "payment_status": "paid",
            "customer_id": customer_id,
            "subscription_id": subscription_id,
        })
        self.sessions[session_id].update(overrides)

    def retrieve_checkout_session(self, session_id):
        self.retrieved.append(session_id)
        if session_id not in self.sessions:
            return {"success": False, "error": "No such checkout.session", "configured": True}
        return {"success": True, "session": {"id": session_id}, **self.sessions[session_id]}

    def update_subscription_items(self, subscription_id, items):
        self.updated.append({"subscription_id": subscription_id, "items": items})
        return self.update_result

    def cancel_subscription(self, subscription_id):
        self.cancelled.append(subscription_id)
        return self.cancel_result


@pytest.fixture()
def stripe(monkeypatch):
    fake = FakeStripe()
    for name in ("create_checkout_session", "retrieve_checkout_session", "update_subscription_items",
                 "cancel_subscription"):
        monkeypatch.setattr(stripe_client, name, getattr(fake, name))
    return fake
