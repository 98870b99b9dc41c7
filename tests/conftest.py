import base64
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker
from sqlalchemy.pool import StaticPool

from mannequin import config
from mannequin.db import Base, get_db
from mannequin.main import app, get_image_generator, get_payment_gateway

TEST_KEY_SECRET = "test_key_secret"
TEST_WEBHOOK_SECRET = "test_webhook_secret"

PNG_BYTES = b"\x89PNG\r\n\x1a\n" + b"\x00" * 64
JPEG_BYTES = b"\xff\xd8\xff\xe0" + b"\x00" * 64


def data_url(data: bytes, mime_type: str = "image/png") -> str:
    return f"data:{mime_type};base64,{base64.b64encode(data).decode()}"


class FakeImageGenerator:
    """Stands in for the Gemini client; records every render call."""

    def __init__(self, fail_on_call=None):
        self.calls = []
        self.fail_on_call = fail_on_call

    async def render(self, prompt, image, mime_type):
        self.calls.append({"prompt": prompt, "image": image, "mime_type": mime_type})
        if self.fail_on_call is not None and len(self.calls) == self.fail_on_call:
            raise RuntimeError("provider outage")
        return base64.b64encode(b"render-%d" % len(self.calls)).decode()


class FakeGateway:
    key_id = "rzp_test_key"

    def __init__(self):
        self.orders = []

    async def create_order(self, amount, currency, receipt, notes=None):
        order = {"id": f"order_test_{len(self.orders) + 1}", "amount": amount, "currency": currency,
                 "receipt": receipt, "notes": notes}
        self.orders.append(order)
        return order


@pytest.fixture(autouse=True)
def settings():
    state = config.override(
        razorpay_key_id=FakeGateway.key_id,
        razorpay_key_secret=TEST_KEY_SECRET,
        razorpay_webhook_secret=TEST_WEBHOOK_SECRET,
        encryption_key="test-encryption-key-0123456789abcdef",
        signup_credits=3,
    )
    yield state
    config.reset()


@pytest.fixture(scope="function")
def db_session() -> Generator:
    # Use in-memory SQLite with a single connection
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
        future=True,
    )
    TestingSessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine, future=True)
    Base.metadata.create_all(bind=engine)

    db = TestingSessionLocal()
    try:
        yield db
    finally:
        db.close()


@pytest.fixture
def generator():
    return FakeImageGenerator()


@pytest.fixture
def gateway():
    return FakeGateway()


@pytest.fixture(scope="function")
def client(db_session, generator, gateway):
    # Override dependencies to use the same session and the fakes
    def override_get_db():
        try:
            yield db_session
        finally:
            pass
    app.dependency_overrides[get_db] = override_get_db
    app.dependency_overrides[get_image_generator] = lambda: generator
    app.dependency_overrides[get_payment_gateway] = lambda: gateway
    from fastapi.testclient import TestClient
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture
def signup(client):
    """Create an account and log in; returns (user json, auth headers)."""
    def _signup(email="ada@example.com", password="secret123", name=None):
        r = client.post("/api/auth/signup", json={"email": email, "password": password, "name": name})
        assert r.status_code == 201, r.text
        r = client.post("/api/auth/login", json={"email": email, "password": password})
        assert r.status_code == 200, r.text
        body = r.json()
        return body["user"], {"Authorization": f"Bearer {body['token']}"}
    return _signup
