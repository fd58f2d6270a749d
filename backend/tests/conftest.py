from __future__ import annotations

import os

# Settings are read at import time; provide the required values before importing the app.
os.environ.setdefault("PROJECT_NAME", "paywall-test")
os.environ.setdefault("POSTGRES_SERVER", "localhost")
os.environ.setdefault("POSTGRES_USER", "postgres")
os.environ.setdefault("STRIPE_SECRET_KEY", "sk_test_123")
os.environ.setdefault("STRIPE_WEBHOOK_SECRET", "whsec_test")
os.environ.setdefault("NOWPAYMENTS_API_KEY", "np_test_key")
os.environ.setdefault("NOWPAYMENTS_IPN_SECRET", "ipn_test_secret")

from collections.abc import Generator  # noqa: E402
from decimal import Decimal  # noqa: E402

import pytest  # noqa: E402
from fastapi.testclient import TestClient  # noqa: E402
from sqlalchemy.pool import StaticPool  # noqa: E402
from sqlmodel import Session, SQLModel, create_engine, delete, select  # noqa: E402

from paywall.api.deps import get_db  # noqa: E402
from paywall.core.config import settings  # noqa: E402
from paywall.core.db import init_db  # noqa: E402
from paywall.main import app  # noqa: E402
from paywall.models import (  # noqa: E402
    MediaPurchase,
    Message,
    MessagePayment,
    Payment,
    Subscription,
    SubscriptionPlan,
    User,
    WebhookEvent,
)


@pytest.fixture(scope="session")
def engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    return engine


@pytest.fixture(scope="function")
def db(engine) -> Generator[Session, None, None]:
    with Session(engine) as session:
        yield session
        # Clean tables after each test (children first).
        session.rollback()
        session.exec(delete(MessagePayment))
        session.exec(delete(MediaPurchase))
        session.exec(delete(Payment))
        session.exec(delete(Subscription))
        session.exec(delete(SubscriptionPlan))
        session.exec(delete(Message))
        session.exec(delete(WebhookEvent))
        session.exec(delete(User))
        session.commit()


@pytest.fixture(scope="function")
def client(engine) -> Generator[TestClient, None, None]:
    def _override_get_db() -> Generator[Session, None, None]:
        with Session(engine) as session:
            yield session

    app.dependency_overrides[get_db] = _override_get_db
    with TestClient(app) as c:
        yield c
    app.dependency_overrides.clear()


@pytest.fixture(autouse=True)
def _no_accounting(monkeypatch):
    # Tests opt in to the accounting side channel explicitly.
    monkeypatch.setattr(settings, "ACCOUNTING_API_URL", None)
    monkeypatch.setattr(settings, "ACCOUNTING_RETRY_WAIT_SECONDS", 0)


@pytest.fixture(scope="function")
def plans(db) -> list[SubscriptionPlan]:
    init_db(db)
    return list(db.exec(select(SubscriptionPlan)).all())


@pytest.fixture(scope="function")
def users(db) -> dict[str, User]:
    fan = User(id="u1", email="fan@example.com", name="Fan", stripe_customer_id="cus_u1")
    creator = User(id="u2", email="creator@example.com", name="Creator")
    db.add(fan)
    db.add(creator)
    db.commit()
    return {"u1": fan, "u2": creator}


@pytest.fixture(scope="function")
def message(db, users) -> Message:
    msg = Message(
        id="m1",
        conversation_id="c1",
        sender_id="u2",
        content="locked photo",
        is_ppv=True,
        ppv_price=Decimal("7.50"),
        ppv_unlocked_by=[],
    )
    db.add(msg)
    db.commit()
    return msg


class FakeResponse:
    def __init__(self, data=None, status_code: int = 200):  # type: ignore[no-untyped-def]
        self._data = data if data is not None else {}
        self.status_code = status_code
        self.text = str(self._data)

    def raise_for_status(self):  # type: ignore[no-untyped-def]
        return None

    def json(self):  # type: ignore[no-untyped-def]
        return self._data


class RecordingHttpxClient:
    """Stands in for httpx.Client; records every call and replays queued responses."""

    Response = FakeResponse
    calls: list[dict] = []
    responses: list = []

    def __init__(self, *args, **kwargs):  # type: ignore[no-untyped-def]
        _ = args, kwargs

    def __enter__(self):  # type: ignore[no-untyped-def]
        return self

    def __exit__(self, exc_type, exc, tb):  # type: ignore[no-untyped-def]
        return False

    def _next(self):  # type: ignore[no-untyped-def]
        if not self.responses:
            return FakeResponse({})
        item = self.responses.pop(0)
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, json=None, headers=None):  # type: ignore[no-untyped-def]
        self.calls.append({"method": "POST", "url": url, "json": json, "headers": headers})
        return self._next()

    def request(self, method, url, headers=None, **kwargs):  # type: ignore[no-untyped-def]
        self.calls.append({"method": method, "url": url, "headers": headers, **kwargs})
        return self._next()


@pytest.fixture(scope="function")
def fake_http(monkeypatch) -> type[RecordingHttpxClient]:
    import httpx

    RecordingHttpxClient.calls = []
    RecordingHttpxClient.responses = []
    monkeypatch.setattr(httpx, "Client", RecordingHttpxClient)
    return RecordingHttpxClient
