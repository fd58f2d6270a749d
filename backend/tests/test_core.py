from __future__ import annotations

import asyncio
import json
import time

import pytest
from fastapi import HTTPException
from sqlmodel import select

from paywall.api import deps
from paywall.api.errors import AppError, payment_not_found
from paywall.core import snowflake
from paywall.core.config import Settings, parse_cors
from paywall.core.db import DEFAULT_PLANS, init_db
from paywall.models import SubscriptionPlan


def test_health_check(client):
    r = client.get("/api/v1/utils/health-check/")
    assert r.status_code == 200
    assert r.json() is True


def test_http_exception_handler_dict_branch():
    from paywall import main as app_main

    exc = HTTPException(status_code=418, detail={"code": 418001, "message": "teapot"})
    resp = asyncio.run(app_main.http_error_handler(None, exc))  # type: ignore[arg-type]
    assert resp.status_code == 418
    assert json.loads(resp.body) == {"code": 418001, "error": "teapot"}


def test_app_error_handler():
    from paywall import main as app_main

    resp = asyncio.run(app_main.app_error_handler(None, payment_not_found()))  # type: ignore[arg-type]
    assert resp.status_code == 404
    assert json.loads(resp.body) == {"code": 404101, "error": "Payment not found"}

    err = AppError(code=400999, message="boom")
    assert err.status_code == 400
    assert str(err) == "boom"


def test_request_validation_error_shape():
    from fastapi.exceptions import RequestValidationError

    from paywall import main as app_main

    exc = RequestValidationError([{"loc": ("body",), "msg": "Field required", "type": "missing"}])
    resp = asyncio.run(app_main.validation_error_handler(None, exc))  # type: ignore[arg-type]
    body = json.loads(resp.body)
    assert resp.status_code == 422
    assert body["code"] == 422000
    assert body["error"] == "Validation error"
    assert body["errors"][0]["msg"] == "Field required"


def test_get_db_generator_uses_engine_override(engine, monkeypatch):
    # Default engine is Postgres; override for test.
    monkeypatch.setattr(deps, "engine", engine)
    gen = deps.get_db()
    session = next(gen)
    session.exec(select(1))
    gen.close()


def test_snowflake_edge_cases(monkeypatch):
    with pytest.raises(ValueError):
        snowflake.Snowflake(node_id=-1)
    with pytest.raises(ValueError):
        snowflake.Snowflake(node_id=1024)

    # Small clock drift: wait for the clock to catch up.
    sf = snowflake.Snowflake(node_id=1)
    sf._last_ts = 1000  # type: ignore[attr-defined]
    monkeypatch.setattr(snowflake.Snowflake, "_now_ms", staticmethod(lambda: 999))
    monkeypatch.setattr(snowflake.Snowflake, "_wait_until", classmethod(lambda cls, t: t))
    _ = sf.next_id()

    # Large clock drift is refused.
    sf_drift = snowflake.Snowflake(node_id=1)
    sf_drift._last_ts = 10_000  # type: ignore[attr-defined]
    with pytest.raises(RuntimeError):
        sf_drift.next_id()

    # Sequence rollover.
    sf2 = snowflake.Snowflake(node_id=1)
    sf2._last_ts = 2000  # type: ignore[attr-defined]
    sf2._seq = 0xFFF  # type: ignore[attr-defined]
    monkeypatch.setattr(snowflake.Snowflake, "_now_ms", staticmethod(lambda: 2000))
    _ = sf2.next_id()
    assert sf2._seq == 0  # type: ignore[attr-defined]


def test_snowflake_wait_until_loop(monkeypatch):
    calls = [0, 0, 5]

    def fake_now_ms() -> int:
        return calls.pop(0) if calls else 5

    monkeypatch.setattr(snowflake.Snowflake, "_now_ms", staticmethod(fake_now_ms))
    monkeypatch.setattr(time, "sleep", lambda _: None)
    assert snowflake.Snowflake._wait_until(5) == 5


def test_generated_ids_are_unique_and_increasing():
    ids = [snowflake.generate_id() for _ in range(200)]
    assert ids == sorted(ids)
    assert len(set(ids)) == len(ids)
    assert snowflake.generate_str_id().isdigit()


def test_settings_validation_paths():
    assert parse_cors(["a"]) == ["a"]
    assert parse_cors("http://a.com, http://b.com") == ["http://a.com", "http://b.com"]
    with pytest.raises(ValueError):
        parse_cors(123)

    base = {"PROJECT_NAME": "x", "POSTGRES_SERVER": "localhost", "POSTGRES_USER": "postgres"}

    # Non-local env should reject default secrets.
    with pytest.raises(ValueError):
        Settings(ENVIRONMENT="production", STRIPE_WEBHOOK_SECRET="changethis", **base)
    with pytest.raises(ValueError):
        Settings(ENVIRONMENT="staging", NOWPAYMENTS_IPN_SECRET="changethis", **base)

    with pytest.warns(UserWarning):
        Settings(ENVIRONMENT="local", POSTGRES_PASSWORD="changethis", **base)

    s = Settings(BACKEND_CORS_ORIGINS="http://localhost:3000/", POSTGRES_DB="paywall", **base)
    assert s.all_cors_origins == ["http://localhost:3000"]
    uri = str(s.SQLALCHEMY_DATABASE_URI)
    assert uri.startswith("postgresql+psycopg://postgres")
    assert uri.endswith("localhost:5432/paywall")


def test_init_db_is_idempotent(db):
    init_db(db)
    init_db(db)
    plans = db.exec(select(SubscriptionPlan)).all()
    assert sorted(p.name for p in plans) == sorted(p["name"] for p in DEFAULT_PLANS)


def test_prestart_and_seed_scripts(engine, db, monkeypatch):
    from paywall import backend_pre_start, initial_data

    # Point the scripts to the test engine so they can run without Postgres.
    monkeypatch.setattr(backend_pre_start, "engine", engine)
    monkeypatch.setattr(initial_data, "engine", engine)

    backend_pre_start.init(engine)
    backend_pre_start.main()

    initial_data.init()
    initial_data.main()
    assert len(db.exec(select(SubscriptionPlan)).all()) == len(DEFAULT_PLANS)
