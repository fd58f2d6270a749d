from __future__ import annotations

import hashlib
import hmac
import json
import logging
import time
from datetime import datetime, timezone
from decimal import Decimal
from typing import Any

from sqlmodel import select

from paywall.models import (
    MediaPurchase,
    Message,
    MessagePayment,
    Payment,
    Subscription,
    WebhookEvent,
    as_utc,
)
from paywall.core.config import settings
from paywall.services import entitlements

URL = "/api/v1/payments/stripe/webhook"

PERIOD_START = 1767225600  # 2026-01-01T00:00:00Z
PERIOD_END = 1769904000  # 2026-02-01T00:00:00Z


def _sign(payload: str, secret: str = "whsec_test", ts: int | None = None) -> str:
    ts = ts or int(time.time())
    sig = hmac.new(secret.encode(), f"{ts}.{payload}".encode(), hashlib.sha256).hexdigest()
    return f"t={ts},v1={sig}"


def _event(event_type: str, obj: dict[str, Any], event_id: str = "evt_1") -> str:
    return json.dumps(
        {
            "id": event_id,
            "object": "event",
            "type": event_type,
            "created": int(time.time()),
            "livemode": False,
            "data": {"object": obj},
        }
    )


def _post(client, payload: str, signature: str | None = None):  # type: ignore[no-untyped-def]
    headers = {"content-type": "application/json"}
    headers["stripe-signature"] = signature if signature is not None else _sign(payload)
    return client.post(URL, content=payload, headers=headers)


def _checkout(metadata: dict[str, str], amount: int, payment_intent: str = "pi_1") -> dict[str, Any]:
    return {
        "id": "cs_test_1",
        "object": "checkout.session",
        "mode": "payment",
        "amount_total": amount,
        "currency": "usd",
        "customer": "cus_u1",
        "payment_intent": payment_intent,
        "metadata": metadata,
    }


def _subscription(
    status: str,
    metadata: dict[str, str] | None = None,
    sub_id: str = "sub_1",
    start: int = PERIOD_START,
    end: int = PERIOD_END,
) -> dict[str, Any]:
    # Newer Stripe API versions only carry the period on subscription items.
    return {
        "id": sub_id,
        "object": "subscription",
        "status": status,
        "customer": "cus_u1",
        "metadata": metadata
        if metadata is not None
        else {"userId": "u1", "planId": "VIP", "billingInterval": "MONTHLY"},
        "items": {
            "object": "list",
            "data": [{"id": "si_1", "current_period_start": start, "current_period_end": end}],
        },
    }


def _invoice(invoice_id: str = "in_1", amount_paid: int = 4999, payment_intent: str | None = "pi_inv_1") -> dict[str, Any]:
    return {
        "id": invoice_id,
        "object": "invoice",
        "customer": "cus_u1",
        "subscription": "sub_1",
        "amount_paid": amount_paid,
        "currency": "usd",
        "payment_intent": payment_intent,
    }


def test_tip_checkout_end_to_end(client, db, message, fake_http, monkeypatch):
    monkeypatch.setattr(settings, "ACCOUNTING_API_URL", "https://accounting.example.com/api")
    monkeypatch.setattr(settings, "ACCOUNTING_API_KEY", "acct_key")

    payload = _event(
        "checkout.session.completed",
        _checkout({"userId": "u1", "type": "tip", "messageId": "m1", "recipientId": "u2"}, 500),
    )
    r = _post(client, payload)
    assert r.status_code == 200
    assert r.json() == {"received": True}

    payments = db.exec(select(Payment)).all()
    assert len(payments) == 1
    payment = payments[0]
    assert payment.user_id == "u1"
    assert payment.amount == Decimal("5.00")
    assert payment.type == "TIP"
    assert payment.currency == "USD"
    assert payment.provider_tx_id == "pi_1"
    assert payment.payment_metadata == {"messageId": "m1", "recipientId": "u2", "provider": "STRIPE"}

    db.expire_all()
    msg = db.get(Message, "m1")
    assert msg is not None
    assert msg.total_tips == Decimal("5.00")

    tips = db.exec(select(MessagePayment)).all()
    assert len(tips) == 1
    assert tips[0].type == "TIP"
    assert tips[0].amount == Decimal("5.00")

    assert len(fake_http.calls) == 1
    call = fake_http.calls[0]
    assert call["url"] == "https://accounting.example.com/api/payments"
    assert call["headers"]["x-api-key"] == "acct_key"
    body = call["json"]
    assert body["externalId"] == str(payment.id)
    assert body["amountUsd"] == 5.0
    assert body["amountCrypto"] == 5.0
    assert body["cryptoCurrency"] == "USD"
    assert body["productType"] == "TIP"
    assert body["status"] == "COMPLETED"
    assert body["userEmail"] == "fan@example.com"
    assert body["userId"] == "u1"
    assert body["metadata"]["recipientId"] == "u2"


def test_tip_without_message_only_records_payment(client, db, users):
    payload = _event(
        "checkout.session.completed",
        _checkout({"userId": "u1", "type": "tip", "messageId": "", "recipientId": "u2"}, 1000),
    )
    r = _post(client, payload)
    assert r.status_code == 200

    payments = db.exec(select(Payment)).all()
    assert [p.amount for p in payments] == [Decimal("10.00")]
    assert db.exec(select(MessagePayment)).all() == []


def test_tip_for_unknown_message_still_records_payment(client, db, users, caplog):
    payload = _event(
        "checkout.session.completed",
        _checkout({"userId": "u1", "type": "tip", "messageId": "gone", "recipientId": "u2"}, 500),
    )
    with caplog.at_level(logging.WARNING, logger="paywall.services.entitlements"):
        r = _post(client, payload)
    assert r.status_code == 200

    payment = db.exec(select(Payment)).one()
    assert payment.type == "TIP"
    assert payment.amount == Decimal("5.00")
    assert db.exec(select(MessagePayment)).all() == []
    assert "Tip message gone not found, recording payment only" in caplog.text


def test_media_purchase_is_recorded_once(client, db, users):
    obj = _checkout({"userId": "u1", "type": "media_purchase", "mediaId": "med_1"}, 1250)

    r = _post(client, _event("checkout.session.completed", obj, event_id="evt_media_1"))
    assert r.status_code == 200

    purchases = db.exec(select(MediaPurchase)).all()
    assert len(purchases) == 1
    assert purchases[0].media_id == "med_1"
    assert purchases[0].amount == Decimal("12.50")
    payments = db.exec(select(Payment)).all()
    assert len(payments) == 1
    assert payments[0].type == "MEDIA_PURCHASE"
    assert payments[0].amount == Decimal("12.50")
    assert payments[0].payment_metadata == {"mediaId": "med_1", "provider": "STRIPE"}

    # Same event delivered again.
    r = _post(client, _event("checkout.session.completed", obj, event_id="evt_media_1"))
    assert r.status_code == 200
    assert r.json() == {"received": True, "duplicate": True}

    # Different event id for the same transaction.
    r = _post(client, _event("checkout.session.completed", obj, event_id="evt_media_2"))
    assert r.status_code == 200
    assert r.json() == {"received": True}

    assert len(db.exec(select(MediaPurchase)).all()) == 1
    assert len(db.exec(select(Payment)).all()) == 1


def test_ppv_unlock_is_idempotent(client, db, message):
    obj = _checkout({"userId": "u1", "type": "ppv_unlock", "messageId": "m1"}, 750)

    r = _post(client, _event("checkout.session.completed", obj, event_id="evt_ppv_1"))
    assert r.status_code == 200
    r = _post(client, _event("checkout.session.completed", obj, event_id="evt_ppv_2"))
    assert r.status_code == 200

    db.expire_all()
    msg = db.get(Message, "m1")
    assert msg is not None
    assert msg.ppv_unlocked_by == ["u1"]
    assert len(db.exec(select(MessagePayment)).all()) == 1
    payments = db.exec(select(Payment)).all()
    assert len(payments) == 1
    assert payments[0].type == "PPV_UNLOCK"
    assert payments[0].amount == Decimal("7.50")


def test_ppv_unlock_paid_twice_keeps_single_entry(client, db, message):
    first = _checkout({"userId": "u1", "type": "ppv_unlock", "messageId": "m1"}, 750, "pi_a")
    second = _checkout({"userId": "u1", "type": "ppv_unlock", "messageId": "m1"}, 750, "pi_b")
    assert _post(client, _event("checkout.session.completed", first, event_id="evt_a")).status_code == 200
    assert _post(client, _event("checkout.session.completed", second, event_id="evt_b")).status_code == 200

    db.expire_all()
    msg = db.get(Message, "m1")
    assert msg is not None
    assert msg.ppv_unlocked_by == ["u1"]
    assert len(db.exec(select(Payment)).all()) == 2


def test_subscription_checkout_is_deferred(client, db, users):
    obj = _checkout({"userId": "u1", "type": "subscription", "planId": "VIP"}, 4999)
    obj["mode"] = "subscription"
    r = _post(client, _event("checkout.session.completed", obj))
    assert r.status_code == 200
    assert db.exec(select(Payment)).all() == []
    assert db.exec(select(Subscription)).all() == []
    assert len(db.exec(select(WebhookEvent)).all()) == 1


def test_unresolvable_checkout_metadata_is_acknowledged(client, db, users):
    bad_type = _checkout({"userId": "u1", "type": "gift_card"}, 500)
    r = _post(client, _event("checkout.session.completed", bad_type, event_id="evt_bad_1"))
    assert r.status_code == 200
    assert r.json() == {"received": True}

    missing_message = _checkout({"userId": "u1", "type": "ppv_unlock", "messageId": "nope"}, 500)
    r = _post(client, _event("checkout.session.completed", missing_message, event_id="evt_bad_2"))
    assert r.status_code == 200

    assert db.exec(select(Payment)).all() == []
    assert db.exec(select(MessagePayment)).all() == []
    assert db.exec(select(WebhookEvent)).all() == []


def test_missing_and_invalid_signature(client, db):
    payload = _event("checkout.session.completed", _checkout({"userId": "u1", "type": "tip"}, 500))

    r = client.post(URL, content=payload, headers={"content-type": "application/json"})
    assert r.status_code == 400
    assert r.json() == {"code": 400101, "error": "Missing signature"}

    r = _post(client, payload, signature=_sign(payload, secret="whsec_other"))
    assert r.status_code == 400
    assert r.json() == {"code": 400102, "error": "Invalid signature"}

    stale = _sign(payload, ts=int(time.time()) - 3600)
    r = _post(client, payload, signature=stale)
    assert r.status_code == 400
    assert r.json()["error"] == "Invalid signature"

    assert db.exec(select(WebhookEvent)).all() == []


def test_invalid_payload(client):
    payload = json.dumps({"hello": "world"})
    r = _post(client, payload)
    assert r.status_code == 400
    assert r.json() == {"code": 400103, "error": "Invalid payload"}


def test_unknown_event_type_is_acknowledged(client, db):
    r = _post(client, _event("charge.refund.updated", {"id": "re_1"}))
    assert r.status_code == 200
    assert r.json() == {"received": True}
    events = db.exec(select(WebhookEvent)).all()
    assert [e.event_type for e in events] == ["charge.refund.updated"]


def test_handler_failure_returns_500_and_rolls_back(client, db, users, monkeypatch):
    def boom(**kwargs):  # type: ignore[no-untyped-def]
        raise RuntimeError("database is down")

    monkeypatch.setattr(entitlements, "handle_checkout_completed", boom)
    payload = _event(
        "checkout.session.completed",
        _checkout({"userId": "u1", "type": "media_purchase", "mediaId": "med_1"}, 500),
    )
    r = _post(client, payload)
    assert r.status_code == 500
    assert r.json() == {"code": 500102, "error": "Webhook handler failed"}
    # The event is not marked as processed, so the provider retry runs it again.
    assert db.exec(select(WebhookEvent)).all() == []


def test_trialing_subscription_becomes_active(client, db, users, plans):
    r = _post(client, _event("customer.subscription.updated", _subscription("trialing")))
    assert r.status_code == 200

    subs = db.exec(select(Subscription)).all()
    assert len(subs) == 1
    sub = subs[0]
    assert sub.status == "ACTIVE"
    assert sub.user_id == "u1"
    assert sub.provider_subscription_id == "sub_1"
    assert sub.payment_provider == "STRIPE"
    assert sub.billing_interval == "MONTHLY"
    vip = next(p for p in plans if p.name == "VIP")
    assert sub.plan_id == vip.id
    assert as_utc(sub.current_period_start) == datetime(2026, 1, 1, tzinfo=timezone.utc)
    assert as_utc(sub.current_period_end) == datetime(2026, 2, 1, tzinfo=timezone.utc)


def test_subscription_upsert_updates_existing_row(client, db, users, plans):
    assert _post(client, _event("customer.subscription.created", _subscription("incomplete"), "evt_s1")).status_code == 200
    sub = db.exec(select(Subscription)).one()
    assert sub.status == "PENDING"

    renewed = _subscription("past_due", end=PERIOD_END + 86400)
    assert _post(client, _event("customer.subscription.updated", renewed, "evt_s2")).status_code == 200

    db.expire_all()
    subs = db.exec(select(Subscription)).all()
    assert len(subs) == 1
    assert subs[0].status == "PAST_DUE"
    assert as_utc(subs[0].current_period_end) == datetime(2026, 2, 2, tzinfo=timezone.utc)


def test_unknown_plan_performs_no_writes(client, db, users, plans):
    obj = _subscription("active", metadata={"userId": "u1", "planId": "PLATINUM", "billingInterval": "MONTHLY"})
    r = _post(client, _event("customer.subscription.updated", obj))
    assert r.status_code == 200
    assert r.json() == {"received": True}
    assert db.exec(select(Subscription)).all() == []
    assert db.exec(select(WebhookEvent)).all() == []


def test_stale_subscription_update_is_ignored(client, db, users, plans):
    newer = _subscription("active", start=PERIOD_END, end=PERIOD_END + 31 * 86400)
    assert _post(client, _event("customer.subscription.updated", newer, "evt_new")).status_code == 200

    older = _subscription("past_due")
    assert _post(client, _event("customer.subscription.updated", older, "evt_old")).status_code == 200

    db.expire_all()
    sub = db.exec(select(Subscription)).one()
    assert sub.status == "ACTIVE"
    assert as_utc(sub.current_period_end) == datetime(2026, 3, 4, tzinfo=timezone.utc)


def test_subscription_deleted_is_terminal(client, db, users, plans):
    assert _post(client, _event("customer.subscription.created", _subscription("active"), "evt_c")).status_code == 200
    assert _post(client, _event("customer.subscription.deleted", _subscription("canceled"), "evt_d")).status_code == 200

    db.expire_all()
    sub = db.exec(select(Subscription)).one()
    assert sub.status == "CANCELED"
    assert sub.canceled_at is not None

    later = _subscription("active", end=PERIOD_END + 86400)
    assert _post(client, _event("customer.subscription.updated", later, "evt_u")).status_code == 200
    db.expire_all()
    assert db.exec(select(Subscription)).one().status == "CANCELED"


def test_subscription_deleted_before_created_stays_canceled(client, db, users, plans):
    assert _post(client, _event("customer.subscription.deleted", _subscription("canceled"), "evt_d")).status_code == 200
    assert _post(client, _event("customer.subscription.created", _subscription("active"), "evt_c")).status_code == 200

    db.expire_all()
    sub = db.exec(select(Subscription)).one()
    assert sub.provider_subscription_id == "sub_1"
    assert sub.user_id == "u1"
    assert sub.status == "CANCELED"
    assert sub.canceled_at is not None


def test_subscription_deleted_with_unknown_plan_performs_no_writes(client, db, users, plans):
    meta = {"userId": "u1", "planId": "Platinum", "billingInterval": "MONTHLY"}
    r = _post(client, _event("customer.subscription.deleted", _subscription("canceled", meta), "evt_d"))
    assert r.status_code == 200
    assert db.exec(select(Subscription)).all() == []


def test_invoice_payment_failed_marks_past_due_only(client, db, users, plans):
    assert _post(client, _event("customer.subscription.created", _subscription("active"), "evt_c")).status_code == 200
    before = db.exec(select(Subscription)).one()
    snapshot = before.model_dump(exclude={"status"})

    r = _post(client, _event("invoice.payment_failed", _invoice(), "evt_f"))
    assert r.status_code == 200

    db.expire_all()
    after = db.exec(select(Subscription)).one()
    assert after.status == "PAST_DUE"
    assert after.model_dump(exclude={"status"}) == snapshot


def test_invoice_paid_records_subscription_payment(client, db, users, plans):
    assert _post(client, _event("customer.subscription.created", _subscription("active"), "evt_c")).status_code == 200

    r = _post(client, _event("invoice.paid", _invoice(), "evt_paid"))
    assert r.status_code == 200

    payment = db.exec(select(Payment)).one()
    assert payment.type == "SUBSCRIPTION"
    assert payment.user_id == "u1"
    assert payment.amount == Decimal("49.99")
    assert payment.provider_tx_id == "pi_inv_1"
    assert payment.payment_metadata == {
        "invoiceId": "in_1",
        "subscriptionId": "sub_1",
        "provider": "STRIPE",
    }

    # Stripe also emits invoice.payment_succeeded for the same invoice.
    r = _post(client, _event("invoice.payment_succeeded", _invoice(), "evt_succeeded"))
    assert r.status_code == 200
    assert len(db.exec(select(Payment)).all()) == 1


def test_invoice_paid_falls_back_to_subscription_user(client, db, users, plans):
    assert _post(client, _event("customer.subscription.created", _subscription("active"), "evt_c")).status_code == 200
    invoice = _invoice(payment_intent=None)
    invoice["customer"] = "cus_unknown"
    invoice.pop("subscription")
    invoice["parent"] = {"subscription_details": {"subscription": "sub_1"}}

    r = _post(client, _event("invoice.paid", invoice, "evt_paid"))
    assert r.status_code == 200

    payment = db.exec(select(Payment)).one()
    assert payment.user_id == "u1"
    assert payment.provider_tx_id == "in_1"
