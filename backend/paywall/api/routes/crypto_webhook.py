from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, Header
from pydantic import ValidationError

from paywall import crud
from paywall.api.deps import RawBodyDep, SessionDep
from paywall.api.errors import (
    invalid_payload,
    invalid_signature,
    missing_signature,
    payment_not_found,
    provider_not_configured,
    webhook_failed,
)
from paywall.api.schemas import ErrorResponse, WebhookAck
from paywall.enums import PaymentProvider
from paywall.services import accounting, reconciler
from paywall.services.events import NowPaymentsIpn, PaymentNotFound, UnresolvableEvent
from paywall.services.nowpayments_service import NowPaymentsError, get_nowpayments_service

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments/crypto", tags=["payments"])


@router.post(
    "/webhook",
    response_model=WebhookAck,
    response_model_exclude_none=True,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        500: {"model": ErrorResponse},
    },
)
def crypto_webhook(
    session: SessionDep,
    body: RawBodyDep,
    background_tasks: BackgroundTasks,
    x_nowpayments_sig: str | None = Header(default=None),
) -> WebhookAck:
    if not x_nowpayments_sig:
        raise missing_signature()

    try:
        valid = get_nowpayments_service().verify_ipn_signature(body, x_nowpayments_sig)
    except NowPaymentsError:
        logger.error("NOWPayments IPN secret not configured")
        raise provider_not_configured("NOWPayments")
    if not valid:
        logger.warning("Invalid NOWPayments IPN signature")
        raise invalid_signature()

    try:
        ipn = NowPaymentsIpn.model_validate_json(body)
    except ValidationError:
        raise invalid_payload()

    # NOWPayments 每次状态变化发送一次 IPN，状态是去重键的一部分
    event_id = f"{ipn.payment_id}:{ipn.payment_status}"
    if ipn.payment_status == "partially_paid" and ipn.actually_paid is not None:
        # 部分到账会多次回调，实际到账数量也是去重键的一部分
        event_id = f"{event_id}:{ipn.actually_paid}"
    if not crud.claim_webhook_event(
        session=session,
        provider=PaymentProvider.NOWPAYMENTS,
        event_id=event_id,
        event_type=ipn.payment_status,
        payload=ipn.model_dump(mode="json"),
    ):
        logger.info(f"Duplicate NOWPayments IPN {event_id}")
        return WebhookAck(received=True, duplicate=True)

    try:
        entries = reconciler.reconcile_crypto_ipn(session=session, ipn=ipn)
        session.commit()
    except PaymentNotFound:
        session.rollback()
        logger.error(f"Payment not found: {ipn.payment_id}")
        raise payment_not_found()
    except UnresolvableEvent as e:
        session.rollback()
        logger.warning(f"Skipping NOWPayments IPN {event_id}: {e}")
        return WebhookAck(received=True)
    except Exception:
        session.rollback()
        logger.exception(f"Crypto webhook handler failed for IPN {event_id}")
        raise webhook_failed()

    if entries:
        background_tasks.add_task(accounting.forward_payments, entries)
    return WebhookAck(received=True)
