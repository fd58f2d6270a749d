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
    provider_not_configured,
    webhook_failed,
)
from paywall.api.schemas import ErrorResponse, WebhookAck
from paywall.enums import PaymentProvider
from paywall.services import accounting, reconciler
from paywall.services.events import UnresolvableEvent
from paywall.services.stripe_service import (
    StripeConfigError,
    WebhookPayloadError,
    WebhookSignatureError,
    get_stripe_service,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/payments/stripe", tags=["payments"])


@router.post(
    "/webhook",
    response_model=WebhookAck,
    response_model_exclude_none=True,
    responses={400: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
def stripe_webhook(
    session: SessionDep,
    body: RawBodyDep,
    background_tasks: BackgroundTasks,
    stripe_signature: str | None = Header(default=None),
) -> WebhookAck:
    if not stripe_signature:
        raise missing_signature()

    try:
        event = get_stripe_service().verify_webhook(body, stripe_signature)
    except StripeConfigError:
        logger.error("Stripe webhook secret not configured")
        raise provider_not_configured("Stripe")
    except WebhookSignatureError as e:
        logger.warning(f"Stripe webhook signature verification failed: {e}")
        raise invalid_signature()
    except WebhookPayloadError:
        raise invalid_payload()

    # 幂等：Stripe 重试投递使用相同的 event.id
    if not crud.claim_webhook_event(
        session=session,
        provider=PaymentProvider.STRIPE,
        event_id=event.id,
        event_type=event.type,
        payload=event.model_dump(mode="json"),
    ):
        logger.info(f"Duplicate Stripe event {event.id}")
        return WebhookAck(received=True, duplicate=True)

    try:
        entries = reconciler.reconcile_stripe_event(session=session, event=event)
        session.commit()
    except (UnresolvableEvent, ValidationError) as e:
        # 重试也无法成功：回滚全部写入并正常应答
        session.rollback()
        logger.warning(f"Skipping Stripe event {event.id} ({event.type}): {e}")
        return WebhookAck(received=True)
    except Exception:
        session.rollback()
        logger.exception(f"Stripe webhook handler failed for event {event.id}")
        raise webhook_failed()

    if entries:
        background_tasks.add_task(accounting.forward_payments, entries)
    return WebhookAck(received=True)
