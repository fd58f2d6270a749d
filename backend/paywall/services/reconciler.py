"""
支付事件分发

把验签后的渠道事件分发给对应的处理函数：
- Stripe: 按事件类型查 STRIPE_HANDLERS 分发表，未登记的类型只记录日志
- NOWPayments: 更新待支付流水的状态，首次进入 COMPLETED 时发放权益

处理函数返回需要同步到记账系统的数据，由路由在提交事务后交给后台任务发送。
"""
import logging
from collections.abc import Callable
from typing import Any

from sqlmodel import Session

from paywall import crud
from paywall.enums import PaymentProvider, PaymentStatus
from paywall.models import utc_now
from paywall.services import accounting, entitlements, subscriptions
from paywall.services.events import (
    AccountingEntry,
    CheckoutSession,
    NowPaymentsIpn,
    PaymentNotFound,
    StripeEvent,
    StripeInvoice,
    StripeSubscription,
)
from paywall.services.nowpayments_service import map_payment_status

logger = logging.getLogger(__name__)

StripeHandler = Callable[[Session, dict[str, Any]], list[AccountingEntry]]


def _on_checkout_completed(session: Session, data: dict[str, Any]) -> list[AccountingEntry]:
    return entitlements.handle_checkout_completed(
        session=session, checkout=CheckoutSession.model_validate(data)
    )


def _on_subscription_updated(session: Session, data: dict[str, Any]) -> list[AccountingEntry]:
    subscriptions.apply_subscription_update(
        session=session, subscription=StripeSubscription.model_validate(data)
    )
    return []


def _on_subscription_deleted(session: Session, data: dict[str, Any]) -> list[AccountingEntry]:
    subscriptions.cancel_subscription(
        session=session, subscription=StripeSubscription.model_validate(data)
    )
    return []


def _on_invoice_paid(session: Session, data: dict[str, Any]) -> list[AccountingEntry]:
    return subscriptions.record_subscription_invoice(
        session=session, invoice=StripeInvoice.model_validate(data)
    )


def _on_invoice_failed(session: Session, data: dict[str, Any]) -> list[AccountingEntry]:
    subscriptions.mark_past_due(session=session, invoice=StripeInvoice.model_validate(data))
    return []


STRIPE_HANDLERS: dict[str, StripeHandler] = {
    "checkout.session.completed": _on_checkout_completed,
    "customer.subscription.created": _on_subscription_updated,
    "customer.subscription.updated": _on_subscription_updated,
    "customer.subscription.deleted": _on_subscription_deleted,
    "invoice.paid": _on_invoice_paid,
    "invoice.payment_succeeded": _on_invoice_paid,
    "invoice.payment_failed": _on_invoice_failed,
}


def reconcile_stripe_event(*, session: Session, event: StripeEvent) -> list[AccountingEntry]:
    """
    处理一个 Stripe 事件

    Returns:
        需要同步到记账系统的数据

    Raises:
        UnresolvableEvent: 事件 metadata 无法解析
        pydantic.ValidationError: data.object 不符合该事件类型的结构
    """
    handler = STRIPE_HANDLERS.get(event.type)
    if handler is None:
        logger.info(f"Unhandled Stripe event type: {event.type}")
        return []
    return handler(session, event.data_object)


# 已结束的支付状态不会因为迟到的 IPN 回退到 PENDING
_SETTLED_STATUSES = {PaymentStatus.COMPLETED, PaymentStatus.FAILED, PaymentStatus.REFUNDED}


def _as_float(value: Any) -> float | None:
    return float(value) if value is not None else None


def reconcile_crypto_ipn(*, session: Session, ipn: NowPaymentsIpn) -> list[AccountingEntry]:
    """
    处理一个 NOWPayments IPN 回调

    更新流水状态并在 metadata 中记录实际到账数量；
    只有从其它状态首次进入 COMPLETED 时才按流水类型发放权益。

    Returns:
        需要同步到记账系统的数据

    Raises:
        PaymentNotFound: 找不到对应的支付流水
        UnresolvableEvent: 流水 metadata 无法还原购买信息
    """
    payment = crud.get_payment_by_provider_tx(
        session=session, provider=PaymentProvider.NOWPAYMENTS, provider_tx_id=ipn.payment_id
    )
    if payment is None:
        raise PaymentNotFound(ipn.payment_id)

    previous = PaymentStatus(payment.status)
    status = map_payment_status(ipn.payment_status)
    if previous in _SETTLED_STATUSES and status == PaymentStatus.PENDING:
        logger.warning(
            f"Ignoring {ipn.payment_status} IPN for settled payment {ipn.payment_id} ({previous.value})"
        )
        return []

    payment.status = status
    payment.payment_metadata = {
        **(payment.payment_metadata or {}),
        "actuallyPaid": _as_float(ipn.actually_paid),
        "outcomeAmount": _as_float(ipn.outcome_amount),
        "lastUpdated": utc_now().isoformat(),
    }
    payment.updated_at = utc_now()
    session.add(payment)
    session.flush()

    if status != PaymentStatus.COMPLETED or previous == PaymentStatus.COMPLETED:
        return []

    purchase = entitlements.purchase_from_payment(payment)
    entitlements.apply_purchase(
        session=session,
        purchase=purchase,
        amount=payment.amount,
        provider=PaymentProvider.NOWPAYMENTS,
        provider_tx_id=payment.provider_tx_id,
    )
    logger.info(f"Crypto payment {ipn.payment_id} completed ({payment.type})")
    return [
        accounting.build_entry(
            session=session,
            payment=payment,
            product_name=entitlements.product_name(purchase),
            metadata=entitlements.purchase_metadata(purchase, PaymentProvider.NOWPAYMENTS),
            amount_crypto=_as_float(ipn.actually_paid),
            crypto_currency=ipn.pay_currency,
        )
    ]
