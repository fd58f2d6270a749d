"""
权益发放服务

支付完成后按购买类型写入对应的权益记录：
- media_purchase: 媒体购买记录
- ppv_unlock: 把用户加入消息的解锁名单 + 私信付费记录
- tip: 私信付费记录 + 消息累计打赏金额
- subscription: Stripe 订阅由订阅事件处理；加密货币订阅在这里直接激活

每种类型的所有写入都只暂存在同一个会话中，由 webhook 路由一次性提交，
任何一步失败整笔回滚，不会出现只有流水没有权益（或反之）的情况。
"""
import calendar
import logging
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlmodel import Session

from paywall import crud
from paywall.enums import (
    BillingInterval,
    MessagePaymentType,
    PaymentProvider,
    PaymentStatus,
    PaymentType,
    SubscriptionStatus,
)
from paywall.models import Payment, Subscription, utc_now
from paywall.services import accounting
from paywall.services.events import (
    PAYMENT_TYPES,
    AccountingEntry,
    CheckoutSession,
    MediaPurchaseOrder,
    PpvUnlock,
    Purchase,
    SubscriptionPurchase,
    TipPurchase,
    UnresolvableEvent,
    parse_purchase,
    to_major_units,
)

logger = logging.getLogger(__name__)


def _add_months(value: datetime, months: int) -> datetime:
    """按自然月累加，月末对齐（1 月 31 日 + 1 个月 = 2 月最后一天）"""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def purchase_metadata(purchase: Purchase, provider: PaymentProvider) -> dict[str, Any]:
    """支付流水 metadata：只记录业务标识和渠道，便于事后追溯"""
    data: dict[str, Any] = {}
    if isinstance(purchase, MediaPurchaseOrder):
        data["mediaId"] = purchase.media_id
    elif isinstance(purchase, PpvUnlock):
        data["messageId"] = purchase.message_id
    elif isinstance(purchase, TipPurchase):
        data["messageId"] = purchase.message_id
        data["recipientId"] = purchase.recipient_id
    elif isinstance(purchase, SubscriptionPurchase):
        data["planId"] = purchase.plan_id
        if purchase.billing_interval is not None:
            data["billingInterval"] = purchase.billing_interval.value
    data["provider"] = provider.value
    return data


def product_name(purchase: Purchase) -> str | None:
    if isinstance(purchase, MediaPurchaseOrder):
        return purchase.media_id
    if isinstance(purchase, PpvUnlock):
        return purchase.message_id
    if isinstance(purchase, SubscriptionPurchase):
        return purchase.plan_id
    return None


def grant_media_purchase(
    *,
    session: Session,
    user_id: str,
    media_id: str,
    amount: Decimal,
    provider: PaymentProvider,
    provider_tx_id: str | None,
) -> bool:
    """
    写入媒体购买记录

    Returns:
        True 表示新写入；False 表示该用户已购买过此媒体
    """
    if crud.get_media_purchase(session=session, user_id=user_id, media_id=media_id):
        logger.info(f"Media {media_id} already purchased by user {user_id}")
        return False
    crud.create_media_purchase(
        session=session,
        user_id=user_id,
        media_id=media_id,
        amount=amount,
        provider=provider,
        provider_tx_id=provider_tx_id,
    )
    return True


def grant_ppv_unlock(
    *,
    session: Session,
    user_id: str,
    message_id: str,
    amount: Decimal,
    provider: PaymentProvider,
) -> bool:
    """
    解锁付费消息

    消息行加锁后再做集合式追加，并发投递不会互相覆盖解锁名单。

    Returns:
        True 表示用户本次新加入解锁名单

    Raises:
        UnresolvableEvent: 消息不存在
    """
    message = crud.get_message_for_update(session=session, message_id=message_id)
    if message is None:
        raise UnresolvableEvent(f"Message not found: {message_id}")
    added = crud.add_unlocked_user(session=session, message=message, user_id=user_id)
    crud.create_message_payment(
        session=session,
        message_id=message_id,
        user_id=user_id,
        payment_type=MessagePaymentType.PPV_UNLOCK,
        amount=amount,
        provider=provider,
    )
    return added


def grant_tip(
    *,
    session: Session,
    user_id: str,
    message_id: str | None,
    amount: Decimal,
    provider: PaymentProvider,
) -> None:
    """
    记录打赏：关联了消息时写私信付费记录并累加消息的打赏金额

    消息关联是可选的；消息不存在时只记日志，支付流水仍由调用方写入。
    """
    if not message_id:
        return
    updated = crud.increment_total_tips(session=session, message_id=message_id, amount=amount)
    if not updated:
        logger.warning(f"Tip message {message_id} not found, recording payment only")
        return
    crud.create_message_payment(
        session=session,
        message_id=message_id,
        user_id=user_id,
        payment_type=MessagePaymentType.TIP,
        amount=amount,
        provider=provider,
    )


def activate_crypto_subscription(
    *, session: Session, purchase: SubscriptionPurchase
) -> Subscription:
    """
    加密货币订阅付款完成：激活（或续期）订阅

    加密货币没有渠道订阅 ID，按 (user_id, plan_id, NOWPAYMENTS) 定位，
    计费周期从现在起算一个月或一年。

    Raises:
        UnresolvableEvent: 缺少计划名称或计划不存在
    """
    if not purchase.plan_id:
        raise UnresolvableEvent("Missing planId for subscription payment")
    plan = crud.get_plan_by_name(session=session, name=purchase.plan_id)
    if plan is None:
        raise UnresolvableEvent(f"Subscription plan not found: {purchase.plan_id}")

    interval = purchase.billing_interval or BillingInterval.MONTHLY
    now = utc_now()
    period_end = _add_months(now, 12 if interval == BillingInterval.ANNUAL else 1)

    sub = crud.get_subscription_for_user_plan(
        session=session,
        user_id=purchase.user_id,
        plan_id=plan.id,
        provider=PaymentProvider.NOWPAYMENTS,
    )
    if sub is None:
        sub = Subscription(
            user_id=purchase.user_id,
            plan_id=plan.id,
            status=SubscriptionStatus.ACTIVE,
            payment_provider=PaymentProvider.NOWPAYMENTS,
            billing_interval=interval,
        )
    sub.status = SubscriptionStatus.ACTIVE
    sub.billing_interval = interval
    sub.current_period_start = now
    sub.current_period_end = period_end
    sub.canceled_at = None
    sub.updated_at = now
    session.add(sub)
    session.flush()
    logger.info(
        f"Activated crypto subscription for user {purchase.user_id}, "
        f"plan {plan.name} until {period_end.isoformat()}"
    )
    return sub


def apply_purchase(
    *,
    session: Session,
    purchase: Purchase,
    amount: Decimal,
    provider: PaymentProvider,
    provider_tx_id: str | None,
) -> None:
    """按购买类型发放权益（不写支付流水）"""
    if isinstance(purchase, MediaPurchaseOrder):
        grant_media_purchase(
            session=session,
            user_id=purchase.user_id,
            media_id=purchase.media_id,
            amount=amount,
            provider=provider,
            provider_tx_id=provider_tx_id,
        )
    elif isinstance(purchase, PpvUnlock):
        grant_ppv_unlock(
            session=session,
            user_id=purchase.user_id,
            message_id=purchase.message_id,
            amount=amount,
            provider=provider,
        )
    elif isinstance(purchase, TipPurchase):
        grant_tip(
            session=session,
            user_id=purchase.user_id,
            message_id=purchase.message_id,
            amount=amount,
            provider=provider,
        )
    elif isinstance(purchase, SubscriptionPurchase):
        activate_crypto_subscription(session=session, purchase=purchase)


def record_payment(
    *,
    session: Session,
    purchase: Purchase,
    amount: Decimal,
    currency: str,
    provider: PaymentProvider,
    provider_tx_id: str | None,
) -> Payment:
    """写入一笔已完成的支付流水"""
    return crud.create_payment(
        session=session,
        user_id=purchase.user_id,
        amount=amount,
        currency=currency,
        provider=provider,
        provider_tx_id=provider_tx_id,
        payment_type=PAYMENT_TYPES[purchase.type],
        metadata=purchase_metadata(purchase, provider),
        status=PaymentStatus.COMPLETED,
    )


def handle_checkout_completed(
    *, session: Session, checkout: CheckoutSession
) -> list[AccountingEntry]:
    """
    处理 Stripe checkout.session.completed

    订阅类型在这里什么也不做：结账完成时订阅的计费周期还没有确定，
    交给随后的 customer.subscription.created 事件处理。
    其它类型发放权益并写支付流水；同一笔交易已有流水时整段跳过。

    Returns:
        需要同步到记账系统的数据

    Raises:
        UnresolvableEvent: metadata 无法解析、用户或消息不存在
    """
    purchase = parse_purchase(checkout.metadata)
    if isinstance(purchase, SubscriptionPurchase):
        logger.debug(f"Checkout {checkout.id} is a subscription, waiting for subscription event")
        return []

    provider = PaymentProvider.STRIPE
    provider_tx_id = checkout.provider_tx_id
    if crud.get_payment_by_provider_tx(
        session=session, provider=provider, provider_tx_id=provider_tx_id
    ):
        logger.info(f"Checkout {checkout.id} already recorded (tx {provider_tx_id})")
        return []
    if crud.get_user(session=session, user_id=purchase.user_id) is None:
        raise UnresolvableEvent(f"User not found: {purchase.user_id}")

    amount = to_major_units(checkout.amount_total, provider, checkout.currency)
    apply_purchase(
        session=session,
        purchase=purchase,
        amount=amount,
        provider=provider,
        provider_tx_id=provider_tx_id,
    )
    payment = record_payment(
        session=session,
        purchase=purchase,
        amount=amount,
        currency=checkout.currency or "usd",
        provider=provider,
        provider_tx_id=provider_tx_id,
    )
    return [
        accounting.build_entry(
            session=session,
            payment=payment,
            product_name=product_name(purchase),
            metadata=payment.payment_metadata,
        )
    ]


def purchase_from_payment(payment: Payment) -> Purchase:
    """
    从待支付流水还原购买信息（加密货币支付创建时把 metadata 存在流水上）

    购买类型以流水的 type 为准。

    Raises:
        UnresolvableEvent: metadata 缺少该类型必需的字段
    """
    tags = {payment_type: tag for tag, payment_type in PAYMENT_TYPES.items()}
    data = dict(payment.payment_metadata or {})
    data["userId"] = payment.user_id
    data["type"] = tags[PaymentType(payment.type)]
    return parse_purchase(data)
