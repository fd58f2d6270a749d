"""
订阅状态同步服务

订阅状态完全由 Stripe 事件驱动：
- customer.subscription.created / updated: 按渠道订阅 ID upsert
- customer.subscription.deleted: 置为 CANCELED
- invoice.payment_failed: 置为 PAST_DUE
- invoice.paid: 记录一笔订阅支付流水

这里的写操作只暂存到会话中，由 webhook 路由统一提交。
"""
import logging

from sqlmodel import Session

from paywall import crud
from paywall.enums import (
    PaymentProvider,
    PaymentStatus,
    PaymentType,
    SubscriptionStatus,
)
from paywall.models import Subscription, SubscriptionPlan, as_utc, utc_now
from paywall.services import accounting
from paywall.services.events import (
    AccountingEntry,
    StripeInvoice,
    StripeSubscription,
    SubscriptionMetadata,
    UnresolvableEvent,
    parse_subscription_metadata,
    to_major_units,
)

logger = logging.getLogger(__name__)

# Stripe 订阅状态 -> 内部订阅状态；未登记的状态一律视为 PENDING
STRIPE_STATUS_MAP: dict[str, SubscriptionStatus] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.PAST_DUE,
    "unpaid": SubscriptionStatus.PAST_DUE,
    "canceled": SubscriptionStatus.CANCELED,
}


def map_subscription_status(status: str | None) -> SubscriptionStatus:
    return STRIPE_STATUS_MAP.get((status or "").lower(), SubscriptionStatus.PENDING)


def _resolve_subscription_owner(
    *, session: Session, subscription: StripeSubscription
) -> tuple[SubscriptionMetadata, SubscriptionPlan]:
    """解析订阅 metadata 并确认计划与用户存在"""
    metadata = parse_subscription_metadata(subscription.metadata)
    plan = crud.get_plan_by_name(session=session, name=metadata.plan_id)
    if plan is None:
        raise UnresolvableEvent(f"Subscription plan not found: {metadata.plan_id}")
    if crud.get_user(session=session, user_id=metadata.user_id) is None:
        raise UnresolvableEvent(f"User not found: {metadata.user_id}")
    return metadata, plan


def apply_subscription_update(
    *, session: Session, subscription: StripeSubscription
) -> Subscription | None:
    """
    按 Stripe 订阅对象创建或更新本地订阅

    订阅对象的 metadata 必须带 userId / planId（计划名称）/ billingInterval。
    以下情况不写入，返回 None：
    - 本地订阅已是 CANCELED（终态）
    - 事件的计费周期结束时间早于已存储的（乱序投递的旧事件）

    Args:
        session: 数据库会话
        subscription: Stripe 订阅对象

    Returns:
        写入后的订阅；跳过时返回 None

    Raises:
        UnresolvableEvent: metadata 缺失，或计划名称、用户无法解析
    """
    metadata, plan = _resolve_subscription_owner(session=session, subscription=subscription)

    status = map_subscription_status(subscription.status)
    period_start, period_end = subscription.period()
    now = utc_now()

    sub = crud.get_subscription_by_provider_id(
        session=session, provider_subscription_id=subscription.id, for_update=True
    )
    if sub is None:
        sub = Subscription(
            user_id=metadata.user_id,
            plan_id=plan.id,
            status=status,
            provider_subscription_id=subscription.id,
            payment_provider=PaymentProvider.STRIPE,
            billing_interval=metadata.billing_interval,
            current_period_start=period_start,
            current_period_end=period_end,
            canceled_at=now if status == SubscriptionStatus.CANCELED else None,
        )
        session.add(sub)
        session.flush()
        logger.info(f"Created subscription {subscription.id} for user {metadata.user_id} ({status.value})")
        return sub

    if sub.status == SubscriptionStatus.CANCELED:
        logger.warning(f"Ignoring update for canceled subscription {subscription.id}")
        return None

    stored_end = as_utc(sub.current_period_end)
    if stored_end and period_end and period_end < stored_end:
        logger.warning(
            f"Ignoring stale update for subscription {subscription.id}: "
            f"period end {period_end.isoformat()} < stored {stored_end.isoformat()}"
        )
        return None

    sub.user_id = metadata.user_id
    sub.plan_id = plan.id
    sub.status = status
    sub.billing_interval = metadata.billing_interval
    if period_start is not None:
        sub.current_period_start = period_start
    if period_end is not None:
        sub.current_period_end = period_end
    if status == SubscriptionStatus.CANCELED:
        sub.canceled_at = now
    sub.updated_at = now
    session.add(sub)
    session.flush()
    return sub


def cancel_subscription(*, session: Session, subscription: StripeSubscription) -> Subscription:
    """
    订阅被删除：置为 CANCELED 并记录取消时间

    删除事件可能先于创建事件到达。本地还没有订阅时，按 metadata 直接写入一条
    CANCELED 订阅，之后迟到的创建/更新事件会因终态被忽略。

    Returns:
        已取消的订阅

    Raises:
        UnresolvableEvent: 本地没有订阅且 metadata 无法解析
    """
    sub = crud.get_subscription_by_provider_id(
        session=session, provider_subscription_id=subscription.id, for_update=True
    )
    now = utc_now()
    if sub is None:
        metadata, plan = _resolve_subscription_owner(session=session, subscription=subscription)
        period_start, period_end = subscription.period()
        sub = Subscription(
            user_id=metadata.user_id,
            plan_id=plan.id,
            status=SubscriptionStatus.CANCELED,
            provider_subscription_id=subscription.id,
            payment_provider=PaymentProvider.STRIPE,
            billing_interval=metadata.billing_interval,
            current_period_start=period_start,
            current_period_end=period_end,
            canceled_at=now,
        )
        session.add(sub)
        session.flush()
        logger.info(f"Subscription {subscription.id} deleted before creation, stored as canceled")
        return sub
    if sub.status == SubscriptionStatus.CANCELED:
        return sub

    sub.status = SubscriptionStatus.CANCELED
    sub.canceled_at = now
    sub.updated_at = now
    session.add(sub)
    session.flush()
    return sub


def mark_past_due(*, session: Session, invoice: StripeInvoice) -> Subscription | None:
    """
    账单扣款失败：订阅置为 PAST_DUE，其它字段不变

    Returns:
        更新后的订阅；账单不属于订阅、本地没有对应订阅或订阅已取消时返回 None
    """
    subscription_id = invoice.subscription_id
    if not subscription_id:
        return None
    sub = crud.get_subscription_by_provider_id(
        session=session, provider_subscription_id=subscription_id, for_update=True
    )
    if sub is None:
        logger.info(f"Subscription {subscription_id} not found for failed invoice {invoice.id}")
        return None
    if sub.status == SubscriptionStatus.CANCELED:
        logger.warning(f"Ignoring failed invoice {invoice.id} for canceled subscription {subscription_id}")
        return None

    sub.status = SubscriptionStatus.PAST_DUE
    session.add(sub)
    session.flush()
    return sub


def record_subscription_invoice(
    *, session: Session, invoice: StripeInvoice
) -> list[AccountingEntry]:
    """
    账单支付成功：记录一笔 SUBSCRIPTION 支付流水

    用户先按 Stripe 客户 ID 查找，找不到时退回到本地订阅记录上的用户。
    同一笔交易（payment_intent，缺省时为账单 ID）只记录一次。

    Returns:
        需要同步到记账系统的数据（跳过时为空列表）
    """
    subscription_id = invoice.subscription_id
    if not subscription_id or invoice.amount_paid <= 0:
        return []

    provider_tx_id = invoice.provider_tx_id
    if crud.get_payment_by_provider_tx(
        session=session, provider=PaymentProvider.STRIPE, provider_tx_id=provider_tx_id
    ):
        logger.info(f"Invoice {invoice.id} already recorded")
        return []

    user = None
    if invoice.customer:
        user = crud.get_user_by_stripe_customer_id(session=session, customer_id=invoice.customer)
    if user is None:
        sub = crud.get_subscription_by_provider_id(
            session=session, provider_subscription_id=subscription_id
        )
        if sub is not None:
            user = crud.get_user(session=session, user_id=sub.user_id)
    if user is None:
        logger.info(f"No user found for invoice {invoice.id} (customer {invoice.customer})")
        return []

    metadata = {
        "invoiceId": invoice.id,
        "subscriptionId": subscription_id,
        "provider": PaymentProvider.STRIPE.value,
    }
    payment = crud.create_payment(
        session=session,
        user_id=user.id,
        amount=to_major_units(invoice.amount_paid, PaymentProvider.STRIPE, invoice.currency),
        currency=invoice.currency or "usd",
        provider=PaymentProvider.STRIPE,
        provider_tx_id=provider_tx_id,
        payment_type=PaymentType.SUBSCRIPTION,
        metadata=metadata,
        status=PaymentStatus.COMPLETED,
    )
    return [
        accounting.build_entry(
            session=session,
            payment=payment,
            product_name=f"Subscription {subscription_id}",
            metadata=metadata,
        )
    ]
