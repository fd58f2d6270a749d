"""订阅 CRUD 操作"""
from sqlmodel import Session, func, select

from paywall.enums import PaymentProvider
from paywall.models import Subscription, SubscriptionPlan


def get_plan_by_name(*, session: Session, name: str) -> SubscriptionPlan | None:
    """按名称（不区分大小写）查询订阅计划"""
    statement = select(SubscriptionPlan).where(
        func.lower(SubscriptionPlan.name) == name.strip().lower()
    )
    return session.exec(statement).first()


def get_by_provider_subscription_id(
    *, session: Session, provider_subscription_id: str, for_update: bool = False
) -> Subscription | None:
    statement = select(Subscription).where(
        Subscription.provider_subscription_id == provider_subscription_id
    )
    if for_update:
        statement = statement.with_for_update()
    return session.exec(statement).first()


def get_for_user_plan(
    *, session: Session, user_id: str, plan_id: str, provider: PaymentProvider
) -> Subscription | None:
    """查询用户在某渠道下某个计划的订阅（加密货币订阅没有渠道订阅 ID）"""
    statement = select(Subscription).where(
        Subscription.user_id == user_id,
        Subscription.plan_id == plan_id,
        Subscription.payment_provider == provider,
    )
    return session.exec(statement).first()
