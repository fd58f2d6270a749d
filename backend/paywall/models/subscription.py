"""
订阅模型模块

定义订阅计划目录和用户订阅记录。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, BigInteger, Column, DateTime, ForeignKey, Numeric, String
from sqlmodel import Field, SQLModel

from paywall.core.snowflake import generate_id, generate_str_id
from paywall.enums import BillingInterval, PaymentProvider, SubscriptionStatus

from .base import utc_now


class SubscriptionPlan(SQLModel, table=True):
    """
    订阅计划模型

    webhook metadata 中的 planId 实际上是计划名称（如 "VIP"），
    按名称（不区分大小写）解析到这里的记录。

    字段说明：
    - id: 主键
    - name: 计划名称（唯一）
    - monthly_price / annual_price: 月付、年付价格
    - features: 权益说明列表
    - is_active: 是否仍在售
    """
    __tablename__ = "subscription_plans"
    id: str = Field(
        default_factory=generate_str_id,
        sa_column=Column(String(64), primary_key=True),
    )
    name: str = Field(sa_column=Column(String(64), unique=True, index=True, nullable=False))
    description: str | None = Field(default=None, max_length=255)
    monthly_price: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    annual_price: Decimal = Field(sa_column=Column(Numeric(12, 2), nullable=False))
    features: list[str] = Field(default_factory=list, sa_column=Column(JSON, nullable=False))
    is_active: bool = Field(default=True)


class Subscription(SQLModel, table=True):
    """
    用户订阅模型

    Stripe 订阅以 provider_subscription_id 为 upsert 键；
    加密货币订阅没有渠道订阅 ID，按 (user_id, plan_id, payment_provider) 定位。

    字段说明：
    - id: 主键
    - user_id: 用户 ID（外键）
    - plan_id: 订阅计划 ID（外键）
    - status: 订阅状态（PENDING/ACTIVE/PAST_DUE/CANCELED）
    - provider_subscription_id: 渠道订阅 ID（唯一）
    - payment_provider: 支付渠道
    - billing_interval: 计费周期
    - current_period_start / current_period_end: 当前计费周期
    - canceled_at: 取消时间
    """
    __tablename__ = "subscriptions"
    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: str = Field(
        sa_column=Column(
            String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    plan_id: str = Field(
        sa_column=Column(String(64), ForeignKey("subscription_plans.id"), nullable=False)
    )

    status: SubscriptionStatus = Field(sa_column=Column(String(16), nullable=False))
    provider_subscription_id: str | None = Field(
        default=None, sa_column=Column(String(128), unique=True, index=True, nullable=True)
    )
    payment_provider: PaymentProvider = Field(sa_column=Column(String(16), nullable=False))
    billing_interval: BillingInterval = Field(
        default=BillingInterval.MONTHLY, sa_column=Column(String(16), nullable=False)
    )

    current_period_start: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    current_period_end: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )
    canceled_at: datetime | None = Field(
        default=None, sa_column=Column(DateTime(timezone=True), nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
