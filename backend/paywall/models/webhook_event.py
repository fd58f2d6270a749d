"""
Webhook 事件模型模块

定义已处理的支付渠道回调事件记录。
"""
from datetime import datetime

from sqlalchemy import JSON, BigInteger, Column, DateTime, String, UniqueConstraint
from sqlmodel import Field, SQLModel

from paywall.core.snowflake import generate_id
from paywall.enums import PaymentProvider

from .base import utc_now


class WebhookEvent(SQLModel, table=True):
    """
    Webhook 事件记录模型

    存储所有已接收的渠道回调，用于去重和审计。
    渠道重试会使用相同的事件 ID，(provider, event_id) 唯一即可挡住重复投递。
    与该事件产生的业务写入在同一个事务中提交。

    字段说明：
    - provider: 支付渠道
    - event_id: 渠道事件 ID（Stripe evt_...；NOWPayments 为 payment_id:status）
    - event_type: 事件类型
    - payload: 事件原始数据
    - created_at: 接收时间
    """
    __tablename__ = "webhook_events"
    __table_args__ = (
        UniqueConstraint("provider", "event_id", name="uq_webhook_events_provider_event"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    provider: PaymentProvider = Field(sa_column=Column(String(16), nullable=False))
    event_id: str = Field(sa_column=Column(String(128), index=True, nullable=False))
    event_type: str = Field(max_length=64)
    payload: dict | None = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
