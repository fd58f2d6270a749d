"""
支付账本模型模块

定义支付流水、媒体购买记录和私信付费记录。
"""
from datetime import datetime
from decimal import Decimal
from typing import Any

from sqlalchemy import (
    JSON,
    BigInteger,
    Column,
    DateTime,
    ForeignKey,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlmodel import Field, SQLModel

from paywall.core.snowflake import generate_id
from paywall.enums import MessagePaymentType, PaymentProvider, PaymentStatus, PaymentType

from .base import utc_now


class Payment(SQLModel, table=True):
    """
    支付流水模型

    每一笔资金变动一条记录。(provider, provider_tx_id) 唯一，
    渠道重复投递同一笔交易时不会产生重复流水。

    字段说明：
    - id: 主键（同步记账系统时作为 externalId）
    - user_id: 付款用户 ID
    - amount: 金额（主货币单位，如美元）
    - currency: 货币代码（大写）
    - status: 支付状态
    - provider: 支付渠道
    - provider_tx_id: 渠道交易 ID（Stripe payment_intent / NOWPayments payment_id）
    - type: 业务类型（订阅/媒体购买/PPV 解锁/打赏）
    - payment_metadata: 业务标识（mediaId、messageId、recipientId 等），
      对应数据库列 metadata；流水表本身不对这些实体建外键
    """
    __tablename__ = "payments"
    __table_args__ = (
        UniqueConstraint("provider", "provider_tx_id", name="uq_payments_provider_tx"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: str = Field(
        sa_column=Column(
            String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    amount: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(12, 2), nullable=False),
    )
    currency: str = Field(default="USD", max_length=8)
    status: PaymentStatus = Field(sa_column=Column(String(16), nullable=False))
    provider: PaymentProvider = Field(sa_column=Column(String(16), nullable=False))
    provider_tx_id: str | None = Field(
        default=None, sa_column=Column(String(128), index=True, nullable=True)
    )
    type: PaymentType = Field(sa_column=Column(String(16), nullable=False))
    payment_metadata: dict[str, Any] | None = Field(
        default=None, sa_column=Column("metadata", JSON, nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class MediaPurchase(SQLModel, table=True):
    """
    媒体单次购买记录模型

    每个用户对同一媒体只保留一条购买记录。

    字段说明：
    - user_id / media_id: 购买者和媒体 ID
    - amount: 成交金额
    - provider / provider_tx_id: 支付渠道和渠道交易 ID
    - status: 支付状态
    """
    __tablename__ = "media_purchases"
    __table_args__ = (
        UniqueConstraint("user_id", "media_id", name="uq_media_purchases_user_media"),
    )

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    user_id: str = Field(
        sa_column=Column(
            String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    media_id: str = Field(sa_column=Column(String(64), index=True, nullable=False))
    amount: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(12, 2), nullable=False),
    )
    provider: PaymentProvider = Field(sa_column=Column(String(16), nullable=False))
    provider_tx_id: str | None = Field(default=None, max_length=128)
    status: PaymentStatus = Field(sa_column=Column(String(16), nullable=False))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )


class MessagePayment(SQLModel, table=True):
    """
    私信付费记录模型（PPV 解锁或打赏）
    """
    __tablename__ = "message_payments"

    id: int = Field(
        default_factory=generate_id,
        sa_column=Column(BigInteger, primary_key=True, autoincrement=False),
    )
    message_id: str = Field(
        sa_column=Column(
            String(64), ForeignKey("messages.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    user_id: str = Field(
        sa_column=Column(
            String(64), ForeignKey("users.id", ondelete="CASCADE"), index=True, nullable=False
        )
    )
    type: MessagePaymentType = Field(sa_column=Column(String(16), nullable=False))
    amount: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(12, 2), nullable=False),
    )
    status: PaymentStatus = Field(sa_column=Column(String(16), nullable=False))
    provider: PaymentProvider = Field(sa_column=Column(String(16), nullable=False))

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
