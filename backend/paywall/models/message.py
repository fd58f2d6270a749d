"""
私信消息模型模块

只保留对账需要的字段：付费解锁（PPV）名单和累计打赏金额。
"""
from datetime import datetime
from decimal import Decimal

from sqlalchemy import JSON, Column, DateTime, ForeignKey, Numeric, String, Text
from sqlmodel import Field, SQLModel

from paywall.core.snowflake import generate_str_id

from .base import utc_now


class Message(SQLModel, table=True):
    """
    私信消息模型

    字段说明：
    - id: 主键（checkout metadata 中的 messageId）
    - conversation_id: 所属会话 ID
    - sender_id: 发送者（创作者）用户 ID
    - content: 文本内容
    - is_ppv: 是否为付费解锁消息
    - ppv_price: 解锁价格
    - ppv_unlocked_by: 已解锁用户 ID 列表（JSON 数组，不允许重复）
    - total_tips: 该消息累计收到的打赏金额
    - created_at: 创建时间
    """
    __tablename__ = "messages"
    id: str = Field(
        default_factory=generate_str_id,
        sa_column=Column(String(64), primary_key=True),
    )
    conversation_id: str | None = Field(default=None, max_length=64, index=True)
    sender_id: str = Field(
        sa_column=Column(String(64), ForeignKey("users.id", ondelete="CASCADE"), nullable=False)
    )
    content: str | None = Field(default=None, sa_column=Column(Text, nullable=True))

    is_ppv: bool = Field(default=False)
    ppv_price: Decimal | None = Field(
        default=None, sa_column=Column(Numeric(12, 2), nullable=True)
    )
    ppv_unlocked_by: list[str] = Field(
        default_factory=list, sa_column=Column(JSON, nullable=False)
    )
    total_tips: Decimal = Field(
        default=Decimal("0.00"),
        sa_column=Column(Numeric(12, 2), nullable=False),
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
