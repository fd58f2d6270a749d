"""
用户模型模块

对账逻辑只读取用户：查询邮箱（同步记账系统）以及
通过 Stripe 客户 ID 反查内部用户（订阅账单回调）。
"""
from datetime import datetime

from sqlalchemy import Column, DateTime, String
from sqlmodel import Field, SQLModel

from paywall.core.snowflake import generate_str_id

from .base import utc_now


class User(SQLModel, table=True):
    """
    用户模型

    字段说明：
    - id: 主键（字符串，checkout metadata 中的 userId 即此值）
    - email: 邮箱
    - stripe_customer_id: Stripe 客户 ID（唯一）
    - created_at / updated_at: 创建、更新时间
    """
    __tablename__ = "users"
    id: str = Field(
        default_factory=generate_str_id,
        sa_column=Column(String(64), primary_key=True),
    )
    email: str | None = Field(
        default=None, sa_column=Column(String(255), unique=True, index=True, nullable=True)
    )
    name: str | None = Field(default=None, max_length=128)
    stripe_customer_id: str | None = Field(
        default=None, sa_column=Column(String(64), unique=True, index=True, nullable=True)
    )

    created_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
    updated_at: datetime = Field(
        default_factory=utc_now,
        sa_column=Column(DateTime(timezone=True), nullable=False),
    )
