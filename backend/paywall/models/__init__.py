"""
数据库模型定义模块

本模块使用 SQLModel 定义所有数据库表结构。

模型按功能拆分：
- user.py: 用户模型
- message.py: 私信消息（PPV 解锁名单、打赏累计）
- subscription.py: 订阅计划与用户订阅
- payment.py: 支付流水、媒体购买、私信付费
- webhook_event.py: 渠道回调事件记录
"""
from sqlmodel import SQLModel

from .base import as_utc, utc_now
from .message import Message
from .payment import MediaPurchase, MessagePayment, Payment
from .subscription import Subscription, SubscriptionPlan
from .user import User
from .webhook_event import WebhookEvent

__all__ = [
    "SQLModel",
    "utc_now",
    "as_utc",
    "User",
    "Message",
    "SubscriptionPlan",
    "Subscription",
    "Payment",
    "MediaPurchase",
    "MessagePayment",
    "WebhookEvent",
]
