"""
数据库连接模块

管理数据库引擎的创建和初始数据填充。

重要提示：
- 数据库表结构通过 Alembic 迁移管理，不要在这里创建表
- 确保在使用前导入所有模型（paywall.models），否则外键关系无法解析
"""
import logging
from decimal import Decimal

from sqlmodel import Session, create_engine, select

from paywall.core.config import settings
from paywall.models import SubscriptionPlan

logger = logging.getLogger(__name__)

engine = create_engine(str(settings.SQLALCHEMY_DATABASE_URI))

# 默认订阅计划目录；名称即 checkout metadata 中的 planId
DEFAULT_PLANS: list[dict] = [
    {
        "name": "Basic",
        "monthly_price": Decimal("9.99"),
        "annual_price": Decimal("95.88"),
        "features": [
            "Access to basic content library",
            "Standard resolution downloads",
            "10 downloads per month",
            "Email support",
        ],
    },
    {
        "name": "Premium",
        "monthly_price": Decimal("19.99"),
        "annual_price": Decimal("191.88"),
        "features": [
            "Full content access",
            "4K resolution downloads",
            "Unlimited downloads",
            "Direct messaging",
            "Early access to new content",
            "Priority support",
        ],
    },
    {
        "name": "VIP",
        "monthly_price": Decimal("49.99"),
        "annual_price": Decimal("479.88"),
        "features": [
            "Everything in Premium",
            "Exclusive VIP-only content",
            "Custom content requests",
            "Private video calls",
            "Behind-the-scenes access",
            "Personalized messages",
            "VIP badge on profile",
        ],
    },
]


def init_db(session: Session) -> None:
    """
    初始化数据库种子数据

    写入缺失的默认订阅计划，已存在的计划（按名称）保持不变。

    Args:
        session: 数据库会话
    """
    existing = set(session.exec(select(SubscriptionPlan.name)).all())
    created = 0
    for plan in DEFAULT_PLANS:
        if plan["name"] in existing:
            continue
        session.add(SubscriptionPlan(**plan))
        created += 1
    session.commit()
    if created:
        logger.info(f"Seeded {created} subscription plans")
