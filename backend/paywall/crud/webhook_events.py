"""Webhook 事件 CRUD 操作"""
from typing import Any

from sqlalchemy.exc import IntegrityError
from sqlmodel import Session

from paywall.enums import PaymentProvider
from paywall.models import WebhookEvent


def claim(
    *,
    session: Session,
    provider: PaymentProvider,
    event_id: str,
    event_type: str,
    payload: dict[str, Any] | None,
) -> bool:
    """
    登记一个待处理事件

    写入后只 flush 不提交，与后续业务写入在同一事务中提交；
    事务回滚时登记一并撤销，渠道重试可以重新处理。

    Returns:
        True 表示首次收到；False 表示重复投递（已回滚当前事务）
    """
    try:
        session.add(
            WebhookEvent(
                provider=provider,
                event_id=event_id,
                event_type=event_type,
                payload=payload,
            )
        )
        session.flush()
    except IntegrityError:
        session.rollback()
        return False
    return True
