"""私信消息 CRUD 操作"""
import json
from decimal import Decimal

from sqlalchemy import update
from sqlmodel import Session, select

from paywall.models import Message


def _parse_unlocked(value: list[str] | str | None) -> list[str]:
    # 旧数据以 JSON 文本存储
    if value is None:
        return []
    if isinstance(value, str):
        return list(json.loads(value or "[]"))
    return list(value)


def get_for_update(*, session: Session, message_id: str) -> Message | None:
    """加行锁读取消息，保证解锁名单的读-改-写不会被并发投递覆盖"""
    statement = select(Message).where(Message.id == message_id).with_for_update()
    return session.exec(statement).first()


def add_unlocked_user(*, session: Session, message: Message, user_id: str) -> bool:
    """
    把用户加入消息的解锁名单（集合语义）

    调用方需先通过 get_for_update 取得消息。

    Returns:
        True 表示本次新加入；False 表示名单中已存在
    """
    unlocked = _parse_unlocked(message.ppv_unlocked_by)
    if user_id in unlocked:
        return False
    # 重新赋值而不是原地 append，JSON 列才会被标记为已修改
    message.ppv_unlocked_by = [*unlocked, user_id]
    session.add(message)
    session.flush()
    return True


def increment_total_tips(*, session: Session, message_id: str, amount: Decimal) -> int:
    """
    在数据库端原子累加消息的打赏金额

    Returns:
        受影响的行数（0 表示消息不存在）
    """
    statement = (
        update(Message)
        .where(Message.id == message_id)
        .values(total_tips=Message.total_tips + amount)
        .execution_options(synchronize_session=False)
    )
    result = session.exec(statement)  # type: ignore[call-overload]
    return result.rowcount
