"""
基础模型模块

定义所有模型共用的工具函数。
"""
from datetime import datetime, timezone

from sqlmodel import SQLModel


def utc_now() -> datetime:
    """
    获取当前 UTC 时间

    Returns:
        带 UTC 时区的日期时间对象
    """
    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """
    把数据库读出的时间统一成带 UTC 时区的对象

    部分数据库驱动（如 SQLite）会丢掉时区信息，比较前先补上。
    """
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


__all__ = ["SQLModel", "utc_now", "as_utc"]
