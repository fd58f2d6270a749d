"""
FastAPI 依赖注入模块

提供可复用的依赖项：
- 数据库会话（请求结束自动关闭）
- 原始请求体（webhook 签名必须基于未经解析的原始字节计算）
"""
from collections.abc import Generator
from typing import Annotated

from fastapi import Depends, Request
from sqlmodel import Session

from paywall.core.db import engine


def get_db() -> Generator[Session, None, None]:
    """
    获取数据库会话（依赖注入）

    使用 yield 确保会话在请求结束后自动关闭。
    """
    with Session(engine) as session:
        yield session


async def get_raw_body(request: Request) -> bytes:
    """读取原始请求体，供同步路由验证签名使用"""
    return await request.body()


SessionDep = Annotated[Session, Depends(get_db)]
RawBodyDep = Annotated[bytes, Depends(get_raw_body)]
