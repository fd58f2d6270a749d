"""
API 请求/响应数据模型（Schema）

支付渠道的 webhook 只关心 HTTP 状态码和一个简单的确认体，
渠道事件本身的结构定义在 paywall.services.events。
"""
from __future__ import annotations

from pydantic import BaseModel


class WebhookAck(BaseModel):
    """
    Webhook 确认响应

    示例响应：
        {"received": true}
        {"received": true, "duplicate": true}  # 重复投递
    """
    received: bool = True
    duplicate: bool | None = None  # 仅重复投递时返回


class ErrorResponse(BaseModel):
    """
    错误响应格式

    示例响应：
        {"code": 400102, "error": "Invalid signature"}
    """
    code: int
    error: str
