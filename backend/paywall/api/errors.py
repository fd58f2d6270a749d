"""
自定义异常模块

定义应用特定的异常类，用于统一的错误处理。
所有对外返回的业务异常都是 AppError，在 main.py 中有统一的异常处理器，
响应体为 {"code": <业务错误码>, "error": <错误消息>}。
"""
from __future__ import annotations


class AppError(Exception):
    """
    应用自定义异常类

    - code: 业务错误码（便于日志检索和调用方区分）
    - message: 错误消息
    - status_code: HTTP 状态码

    使用示例：
        raise AppError(code=400101, message="Missing signature", status_code=400)
    """

    def __init__(self, *, code: int, message: str, status_code: int = 400) -> None:
        super().__init__(message)
        self.code = code
        self.message = message
        self.status_code = status_code


def missing_signature() -> AppError:
    return AppError(code=400101, message="Missing signature", status_code=400)


def invalid_signature() -> AppError:
    return AppError(code=400102, message="Invalid signature", status_code=400)


def invalid_payload() -> AppError:
    return AppError(code=400103, message="Invalid payload", status_code=400)


def payment_not_found() -> AppError:
    return AppError(code=404101, message="Payment not found", status_code=404)


def provider_not_configured(provider: str) -> AppError:
    """
    支付渠道未配置

    返回 500：渠道会稍后重试投递，补上配置后事件不会丢失。
    """
    return AppError(code=500101, message=f"{provider} not configured", status_code=500)


def webhook_failed() -> AppError:
    """
    webhook 处理失败（持久化异常等）

    返回 500 让渠道重试；本次事务已回滚，重试时从头处理。
    """
    return AppError(code=500102, message="Webhook handler failed", status_code=500)
