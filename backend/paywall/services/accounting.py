"""
记账系统同步服务

支付完成后把流水同步到外部记账系统。这是旁路：
任何失败都只记录日志，不影响 webhook 自身的应答。
"""
import logging
from typing import Any

import httpx
from sqlmodel import Session
from tenacity import (
    Retrying,
    retry_if_exception_type,
    stop_after_attempt,
    wait_fixed,
)

from paywall import crud
from paywall.core.config import settings
from paywall.models import Payment, as_utc
from paywall.services.events import AccountingEntry

logger = logging.getLogger(__name__)


def build_entry(
    *,
    session: Session,
    payment: Payment,
    product_name: str | None = None,
    metadata: dict[str, Any] | None = None,
    amount_crypto: float | None = None,
    crypto_currency: str | None = None,
) -> AccountingEntry:
    """
    根据支付流水构造记账数据

    银行卡支付没有加密货币金额，amountCrypto / cryptoCurrency
    与 amountUsd / currency 相同。

    Args:
        session: 数据库会话（查询用户邮箱）
        payment: 已写入的支付流水
        product_name: 商品名称（媒体 ID、消息 ID 等）
        metadata: 业务标识
        amount_crypto: 实际支付的加密货币数量
        crypto_currency: 加密货币代码

    Returns:
        AccountingEntry
    """
    user = crud.get_user(session=session, user_id=payment.user_id)
    amount = float(payment.amount)
    return AccountingEntry(
        external_id=str(payment.id),
        amount_usd=amount,
        amount_crypto=amount if amount_crypto is None else amount_crypto,
        crypto_currency=crypto_currency or payment.currency,
        product_type=payment.type,
        product_name=product_name,
        status=payment.status,
        payment_date=as_utc(payment.created_at).isoformat(),
        user_email=user.email if user else None,
        user_id=payment.user_id,
        metadata=metadata or {},
    )


class AccountingClient:
    """记账系统 HTTP 客户端"""

    def __init__(
        self,
        base_url: str,
        api_key: str | None = None,
        *,
        timeout: float = 10.0,
        max_attempts: int = 3,
        wait_seconds: float = 1.0,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.max_attempts = max(1, max_attempts)
        self.wait_seconds = wait_seconds
        self.headers = {"Content-Type": "application/json"}
        if api_key:
            self.headers["x-api-key"] = api_key

    def send(self, entry: AccountingEntry) -> None:
        """
        同步一笔支付，网络错误和非 2xx 响应按配置重试

        Raises:
            httpx.HTTPError: 重试耗尽后仍失败
        """
        body = entry.model_dump(mode="json", by_alias=True)
        retrying = Retrying(
            stop=stop_after_attempt(self.max_attempts),
            wait=wait_fixed(self.wait_seconds),
            retry=retry_if_exception_type(httpx.HTTPError),
            reraise=True,
        )
        for attempt in retrying:
            with attempt:
                with httpx.Client(timeout=self.timeout) as client:
                    response = client.post(
                        f"{self.base_url}/payments", json=body, headers=self.headers
                    )
                    response.raise_for_status()


def get_accounting_client() -> AccountingClient | None:
    """未配置 ACCOUNTING_API_URL 时返回 None"""
    if not settings.ACCOUNTING_API_URL:
        return None
    return AccountingClient(
        settings.ACCOUNTING_API_URL,
        settings.ACCOUNTING_API_KEY,
        timeout=settings.ACCOUNTING_TIMEOUT_SECONDS,
        max_attempts=settings.ACCOUNTING_MAX_ATTEMPTS,
        wait_seconds=settings.ACCOUNTING_RETRY_WAIT_SECONDS,
    )


def forward_payments(entries: list[AccountingEntry]) -> None:
    """
    把一批支付同步到记账系统（由 BackgroundTasks 在响应后执行）

    每笔独立发送，单笔失败不影响其它。
    """
    if not entries:
        return
    client = get_accounting_client()
    if client is None:
        logger.debug(f"Accounting API not configured, skipping {len(entries)} entries")
        return
    for entry in entries:
        try:
            client.send(entry)
        except Exception as e:
            logger.error(f"Failed to send payment {entry.external_id} to accounting: {e}")
