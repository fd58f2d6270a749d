"""
NOWPayments 加密货币支付服务

文档: https://documenter.getpostman.com/view/7907941/2s93JusNJt
IPN: 回调体按键名排序后做 HMAC-SHA512，签名放在 x-nowpayments-sig 头部
"""

import hashlib
import hmac
import json
import logging
from decimal import Decimal
from typing import Any

import httpx
from sqlmodel import Session

from paywall import crud
from paywall.core.config import settings
from paywall.core.snowflake import generate_str_id
from paywall.enums import PaymentProvider, PaymentStatus
from paywall.models import Payment
from paywall.services.events import PAYMENT_TYPES, Purchase

logger = logging.getLogger(__name__)

# 支持的加密货币
CRYPTO_CURRENCIES: list[dict[str, str]] = [
    {"id": "btc", "name": "Bitcoin", "symbol": "BTC"},
    {"id": "eth", "name": "Ethereum", "symbol": "ETH"},
    {"id": "usdttrc20", "name": "USDT (TRC20)", "symbol": "USDT"},
]

# NOWPayments 支付状态 -> 内部支付状态；未登记的状态一律视为 PENDING
PAYMENT_STATUS_MAP: dict[str, PaymentStatus] = {
    "waiting": PaymentStatus.PENDING,
    "confirming": PaymentStatus.PENDING,
    "partially_paid": PaymentStatus.PENDING,
    "confirmed": PaymentStatus.COMPLETED,
    "sending": PaymentStatus.COMPLETED,
    "finished": PaymentStatus.COMPLETED,
    "failed": PaymentStatus.FAILED,
    "expired": PaymentStatus.FAILED,
    "refunded": PaymentStatus.REFUNDED,
}


class NowPaymentsError(Exception):
    """NOWPayments API 调用失败"""


def map_payment_status(status: str | None) -> PaymentStatus:
    return PAYMENT_STATUS_MAP.get((status or "").lower(), PaymentStatus.PENDING)


def is_supported_currency(currency: str) -> bool:
    return any(c["id"] == currency for c in CRYPTO_CURRENCIES)


class NowPaymentsService:
    """NOWPayments 服务封装"""

    def __init__(self, api_key: str | None, ipn_secret: str | None, base_url: str):
        """
        初始化 NOWPayments 服务

        Args:
            api_key: NOWPayments API Key（创建支付、查询状态用）
            ipn_secret: IPN 回调签名密钥
            base_url: API 地址
        """
        self.api_key = api_key
        self.ipn_secret = ipn_secret
        self.base_url = base_url.rstrip("/")
        self.timeout = 30.0

    @property
    def headers(self) -> dict[str, str]:
        if not self.api_key:
            raise NowPaymentsError("NOWPayments API key not configured")
        return {"x-api-key": self.api_key, "Content-Type": "application/json"}

    def verify_ipn_signature(self, body: bytes, signature: str) -> bool:
        """
        验证 IPN 回调签名

        签名内容是按键名排序、无多余空白的 JSON 文本，而不是原始请求体。

        Args:
            body: 请求体原始字节
            signature: x-nowpayments-sig 头部值

        Returns:
            是否验证通过

        Raises:
            NowPaymentsError: 未配置 IPN 签名密钥
        """
        if not self.ipn_secret:
            raise NowPaymentsError("NOWPayments IPN secret not configured")
        try:
            payload = json.loads(body)
        except ValueError:
            return False
        message = json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False)
        expected = hmac.new(
            self.ipn_secret.encode(), message.encode(), hashlib.sha512
        ).hexdigest()
        return hmac.compare_digest(expected, signature.strip().lower())

    def _request(self, method: str, path: str, **kwargs: Any) -> dict[str, Any]:
        with httpx.Client(timeout=self.timeout) as client:
            response = client.request(
                method, f"{self.base_url}{path}", headers=self.headers, **kwargs
            )
        if response.status_code >= 400:
            logger.error(f"NOWPayments API error: {response.status_code} {response.text}")
            try:
                message = response.json().get("message")
            except ValueError:
                message = None
            raise NowPaymentsError(message or f"NOWPayments API error: {response.status_code}")
        return response.json()

    def create_payment(
        self,
        *,
        price_amount: Decimal,
        pay_currency: str,
        order_id: str,
        description: str | None = None,
        price_currency: str = "usd",
    ) -> dict[str, Any]:
        """
        创建加密货币支付

        Returns:
            NOWPayments 支付对象（payment_id、pay_address、pay_amount 等）
        """
        return self._request(
            "POST",
            "/payment",
            json={
                "price_amount": float(price_amount),
                "price_currency": price_currency,
                "pay_currency": pay_currency,
                "order_id": order_id,
                "order_description": description,
                "ipn_callback_url": f"{settings.APP_URL}{settings.API_V1_STR}/payments/crypto/webhook",
            },
        )

    def get_payment_status(self, payment_id: str) -> dict[str, Any]:
        return self._request("GET", f"/payment/{payment_id}")

    def get_estimated_amount(
        self, *, amount: Decimal, currency_from: str, currency_to: str
    ) -> dict[str, Any]:
        """查询按当前汇率需要支付的加密货币数量"""
        return self._request(
            "GET",
            "/estimate",
            params={
                "amount": str(amount),
                "currency_from": currency_from,
                "currency_to": currency_to,
            },
        )


def create_crypto_checkout(
    *,
    session: Session,
    service: NowPaymentsService,
    purchase: Purchase,
    price_amount: Decimal,
    pay_currency: str,
    description: str | None = None,
) -> Payment:
    """
    发起加密货币支付，并写入一笔 PENDING 支付流水

    流水以 NOWPayments 的 payment_id 作为渠道交易 ID，metadata 保存购买信息，
    之后的 IPN 回调据此完成支付并发放权益。

    Raises:
        ValueError: 不支持的加密货币
        NowPaymentsError: API 调用失败
    """
    if not is_supported_currency(pay_currency):
        raise ValueError(f"Unsupported crypto currency: {pay_currency}")

    order_id = f"{purchase.type}_{purchase.user_id}_{generate_str_id()}"
    result = service.create_payment(
        price_amount=price_amount,
        pay_currency=pay_currency,
        order_id=order_id,
        description=description,
    )
    metadata: dict[str, Any] = purchase.to_metadata()
    metadata.update(
        {
            "orderId": order_id,
            "cryptoCurrency": pay_currency,
            "payAmount": result.get("pay_amount"),
            "payAddress": result.get("pay_address"),
        }
    )
    payment = crud.create_payment(
        session=session,
        user_id=purchase.user_id,
        amount=price_amount,
        currency="usd",
        provider=PaymentProvider.NOWPAYMENTS,
        provider_tx_id=str(result["payment_id"]),
        payment_type=PAYMENT_TYPES[purchase.type],
        metadata=metadata,
        status=PaymentStatus.PENDING,
    )
    session.commit()
    session.refresh(payment)
    logger.info(f"Created crypto payment {payment.provider_tx_id} for user {purchase.user_id}")
    return payment


# 全局 NOWPayments 服务实例
_nowpayments_service: NowPaymentsService | None = None


def init_nowpayments_service(
    api_key: str | None, ipn_secret: str | None, base_url: str
) -> NowPaymentsService:
    global _nowpayments_service
    _nowpayments_service = NowPaymentsService(
        api_key=api_key, ipn_secret=ipn_secret, base_url=base_url
    )
    return _nowpayments_service


def get_nowpayments_service() -> NowPaymentsService:
    """
    获取全局 NOWPayments 服务实例（未初始化时按当前配置初始化）
    """
    if _nowpayments_service is None:
        return init_nowpayments_service(
            api_key=settings.NOWPAYMENTS_API_KEY,
            ipn_secret=settings.NOWPAYMENTS_IPN_SECRET,
            base_url=settings.NOWPAYMENTS_API_URL,
        )
    return _nowpayments_service
