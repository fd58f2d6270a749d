"""
Stripe 支付服务

文档: https://docs.stripe.com/api
Webhook: https://docs.stripe.com/webhooks#verify-events

- 验证 webhook 签名并解析成带类型的事件
- 创建客户、订阅结账、单次支付结账和账单管理入口
"""

import logging
from decimal import Decimal
from typing import Any

import stripe
from pydantic import ValidationError
from sqlmodel import Session

from paywall import crud
from paywall.core.config import settings
from paywall.enums import BillingInterval
from paywall.models import User
from paywall.services.events import (
    MediaPurchaseOrder,
    PpvUnlock,
    StripeEvent,
    SubscriptionPurchase,
    TipPurchase,
    to_minor_units,
)

logger = logging.getLogger(__name__)

# 订阅结账的免费试用天数
TRIAL_PERIOD_DAYS = 7


class StripeConfigError(Exception):
    """Stripe 未配置（API 密钥或 webhook 签名密钥缺失）"""


class WebhookSignatureError(Exception):
    """webhook 签名校验失败"""


class WebhookPayloadError(Exception):
    """webhook 请求体不是合法的 Stripe 事件"""


class StripeService:
    """Stripe 服务封装"""

    def __init__(
        self,
        api_key: str | None,
        webhook_secret: str | None,
        tolerance: int = 300,
    ):
        """
        初始化 Stripe 服务

        Args:
            api_key: Stripe API 密钥
            webhook_secret: webhook 签名密钥（whsec_...）
            tolerance: 签名时间戳允许的最大偏差（秒）
        """
        self.api_key = api_key
        self.webhook_secret = webhook_secret
        self.tolerance = tolerance

    def _require_api_key(self) -> str:
        if not self.api_key:
            raise StripeConfigError("Stripe API key not configured")
        return self.api_key

    def verify_webhook(self, payload: bytes, signature: str) -> StripeEvent:
        """
        验证 webhook 签名并解析事件

        签名必须基于原始请求体计算，解析前先验签。

        Args:
            payload: 请求体原始字节
            signature: stripe-signature 头部值

        Returns:
            StripeEvent

        Raises:
            StripeConfigError: 未配置 webhook 签名密钥
            WebhookSignatureError: 签名不匹配或时间戳超出允许范围
            WebhookPayloadError: 请求体不是合法的 Stripe 事件
        """
        if not self.webhook_secret:
            raise StripeConfigError("Stripe webhook secret not configured")
        try:
            body = payload.decode("utf-8")
        except UnicodeDecodeError as e:
            raise WebhookPayloadError("Payload is not valid UTF-8") from e
        try:
            stripe.WebhookSignature.verify_header(
                body, signature, self.webhook_secret, self.tolerance
            )
        except stripe.SignatureVerificationError as e:
            raise WebhookSignatureError(str(e)) from e
        try:
            return StripeEvent.model_validate_json(body)
        except ValidationError as e:
            raise WebhookPayloadError(str(e)) from e

    def get_or_create_customer(self, *, session: Session, user: User) -> str:
        """
        获取用户的 Stripe 客户 ID，没有则创建并保存

        Returns:
            Stripe 客户 ID
        """
        if user.stripe_customer_id:
            return user.stripe_customer_id
        customer = stripe.Customer.create(
            api_key=self._require_api_key(),
            email=user.email,
            metadata={"userId": user.id},
        )
        crud.set_stripe_customer_id(session=session, user=user, customer_id=customer["id"])
        logger.info(f"Created Stripe customer {customer['id']} for user {user.id}")
        return customer["id"]

    def create_subscription_checkout(
        self,
        *,
        customer_id: str,
        price_id: str,
        user_id: str,
        plan_name: str,
        billing_interval: BillingInterval,
    ) -> Any:
        """
        创建订阅结账会话（带免费试用）

        结账会话的 metadata 用于 checkout.session.completed；
        订阅对象的 metadata 用于后续的订阅事件（planId 为计划名称）。
        """
        purchase = SubscriptionPurchase(user_id=user_id, plan_id=plan_name)
        return stripe.checkout.Session.create(
            api_key=self._require_api_key(),
            mode="subscription",
            customer=customer_id,
            line_items=[{"price": price_id, "quantity": 1}],
            success_url=f"{settings.APP_URL}/dashboard/subscription?success=true",
            cancel_url=f"{settings.APP_URL}/membership?canceled=true",
            subscription_data={
                "trial_period_days": TRIAL_PERIOD_DAYS,
                "metadata": {
                    "userId": user_id,
                    "planId": plan_name,
                    "billingInterval": billing_interval.value,
                },
            },
            metadata=purchase.to_metadata(),
        )

    def create_payment_checkout(
        self,
        *,
        customer_id: str,
        amount: Decimal,
        product_name: str,
        purchase: MediaPurchaseOrder | PpvUnlock | TipPurchase,
        currency: str = "usd",
    ) -> Any:
        """
        创建单次支付结账会话（媒体购买、PPV 解锁、打赏）

        Args:
            customer_id: Stripe 客户 ID
            amount: 主货币单位金额
            product_name: 结账页展示的商品名称
            purchase: 购买信息，序列化为结账会话 metadata
            currency: 货币代码
        """
        return stripe.checkout.Session.create(
            api_key=self._require_api_key(),
            mode="payment",
            customer=customer_id,
            line_items=[
                {
                    "price_data": {
                        "currency": currency,
                        "product_data": {"name": product_name},
                        "unit_amount": to_minor_units(amount, currency),
                    },
                    "quantity": 1,
                }
            ],
            success_url=f"{settings.APP_URL}/dashboard?payment=success",
            cancel_url=f"{settings.APP_URL}/dashboard?payment=canceled",
            metadata=purchase.to_metadata(),
        )

    def create_portal_session(self, customer_id: str) -> Any:
        """创建账单管理入口（用户自助修改支付方式、取消订阅）"""
        return stripe.billing_portal.Session.create(
            api_key=self._require_api_key(),
            customer=customer_id,
            return_url=f"{settings.APP_URL}/dashboard/billing",
        )


# 全局 Stripe 服务实例
_stripe_service: StripeService | None = None


def init_stripe_service(
    api_key: str | None, webhook_secret: str | None, tolerance: int = 300
) -> StripeService:
    """
    初始化全局 Stripe 服务

    Returns:
        Stripe 服务实例
    """
    global _stripe_service
    _stripe_service = StripeService(
        api_key=api_key, webhook_secret=webhook_secret, tolerance=tolerance
    )
    return _stripe_service


def get_stripe_service() -> StripeService:
    """
    获取全局 Stripe 服务实例（未初始化时按当前配置初始化）
    """
    if _stripe_service is None:
        return init_stripe_service(
            api_key=settings.STRIPE_SECRET_KEY,
            webhook_secret=settings.STRIPE_WEBHOOK_SECRET,
            tolerance=settings.STRIPE_WEBHOOK_TOLERANCE_SECONDS,
        )
    return _stripe_service
