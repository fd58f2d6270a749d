"""
支付事件类型定义

把渠道回调的原始 JSON 解析成带类型的对象：
- Purchase: checkout metadata 中按 type 区分的购买类型（判别联合）
- StripeEvent 及其 data.object 的各类对象
- NowPaymentsIpn: 加密货币支付 IPN 回调
- AccountingEntry: 同步给外部记账系统的数据

金额换算集中在 to_major_units：各渠道的最小货币单位换算比例显式登记，
不在各处用条件除法。
"""
from __future__ import annotations

from datetime import datetime, timezone
from decimal import ROUND_HALF_UP, Decimal
from typing import Annotated, Any, Literal, Union

from pydantic import (
    BaseModel,
    ConfigDict,
    Field,
    TypeAdapter,
    ValidationError,
    field_validator,
)
from pydantic.alias_generators import to_camel

from paywall.enums import BillingInterval, PaymentProvider, PaymentStatus, PaymentType

_CENT = Decimal("0.01")

# Stripe 零小数位货币：金额本身就是主货币单位
# https://docs.stripe.com/currencies#zero-decimal
STRIPE_ZERO_DECIMAL_CURRENCIES = frozenset(
    {
        "bif", "clp", "djf", "gnf", "jpy", "kmf", "krw", "mga",
        "pyg", "rwf", "ugx", "vnd", "vuv", "xaf", "xof", "xpf",
    }
)

# 各渠道上报金额的小数位数（10 的幂次）
PROVIDER_MINOR_UNIT_EXPONENT: dict[PaymentProvider, int] = {
    PaymentProvider.STRIPE: 2,
    PaymentProvider.NOWPAYMENTS: 0,
}


class UnresolvableEvent(Exception):
    """
    事件 metadata 无法解析（购买类型未知、计划不存在、消息不存在等）

    这类事件重试也不会成功：回滚本次写入、记录日志并正常应答渠道。
    """


class PaymentNotFound(LookupError):
    """IPN 回调对应的支付流水不存在"""


def to_major_units(
    amount: int | float | str | Decimal | None,
    provider: PaymentProvider,
    currency: str | None = None,
) -> Decimal:
    """
    把渠道上报的金额换算成主货币单位

    Args:
        amount: 渠道金额（Stripe 为最小货币单位整数，NOWPayments 为主货币单位）
        provider: 支付渠道
        currency: 货币代码（用于识别 Stripe 零小数位货币）

    Returns:
        保留两位小数的 Decimal
    """
    if amount is None:
        return Decimal("0.00")
    exponent = PROVIDER_MINOR_UNIT_EXPONENT[provider]
    if provider == PaymentProvider.STRIPE and (currency or "").lower() in STRIPE_ZERO_DECIMAL_CURRENCIES:
        exponent = 0
    value = Decimal(str(amount)) / (Decimal(10) ** exponent)
    return value.quantize(_CENT, rounding=ROUND_HALF_UP)


def to_minor_units(amount: Decimal, currency: str = "usd") -> int:
    """把主货币单位金额换算成 Stripe 的最小货币单位整数"""
    if currency.lower() in STRIPE_ZERO_DECIMAL_CURRENCIES:
        return int(amount.quantize(Decimal("1"), rounding=ROUND_HALF_UP))
    return int((amount * 100).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def from_timestamp(value: int | None) -> datetime | None:
    if not value:
        return None
    return datetime.fromtimestamp(int(value), tz=timezone.utc)


def _object_id(value: Any) -> Any:
    # Stripe 字段可能是 ID 字符串，也可能是展开后的对象
    if isinstance(value, dict):
        return value.get("id")
    return value


# ============================================================
# checkout metadata（购买类型判别联合）
# ============================================================


class _Metadata(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel, populate_by_name=True, extra="ignore", frozen=True
    )

    user_id: str = Field(min_length=1)

    def to_metadata(self) -> dict[str, str]:
        """序列化为渠道 metadata（驼峰键、字符串值、省略空值）"""
        data = self.model_dump(mode="json", by_alias=True, exclude_none=True)
        return {k: str(v) for k, v in data.items()}


class SubscriptionPurchase(_Metadata):
    type: Literal["subscription"] = "subscription"
    plan_id: str | None = None
    billing_interval: BillingInterval | None = None

    @field_validator("billing_interval", mode="before")
    @classmethod
    def _upper_interval(cls, v: Any) -> Any:
        return str(v).upper() if v else None


class MediaPurchaseOrder(_Metadata):
    type: Literal["media_purchase"] = "media_purchase"
    media_id: str = Field(min_length=1)


class PpvUnlock(_Metadata):
    type: Literal["ppv_unlock"] = "ppv_unlock"
    message_id: str = Field(min_length=1)


class TipPurchase(_Metadata):
    type: Literal["tip"] = "tip"
    message_id: str | None = None
    recipient_id: str | None = None

    @field_validator("message_id", "recipient_id", mode="before")
    @classmethod
    def _blank_to_none(cls, v: Any) -> Any:
        return v or None


Purchase = Annotated[
    Union[SubscriptionPurchase, MediaPurchaseOrder, PpvUnlock, TipPurchase],
    Field(discriminator="type"),
]

_PURCHASE_ADAPTER: TypeAdapter[Purchase] = TypeAdapter(Purchase)

PAYMENT_TYPES: dict[str, PaymentType] = {
    "subscription": PaymentType.SUBSCRIPTION,
    "media_purchase": PaymentType.MEDIA_PURCHASE,
    "ppv_unlock": PaymentType.PPV_UNLOCK,
    "tip": PaymentType.TIP,
}


def parse_purchase(metadata: dict[str, Any] | None) -> Purchase:
    """
    解析 checkout metadata

    Raises:
        UnresolvableEvent: 缺少 userId、购买类型未知或缺少该类型必需的字段
    """
    try:
        return _PURCHASE_ADAPTER.validate_python(metadata or {})
    except ValidationError as exc:
        raise UnresolvableEvent(
            f"Invalid checkout metadata: {exc.errors(include_url=False)}"
        ) from exc


class SubscriptionMetadata(_Metadata):
    """订阅对象上的 metadata：planId 是计划名称而不是计划 ID"""

    plan_id: str = Field(min_length=1)
    billing_interval: BillingInterval = BillingInterval.MONTHLY

    @field_validator("billing_interval", mode="before")
    @classmethod
    def _normalize_interval(cls, v: Any) -> Any:
        if not v:
            return BillingInterval.MONTHLY
        return str(v).upper()


def parse_subscription_metadata(metadata: dict[str, Any] | None) -> SubscriptionMetadata:
    try:
        return SubscriptionMetadata.model_validate(metadata or {})
    except ValidationError as exc:
        raise UnresolvableEvent(
            f"Invalid subscription metadata: {exc.errors(include_url=False)}"
        ) from exc


# ============================================================
# Stripe 对象
# ============================================================


class _StripeObject(BaseModel):
    model_config = ConfigDict(extra="ignore")

    @field_validator("metadata", mode="before", check_fields=False)
    @classmethod
    def _none_to_empty(cls, v: Any) -> Any:
        return v or {}

    @field_validator(
        "customer", "payment_intent", "subscription", mode="before", check_fields=False
    )
    @classmethod
    def _expanded_to_id(cls, v: Any) -> Any:
        return _object_id(v)


class StripeEvent(BaseModel):
    """验签通过后的 Stripe 事件信封"""

    model_config = ConfigDict(extra="ignore")

    id: str
    type: str
    created: int | None = None
    livemode: bool = False
    data: dict[str, Any]

    @property
    def data_object(self) -> dict[str, Any]:
        return self.data.get("object") or {}


class CheckoutSession(_StripeObject):
    id: str
    mode: str | None = None
    amount_total: int | None = None
    currency: str | None = None
    customer: str | None = None
    payment_intent: str | None = None
    metadata: dict[str, str] = {}

    @property
    def provider_tx_id(self) -> str:
        return self.payment_intent or self.id


class StripeSubscription(_StripeObject):
    id: str
    status: str
    customer: str | None = None
    metadata: dict[str, str] = {}
    current_period_start: int | None = None
    current_period_end: int | None = None
    items: dict[str, Any] | None = None

    def period(self) -> tuple[datetime | None, datetime | None]:
        """
        当前计费周期

        新版 Stripe API 把周期字段从订阅对象移到了订阅项上，两处都兼容。
        """
        start, end = self.current_period_start, self.current_period_end
        if start is None or end is None:
            item_list = (self.items or {}).get("data") or []
            if item_list:
                start = start or item_list[0].get("current_period_start")
                end = end or item_list[0].get("current_period_end")
        return from_timestamp(start), from_timestamp(end)


class StripeInvoice(_StripeObject):
    id: str
    customer: str | None = None
    subscription: str | None = None
    amount_paid: int = 0
    currency: str | None = "usd"
    payment_intent: str | None = None
    parent: dict[str, Any] | None = None

    @property
    def subscription_id(self) -> str | None:
        if self.subscription:
            return self.subscription
        details = (self.parent or {}).get("subscription_details") or {}
        return _object_id(details.get("subscription"))

    @property
    def provider_tx_id(self) -> str:
        return self.payment_intent or self.id


# ============================================================
# NOWPayments IPN
# ============================================================


class NowPaymentsIpn(BaseModel):
    model_config = ConfigDict(extra="ignore")

    payment_id: str
    payment_status: str
    pay_address: str | None = None
    pay_amount: Decimal | None = None
    pay_currency: str | None = None
    price_amount: Decimal | None = None
    price_currency: str | None = None
    order_id: str | None = None
    actually_paid: Decimal | None = None
    outcome_amount: Decimal | None = None
    outcome_currency: str | None = None

    @field_validator("payment_id", mode="before")
    @classmethod
    def _stringify_id(cls, v: Any) -> Any:
        return str(v) if v is not None else v


# ============================================================
# 记账系统
# ============================================================


class AccountingEntry(BaseModel):
    """同步给外部记账系统的一笔已完成支付（字段为驼峰命名）"""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    external_id: str
    amount_usd: float
    amount_crypto: float
    crypto_currency: str
    product_type: PaymentType
    product_name: str | None = None
    status: PaymentStatus = PaymentStatus.COMPLETED
    payment_date: str
    user_email: str | None = None
    user_id: str
    metadata: dict[str, Any] = {}
