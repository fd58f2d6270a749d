"""
枚举类型定义模块

定义支付对账中使用的所有枚举类型。
所有枚举都继承自 str 和 Enum，既可以直接写入数据库的字符串列，
也能在代码里按枚举成员比较。
"""
from enum import Enum


class PaymentStatus(str, Enum):
    """
    支付状态枚举

    - PENDING: 等待支付（加密货币支付创建后、确认前）
    - COMPLETED: 已完成
    - FAILED: 失败或过期
    - REFUNDED: 已退款
    - CANCELLED: 已取消
    """
    PENDING = "PENDING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"
    REFUNDED = "REFUNDED"
    CANCELLED = "CANCELLED"


class PaymentProvider(str, Enum):
    """
    支付渠道枚举

    - STRIPE: 银行卡支付（金额以最小货币单位上报，如美分）
    - NOWPAYMENTS: 加密货币支付（金额以主货币单位上报）
    """
    STRIPE = "STRIPE"
    NOWPAYMENTS = "NOWPAYMENTS"


class PaymentType(str, Enum):
    """
    支付类型枚举（账本记录的业务类型）
    """
    SUBSCRIPTION = "SUBSCRIPTION"
    MEDIA_PURCHASE = "MEDIA_PURCHASE"
    PPV_UNLOCK = "PPV_UNLOCK"
    TIP = "TIP"


class SubscriptionStatus(str, Enum):
    """
    订阅状态枚举

    状态流转完全由支付渠道的事件驱动：
    PENDING -> ACTIVE -> PAST_DUE -> CANCELED（终态）
    """
    ACTIVE = "ACTIVE"
    PAST_DUE = "PAST_DUE"
    CANCELED = "CANCELED"
    PENDING = "PENDING"


class BillingInterval(str, Enum):
    """
    计费周期枚举
    """
    MONTHLY = "MONTHLY"
    ANNUAL = "ANNUAL"


class MessagePaymentType(str, Enum):
    """
    私信付费类型枚举

    - PPV_UNLOCK: 付费解锁消息
    - TIP: 打赏
    """
    PPV_UNLOCK = "PPV_UNLOCK"
    TIP = "TIP"

