"""
API 路由聚合模块

将所有业务路由模块聚合到一个统一的 router 中。
这个 router 会被注册到主应用（paywall/main.py）上。

路由模块说明：
- stripe_webhook: Stripe webhook（银行卡支付、订阅、账单）
- crypto_webhook: NOWPayments IPN 回调（加密货币支付）
- utils: 工具相关（健康检查等）
"""
from fastapi import APIRouter

from paywall.api.routes import (
    crypto_webhook,  # 加密货币支付回调
    stripe_webhook,  # Stripe 回调
    utils,  # 工具路由
)

# 创建主 API 路由器
api_router = APIRouter()

# 每个模块的路径前缀在各自的 router 中定义
api_router.include_router(stripe_webhook.router)  # /payments/stripe/*
api_router.include_router(crypto_webhook.router)  # /payments/crypto/*
api_router.include_router(utils.router)  # /utils/*
