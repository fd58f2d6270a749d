"""CRUD 操作模块"""
from .messages import add_unlocked_user, increment_total_tips
from .messages import get_for_update as get_message_for_update
from .payments import (
    create_media_purchase,
    create_message_payment,
    create_payment,
    get_media_purchase,
)
from .payments import get_by_provider_tx as get_payment_by_provider_tx
from .subscriptions import get_by_provider_subscription_id as get_subscription_by_provider_id
from .subscriptions import get_for_user_plan as get_subscription_for_user_plan
from .subscriptions import get_plan_by_name
from .users import get as get_user
from .users import get_by_stripe_customer_id as get_user_by_stripe_customer_id
from .users import set_stripe_customer_id
from .webhook_events import claim as claim_webhook_event

__all__ = [
    "add_unlocked_user",
    "increment_total_tips",
    "get_message_for_update",
    "create_media_purchase",
    "create_message_payment",
    "create_payment",
    "get_media_purchase",
    "get_payment_by_provider_tx",
    "get_subscription_by_provider_id",
    "get_subscription_for_user_plan",
    "get_plan_by_name",
    "get_user",
    "get_user_by_stripe_customer_id",
    "set_stripe_customer_id",
    "claim_webhook_event",
]
