"""支付账本 CRUD 操作

这里的写操作只暂存到会话中，由 webhook 路由在事件处理完成后统一提交。
"""
from decimal import Decimal
from typing import Any

from sqlmodel import Session, select

from paywall.enums import MessagePaymentType, PaymentProvider, PaymentStatus, PaymentType
from paywall.models import MediaPurchase, MessagePayment, Payment


def get_by_provider_tx(
    *, session: Session, provider: PaymentProvider, provider_tx_id: str
) -> Payment | None:
    """根据渠道交易 ID 查询支付流水"""
    statement = select(Payment).where(
        Payment.provider == provider, Payment.provider_tx_id == provider_tx_id
    )
    return session.exec(statement).first()


def create_payment(
    *,
    session: Session,
    user_id: str,
    amount: Decimal,
    currency: str,
    provider: PaymentProvider,
    provider_tx_id: str | None,
    payment_type: PaymentType,
    metadata: dict[str, Any] | None,
    status: PaymentStatus = PaymentStatus.COMPLETED,
) -> Payment:
    payment = Payment(
        user_id=user_id,
        amount=amount,
        currency=currency.upper(),
        status=status,
        provider=provider,
        provider_tx_id=provider_tx_id,
        type=payment_type,
        payment_metadata=metadata,
    )
    session.add(payment)
    session.flush()
    return payment


def get_media_purchase(*, session: Session, user_id: str, media_id: str) -> MediaPurchase | None:
    statement = select(MediaPurchase).where(
        MediaPurchase.user_id == user_id, MediaPurchase.media_id == media_id
    )
    return session.exec(statement).first()


def create_media_purchase(
    *,
    session: Session,
    user_id: str,
    media_id: str,
    amount: Decimal,
    provider: PaymentProvider,
    provider_tx_id: str | None,
) -> MediaPurchase:
    purchase = MediaPurchase(
        user_id=user_id,
        media_id=media_id,
        amount=amount,
        provider=provider,
        provider_tx_id=provider_tx_id,
        status=PaymentStatus.COMPLETED,
    )
    session.add(purchase)
    session.flush()
    return purchase


def create_message_payment(
    *,
    session: Session,
    message_id: str,
    user_id: str,
    payment_type: MessagePaymentType,
    amount: Decimal,
    provider: PaymentProvider,
) -> MessagePayment:
    record = MessagePayment(
        message_id=message_id,
        user_id=user_id,
        type=payment_type,
        amount=amount,
        status=PaymentStatus.COMPLETED,
        provider=provider,
    )
    session.add(record)
    session.flush()
    return record
