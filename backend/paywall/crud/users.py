"""用户 CRUD 操作"""
from sqlmodel import Session, select

from paywall.models import User, utc_now


def get(*, session: Session, user_id: str) -> User | None:
    """根据 ID 查询用户"""
    return session.get(User, user_id)


def get_by_stripe_customer_id(*, session: Session, customer_id: str) -> User | None:
    """根据 Stripe 客户 ID 查询用户"""
    statement = select(User).where(User.stripe_customer_id == customer_id)
    return session.exec(statement).first()


def set_stripe_customer_id(*, session: Session, user: User, customer_id: str) -> User:
    """保存用户的 Stripe 客户 ID"""
    user.stripe_customer_id = customer_id
    user.updated_at = utc_now()
    session.add(user)
    session.commit()
    session.refresh(user)
    return user
