from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from yamoo.database import Base


class Subscription(Base):
    """매장별 구독 (매장당 1건)"""

    __tablename__ = "subscriptions"

    tenant_id: Mapped[str] = mapped_column(String(100), primary_key=True)
    email: Mapped[str] = mapped_column(String(200), index=True, nullable=False)
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    # trial, active, pending_cancel, canceled, expired, past_due
    status: Mapped[str] = mapped_column(String(20), nullable=False, default="trial")
    amount: Mapped[int] = mapped_column(Integer, default=0)
    base_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    # grandfathered, protected_until, standard
    price_policy: Mapped[str | None] = mapped_column(String(20), nullable=True)
    price_protected_until: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    billing_key_id: Mapped[int | None] = mapped_column(Integer, nullable=True)
    current_period_start: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    current_period_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    next_billing_date: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    retry_count: Mapped[int] = mapped_column(Integer, default=0)
    pending_plan: Mapped[str | None] = mapped_column(String(20), nullable=True)
    pending_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    previous_plan: Mapped[str | None] = mapped_column(String(20), nullable=True)
    previous_amount: Mapped[int | None] = mapped_column(Integer, nullable=True)
    plan_changed_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancel_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    canceled_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    cancel_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime, default=datetime.utcnow, onupdate=datetime.utcnow
    )


class SubscriptionHistory(Base):
    """구독 변경 이력"""

    __tablename__ = "subscription_history"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(200), nullable=False)
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, default=0)
    period_start: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    period_end: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    # new, renew, upgrade, downgrade, reserve, cancel, cancel_scheduled, expire, past_due
    change_type: Mapped[str] = mapped_column(String(30), nullable=False)
    previous_plan: Mapped[str | None] = mapped_column(String(20), nullable=True)
    previous_status: Mapped[str | None] = mapped_column(String(20), nullable=True)
    changed_by: Mapped[str] = mapped_column(String(20), default="user")  # user, admin, system
    note: Mapped[str | None] = mapped_column(Text, nullable=True)
    changed_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
