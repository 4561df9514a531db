from datetime import datetime

from sqlalchemy import Boolean, DateTime, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from yamoo.database import Base


class BillingKey(Base):
    """토스페이먼츠 빌링키 저장 테이블"""

    __tablename__ = "billing_keys"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    tenant_id: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    customer_key: Mapped[str] = mapped_column(String(100), nullable=False)
    billing_key: Mapped[str] = mapped_column(String(200), nullable=False)
    card_company: Mapped[str | None] = mapped_column(String(50), nullable=True)
    card_number: Mapped[str | None] = mapped_column(String(50), nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
    deactivated_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)


class Payment(Base):
    """결제/환불 내역 및 결제 진행 잠금 (status=pending, id=PENDING_<key>)"""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(200), primary_key=True)
    tenant_id: Mapped[str] = mapped_column(String(100), index=True, nullable=False)
    email: Mapped[str] = mapped_column(String(200), nullable=False)
    order_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    order_name: Mapped[str | None] = mapped_column(String(200), nullable=True)
    plan: Mapped[str] = mapped_column(String(20), nullable=False)
    type: Mapped[str] = mapped_column(String(30), nullable=False)
    amount: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String(20), nullable=False)  # pending, done, failed, refunded
    idempotency_key: Mapped[str | None] = mapped_column(String(200), index=True, nullable=True)
    payment_key: Mapped[str | None] = mapped_column(String(200), nullable=True)
    method: Mapped[str | None] = mapped_column(String(50), nullable=True)
    receipt_url: Mapped[str | None] = mapped_column(String(500), nullable=True)
    refunded_amount: Mapped[int] = mapped_column(Integer, default=0)
    original_payment_id: Mapped[str | None] = mapped_column(String(200), nullable=True)
    refund_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    failure_reason: Mapped[str | None] = mapped_column(Text, nullable=True)
    paid_at: Mapped[datetime | None] = mapped_column(DateTime, nullable=True)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)
