"""Duplicate-charge protection keyed by idempotency keys.

A charge attempt first inserts a ``pending`` row whose primary key is derived
from the idempotency key (``PENDING_<key>``). A second attempt with the same
key hits the primary-key constraint instead of creating another row, so only
one request ever reaches the payment gateway for a given key.
"""

import logging
from datetime import datetime

from sqlalchemy import delete, insert
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.orm import Session

from yamoo.models.billing import Payment

logger = logging.getLogger("yamoo")

LOCK_ID_PREFIX = "PENDING_"


class PaymentInProgressError(Exception):
    """Another attempt with the same idempotency key holds the lock."""

    def __init__(self, idempotency_key: str):
        super().__init__(f"payment already in progress: {idempotency_key}")
        self.idempotency_key = idempotency_key


def lock_id_for(idempotency_key: str) -> str:
    return f"{LOCK_ID_PREFIX}{idempotency_key}"


def find_existing_payment(db: Session, idempotency_key: str, tenant_id: str | None = None) -> Payment | None:
    """멱등성 키로 이미 완료된 결제 조회 (tenant_id가 있으면 해당 매장으로 한정)"""
    query = db.query(Payment).filter(Payment.idempotency_key == idempotency_key, Payment.status == "done")
    if tenant_id is not None:
        query = query.filter(Payment.tenant_id == tenant_id)
    return query.first()


def lock_payment(
    db: Session,
    idempotency_key: str,
    *,
    tenant_id: str,
    email: str,
    plan: str,
    amount: int,
    type: str,
) -> str:
    """결제 진행 중 잠금 생성. Raises PaymentInProgressError on key collision."""
    lock_id = lock_id_for(idempotency_key)
    try:
        db.execute(
            insert(Payment).values(
                id=lock_id,
                tenant_id=tenant_id,
                email=email,
                plan=plan,
                amount=amount,
                type=type,
                idempotency_key=idempotency_key,
                status="pending",
                created_at=datetime.utcnow(),
            )
        )
        db.commit()
    except IntegrityError:
        db.rollback()
        logger.info("Payment lock already held: key=%s", idempotency_key)
        raise PaymentInProgressError(idempotency_key)
    return lock_id


def unlock_payment(db: Session, lock_id: str) -> None:
    """잠금 해제 (결제 실패 시). Cleanup failures are logged only."""
    try:
        db.execute(delete(Payment).where(Payment.id == lock_id, Payment.status == "pending"))
        db.commit()
    except SQLAlchemyError as exc:
        db.rollback()
        logger.warning("Failed to release payment lock %s: %s", lock_id, exc)


def promote_payment(db: Session, lock_id: str, payment: Payment) -> Payment:
    """Store the completed payment and drop its pending lock in one commit."""
    db.add(payment)
    db.execute(delete(Payment).where(Payment.id == lock_id, Payment.status == "pending"))
    db.commit()
    db.refresh(payment)
    return payment


def _utc_date_stamp() -> str:
    return datetime.utcnow().strftime("%Y%m%d")


def generate_idempotency_key(operation: str, tenant_id: str, timestamp: int | None = None) -> str:
    """멱등성 키 생성

    - 클라이언트 요청: operation_tenantId_timestamp
    - Cron: operation_tenantId_YYYYMMDD (UTC, 일별 중복 방지)
    """
    if timestamp:
        return f"{operation}_{tenant_id}_{timestamp}"
    return f"{operation}_{tenant_id}_{_utc_date_stamp()}"
