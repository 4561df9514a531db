"""Charge and refund flows on top of the Toss client and the payment lock."""

import logging
import time
import uuid
from datetime import datetime

from sqlalchemy import func
from sqlalchemy.orm import Session

from yamoo.models.billing import BillingKey, Payment
from yamoo.models.subscription import Subscription
from yamoo.services import toss_client
from yamoo.services.idempotency import (
    find_existing_payment,
    lock_payment,
    promote_payment,
    unlock_payment,
)

logger = logging.getLogger("yamoo")

REFUND_TYPES = ("plan_change_refund", "refund", "cancel_refund", "downgrade_refund")


def make_order_id(prefix: str, tenant_id: str) -> str:
    return f"{prefix.upper()}_{int(time.time() * 1000)}{uuid.uuid4().hex[:4]}_{tenant_id}"


async def charge_with_idempotency(
    db: Session,
    subscription: Subscription,
    billing_key: BillingKey,
    *,
    amount: int,
    plan: str,
    payment_type: str,
    order_name: str,
    idempotency_key: str,
) -> tuple[Payment, bool]:
    """Charge once per idempotency key.

    Returns (payment, duplicate). Raises PaymentInProgressError when another
    attempt holds the key and TossPaymentError when the gateway declines.
    """
    existing = find_existing_payment(db, idempotency_key, subscription.tenant_id)
    if existing:
        logger.info("Duplicate charge request: key=%s order_id=%s", idempotency_key, existing.order_id)
        return existing, True

    lock_id = lock_payment(
        db,
        idempotency_key,
        tenant_id=subscription.tenant_id,
        email=subscription.email,
        plan=plan,
        amount=amount,
        type=payment_type,
    )
    payment = await charge_locked(
        db,
        lock_id,
        subscription,
        billing_key,
        amount=amount,
        plan=plan,
        payment_type=payment_type,
        order_name=order_name,
        idempotency_key=idempotency_key,
    )
    return payment, False


async def charge_locked(
    db: Session,
    lock_id: str,
    subscription: Subscription,
    billing_key: BillingKey,
    *,
    amount: int,
    plan: str,
    payment_type: str,
    order_name: str,
    idempotency_key: str,
) -> Payment:
    """Charge under an already held lock; the lock is released if the charge fails."""
    order_id = make_order_id(plan, subscription.tenant_id)
    now = datetime.utcnow()
    payment = Payment(
        id=order_id,
        tenant_id=subscription.tenant_id,
        email=subscription.email,
        order_id=order_id,
        order_name=order_name,
        plan=plan,
        type=payment_type,
        amount=amount,
        status="done",
        idempotency_key=idempotency_key,
        paid_at=now,
        created_at=now,
    )

    if amount > 0:
        try:
            result = await toss_client.pay_with_billing_key(
                billing_key.billing_key,
                billing_key.customer_key,
                amount,
                order_id,
                order_name,
                subscription.email,
            )
        except Exception:
            unlock_payment(db, lock_id)
            raise
        payment.payment_key = result.get("paymentKey")
        payment.method = result.get("method")
        payment.receipt_url = (result.get("receipt") or {}).get("url")

    promote_payment(db, lock_id, payment)
    logger.info(
        "Payment done: tenant_id=%s order_id=%s amount=%d type=%s",
        subscription.tenant_id, order_id, amount, payment_type,
    )
    return payment


def latest_refundable_payment(db: Session, tenant_id: str) -> Payment | None:
    """가장 최근 원결제 (환불 기록 제외)"""
    return (
        db.query(Payment)
        .filter(
            Payment.tenant_id == tenant_id,
            Payment.status == "done",
            Payment.amount > 0,
            Payment.type.notin_(REFUND_TYPES),
        )
        .order_by(Payment.created_at.desc())
        .first()
    )


def refunded_for_key(db: Session, tenant_id: str, idempotency_key: str) -> int:
    """같은 멱등성 키로 이미 환불된 금액 (결제 실패 후 재시도 시 중복 환불 방지)"""
    total = (
        db.query(func.coalesce(func.sum(Payment.refunded_amount), 0))
        .filter(
            Payment.tenant_id == tenant_id,
            Payment.idempotency_key == idempotency_key,
            Payment.status == "refunded",
        )
        .scalar()
    )
    return int(total)


async def refund_payment(
    db: Session,
    original: Payment,
    requested_amount: int,
    reason: str,
    refund_type: str,
    idempotency_key: str | None = None,
) -> Payment | None:
    """Partially refund ``original``; the refunded amount never exceeds what is left.

    Writes a negative ``refunded`` payment row and bumps the original's
    ``refunded_amount``. Caller commits. Returns None when nothing was refunded.
    """
    refundable = original.amount - (original.refunded_amount or 0)
    if not original.payment_key or refundable <= 0 or requested_amount <= 0:
        logger.info("Nothing to refund for payment %s", original.id)
        return None

    toss_payment = await toss_client.get_payment(original.payment_key)
    actual = min(requested_amount, refundable, toss_client.cancellable_amount(toss_payment))
    if actual <= 0:
        logger.info("No cancellable amount in Toss for payment %s", original.id)
        return None

    result = await toss_client.cancel_payment(original.payment_key, reason, actual)

    now = datetime.utcnow()
    refund_id = make_order_id("REFUND", original.tenant_id)
    refund = Payment(
        id=refund_id,
        tenant_id=original.tenant_id,
        email=original.email,
        order_id=refund_id,
        plan=original.plan,
        type=refund_type,
        amount=-actual,
        status="refunded",
        payment_key=result.get("paymentKey"),
        refunded_amount=actual,
        original_payment_id=original.id,
        refund_reason=reason,
        idempotency_key=idempotency_key,
        paid_at=now,
        created_at=now,
    )
    db.add(refund)
    original.refunded_amount = (original.refunded_amount or 0) + actual
    logger.info("Refunded %d of payment %s (%s)", actual, original.id, refund_type)
    return refund
