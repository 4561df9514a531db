"""Scheduled jobs (called daily at 00:00 KST by the platform scheduler)."""

import logging
from datetime import date, datetime, time, timedelta

from fastapi import APIRouter, Depends
from sqlalchemy.orm import Session

from yamoo.config import MAX_BILLING_RETRIES
from yamoo.database import get_db
from yamoo.dependencies import require_cron_secret
from yamoo.models.subscription import Subscription
from yamoo.routers.billing import get_active_billing_key
from yamoo.services import toss_client
from yamoo.services.idempotency import PaymentInProgressError, generate_idempotency_key
from yamoo.services.notification import send_n8n_webhook
from yamoo.services.payment_service import charge_with_idempotency
from yamoo.services.pricing import add_one_month, get_effective_amount, get_plan_amount, get_plan_name
from yamoo.services.subscription_history import record_history

logger = logging.getLogger("yamoo")

router = APIRouter(prefix="/api/cron", tags=["cron"])


def _due_before(today: date) -> datetime:
    return datetime.combine(today + timedelta(days=1), time.min)


def _finalize_cancellations(db: Session, cutoff: datetime) -> list[dict]:
    results = []
    due = (
        db.query(Subscription)
        .filter(Subscription.status == "pending_cancel", Subscription.cancel_at < cutoff)
        .all()
    )
    for subscription in due:
        subscription.status = "canceled"
        subscription.canceled_at = datetime.utcnow()
        record_history(
            db, subscription, "cancel",
            previous_plan=subscription.plan, previous_status="pending_cancel",
            changed_by="system", note="예약 해지 적용",
        )
        results.append({"tenant_id": subscription.tenant_id, "status": "canceled"})
    db.commit()
    return results


async def _renew(db: Session, subscription: Subscription, operation: str) -> dict:
    """Charge one due subscription; retries and suspension on gateway failure."""
    tenant_id = subscription.tenant_id
    previous_status = subscription.status
    previous_plan = subscription.plan
    plan = subscription.pending_plan or subscription.plan
    if subscription.pending_plan:
        amount = subscription.pending_amount or get_plan_amount(plan)
    else:
        amount = get_effective_amount(subscription)

    bk = get_active_billing_key(db, tenant_id)
    if not bk:
        return await _record_failure(db, subscription, "등록된 카드가 없습니다.")

    try:
        payment, duplicate = await charge_with_idempotency(
            db,
            subscription,
            bk,
            amount=amount,
            plan=plan,
            payment_type=operation,
            order_name=f"YAMOO {get_plan_name(plan)} 플랜 - 정기결제",
            idempotency_key=generate_idempotency_key(operation, tenant_id),
        )
    except PaymentInProgressError:
        return {"tenant_id": tenant_id, "status": "in_progress"}
    except toss_client.TossPaymentError as exc:
        logger.error("Recurring payment failed: tenant_id=%s %s", tenant_id, exc)
        return await _record_failure(db, subscription, exc.message)

    if duplicate:
        return {"tenant_id": tenant_id, "status": "duplicate", "order_id": payment.order_id}

    period_start = subscription.next_billing_date
    subscription.status = "active"
    subscription.plan = plan
    subscription.amount = amount
    if previous_plan != plan:
        subscription.base_amount = amount
        subscription.previous_plan = previous_plan
        subscription.plan_changed_at = datetime.utcnow()
    subscription.pending_plan = None
    subscription.pending_amount = None
    subscription.current_period_start = period_start
    subscription.current_period_end = add_one_month(period_start)
    subscription.next_billing_date = subscription.current_period_end
    subscription.retry_count = 0
    record_history(
        db, subscription, "renew" if operation == "recurring" else "trial_convert",
        previous_plan=previous_plan, previous_status=previous_status, changed_by="system",
    )
    db.commit()

    await send_n8n_webhook({
        "event": "recurring_payment_success",
        "tenantId": tenant_id,
        "email": subscription.email,
        "plan": plan,
        "amount": amount,
    })
    return {"tenant_id": tenant_id, "status": "success", "order_id": payment.order_id}


async def _record_failure(db: Session, subscription: Subscription, reason: str) -> dict:
    subscription.retry_count = (subscription.retry_count or 0) + 1

    if subscription.retry_count < MAX_BILLING_RETRIES:
        db.commit()
        return {"tenant_id": subscription.tenant_id, "status": "retry", "error": reason}

    previous_status = subscription.status
    subscription.status = "past_due" if previous_status == "active" else "expired"
    record_history(
        db, subscription, subscription.status,
        previous_plan=subscription.plan, previous_status=previous_status,
        changed_by="system", note=f"결제 {subscription.retry_count}회 실패: {reason}",
    )
    db.commit()

    await send_n8n_webhook({
        "event": "payment_failed",
        "tenantId": subscription.tenant_id,
        "email": subscription.email,
        "plan": subscription.plan,
        "retryCount": subscription.retry_count,
    })
    return {"tenant_id": subscription.tenant_id, "status": "suspended", "error": reason}


def _expire_trial(db: Session, subscription: Subscription) -> dict:
    subscription.status = "expired"
    record_history(
        db, subscription, "expire",
        previous_plan=subscription.plan, previous_status="trial",
        changed_by="system", note="무료체험 종료",
    )
    db.commit()
    return {"tenant_id": subscription.tenant_id, "status": "expired"}


@router.get("/billing", dependencies=[Depends(require_cron_secret)])
async def run_billing(db: Session = Depends(get_db)):
    """정기결제 / 예약 해지 / 무료체험 종료 처리"""
    today = date.today()
    cutoff = _due_before(today)
    results = _finalize_cancellations(db, cutoff)

    trials = (
        db.query(Subscription)
        .filter(Subscription.status == "trial", Subscription.next_billing_date < cutoff)
        .all()
    )
    for subscription in trials:
        # 예약된 플랜과 카드가 있으면 유료 전환, 아니면 만료
        if subscription.pending_plan and get_active_billing_key(db, subscription.tenant_id):
            results.append(await _renew(db, subscription, "trial_convert"))
        else:
            results.append(_expire_trial(db, subscription))

    due = (
        db.query(Subscription)
        .filter(Subscription.status == "active", Subscription.next_billing_date < cutoff)
        .all()
    )
    for subscription in due:
        results.append(await _renew(db, subscription, "recurring"))

    logger.info("Cron billing done: date=%s processed=%d", today.isoformat(), len(results))
    return {"success": True, "processed": len(results), "results": results}
