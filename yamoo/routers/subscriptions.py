import logging
import time
from datetime import date, datetime

from fastapi import APIRouter, Depends, HTTPException, Request
from sqlalchemy.orm import Session

from yamoo.config import RATE_LIMIT_PAYMENT
from yamoo.database import get_db
from yamoo.dependencies import get_owned_subscription, is_admin, require_auth
from yamoo.models.billing import BillingKey
from yamoo.models.subscription import Subscription, SubscriptionHistory
from yamoo.rate_limit import limiter
from yamoo.routers.billing import get_active_billing_key
from yamoo.schemas.subscription import (
    CancelRequest,
    CancelResponse,
    ChangePlanPreviewResponse,
    ChangePlanRequest,
    ChangePlanResponse,
    RefundPreviewResponse,
    SubscriptionHistoryItem,
)
from yamoo.services import toss_client
from yamoo.services.idempotency import (
    PaymentInProgressError,
    find_existing_payment,
    generate_idempotency_key,
    lock_payment,
    unlock_payment,
)
from yamoo.services.notification import send_n8n_webhook
from yamoo.services.payment_service import (
    charge_locked,
    latest_refundable_payment,
    refund_payment,
    refunded_for_key,
)
from yamoo.services.payment_text import get_payment_schedule_text
from yamoo.services.pricing import get_plan_amount, get_plan_name, is_paid_plan
from yamoo.services.refund import calculate_prorated_amount, calculate_refund_amount, remaining_days
from yamoo.services.subscription_history import record_history

logger = logging.getLogger("yamoo")

router = APIRouter(prefix="/api/subscriptions", tags=["subscriptions"])


def _iso_date(value: datetime | None) -> str | None:
    return value.date().isoformat() if value else None


def _unused_amount(subscription: Subscription, today: date | None = None) -> int:
    # 해지 예약 상태는 next_billing_date가 비어 있으므로 이용기간 종료일 기준
    period_end = subscription.next_billing_date
    if subscription.status == "pending_cancel":
        period_end = period_end or subscription.current_period_end
    if not subscription.current_period_start or not period_end:
        return 0
    return calculate_refund_amount(
        subscription.amount,
        subscription.current_period_start,
        period_end,
        today,
    )


def _require_active_with_card(db: Session, subscription: Subscription) -> BillingKey:
    if subscription.status != "active":
        raise HTTPException(status_code=400, detail="이용 중인 구독이 없습니다.")
    bk = get_active_billing_key(db, subscription.tenant_id)
    if not bk:
        raise HTTPException(status_code=400, detail="등록된 카드가 없습니다.")
    return bk


def _validate_new_plan(subscription: Subscription, new_plan: str) -> int:
    if not is_paid_plan(new_plan):
        raise HTTPException(status_code=400, detail="유효하지 않은 플랜입니다.")
    if new_plan == subscription.plan:
        raise HTTPException(status_code=400, detail="현재 이용 중인 플랜입니다.")
    return get_plan_amount(new_plan)


@router.get("/{tenant_id}/refund-preview", response_model=RefundPreviewResponse)
def refund_preview(
    tenant_id: str,
    user: dict = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """즉시 해지 시 예상 환불 금액"""
    subscription = get_owned_subscription(db, tenant_id, user)
    if subscription.status != "active" or not subscription.current_period_start or not subscription.next_billing_date:
        raise HTTPException(status_code=400, detail="이용 중인 구독이 없습니다.")

    total_days, days_left = remaining_days(
        subscription.current_period_start, subscription.next_billing_date
    )
    return RefundPreviewResponse(
        tenant_id=tenant_id,
        plan=subscription.plan,
        amount=subscription.amount,
        total_days=total_days,
        days_left=days_left if total_days > 0 else 0,
        refund_amount=_unused_amount(subscription),
    )


@router.post("/{tenant_id}/change-plan/preview", response_model=ChangePlanPreviewResponse)
def change_plan_preview(
    tenant_id: str,
    req: ChangePlanRequest,
    user: dict = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """플랜 변경 금액 및 결제 안내 문구"""
    subscription = get_owned_subscription(db, tenant_id, user)
    if subscription.status != "active":
        raise HTTPException(status_code=400, detail="이용 중인 구독이 없습니다.")
    full_amount = _validate_new_plan(subscription, req.new_plan)
    is_downgrade = full_amount < subscription.amount
    next_billing = _iso_date(subscription.next_billing_date)

    if req.mode == "scheduled":
        text = get_payment_schedule_text(
            full_amount,
            is_reserve=True,
            current_period_end=_iso_date(subscription.current_period_end),
            next_billing_date=next_billing,
        )
        return ChangePlanPreviewResponse(
            current_plan=subscription.plan,
            new_plan=req.new_plan,
            is_downgrade=is_downgrade,
            full_amount=full_amount,
            refund_amount=0,
            prorated_amount=0,
            next_billing_date=next_billing,
            schedule_text=text,
        )

    refund_amount = _unused_amount(subscription)
    prorated = 0
    if subscription.current_period_start and subscription.next_billing_date:
        prorated = calculate_prorated_amount(
            full_amount, subscription.current_period_start, subscription.next_billing_date
        )
    text = get_payment_schedule_text(
        prorated,
        full_amount=full_amount,
        is_change_plan=True,
        is_downgrade=is_downgrade,
        new_plan_payment_amount=prorated,
        current_refund_amount=refund_amount,
    )
    return ChangePlanPreviewResponse(
        current_plan=subscription.plan,
        new_plan=req.new_plan,
        is_downgrade=is_downgrade,
        full_amount=full_amount,
        refund_amount=refund_amount,
        prorated_amount=prorated,
        next_billing_date=next_billing,
        schedule_text=text,
    )


@router.post("/{tenant_id}/change-plan", response_model=ChangePlanResponse)
@limiter.limit(RATE_LIMIT_PAYMENT)
async def change_plan(
    request: Request,
    tenant_id: str,
    req: ChangePlanRequest,
    user: dict = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """플랜 변경 (즉시: 미사용분 환불 + 일할 결제 / 예약: 다음 결제일 적용)"""
    subscription = get_owned_subscription(db, tenant_id, user)
    changed_by = "admin" if is_admin(user) else "user"

    idempotency_key = req.idempotency_key or generate_idempotency_key(
        "plan_change", tenant_id, int(time.time() * 1000)
    )
    existing = find_existing_payment(db, idempotency_key, tenant_id)
    if existing:
        logger.info("Duplicate plan change detected: order_id=%s", existing.order_id)
        return ChangePlanResponse(
            success=True,
            message="이미 처리된 플랜 변경입니다.",
            mode="immediate",
            order_id=existing.order_id,
            paid_amount=existing.amount,
            duplicate=True,
        )

    bk = _require_active_with_card(db, subscription)
    full_amount = _validate_new_plan(subscription, req.new_plan)
    previous_plan = subscription.plan
    previous_amount = subscription.amount

    if req.mode == "scheduled":
        subscription.pending_plan = req.new_plan
        subscription.pending_amount = full_amount
        record_history(
            db,
            subscription,
            "reserve",
            previous_plan=previous_plan,
            previous_status=subscription.status,
            changed_by=changed_by,
            note=f"{get_plan_name(req.new_plan)} 플랜 변경 예약 ({_iso_date(subscription.next_billing_date)} 적용)",
        )
        db.commit()
        return ChangePlanResponse(
            success=True,
            message=f"다음 결제일부터 {get_plan_name(req.new_plan)} 플랜이 적용됩니다.",
            mode="scheduled",
        )

    credit = _unused_amount(subscription)
    prorated = 0
    if subscription.current_period_start and subscription.next_billing_date:
        prorated = calculate_prorated_amount(
            full_amount, subscription.current_period_start, subscription.next_billing_date
        )

    try:
        lock_id = lock_payment(
            db,
            idempotency_key,
            tenant_id=tenant_id,
            email=subscription.email,
            plan=req.new_plan,
            amount=prorated,
            type="plan_change",
        )
    except PaymentInProgressError:
        raise HTTPException(status_code=409, detail="이미 플랜 변경이 진행 중입니다.")

    # 1. 기존 결제 미사용분 부분 환불 (같은 키로 결제 실패 후 재시도한 경우 이미 환불된 금액 제외)
    refunded = refunded_for_key(db, tenant_id, idempotency_key)
    credit = max(0, credit - refunded)
    reason = f"플랜 변경: {get_plan_name(previous_plan)} → {get_plan_name(req.new_plan)} (미사용분 환불)"
    original = latest_refundable_payment(db, tenant_id) if credit > 0 else None
    if original:
        try:
            refund = await refund_payment(
                db, original, credit, reason, "plan_change_refund", idempotency_key=idempotency_key
            )
        except toss_client.TossPaymentError as exc:
            db.rollback()
            unlock_payment(db, lock_id)
            logger.error("Plan change refund failed: tenant_id=%s %s", tenant_id, exc)
            raise HTTPException(status_code=502, detail=f"환불 실패: {exc.message}")
        if refund:
            refunded += -refund.amount

    # 2. 새 플랜 일할 결제 (성공 시 환불 기록과 함께 저장)
    try:
        payment = await charge_locked(
            db,
            lock_id,
            subscription,
            bk,
            amount=prorated,
            plan=req.new_plan,
            payment_type="plan_change",
            order_name=f"YAMOO {get_plan_name(req.new_plan)} 플랜",
            idempotency_key=idempotency_key,
        )
    except toss_client.TossPaymentError as exc:
        logger.error(
            "New plan payment failed after refund=%d: tenant_id=%s %s", refunded, tenant_id, exc
        )
        raise HTTPException(
            status_code=502,
            detail="새 플랜 결제에 실패했습니다. 고객센터에 문의해주세요.",
        )

    subscription.previous_plan = previous_plan
    subscription.previous_amount = previous_amount
    subscription.plan = req.new_plan
    subscription.amount = full_amount
    subscription.base_amount = full_amount
    subscription.plan_changed_at = datetime.utcnow()
    subscription.pending_plan = None
    subscription.pending_amount = None
    record_history(
        db,
        subscription,
        "downgrade" if full_amount < previous_amount else "upgrade",
        previous_plan=previous_plan,
        previous_status=subscription.status,
        changed_by=changed_by,
        note=f"환불 {refunded}원, 결제 {prorated}원",
    )
    db.commit()

    await send_n8n_webhook({
        "event": "plan_changed",
        "tenantId": tenant_id,
        "email": subscription.email,
        "previousPlan": previous_plan,
        "newPlan": req.new_plan,
        "refundAmount": refunded,
        "newPlanAmount": prorated,
    })

    return ChangePlanResponse(
        success=True,
        message=f"{get_plan_name(req.new_plan)} 플랜으로 변경되었습니다.",
        mode="immediate",
        order_id=payment.order_id,
        refund_amount=refunded,
        paid_amount=prorated,
    )


@router.post("/{tenant_id}/cancel", response_model=CancelResponse)
async def cancel_subscription(
    tenant_id: str,
    req: CancelRequest,
    user: dict = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """구독 해지 (예약: 이용기간 종료 후 / 즉시: 미사용분 환불)"""
    subscription = get_owned_subscription(db, tenant_id, user)
    changed_by = "admin" if is_admin(user) else "user"
    current_status = subscription.status

    if current_status in ("canceled", "expired"):
        raise HTTPException(status_code=400, detail="이미 해지되었거나 만료된 구독입니다.")
    if current_status not in ("active", "trial", "pending_cancel"):
        raise HTTPException(status_code=400, detail="활성화된 구독만 해지할 수 있습니다.")

    now = datetime.utcnow()
    subscription.cancel_reason = req.reason
    subscription.pending_plan = None
    subscription.pending_amount = None

    if req.cancel_mode == "scheduled":
        cancel_at = subscription.current_period_end or now
        subscription.status = "pending_cancel"
        subscription.cancel_at = cancel_at
        subscription.next_billing_date = None
        record_history(
            db,
            subscription,
            "cancel_scheduled",
            previous_plan=subscription.plan,
            previous_status=current_status,
            changed_by=changed_by,
            note=f"해지 예정일: {cancel_at.date().isoformat()}. 사유: {req.reason}",
        )
        db.commit()
        await send_n8n_webhook({
            "event": "subscription_cancel_scheduled",
            "tenantId": tenant_id,
            "email": subscription.email,
            "plan": subscription.plan,
            "reason": req.reason,
        })
        return CancelResponse(
            success=True,
            message="구독 해지가 예약되었습니다.",
            cancel_mode="scheduled",
            cancel_at=cancel_at.isoformat(),
        )

    refunded = 0
    credit = _unused_amount(subscription) if current_status in ("active", "pending_cancel") else 0
    original = latest_refundable_payment(db, tenant_id) if credit > 0 else None
    if original:
        try:
            refund = await refund_payment(db, original, credit, f"구독 즉시 해지 (미사용분 환불): {req.reason}", "cancel_refund")
        except toss_client.TossPaymentError as exc:
            db.rollback()
            logger.error("Cancel refund failed: tenant_id=%s %s", tenant_id, exc)
            raise HTTPException(status_code=502, detail=f"환불 실패: {exc.message}")
        refunded = -refund.amount if refund else 0

    subscription.status = "canceled"
    subscription.cancel_at = None
    subscription.canceled_at = now
    subscription.next_billing_date = None
    record_history(
        db,
        subscription,
        "cancel",
        previous_plan=subscription.plan,
        previous_status=current_status,
        changed_by=changed_by,
        note=f"즉시 해지. 환불 {refunded}원. 사유: {req.reason}",
    )
    db.commit()

    await send_n8n_webhook({
        "event": "subscription_canceled",
        "tenantId": tenant_id,
        "email": subscription.email,
        "plan": subscription.plan,
        "refundAmount": refunded,
        "reason": req.reason,
    })

    return CancelResponse(
        success=True,
        message="구독이 즉시 해지되었습니다.",
        cancel_mode="immediate",
        canceled_at=now.isoformat(),
        refund_amount=refunded,
    )


@router.get("/{tenant_id}/history", response_model=list[SubscriptionHistoryItem])
def subscription_history(
    tenant_id: str,
    user: dict = Depends(require_auth),
    db: Session = Depends(get_db),
):
    get_owned_subscription(db, tenant_id, user)
    rows = (
        db.query(SubscriptionHistory)
        .filter(SubscriptionHistory.tenant_id == tenant_id)
        .order_by(SubscriptionHistory.changed_at.desc(), SubscriptionHistory.id.desc())
        .all()
    )
    return [
        SubscriptionHistoryItem(
            plan=h.plan,
            status=h.status,
            amount=h.amount,
            change_type=h.change_type,
            previous_plan=h.previous_plan,
            previous_status=h.previous_status,
            changed_by=h.changed_by,
            note=h.note,
            changed_at=h.changed_at.isoformat() + "Z",
        )
        for h in rows
    ]
