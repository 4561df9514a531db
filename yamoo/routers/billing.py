import logging
import time
from datetime import datetime
from urllib.parse import quote

from fastapi import APIRouter, Depends, HTTPException, Query, Request
from fastapi.responses import RedirectResponse
from sqlalchemy.orm import Session

from yamoo.config import RATE_LIMIT_PAYMENT
from yamoo.database import get_db
from yamoo.dependencies import get_owned_tenant, require_auth
from yamoo.models.billing import BillingKey, Payment
from yamoo.models.subscription import Subscription
from yamoo.rate_limit import limiter
from yamoo.schemas.billing import (
    BillingKeyDeactivateResponse,
    BillingPayRequest,
    BillingPayResponse,
    BillingStatusResponse,
    PaymentHistoryItem,
    PaymentHistoryResponse,
)
from yamoo.services import toss_client
from yamoo.services.idempotency import (
    PaymentInProgressError,
    find_existing_payment,
    generate_idempotency_key,
)
from yamoo.services.notification import send_n8n_webhook
from yamoo.services.payment_service import charge_with_idempotency, make_order_id
from yamoo.services.pricing import (
    PRICE_POLICY_LABELS,
    add_one_month,
    get_plan_amount,
    get_plan_name,
    is_paid_plan,
)
from yamoo.services.subscription_history import record_history

logger = logging.getLogger("yamoo")

router = APIRouter(prefix="/api/billing", tags=["billing"])

CUSTOMER_KEY_PREFIX = "tenant_"


def get_active_billing_key(db: Session, tenant_id: str) -> BillingKey | None:
    return (
        db.query(BillingKey)
        .filter(BillingKey.tenant_id == tenant_id, BillingKey.is_active == True)
        .order_by(BillingKey.created_at.desc())
        .first()
    )


# ──────────────────────────────────────────────
# 1단계: 카드 등록 콜백 (프론트에서 리다이렉트됨)
# ──────────────────────────────────────────────


@router.get("/success")
async def billing_success(
    customerKey: str = Query(...),
    authKey: str = Query(...),
    db: Session = Depends(get_db),
):
    """토스 카드 등록 성공 콜백 → billingKey 발급 및 저장 → /account로 리다이렉트"""
    if not customerKey.startswith(CUSTOMER_KEY_PREFIX):
        return RedirectResponse(url="/account?status=fail&message=invalid+customerKey", status_code=302)

    # customerKey 형식: tenant_{tenant_id}
    tenant_id = customerKey[len(CUSTOMER_KEY_PREFIX):]

    try:
        data = await toss_client.issue_billing_key(authKey, customerKey)
    except toss_client.TossPaymentError as exc:
        logger.error("Toss billingKey issue failed: tenant_id=%s %s", tenant_id, exc)
        return RedirectResponse(
            url=f"/account?status=fail&message={quote(exc.message)}",
            status_code=302,
        )

    card_info = data.get("card") or {}

    # 기존 빌링키 비활성화
    existing = (
        db.query(BillingKey)
        .filter(BillingKey.tenant_id == tenant_id, BillingKey.is_active == True)
        .all()
    )
    for bk in existing:
        bk.is_active = False
        bk.deactivated_at = datetime.utcnow()

    new_bk = BillingKey(
        tenant_id=tenant_id,
        customer_key=customerKey,
        billing_key=data["billingKey"],
        card_company=card_info.get("issuerCode") or card_info.get("company"),
        card_number=card_info.get("number"),
        is_active=True,
    )
    db.add(new_bk)
    db.flush()

    subscription = db.query(Subscription).filter(Subscription.tenant_id == tenant_id).first()
    if subscription:
        subscription.billing_key_id = new_bk.id

    db.commit()

    logger.info("BillingKey saved for tenant_id=%s", tenant_id)
    return RedirectResponse(url="/account?status=success", status_code=302)


@router.get("/fail")
async def billing_fail(
    code: str = Query(""),
    message: str = Query(""),
):
    """토스 카드 등록 실패 콜백"""
    logger.warning("Toss billing auth failed: code=%s, message=%s", code, message)
    return RedirectResponse(
        url=f"/account?status=fail&code={quote(code)}&message={quote(message)}",
        status_code=302,
    )


# ──────────────────────────────────────────────
# 2단계: 첫 결제 (신규 구독 / 체험 전환 / 재구독)
# ──────────────────────────────────────────────


@router.post("/pay", response_model=BillingPayResponse)
@limiter.limit(RATE_LIMIT_PAYMENT)
async def billing_pay(
    request: Request,
    req: BillingPayRequest,
    user: dict = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """저장된 billingKey로 구독 결제 실행"""
    tenant = get_owned_tenant(db, req.tenant_id, user)

    if not is_paid_plan(req.plan):
        raise HTTPException(status_code=400, detail="유효하지 않은 플랜입니다.")

    # 재시도된 요청이면 기존 결과 반환
    if req.idempotency_key:
        existing = find_existing_payment(db, req.idempotency_key, tenant.tenant_id)
        if existing:
            return BillingPayResponse(
                success=True,
                message="이미 처리된 결제입니다.",
                order_id=existing.order_id,
                amount=existing.amount,
                duplicate=True,
            )

    bk = get_active_billing_key(db, tenant.tenant_id)
    if not bk:
        return BillingPayResponse(success=False, message="등록된 카드가 없습니다. 먼저 카드를 등록해주세요.")

    subscription = db.query(Subscription).filter(Subscription.tenant_id == tenant.tenant_id).first()
    if subscription and subscription.status in ("active", "pending_cancel"):
        raise HTTPException(status_code=400, detail="이미 이용 중인 구독이 있습니다.")

    if not subscription:
        subscription = Subscription(
            tenant_id=tenant.tenant_id,
            email=tenant.email,
            plan=req.plan,
            status="expired",
        )
        db.add(subscription)
        db.commit()

    previous_status = subscription.status
    previous_plan = subscription.plan
    payment_type = "trial_convert" if previous_status == "trial" else "first"
    amount = get_plan_amount(req.plan)
    order_name = f"YAMOO {get_plan_name(req.plan)} 플랜"
    idempotency_key = req.idempotency_key or generate_idempotency_key(
        payment_type, tenant.tenant_id, int(time.time() * 1000)
    )

    try:
        payment, duplicate = await charge_with_idempotency(
            db,
            subscription,
            bk,
            amount=amount,
            plan=req.plan,
            payment_type=payment_type,
            order_name=order_name,
            idempotency_key=idempotency_key,
        )
    except PaymentInProgressError:
        raise HTTPException(status_code=409, detail="이미 결제가 진행 중입니다. 잠시 후 다시 확인해주세요.")
    except toss_client.TossPaymentError as exc:
        failed_id = make_order_id("FAILED", tenant.tenant_id)
        db.add(Payment(
            id=failed_id,
            tenant_id=tenant.tenant_id,
            email=subscription.email,
            order_id=failed_id,
            order_name=order_name,
            plan=req.plan,
            type=payment_type,
            amount=amount,
            status="failed",
            failure_reason=exc.message,
        ))
        db.commit()
        logger.warning("Payment failed: tenant_id=%s, reason=%s", tenant.tenant_id, exc.message)
        return BillingPayResponse(success=False, message=exc.message)

    if duplicate:
        return BillingPayResponse(
            success=True,
            message="이미 처리된 결제입니다.",
            order_id=payment.order_id,
            amount=payment.amount,
            duplicate=True,
        )

    now = datetime.utcnow()
    subscription.plan = req.plan
    subscription.status = "active"
    subscription.amount = amount
    subscription.base_amount = amount
    subscription.billing_key_id = bk.id
    subscription.current_period_start = now
    subscription.current_period_end = add_one_month(now)
    subscription.next_billing_date = subscription.current_period_end
    subscription.retry_count = 0
    subscription.cancel_at = None
    subscription.canceled_at = None
    subscription.pending_plan = None
    subscription.pending_amount = None
    record_history(
        db,
        subscription,
        "trial_convert" if payment_type == "trial_convert" else "new",
        previous_plan=previous_plan,
        previous_status=previous_status,
    )
    db.commit()

    await send_n8n_webhook({
        "event": "payment_success",
        "tenantId": tenant.tenant_id,
        "email": subscription.email,
        "plan": req.plan,
        "amount": amount,
    })

    return BillingPayResponse(
        success=True,
        message="결제가 완료되었습니다.",
        order_id=payment.order_id,
        amount=amount,
    )


# ──────────────────────────────────────────────
# 조회 엔드포인트
# ──────────────────────────────────────────────


@router.get("/status", response_model=BillingStatusResponse)
def billing_status(
    tenant_id: str = Query(...),
    user: dict = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """매장의 빌링 상태 조회"""
    get_owned_tenant(db, tenant_id, user)
    bk = get_active_billing_key(db, tenant_id)
    subscription = db.query(Subscription).filter(Subscription.tenant_id == tenant_id).first()
    policy = (subscription.price_policy or "standard") if subscription else None

    return BillingStatusResponse(
        success=True,
        has_billing_key=bk is not None,
        card_company=bk.card_company if bk else None,
        card_number=bk.card_number if bk else None,
        plan=subscription.plan if subscription else None,
        status=subscription.status if subscription else None,
        amount=subscription.amount if subscription else None,
        price_policy=policy,
        price_policy_label=PRICE_POLICY_LABELS.get(policy) if policy else None,
        next_billing_date=(
            subscription.next_billing_date.date().isoformat()
            if subscription and subscription.next_billing_date
            else None
        ),
    )


@router.get("/history", response_model=PaymentHistoryResponse)
def billing_history(
    tenant_id: str = Query(...),
    user: dict = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """결제 내역 조회 (진행 중 잠금 제외)"""
    get_owned_tenant(db, tenant_id, user)
    payments = (
        db.query(Payment)
        .filter(Payment.tenant_id == tenant_id, Payment.status != "pending")
        .order_by(Payment.created_at.desc())
        .limit(50)
        .all()
    )

    return PaymentHistoryResponse(
        success=True,
        payments=[
            PaymentHistoryItem(
                order_id=p.order_id,
                order_name=p.order_name,
                plan=p.plan,
                type=p.type,
                amount=p.amount,
                status=p.status,
                refunded_amount=p.refunded_amount or 0,
                failure_reason=p.failure_reason,
                paid_at=p.paid_at.isoformat() + "Z" if p.paid_at else None,
            )
            for p in payments
        ],
    )


@router.post("/deactivate", response_model=BillingKeyDeactivateResponse)
def billing_deactivate(
    tenant_id: str = Query(...),
    user: dict = Depends(require_auth),
    db: Session = Depends(get_db),
):
    """카드 등록 해제 (진행 중 구독이 있으면 불가)"""
    get_owned_tenant(db, tenant_id, user)

    subscription = db.query(Subscription).filter(Subscription.tenant_id == tenant_id).first()
    if subscription and subscription.status in ("active", "past_due"):
        return BillingKeyDeactivateResponse(
            success=False, message="이용 중인 구독이 있어 카드를 삭제할 수 없습니다. 먼저 구독을 해지해주세요."
        )

    bk_list = (
        db.query(BillingKey)
        .filter(BillingKey.tenant_id == tenant_id, BillingKey.is_active == True)
        .all()
    )
    if not bk_list:
        return BillingKeyDeactivateResponse(success=False, message="등록된 카드가 없습니다.")

    for bk in bk_list:
        bk.is_active = False
        bk.deactivated_at = datetime.utcnow()
    if subscription:
        subscription.billing_key_id = None

    db.commit()

    logger.info("BillingKey deactivated for tenant_id=%s", tenant_id)
    return BillingKeyDeactivateResponse(success=True, message="카드 등록이 해제되었습니다.")
