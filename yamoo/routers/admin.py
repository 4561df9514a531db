"""Back-office payment operations."""

import logging

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlalchemy.orm import Session

from yamoo.database import get_db
from yamoo.dependencies import require_admin
from yamoo.models.billing import Payment
from yamoo.schemas.billing import AdminRefundRequest, AdminRefundResponse, PaymentHistoryItem
from yamoo.services import toss_client
from yamoo.services.payment_service import refund_payment

logger = logging.getLogger("yamoo")

router = APIRouter(prefix="/api/admin", tags=["admin"])


@router.get("/payments", response_model=list[PaymentHistoryItem])
def list_payments(
    tenant_id: str | None = Query(None),
    status: str | None = Query(None),
    limit: int = Query(100, ge=1, le=500),
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
):
    """결제 내역 조회 (전체 또는 매장별)"""
    query = db.query(Payment).filter(Payment.status != "pending")
    if tenant_id:
        query = query.filter(Payment.tenant_id == tenant_id)
    if status:
        query = query.filter(Payment.status == status)
    payments = query.order_by(Payment.created_at.desc()).limit(limit).all()
    return [
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
    ]


@router.post("/payments/refund", response_model=AdminRefundResponse)
async def admin_refund(
    req: AdminRefundRequest,
    db: Session = Depends(get_db),
    user: dict = Depends(require_admin),
):
    """관리자 수동 환불 (부분/전액)"""
    payment = db.query(Payment).filter(Payment.id == req.payment_id).first()
    if not payment:
        raise HTTPException(status_code=404, detail="결제 내역을 찾을 수 없습니다.")
    if payment.status != "done" or payment.amount <= 0:
        raise HTTPException(status_code=400, detail="환불할 수 없는 결제입니다.")

    refundable = payment.amount - (payment.refunded_amount or 0)
    if refundable <= 0:
        raise HTTPException(status_code=400, detail="이미 전액 환불된 결제입니다.")
    requested = req.amount or refundable
    if requested > refundable:
        raise HTTPException(status_code=400, detail=f"환불 가능 금액({refundable}원)을 초과했습니다.")

    try:
        refund = await refund_payment(db, payment, requested, req.reason, "refund")
    except toss_client.TossPaymentError as exc:
        db.rollback()
        logger.error("Admin refund failed: payment_id=%s %s", payment.id, exc)
        raise HTTPException(status_code=502, detail=f"환불 실패: {exc.message}")

    if not refund:
        return AdminRefundResponse(success=False, message="환불 가능한 금액이 없습니다.")

    db.commit()
    logger.info("Admin %s refunded %d of payment %s", user.get("email"), -refund.amount, payment.id)
    return AdminRefundResponse(success=True, message="환불이 완료되었습니다.", refund_amount=-refund.amount)
