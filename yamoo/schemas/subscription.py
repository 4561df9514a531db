from typing import Literal

from pydantic import BaseModel, field_validator


class RefundPreviewResponse(BaseModel):
    tenant_id: str
    plan: str
    amount: int
    total_days: int
    days_left: int
    refund_amount: int


class ChangePlanRequest(BaseModel):
    new_plan: str
    mode: Literal["immediate", "scheduled"] = "immediate"
    idempotency_key: str | None = None


class ChangePlanPreviewResponse(BaseModel):
    current_plan: str
    new_plan: str
    is_downgrade: bool
    full_amount: int
    refund_amount: int
    prorated_amount: int
    next_billing_date: str | None = None
    schedule_text: str


class ChangePlanResponse(BaseModel):
    success: bool
    message: str
    mode: str
    order_id: str | None = None
    refund_amount: int = 0
    paid_amount: int = 0
    duplicate: bool = False


class CancelRequest(BaseModel):
    cancel_mode: Literal["scheduled", "immediate"]
    reason: str

    @field_validator("reason")
    @classmethod
    def reason_required(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("해지 사유를 입력해주세요.")
        return v.strip()


class CancelResponse(BaseModel):
    success: bool
    message: str
    cancel_mode: str
    cancel_at: str | None = None
    canceled_at: str | None = None
    refund_amount: int = 0


class SubscriptionHistoryItem(BaseModel):
    plan: str
    status: str
    amount: int
    change_type: str
    previous_plan: str | None = None
    previous_status: str | None = None
    changed_by: str
    note: str | None = None
    changed_at: str
