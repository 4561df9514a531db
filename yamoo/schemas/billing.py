from pydantic import BaseModel, Field


class BillingPayRequest(BaseModel):
    tenant_id: str
    plan: str
    idempotency_key: str | None = None  # None이면 요청 시각 기반으로 생성


class BillingPayResponse(BaseModel):
    success: bool
    message: str
    order_id: str | None = None
    amount: int | None = None
    duplicate: bool = False


class BillingStatusResponse(BaseModel):
    success: bool
    has_billing_key: bool = False
    card_company: str | None = None
    card_number: str | None = None
    plan: str | None = None
    status: str | None = None
    amount: int | None = None
    price_policy: str | None = None
    price_policy_label: str | None = None
    next_billing_date: str | None = None


class BillingKeyDeactivateResponse(BaseModel):
    success: bool
    message: str


class PaymentHistoryItem(BaseModel):
    order_id: str | None = None
    order_name: str | None = None
    plan: str
    type: str
    amount: int
    status: str
    refunded_amount: int = 0
    failure_reason: str | None = None
    paid_at: str | None = None


class PaymentHistoryResponse(BaseModel):
    success: bool
    payments: list[PaymentHistoryItem] = []


class AdminRefundRequest(BaseModel):
    payment_id: str
    amount: int | None = Field(default=None, gt=0)  # None이면 남은 금액 전액
    reason: str


class AdminRefundResponse(BaseModel):
    success: bool
    message: str
    refund_amount: int = 0
