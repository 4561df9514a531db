"""토스페이먼츠 빌링 API 클라이언트"""

import logging
from base64 import b64encode

import httpx

from yamoo.config import TOSS_API_BASE, TOSS_SECRET_KEY, TOSS_TIMEOUT_SECONDS

logger = logging.getLogger("yamoo")


class TossPaymentError(Exception):
    def __init__(self, code: str, message: str, status_code: int | None = None):
        super().__init__(f"[{code}] {message}")
        self.code = code
        self.message = message
        self.status_code = status_code


def _toss_auth_header() -> dict:
    """토스페이먼츠 Basic 인증 헤더 생성"""
    if not TOSS_SECRET_KEY:
        raise TossPaymentError("CONFIG_ERROR", "TOSS_SECRET_KEY is not set")
    encoded = b64encode(f"{TOSS_SECRET_KEY}:".encode()).decode()
    return {
        "Authorization": f"Basic {encoded}",
        "Content-Type": "application/json",
    }


async def _request(method: str, path: str, body: dict | None = None) -> dict:
    headers = _toss_auth_header()
    try:
        async with httpx.AsyncClient() as client:
            resp = await client.request(
                method,
                f"{TOSS_API_BASE}{path}",
                json=body,
                headers=headers,
                timeout=TOSS_TIMEOUT_SECONDS,
            )
    except httpx.HTTPError as exc:
        logger.error("Toss request failed: %s %s: %s", method, path, exc)
        raise TossPaymentError("NETWORK_ERROR", str(exc)) from exc

    if resp.status_code != 200:
        try:
            data = resp.json()
        except ValueError:
            data = {}
        code = data.get("code", "UNKNOWN")
        message = data.get("message", f"토스 응답 오류: {resp.status_code}")
        logger.warning("Toss error: %s %s -> %d %s", method, path, resp.status_code, code)
        raise TossPaymentError(code, message, resp.status_code)

    return resp.json()


async def issue_billing_key(auth_key: str, customer_key: str) -> dict:
    """빌링키 발급"""
    return await _request(
        "POST",
        "/billing/authorizations/issue",
        {"authKey": auth_key, "customerKey": customer_key},
    )


async def pay_with_billing_key(
    billing_key: str,
    customer_key: str,
    amount: int,
    order_id: str,
    order_name: str,
    customer_email: str,
) -> dict:
    """빌링키로 결제"""
    return await _request(
        "POST",
        f"/billing/{billing_key}",
        {
            "customerKey": customer_key,
            "amount": amount,
            "orderId": order_id,
            "orderName": order_name,
            "customerEmail": customer_email,
        },
    )


async def get_payment(payment_key: str) -> dict:
    return await _request("GET", f"/payments/{payment_key}")


async def cancel_payment(payment_key: str, cancel_reason: str, cancel_amount: int | None = None) -> dict:
    """결제 취소 (cancel_amount가 있으면 부분 취소, 없으면 전액 취소)"""
    body: dict = {"cancelReason": cancel_reason}
    if cancel_amount is not None and cancel_amount > 0:
        body["cancelAmount"] = cancel_amount
    return await _request("POST", f"/payments/{payment_key}/cancel", body)


def cancellable_amount(toss_payment: dict) -> int:
    """토스 기준 남은 취소 가능 금액"""
    total = toss_payment.get("totalAmount", 0)
    cancels = toss_payment.get("cancels") or []
    return total - sum(c.get("cancelAmount", 0) for c in cancels)
