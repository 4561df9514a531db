"""결제 관련 공통 텍스트

Every payment/subscription screen shows the same refund policy and the same
one-line description of the next charge, so both live here.
"""

from enum import Enum
from typing import Callable

# 환불 규정 (공통)
REFUND_POLICY_ITEMS = [
    "새 플랜은 즉시 적용됩니다.",
    "플랜 변경 시 환불 금액이 있을 경우 영업일 기준 3~5일 내 환불됩니다.",
    "결제 실패 시 서비스 이용이 제한될 수 있습니다.",
]

# 결제 동의 라벨
AGREEMENT_LABEL = "결제/환불 규정에 동의합니다 (필수)"


class ScheduleScenario(str, Enum):
    NEW_SUBSCRIPTION = "new_subscription"
    PLAN_CHANGE_UPGRADE = "plan_change_upgrade"
    PLAN_CHANGE_DOWNGRADE = "plan_change_downgrade"
    TRIAL_IMMEDIATE_WITH_CARD = "trial_immediate_with_card"
    TRIAL_IMMEDIATE_NO_CARD = "trial_immediate_no_card"
    RESERVE_ACTIVE = "reserve_active"
    RESERVE_TRIAL = "reserve_trial"


def format_price(price: int) -> str:
    return f"{price:,}"


def resolve_scenario(
    *,
    full_amount: int | None = None,
    is_change_plan: bool = False,
    is_downgrade: bool = False,
    is_reserve: bool = False,
    is_trial_immediate: bool = False,
    has_billing_key: bool = False,
    current_period_end: str | None = None,
    next_billing_date: str | None = None,
) -> ScheduleScenario:
    """Pick the scenario for a set of flags; the first matching rule wins."""
    if is_change_plan and full_amount:
        if is_downgrade:
            return ScheduleScenario.PLAN_CHANGE_DOWNGRADE
        return ScheduleScenario.PLAN_CHANGE_UPGRADE
    if is_trial_immediate and has_billing_key:
        return ScheduleScenario.TRIAL_IMMEDIATE_WITH_CARD
    if is_trial_immediate:
        return ScheduleScenario.TRIAL_IMMEDIATE_NO_CARD
    if is_reserve and current_period_end and next_billing_date:
        return ScheduleScenario.RESERVE_ACTIVE
    if is_reserve and next_billing_date:
        return ScheduleScenario.RESERVE_TRIAL
    return ScheduleScenario.NEW_SUBSCRIPTION


def get_payment_schedule_text(
    amount: int,
    *,
    full_amount: int | None = None,
    is_change_plan: bool = False,
    is_downgrade: bool = False,
    refund_amount: int | None = None,
    is_reserve: bool = False,
    is_trial_immediate: bool = False,
    has_billing_key: bool = False,
    current_period_end: str | None = None,
    next_billing_date: str | None = None,
    format_price: Callable[[int], str] = format_price,
    new_plan_payment_amount: int | None = None,
    current_refund_amount: int | None = None,
) -> str:
    """결제 스케줄 안내 문구 생성"""
    scenario = resolve_scenario(
        full_amount=full_amount,
        is_change_plan=is_change_plan,
        is_downgrade=is_downgrade,
        is_reserve=is_reserve,
        is_trial_immediate=is_trial_immediate,
        has_billing_key=has_billing_key,
        current_period_end=current_period_end,
        next_billing_date=next_billing_date,
    )

    if scenario in (ScheduleScenario.PLAN_CHANGE_UPGRADE, ScheduleScenario.PLAN_CHANGE_DOWNGRADE):
        recurring = f"다음 결제일부터 매월 {format_price(full_amount)}원이 자동 결제됩니다."
        refund = current_refund_amount if current_refund_amount is not None else (refund_amount or 0)

        # 다운그레이드: 미사용분 환불 + 새 정기결제 금액
        if scenario == ScheduleScenario.PLAN_CHANGE_DOWNGRADE and refund > 0:
            payment = new_plan_payment_amount or 0
            if payment > 0:
                return (
                    f"지금 {format_price(payment)}원이 결제되고, 기존 플랜 미사용분 "
                    f"{format_price(refund)}원은 3~5일 내 환불됩니다. "
                    f"(실 환불: {format_price(refund - payment)}원) {recurring}"
                )
            return f"기존 플랜 미사용분 {format_price(refund)}원은 3~5일 내 환불됩니다. {recurring}"

        payment = new_plan_payment_amount if new_plan_payment_amount is not None else amount
        if refund > 0:
            return (
                f"지금 {format_price(payment)}원이 결제되고, 기존 플랜 미사용분 "
                f"{format_price(refund)}원은 3~5일 내 환불됩니다. "
                f"(실 부담: {format_price(payment - refund)}원) {recurring}"
            )
        return f"지금 {format_price(payment)}원이 결제되고, {recurring}"

    if scenario == ScheduleScenario.TRIAL_IMMEDIATE_WITH_CARD:
        return (
            f"지금 {format_price(amount)}원이 결제되고, "
            f"매월 동일한 날짜에 {format_price(amount)}원이 자동 결제됩니다."
        )

    if scenario == ScheduleScenario.TRIAL_IMMEDIATE_NO_CARD:
        return f"카드 등록 후 {format_price(amount)}원이 즉시 결제되고, 매월 동일한 날짜에 자동 결제됩니다."

    if scenario == ScheduleScenario.RESERVE_ACTIVE:
        return f"{next_billing_date}부터 매월 {format_price(amount)}원이 자동으로 결제됩니다."

    if scenario == ScheduleScenario.RESERVE_TRIAL:
        return f"무료체험 종료일인 {next_billing_date}부터 매월 {format_price(amount)}원이 자동으로 결제됩니다."

    # 일반 결제 (처음 구독)
    return f"{format_price(amount)}원이 즉시 결제되고, 매월 동일한 날짜에 자동 결제됩니다."
