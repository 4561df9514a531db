import calendar
from datetime import datetime

# 플랜별 가격 (pricing 페이지와 동일)
PLAN_PRICES: dict[str, int] = {
    "trial": 0,
    "basic": 39000,
    "business": 99000,
}

PLAN_NAMES: dict[str, str] = {
    "trial": "Trial",
    "basic": "Basic",
    "business": "Business",
    "enterprise": "Enterprise",
}

PRICE_POLICY_LABELS: dict[str, str] = {
    "grandfathered": "가격 보호 (영구)",
    "protected_until": "기간 한정 가격 보호",
    "standard": "일반 (최신 가격 적용)",
}


def get_plan_amount(plan: str) -> int:
    return PLAN_PRICES.get(plan, 0)


def get_plan_name(plan: str) -> str:
    return PLAN_NAMES.get(plan, plan)


def is_paid_plan(plan: str) -> bool:
    return get_plan_amount(plan) > 0


def get_effective_amount(subscription, now: datetime | None = None) -> int:
    """구독자의 실제 정기결제 금액 (가격 정책 반영)"""
    base_amount = subscription.base_amount
    if base_amount is None:
        base_amount = get_plan_amount(subscription.plan)
    subscriber_amount = subscription.amount if subscription.amount is not None else base_amount

    policy = subscription.price_policy
    if policy == "grandfathered":
        return subscriber_amount
    if policy == "protected_until":
        protected_until = subscription.price_protected_until
        if protected_until and (now or datetime.utcnow()) < protected_until:
            return subscriber_amount
        return base_amount
    return base_amount


def add_one_month(value: datetime) -> datetime:
    """Same day next month, clamped to the month's last day (1/31 -> 2/28)."""
    year = value.year + (1 if value.month == 12 else 0)
    month = 1 if value.month == 12 else value.month + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)
