"""Pro-rata (일할) refund and charge calculation.

Day counting works on local calendar days so the hour at which a subscription
was created never changes the result. Amounts are whole KRW and are rounded
half up on the exact ratio, never through float rounding.
"""

from datetime import date, datetime
from decimal import ROUND_HALF_UP, Decimal


def _to_date(value: date | datetime) -> date:
    if isinstance(value, datetime):
        return value.date()
    return value


def round_half_up(numerator: int, denominator: int) -> int:
    """Round numerator/denominator to the nearest integer, halves away from zero."""
    quotient = Decimal(numerator) / Decimal(denominator)
    return int(quotient.quantize(Decimal("1"), rounding=ROUND_HALF_UP))


def remaining_days(
    period_start: date | datetime,
    next_billing_date: date | datetime,
    today: date | None = None,
) -> tuple[int, int]:
    """Return (total_days, days_left) for the period. Today counts as a used day."""
    start = _to_date(period_start)
    end = _to_date(next_billing_date)
    today = _to_date(today) if today is not None else date.today()

    total_days = (end - start).days
    used_days = (today - start).days + 1
    days_left = max(0, total_days - used_days)
    return total_days, min(days_left, max(total_days, 0))


def calculate_refund_amount(
    current_amount: int,
    current_period_start: date | datetime,
    next_billing_date: date | datetime,
    today: date | None = None,
) -> int:
    """미사용 일수 비율로 환불 금액 계산.

    Returns 0 for a degenerate period (next billing date on or before the
    period start) instead of raising.
    """
    total_days, days_left = remaining_days(current_period_start, next_billing_date, today)
    if total_days <= 0:
        return 0
    return round_half_up(current_amount * days_left, total_days)


def calculate_prorated_amount(
    amount: int,
    period_start: date | datetime,
    next_billing_date: date | datetime,
    today: date | None = None,
) -> int:
    """Charge for the remaining days of the current period at ``amount`` per period."""
    return calculate_refund_amount(amount, period_start, next_billing_date, today)
