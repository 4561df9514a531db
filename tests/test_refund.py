from datetime import date, datetime, timedelta

import pytest

from yamoo.services.refund import (
    calculate_prorated_amount,
    calculate_refund_amount,
    remaining_days,
    round_half_up,
)

DAY0 = date(2026, 3, 1)


def test_mid_period_refund():
    # used 16 days of 30 -> 14 days left
    today = DAY0 + timedelta(days=15)
    assert remaining_days(DAY0, DAY0 + timedelta(days=30), today) == (30, 14)
    assert calculate_refund_amount(59000, DAY0, DAY0 + timedelta(days=30), today) == 27533


def test_first_day_counts_as_used():
    refund = calculate_refund_amount(59000, DAY0, DAY0 + timedelta(days=30), today=DAY0)
    assert refund == 57033  # 59000 / 30 * 29


def test_no_refund_on_billing_date():
    next_billing = DAY0 + timedelta(days=30)
    assert calculate_refund_amount(59000, DAY0, next_billing, today=next_billing) == 0


def test_no_refund_after_period_end():
    next_billing = DAY0 + timedelta(days=30)
    assert calculate_refund_amount(59000, DAY0, next_billing, today=next_billing + timedelta(days=5)) == 0


@pytest.mark.parametrize("next_billing", [DAY0, DAY0 - timedelta(days=3)])
def test_degenerate_period_returns_zero(next_billing):
    assert calculate_refund_amount(39000, DAY0, next_billing, today=DAY0) == 0


def test_time_of_day_is_ignored():
    early = datetime(2026, 3, 1, 0, 1)
    late = datetime(2026, 3, 1, 23, 59)
    next_billing = datetime(2026, 3, 31, 9, 0)
    today = date(2026, 3, 11)
    assert calculate_refund_amount(39000, early, next_billing, today) == calculate_refund_amount(
        39000, late, next_billing, today
    )
    assert calculate_refund_amount(39000, late, next_billing, today) == 24700


def test_rounds_half_up():
    # 5 / 2 * 1 = 2.5 -> 3 (half-to-even would give 2)
    assert calculate_refund_amount(5, DAY0, DAY0 + timedelta(days=2), today=DAY0) == 3
    assert round_half_up(7, 2) == 4
    assert round_half_up(1, 3) == 0


def test_refund_never_exceeds_amount():
    next_billing = DAY0 + timedelta(days=31)
    for offset in range(-3, 40):
        refund = calculate_refund_amount(99000, DAY0, next_billing, today=DAY0 + timedelta(days=offset))
        assert 0 <= refund <= 99000


def test_days_left_bounded_before_period_start():
    total, left = remaining_days(DAY0, DAY0 + timedelta(days=30), today=DAY0 - timedelta(days=5))
    assert total == 30
    assert left == 30


def test_prorated_charge_for_new_plan():
    today = DAY0 + timedelta(days=10)
    assert calculate_prorated_amount(99000, DAY0, DAY0 + timedelta(days=30), today) == 62700
