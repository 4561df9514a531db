from yamoo.services.payment_text import (
    ScheduleScenario,
    format_price,
    get_payment_schedule_text,
    resolve_scenario,
)


def test_format_price():
    assert format_price(39000) == "39,000"
    assert format_price(0) == "0"


def test_downgrade_mentions_refund_and_new_recurring_amount():
    text = get_payment_schedule_text(
        4000, full_amount=5000, is_change_plan=True, is_downgrade=True, refund_amount=1000
    )
    assert "1,000원" in text
    assert "매월 5,000원" in text
    assert "4,000" not in text


def test_downgrade_with_immediate_charge_states_net_refund():
    text = get_payment_schedule_text(
        1000,
        full_amount=39000,
        is_change_plan=True,
        is_downgrade=True,
        new_plan_payment_amount=24700,
        current_refund_amount=62700,
    )
    assert text.startswith("지금 24,700원이 결제되고")
    assert "(실 환불: 38,000원)" in text
    assert "매월 39,000원" in text


def test_upgrade_without_refund():
    text = get_payment_schedule_text(4000, full_amount=5000, is_change_plan=True)
    assert text == "지금 4,000원이 결제되고, 다음 결제일부터 매월 5,000원이 자동 결제됩니다."


def test_upgrade_with_refund_states_net_payment():
    text = get_payment_schedule_text(
        62700,
        full_amount=99000,
        is_change_plan=True,
        new_plan_payment_amount=62700,
        current_refund_amount=24700,
    )
    assert "(실 부담: 38,000원)" in text
    assert "매월 99,000원" in text


def test_trial_immediate_with_and_without_card():
    with_card = get_payment_schedule_text(39000, is_trial_immediate=True, has_billing_key=True)
    assert with_card == "지금 39,000원이 결제되고, 매월 동일한 날짜에 39,000원이 자동 결제됩니다."

    no_card = get_payment_schedule_text(39000, is_trial_immediate=True)
    assert no_card.startswith("카드 등록 후 39,000원이 즉시 결제되고")


def test_reserve_active_and_trial():
    active = get_payment_schedule_text(
        99000, is_reserve=True, current_period_end="2026-11-01", next_billing_date="2026-11-01"
    )
    assert active == "2026-11-01부터 매월 99,000원이 자동으로 결제됩니다."

    trial = get_payment_schedule_text(99000, is_reserve=True, next_billing_date="2026-11-01")
    assert trial.startswith("무료체험 종료일인 2026-11-01부터")


def test_default_new_subscription():
    assert get_payment_schedule_text(39000) == "39,000원이 즉시 결제되고, 매월 동일한 날짜에 자동 결제됩니다."


def test_plan_change_takes_priority_over_trial():
    scenario = resolve_scenario(
        full_amount=5000, is_change_plan=True, is_trial_immediate=True, has_billing_key=True
    )
    assert scenario == ScheduleScenario.PLAN_CHANGE_UPGRADE


def test_plan_change_without_full_amount_falls_through():
    assert resolve_scenario(is_change_plan=True) == ScheduleScenario.NEW_SUBSCRIPTION
    assert resolve_scenario(is_change_plan=True, is_reserve=True, next_billing_date="2026-11-01") == (
        ScheduleScenario.RESERVE_TRIAL
    )


def test_reserve_without_date_uses_default():
    assert resolve_scenario(is_reserve=True) == ScheduleScenario.NEW_SUBSCRIPTION


def test_custom_price_formatter():
    text = get_payment_schedule_text(39000, format_price=lambda p: f"₩{p}")
    assert text.startswith("₩39000원")
