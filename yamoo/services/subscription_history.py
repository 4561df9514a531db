from sqlalchemy.orm import Session

from yamoo.models.subscription import Subscription, SubscriptionHistory


def record_history(
    db: Session,
    subscription: Subscription,
    change_type: str,
    previous_plan: str | None = None,
    previous_status: str | None = None,
    changed_by: str = "user",
    note: str | None = None,
) -> SubscriptionHistory:
    """Append a history row for the subscription's current state. Caller commits."""
    entry = SubscriptionHistory(
        tenant_id=subscription.tenant_id,
        email=subscription.email,
        plan=subscription.plan,
        status=subscription.status,
        amount=subscription.amount,
        period_start=subscription.current_period_start,
        period_end=subscription.current_period_end,
        change_type=change_type,
        previous_plan=previous_plan,
        previous_status=previous_status,
        changed_by=changed_by,
        note=note,
    )
    db.add(entry)
    return entry
