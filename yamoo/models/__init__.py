from yamoo.models.tenant import Tenant
from yamoo.models.subscription import Subscription, SubscriptionHistory
from yamoo.models.billing import BillingKey, Payment

__all__ = [
    "Tenant",
    "Subscription",
    "SubscriptionHistory",
    "BillingKey",
    "Payment",
]
