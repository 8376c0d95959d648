from billsdk.models.catalog import BillingInterval, Feature, FeatureType, Plan, PlanCatalog, Price
from billsdk.models.customer import Customer
from billsdk.models.payment import Payment, PaymentStatus, PaymentType
from billsdk.models.subscription import (
    ENTITLED_STATUSES,
    LIVE_STATUSES,
    CancelMode,
    Subscription,
    SubscriptionStatus,
)

__all__ = [
    "BillingInterval",
    "CancelMode",
    "Customer",
    "ENTITLED_STATUSES",
    "Feature",
    "FeatureType",
    "LIVE_STATUSES",
    "Payment",
    "PaymentStatus",
    "PaymentType",
    "Plan",
    "PlanCatalog",
    "Price",
    "Subscription",
    "SubscriptionStatus",
]
