"""Embeddable subscription billing engine."""

from billsdk.adapters import (
    ManualPaymentAdapter,
    MemoryStorageAdapter,
    MockPaymentAdapter,
    PaymentAdapter,
    SQLStorageAdapter,
    StorageAdapter,
)
from billsdk.engine import BillingEngine
from billsdk.models import BillingInterval, Feature, FeatureType, Plan, PlanCatalog, Price

__version__ = "0.1.0"

__all__ = [
    "BillingEngine",
    "BillingInterval",
    "Feature",
    "FeatureType",
    "ManualPaymentAdapter",
    "MemoryStorageAdapter",
    "MockPaymentAdapter",
    "PaymentAdapter",
    "Plan",
    "PlanCatalog",
    "Price",
    "SQLStorageAdapter",
    "StorageAdapter",
]
