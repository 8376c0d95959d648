"""Resolved dependencies shared by every billing service."""

from dataclasses import dataclass, field, replace
from datetime import datetime

from billsdk.adapters.payment import PaymentAdapter
from billsdk.adapters.schema import Schema
from billsdk.adapters.storage import StorageAdapter
from billsdk.core.config import Settings, settings
from billsdk.models.catalog import PlanCatalog
from billsdk.services.behaviors import BillingBehaviors
from billsdk.services.failure_policy import MarkPastDuePolicy, PaymentFailurePolicy
from billsdk.services.plan_change import DeferDowngradesPolicy, PlanChangePolicy
from billsdk.services.time_provider import TimeProvider


@dataclass
class BillingContext:
    catalog: PlanCatalog
    storage: StorageAdapter
    payment: PaymentAdapter
    time_provider: TimeProvider
    schema: Schema
    behaviors: BillingBehaviors = field(default_factory=BillingBehaviors)
    plan_change_policy: PlanChangePolicy = field(default_factory=DeferDowngradesPolicy)
    failure_policy: PaymentFailurePolicy = field(default_factory=MarkPastDuePolicy)
    settings: Settings = field(default_factory=lambda: settings)

    async def now(self, customer_id: str | None = None) -> datetime:
        return await self.time_provider.now(customer_id)

    def bound_to(self, storage: StorageAdapter) -> "BillingContext":
        """Copy of this context whose storage and clock read through a transaction-bound adapter."""
        return replace(self, storage=storage, time_provider=self.time_provider.bind(storage))
