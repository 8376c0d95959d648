"""Result schemas returned by engine operations."""

from decimal import Decimal
from typing import Any

from pydantic import BaseModel, Field

from billsdk.models.catalog import FeatureType
from billsdk.models.payment import Payment
from billsdk.models.subscription import Subscription
from billsdk.services.plan_change import ChangeAction
from billsdk.services.proration import Proration


class CreateSubscriptionResult(BaseModel):
    subscription: Subscription
    payment: Payment | None = None
    redirect_url: str | None = None


class ProrationDetail(BaseModel):
    remaining_fraction: Decimal
    credit: int
    charge: int
    net: int
    amount_charged: int = 0

    @classmethod
    def from_proration(cls, proration: Proration, amount_charged: int) -> "ProrationDetail":
        return cls(
            remaining_fraction=proration.remaining_fraction,
            credit=proration.credit,
            charge=proration.charge,
            net=proration.net,
            amount_charged=amount_charged,
        )


class ChangeSubscriptionResult(BaseModel):
    """Outcome of a plan change, including which policy decided it."""

    subscription: Subscription
    policy: str
    action: ChangeAction
    previous_plan_code: str
    proration: ProrationDetail | None = None
    payment: Payment | None = None


class FeatureAccess(BaseModel):
    code: str
    name: str
    type: FeatureType
    allowed: bool


class PlanChangeSummary(BaseModel):
    from_plan: str = Field(serialization_alias="from")
    to_plan: str = Field(serialization_alias="to")


class RenewalDetail(BaseModel):
    subscription_id: str
    customer_id: str
    status: str  # succeeded | failed | skipped | canceled | dry_run
    amount: int | None = None
    error: str | None = None
    plan_changed: PlanChangeSummary | None = None


class RenewalResult(BaseModel):
    processed: int = 0
    succeeded: int = 0
    failed: int = 0
    skipped: int = 0
    canceled: int = 0
    renewals: list[RenewalDetail] = Field(default_factory=list)

    def record(self, detail: RenewalDetail) -> None:
        self.processed += 1
        if detail.status == "succeeded":
            self.succeeded += 1
        elif detail.status == "failed":
            self.failed += 1
        elif detail.status == "canceled":
            self.canceled += 1
        else:
            self.skipped += 1
        self.renewals.append(detail)


class RefundOutcome(BaseModel):
    refund: Payment
    original_payment: Payment


class WebhookAck(BaseModel):
    received: bool = True
    applied: bool = False
    duplicate: bool = False
    details: dict[str, Any] | None = None
