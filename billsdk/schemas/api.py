"""Request bodies for the HTTP binding."""

from typing import Any

from pydantic import BaseModel, Field

from billsdk.models.catalog import BillingInterval
from billsdk.models.subscription import CancelMode


class CustomerCreate(BaseModel):
    """Schema for registering a customer."""

    external_id: str = Field(..., min_length=1, max_length=255)
    email: str = Field(..., min_length=3, max_length=255)
    name: str | None = Field(default=None, max_length=255)
    metadata: dict[str, Any] | None = None


class SubscriptionCreate(BaseModel):
    """Schema for subscribing a customer to a plan."""

    customer_id: str
    plan_code: str
    interval: BillingInterval = BillingInterval.MONTHLY
    success_url: str | None = None
    cancel_url: str | None = None


class SubscriptionChange(BaseModel):
    customer_id: str
    new_plan_code: str
    new_interval: BillingInterval | None = None
    prorate: bool = True


class SubscriptionCancel(BaseModel):
    customer_id: str
    mode: CancelMode = CancelMode.PERIOD_END


class RefundCreate(BaseModel):
    """Schema for refunding all or part of a payment."""

    payment_id: str
    amount: int | None = Field(default=None, gt=0)
    reason: str | None = None


class RenewalRun(BaseModel):
    customer_id: str | None = None
    limit: int | None = Field(default=None, ge=1)
    dry_run: bool = False
