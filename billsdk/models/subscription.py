"""Subscription record and status enum."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class SubscriptionStatus(str, Enum):
    """Subscription status enum."""

    PENDING = "pending"  # awaiting checkout confirmation
    TRIALING = "trialing"
    ACTIVE = "active"
    PAST_DUE = "past_due"
    CANCELED = "canceled"


LIVE_STATUSES = (
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.PAST_DUE,
)

ENTITLED_STATUSES = (SubscriptionStatus.TRIALING, SubscriptionStatus.ACTIVE)


class CancelMode(str, Enum):
    IMMEDIATE = "immediate"
    PERIOD_END = "period_end"


class Subscription(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    plan_code: str
    interval: str
    status: SubscriptionStatus
    provider_subscription_id: str | None = None
    provider_checkout_session_id: str | None = None
    current_period_start: datetime
    current_period_end: datetime
    canceled_at: datetime | None = None
    cancel_at: datetime | None = None
    trial_start: datetime | None = None
    trial_end: datetime | None = None
    scheduled_plan_code: str | None = None
    scheduled_interval: str | None = None
    metadata: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def is_live(self) -> bool:
        return self.status in LIVE_STATUSES

    @property
    def has_scheduled_change(self) -> bool:
        return self.scheduled_plan_code is not None
