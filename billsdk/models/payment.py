"""Payment ledger record."""

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict


class PaymentType(str, Enum):
    SUBSCRIPTION = "subscription"
    RENEWAL = "renewal"
    UPGRADE = "upgrade"
    REFUND = "refund"


class PaymentStatus(str, Enum):
    """Payment status enum."""

    PENDING = "pending"
    SUCCEEDED = "succeeded"
    FAILED = "failed"
    REFUNDED = "refunded"


class Payment(BaseModel):
    """Ledger entry. Succeeded rows only ever change by growing ``refunded_amount``."""

    model_config = ConfigDict(from_attributes=True)

    id: str
    customer_id: str
    subscription_id: str | None = None
    type: PaymentType
    status: PaymentStatus
    amount: int
    currency: str
    provider_payment_id: str | None = None
    refunded_amount: int = 0
    metadata: dict[str, Any] | None = None
    created_at: datetime
    updated_at: datetime

    @property
    def refundable_amount(self) -> int:
        return self.amount - self.refunded_amount
