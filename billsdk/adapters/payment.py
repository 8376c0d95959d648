"""Payment adapter protocol.

Gateway-agnostic boundary for checkout, webhook confirmation, direct charges
and refunds. Adapters report failures through typed results instead of
raising, so the engine can always persist a consistent ledger entry. The only
exception is ``confirm_payment``, which raises ``WebhookVerificationError``
when a webhook signature does not verify.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any


class ProcessPaymentStatus(str, Enum):
    ACTIVE = "active"
    PENDING = "pending"
    FAILED = "failed"


class ChargeStatus(str, Enum):
    SUCCESS = "success"
    FAILED = "failed"


class RefundStatus(str, Enum):
    REFUNDED = "refunded"
    FAILED = "failed"


class ConfirmStatus(str, Enum):
    ACTIVE = "active"
    FAILED = "failed"


@dataclass
class CustomerInfo:
    """Customer details handed to the gateway."""

    id: str
    external_id: str
    email: str
    name: str | None = None
    provider_customer_id: str | None = None


@dataclass
class ProcessPaymentParams:
    customer: CustomerInfo
    subscription_id: str
    plan_code: str
    interval: str
    amount: int
    currency: str
    success_url: str | None = None
    cancel_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ProcessPaymentResult:
    """Outcome of starting a subscription payment."""

    status: ProcessPaymentStatus
    redirect_url: str | None = None
    session_id: str | None = None
    provider_customer_id: str | None = None
    provider_subscription_id: str | None = None
    provider_payment_id: str | None = None
    error: str | None = None


@dataclass
class ChargeParams:
    customer: CustomerInfo
    amount: int
    currency: str
    description: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class ChargeResult:
    status: ChargeStatus
    provider_payment_id: str | None = None
    error: str | None = None

    @property
    def succeeded(self) -> bool:
        return self.status == ChargeStatus.SUCCESS


@dataclass
class RefundParams:
    provider_payment_id: str
    amount: int
    currency: str
    reason: str | None = None


@dataclass
class RefundResult:
    status: RefundStatus
    provider_refund_id: str | None = None
    error: str | None = None


@dataclass
class WebhookRequest:
    """Raw webhook delivery: body bytes plus lower-cased headers."""

    body: bytes
    headers: dict[str, str] = field(default_factory=dict)

    def header(self, name: str) -> str | None:
        return self.headers.get(name.lower())


@dataclass
class ConfirmResult:
    """Normalized outcome of a gateway webhook event."""

    subscription_id: str
    status: ConfirmStatus
    provider_subscription_id: str | None = None
    provider_customer_id: str | None = None
    provider_payment_id: str | None = None
    amount: int | None = None
    currency: str | None = None


class PaymentAdapter(ABC):
    """Abstract base class for payment gateways."""

    id: str = "custom"

    @abstractmethod
    async def process_payment(self, params: ProcessPaymentParams) -> ProcessPaymentResult:
        """Start payment for a new subscription (checkout session or synchronous charge)."""
        pass  # pragma: no cover

    @abstractmethod
    async def confirm_payment(self, request: WebhookRequest) -> ConfirmResult | None:
        """Verify and normalize a webhook. None means acknowledged but not actionable."""
        pass  # pragma: no cover

    @abstractmethod
    async def charge(self, params: ChargeParams) -> ChargeResult:
        """Charge a saved payment method off-session."""
        pass  # pragma: no cover

    @abstractmethod
    async def refund(self, params: RefundParams) -> RefundResult:
        """Refund part or all of a previous charge."""
        pass  # pragma: no cover
