"""Pluggable responses to a failed renewal charge."""

from abc import ABC, abstractmethod
from dataclasses import dataclass
from datetime import datetime, timedelta
from enum import Enum

from billsdk.core.config import settings
from billsdk.models.customer import Customer
from billsdk.models.payment import Payment
from billsdk.models.subscription import Subscription
from billsdk.services.subscription_dates import is_in_grace_period


class FailureAction(str, Enum):
    KEEP_PAST_DUE = "keep_past_due"
    RETRY = "retry"
    CANCEL = "cancel"
    DOWNGRADE = "downgrade"


@dataclass(frozen=True)
class FailureDecision:
    action: FailureAction
    plan_code: str | None = None
    reason: str | None = None


@dataclass
class PaymentFailedEvent:
    """State handed to failure policies and the ``on_payment_failed`` behavior.

    ``payment`` is the failed renewal row when the policy runs right after a
    charge failure, and None when a later sweep revisits a past_due
    subscription.
    """

    subscription: Subscription
    customer: Customer
    now: datetime
    failed_attempts: int
    last_attempt_at: datetime | None
    payment: Payment | None = None
    error: str | None = None


class PaymentFailurePolicy(ABC):
    name: str

    @abstractmethod
    def decide(self, event: PaymentFailedEvent) -> FailureDecision:
        """Decide what happens to a past_due subscription."""
        pass  # pragma: no cover


class MarkPastDuePolicy(PaymentFailurePolicy):
    """Leave the subscription past_due until the host intervenes."""

    name = "mark_past_due"

    def decide(self, event: PaymentFailedEvent) -> FailureDecision:
        return FailureDecision(FailureAction.KEEP_PAST_DUE)


class GracePeriodPolicy(PaymentFailurePolicy):
    """Cancel once the grace period after the unpaid period end has elapsed."""

    name = "grace_period"

    def __init__(self, days: int | None = None):
        self.days = settings.GRACE_PERIOD_DAYS if days is None else days

    def decide(self, event: PaymentFailedEvent) -> FailureDecision:
        if not is_in_grace_period(event.subscription, event.now, self.days):
            return FailureDecision(FailureAction.CANCEL, reason="grace_period_expired")
        return FailureDecision(FailureAction.KEEP_PAST_DUE)


class RetryPolicy(PaymentFailurePolicy):
    """Retry the charge on later sweeps, at most once per ``retry_after``, then cancel."""

    name = "retry"

    def __init__(self, max_attempts: int = 3, retry_after: timedelta = timedelta(days=1)):
        if max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")
        self.max_attempts = max_attempts
        self.retry_after = retry_after

    def decide(self, event: PaymentFailedEvent) -> FailureDecision:
        if event.failed_attempts >= self.max_attempts:
            return FailureDecision(FailureAction.CANCEL, reason="retries_exhausted")
        if event.last_attempt_at is None or event.now - event.last_attempt_at >= self.retry_after:
            return FailureDecision(FailureAction.RETRY)
        return FailureDecision(FailureAction.KEEP_PAST_DUE)


class DowngradePolicy(PaymentFailurePolicy):
    """Move the subscription onto a free plan right away."""

    name = "downgrade"

    def __init__(self, plan_code: str):
        self.plan_code = plan_code

    def decide(self, event: PaymentFailedEvent) -> FailureDecision:
        return FailureDecision(FailureAction.DOWNGRADE, plan_code=self.plan_code)
