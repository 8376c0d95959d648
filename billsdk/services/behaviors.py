"""Overridable billing behaviors.

A behavior override is an async callable ``(ctx, event, default)`` where
``default`` runs the built-in behavior when awaited. Overrides run inside the
storage transaction of the operation that triggered them; ``ctx.storage`` is
the transaction-bound adapter.
"""

import logging
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

from billsdk.models.customer import Customer
from billsdk.models.payment import Payment
from billsdk.models.subscription import CancelMode, Subscription

logger = logging.getLogger(__name__)

R = TypeVar("R")

BehaviorFn = Callable[[Any, Any, Callable[[], Awaitable[Any]]], Awaitable[Any]]


class TrialEndAction(str, Enum):
    CONVERT = "convert"
    CANCEL = "cancel"


@dataclass
class CancelEvent:
    subscription: Subscription
    customer: Customer
    mode: CancelMode
    now: datetime


@dataclass
class RefundEvent:
    payment: Payment
    refund: Payment
    customer: Customer
    subscription: Subscription | None
    now: datetime

    @property
    def fully_refunded(self) -> bool:
        return self.payment.refunded_amount >= self.payment.amount


@dataclass
class TrialEndEvent:
    subscription: Subscription
    customer: Customer
    now: datetime


@dataclass
class BillingBehaviors:
    """Optional overrides for the engine's opinionated defaults."""

    on_subscription_cancel: BehaviorFn | None = None
    on_refund: BehaviorFn | None = None
    on_payment_failed: BehaviorFn | None = None
    on_trial_end: BehaviorFn | None = None

    async def run(
        self,
        name: str,
        ctx: Any,
        event: Any,
        default: Callable[[], Awaitable[R]],
    ) -> R:
        override: BehaviorFn | None = getattr(self, name)
        if override is None:
            logger.debug("Running default behavior: %s", name)
            return await default()
        logger.debug("Running user-defined behavior: %s", name)
        return await override(ctx, event, default)
