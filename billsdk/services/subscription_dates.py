"""Billing period arithmetic and subscription date helpers."""

import calendar as cal
from datetime import datetime, timedelta

from billsdk.models.catalog import BillingInterval
from billsdk.models.subscription import Subscription, SubscriptionStatus

DEFAULT_GRACE_PERIOD_DAYS = 3


def add_interval(dt: datetime, interval: BillingInterval | str) -> datetime:
    """Add one billing interval to a datetime."""
    interval = BillingInterval(interval)
    if interval == BillingInterval.WEEKLY:
        return dt + timedelta(weeks=1)
    elif interval == BillingInterval.MONTHLY:
        return add_months(dt, 1)
    elif interval == BillingInterval.QUARTERLY:
        return add_months(dt, 3)
    elif interval == BillingInterval.YEARLY:
        return add_months(dt, 12)
    raise ValueError(f"Unknown interval: {interval}")  # pragma: no cover


def add_months(dt: datetime, months: int) -> datetime:
    """Add months to a datetime, clamping to last day of month."""
    month = dt.month - 1 + months
    year = dt.year + month // 12
    month = month % 12 + 1
    max_day = cal.monthrange(year, month)[1]
    day = min(dt.day, max_day)
    return dt.replace(year=year, month=month, day=day)


def is_in_grace_period(
    subscription: Subscription, now: datetime, days: int = DEFAULT_GRACE_PERIOD_DAYS
) -> bool:
    """True while a past_due subscription is within ``days`` of its period end."""
    if subscription.status != SubscriptionStatus.PAST_DUE:
        return False
    return now < subscription.current_period_end + timedelta(days=days)


def days_until_renewal(subscription: Subscription, now: datetime) -> int:
    """Whole days until the current period ends, never negative."""
    remaining = subscription.current_period_end - now
    return max(0, remaining.days + (1 if remaining.seconds or remaining.microseconds else 0))


def is_trial_ended(subscription: Subscription, now: datetime) -> bool:
    if subscription.status != SubscriptionStatus.TRIALING or subscription.trial_end is None:
        return False
    return now >= subscription.trial_end
