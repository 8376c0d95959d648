"""Subscription repository for data access."""

from datetime import datetime
from typing import Any

from billsdk.adapters.schema import Tables
from billsdk.adapters.storage import SortBy, SortDirection, StorageAdapter, Where, WhereOperator
from billsdk.models.shared import generate_id
from billsdk.models.subscription import (
    ENTITLED_STATUSES,
    LIVE_STATUSES,
    Subscription,
    SubscriptionStatus,
)

_NEWEST_FIRST = SortBy("created_at", SortDirection.DESC)


def _values(statuses: tuple[SubscriptionStatus, ...]) -> list[str]:
    return [s.value for s in statuses]


class SubscriptionRepository:
    """Repository for Subscription records."""

    def __init__(self, storage: StorageAdapter):
        self.storage = storage

    async def get_by_id(self, subscription_id: str) -> Subscription | None:
        row = await self.storage.find_one(Tables.SUBSCRIPTION, [Where("id", subscription_id)])
        return Subscription.model_validate(row) if row else None

    async def _latest(
        self, customer_id: str, statuses: tuple[SubscriptionStatus, ...]
    ) -> Subscription | None:
        rows = await self.storage.find_many(
            Tables.SUBSCRIPTION,
            where=[
                Where("customer_id", customer_id),
                Where("status", _values(statuses), WhereOperator.IN),
            ],
            sort_by=_NEWEST_FIRST,
            limit=1,
        )
        return Subscription.model_validate(rows[0]) if rows else None

    async def get_live_for_customer(self, customer_id: str) -> Subscription | None:
        """Get the customer's trialing, active or past_due subscription."""
        return await self._latest(customer_id, LIVE_STATUSES)

    async def get_entitled_for_customer(self, customer_id: str) -> Subscription | None:
        """Get the customer's subscription that currently grants features."""
        return await self._latest(customer_id, ENTITLED_STATUSES)

    async def get_pending_for_customer(self, customer_id: str) -> Subscription | None:
        return await self._latest(customer_id, (SubscriptionStatus.PENDING,))

    async def get_all_for_customer(
        self, customer_id: str, statuses: tuple[SubscriptionStatus, ...] | None = None
    ) -> list[Subscription]:
        where = [Where("customer_id", customer_id)]
        if statuses:
            where.append(Where("status", _values(statuses), WhereOperator.IN))
        rows = await self.storage.find_many(Tables.SUBSCRIPTION, where=where, sort_by=_NEWEST_FIRST)
        return [Subscription.model_validate(r) for r in rows]

    async def get_due(
        self,
        now: datetime,
        statuses: tuple[SubscriptionStatus, ...],
        customer_id: str | None = None,
        limit: int | None = None,
    ) -> list[Subscription]:
        """Get subscriptions in ``statuses`` whose current period ended at or before ``now``."""
        where = [
            Where("status", _values(statuses), WhereOperator.IN),
            Where("current_period_end", now, WhereOperator.LTE),
        ]
        if customer_id is not None:
            where.append(Where("customer_id", customer_id))
        rows = await self.storage.find_many(
            Tables.SUBSCRIPTION,
            where=where,
            sort_by=SortBy("current_period_end"),
            limit=limit,
        )
        return [Subscription.model_validate(r) for r in rows]

    async def create(self, data: dict[str, Any], now: datetime) -> Subscription:
        row = {
            "id": generate_id(),
            "provider_subscription_id": None,
            "provider_checkout_session_id": None,
            "canceled_at": None,
            "cancel_at": None,
            "trial_start": None,
            "trial_end": None,
            "scheduled_plan_code": None,
            "scheduled_interval": None,
            "metadata": {},
            **data,
            "created_at": now,
            "updated_at": now,
        }
        if row["current_period_end"] <= row["current_period_start"]:
            raise ValueError("current_period_end must be after current_period_start")
        return Subscription.model_validate(await self.storage.create(Tables.SUBSCRIPTION, row))

    async def update(
        self, subscription_id: str, data: dict[str, Any], now: datetime
    ) -> Subscription:
        """Apply a compound update in a single write."""
        row = await self.storage.update(
            Tables.SUBSCRIPTION,
            [Where("id", subscription_id)],
            {**data, "updated_at": now},
        )
        if row is None:
            raise ValueError(f"Subscription {subscription_id} not found")
        subscription = Subscription.model_validate(row)
        if subscription.current_period_end <= subscription.current_period_start:
            raise ValueError("current_period_end must be after current_period_start")
        return subscription

    async def cancel(
        self, subscription_id: str, canceled_at: datetime, now: datetime
    ) -> Subscription:
        return await self.update(
            subscription_id,
            {
                "status": SubscriptionStatus.CANCELED.value,
                "canceled_at": canceled_at,
                "cancel_at": None,
                "scheduled_plan_code": None,
                "scheduled_interval": None,
            },
            now,
        )
