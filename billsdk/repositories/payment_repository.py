"""Payment repository for data access."""

from datetime import datetime
from typing import Any

from billsdk.adapters.schema import Tables
from billsdk.adapters.storage import SortBy, SortDirection, StorageAdapter, Where, WhereOperator
from billsdk.models.payment import Payment, PaymentStatus, PaymentType
from billsdk.models.shared import generate_id

_NEWEST_FIRST = SortBy("created_at", SortDirection.DESC)


class PaymentRepository:
    """Repository for the append-only Payment ledger."""

    def __init__(self, storage: StorageAdapter):
        self.storage = storage

    async def get_all(
        self,
        customer_id: str | None = None,
        subscription_id: str | None = None,
        status: PaymentStatus | None = None,
        payment_type: PaymentType | None = None,
        skip: int = 0,
        limit: int | None = None,
    ) -> list[Payment]:
        """Get payments with optional filters, newest first."""
        where: list[Where] = []
        if customer_id:
            where.append(Where("customer_id", customer_id))
        if subscription_id:
            where.append(Where("subscription_id", subscription_id))
        if status:
            where.append(Where("status", status.value))
        if payment_type:
            where.append(Where("type", payment_type.value))
        rows = await self.storage.find_many(
            Tables.PAYMENT, where=where, sort_by=_NEWEST_FIRST, limit=limit, offset=skip
        )
        return [Payment.model_validate(r) for r in rows]

    async def get_by_id(self, payment_id: str) -> Payment | None:
        row = await self.storage.find_one(Tables.PAYMENT, [Where("id", payment_id)])
        return Payment.model_validate(row) if row else None

    async def get_by_provider_payment_id(
        self, provider_payment_id: str, subscription_id: str | None = None
    ) -> Payment | None:
        where = [Where("provider_payment_id", provider_payment_id)]
        if subscription_id:
            where.append(Where("subscription_id", subscription_id))
        row = await self.storage.find_one(Tables.PAYMENT, where)
        return Payment.model_validate(row) if row else None

    async def get_pending_for_subscription(self, subscription_id: str) -> Payment | None:
        rows = await self.storage.find_many(
            Tables.PAYMENT,
            where=[
                Where("subscription_id", subscription_id),
                Where("status", PaymentStatus.PENDING.value),
            ],
            sort_by=_NEWEST_FIRST,
            limit=1,
        )
        return Payment.model_validate(rows[0]) if rows else None

    async def get_pending_before(self, cutoff: datetime) -> list[Payment]:
        rows = await self.storage.find_many(
            Tables.PAYMENT,
            where=[
                Where("status", PaymentStatus.PENDING.value),
                Where("created_at", cutoff, WhereOperator.LT),
            ],
            sort_by=SortBy("created_at"),
        )
        return [Payment.model_validate(r) for r in rows]

    async def create(
        self,
        customer_id: str,
        payment_type: PaymentType,
        status: PaymentStatus,
        amount: int,
        currency: str,
        now: datetime,
        subscription_id: str | None = None,
        provider_payment_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Payment:
        row = await self.storage.create(
            Tables.PAYMENT,
            {
                "id": generate_id(),
                "customer_id": customer_id,
                "subscription_id": subscription_id,
                "type": payment_type.value,
                "status": status.value,
                "amount": amount,
                "currency": currency,
                "provider_payment_id": provider_payment_id,
                "refunded_amount": 0,
                "metadata": metadata or {},
                "created_at": now,
                "updated_at": now,
            },
        )
        return Payment.model_validate(row)

    async def _resolve_pending(self, payment: Payment, data: dict[str, Any]) -> Payment:
        if payment.status != PaymentStatus.PENDING:
            raise ValueError(f"Payment {payment.id} is {payment.status.value}, not pending")
        row = await self.storage.update(Tables.PAYMENT, [Where("id", payment.id)], data)
        return Payment.model_validate(row)

    async def mark_succeeded(
        self, payment: Payment, now: datetime, provider_payment_id: str | None = None
    ) -> Payment:
        data: dict[str, Any] = {"status": PaymentStatus.SUCCEEDED.value, "updated_at": now}
        if provider_payment_id:
            data["provider_payment_id"] = provider_payment_id
        return await self._resolve_pending(payment, data)

    async def mark_failed(self, payment: Payment, now: datetime, reason: str | None) -> Payment:
        metadata = {**(payment.metadata or {}), "failure_reason": reason}
        return await self._resolve_pending(
            payment,
            {"status": PaymentStatus.FAILED.value, "metadata": metadata, "updated_at": now},
        )

    async def add_refunded_amount(self, payment: Payment, amount: int, now: datetime) -> Payment:
        """Grow ``refunded_amount``; the only change allowed on a settled payment."""
        refunded = payment.refunded_amount + amount
        if amount <= 0 or refunded > payment.amount:
            raise ValueError(f"Invalid refund amount {amount} for payment {payment.id}")
        row = await self.storage.update(
            Tables.PAYMENT,
            [Where("id", payment.id)],
            {"refunded_amount": refunded, "updated_at": now},
        )
        return Payment.model_validate(row)
