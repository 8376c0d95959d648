"""Customer repository for data access."""

from datetime import datetime
from typing import Any

from billsdk.adapters.schema import Tables
from billsdk.adapters.storage import StorageAdapter, Where
from billsdk.models.customer import Customer
from billsdk.models.shared import generate_id


class CustomerRepository:
    """Repository for Customer records."""

    def __init__(self, storage: StorageAdapter):
        self.storage = storage

    async def get_by_id(self, customer_id: str) -> Customer | None:
        row = await self.storage.find_one(Tables.CUSTOMER, [Where("id", customer_id)])
        return Customer.model_validate(row) if row else None

    async def get_by_external_id(self, external_id: str) -> Customer | None:
        row = await self.storage.find_one(Tables.CUSTOMER, [Where("external_id", external_id)])
        return Customer.model_validate(row) if row else None

    async def create(
        self,
        external_id: str,
        email: str,
        now: datetime,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Customer:
        row = await self.storage.create(
            Tables.CUSTOMER,
            {
                "id": generate_id(),
                "external_id": external_id,
                "email": email,
                "name": name,
                "provider_customer_id": None,
                "metadata": metadata or {},
                "created_at": now,
                "updated_at": now,
            },
        )
        return Customer.model_validate(row)

    async def set_provider_customer_id(
        self, customer: Customer, provider_customer_id: str | None, now: datetime
    ) -> Customer:
        """Store the gateway customer id the first time one is issued."""
        if not provider_customer_id or customer.provider_customer_id:
            return customer
        row = await self.storage.update(
            Tables.CUSTOMER,
            [Where("id", customer.id)],
            {"provider_customer_id": provider_customer_id, "updated_at": now},
        )
        return Customer.model_validate(row)
