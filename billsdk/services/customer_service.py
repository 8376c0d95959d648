"""Service for registering billing customers."""

import logging
from typing import Any

from billsdk.adapters.storage import StorageAdapter
from billsdk.core.context import BillingContext
from billsdk.core.errors import InvalidRequestError
from billsdk.models.customer import Customer
from billsdk.repositories.customer_repository import CustomerRepository

logger = logging.getLogger(__name__)


class CustomerService:
    def __init__(self, ctx: BillingContext):
        self.ctx = ctx
        self.customer_repo = CustomerRepository(ctx.storage)

    async def create_customer(
        self,
        external_id: str,
        email: str,
        name: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> Customer:
        """Register a customer, or return the existing one for ``external_id``."""
        if not external_id:
            raise InvalidRequestError("external_id is required")
        if not email:
            raise InvalidRequestError("email is required")
        now = await self.ctx.now(external_id)

        async def create(tx: StorageAdapter) -> Customer:
            repo = CustomerRepository(tx)
            existing = await repo.get_by_external_id(external_id)
            if existing is not None:
                return existing
            customer = await repo.create(external_id, email, now, name=name, metadata=metadata)
            logger.info("Created customer %s (%s)", customer.id, external_id)
            return customer

        return await self.ctx.storage.transaction(create)

    async def get_customer(self, external_id: str) -> Customer | None:
        return await self.customer_repo.get_by_external_id(external_id)
