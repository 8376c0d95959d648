"""Service for ledger reads, off-session charges and the stale checkout sweep."""

import logging
from datetime import datetime, timedelta

from billsdk.adapters.payment import ChargeParams, ChargeResult, ChargeStatus, CustomerInfo
from billsdk.adapters.storage import StorageAdapter
from billsdk.core.context import BillingContext
from billsdk.core.errors import CustomerNotFoundError, PaymentNotFoundError
from billsdk.models.customer import Customer
from billsdk.models.payment import Payment
from billsdk.models.subscription import SubscriptionStatus
from billsdk.repositories.customer_repository import CustomerRepository
from billsdk.repositories.payment_repository import PaymentRepository
from billsdk.repositories.subscription_repository import SubscriptionRepository

logger = logging.getLogger(__name__)

NO_PAYMENT_METHOD = "Customer does not have a saved payment method"


def customer_info(customer: Customer) -> CustomerInfo:
    return CustomerInfo(
        id=customer.id,
        external_id=customer.external_id,
        email=customer.email,
        name=customer.name,
        provider_customer_id=customer.provider_customer_id,
    )


async def charge_customer(
    ctx: BillingContext,
    customer: Customer,
    amount: int,
    currency: str,
    description: str,
    metadata: dict | None = None,
) -> ChargeResult:
    """Charge a saved payment method, or fail without calling the gateway if none exists."""
    if not customer.provider_customer_id:
        return ChargeResult(status=ChargeStatus.FAILED, error=NO_PAYMENT_METHOD)
    return await ctx.payment.charge(
        ChargeParams(
            customer=customer_info(customer),
            amount=amount,
            currency=currency,
            description=description,
            metadata=metadata or {},
        )
    )


class PaymentService:
    """Service for reading the payment ledger and resolving abandoned checkouts."""

    def __init__(self, ctx: BillingContext):
        self.ctx = ctx
        self.customer_repo = CustomerRepository(ctx.storage)
        self.payment_repo = PaymentRepository(ctx.storage)

    async def list_payments(
        self, customer_id: str, limit: int | None = None, offset: int = 0
    ) -> list[Payment]:
        customer = await self.customer_repo.get_by_external_id(customer_id)
        if not customer:
            raise CustomerNotFoundError(f"Customer '{customer_id}' not found")
        return await self.payment_repo.get_all(customer_id=customer.id, skip=offset, limit=limit)

    async def get_payment(self, payment_id: str) -> Payment:
        payment = await self.payment_repo.get_by_id(payment_id)
        if not payment:
            raise PaymentNotFoundError(f"Payment '{payment_id}' not found")
        return payment

    async def expire_stale_checkouts(
        self, older_than: timedelta = timedelta(hours=24), now: datetime | None = None
    ) -> int:
        """Fail pending payments older than ``older_than`` and cancel their checkouts.

        Returns:
            Number of pending payments resolved.
        """
        if now is None:
            now = await self.ctx.now()
        cutoff = now - older_than

        async def expire(tx: StorageAdapter) -> int:
            payments = PaymentRepository(tx)
            subscriptions = SubscriptionRepository(tx)
            stale = await payments.get_pending_before(cutoff)
            for payment in stale:
                await payments.mark_failed(payment, now, "checkout_expired")
                if payment.subscription_id is None:
                    continue
                subscription = await subscriptions.get_by_id(payment.subscription_id)
                if subscription and subscription.status == SubscriptionStatus.PENDING:
                    await subscriptions.cancel(subscription.id, now, now)
                    logger.info("Expired checkout for subscription %s", subscription.id)
            return len(stale)

        expired = await self.ctx.storage.transaction(expire)
        if expired:
            logger.info("Expired %d stale checkout payment(s)", expired)
        return expired
