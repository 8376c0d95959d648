"""Applies gateway payment confirmations to storage idempotently."""

import logging
from datetime import datetime

from billsdk.adapters.payment import ConfirmResult, ConfirmStatus, WebhookRequest
from billsdk.adapters.storage import StorageAdapter
from billsdk.core.context import BillingContext
from billsdk.core.errors import ReconciliationError
from billsdk.models.payment import PaymentStatus, PaymentType
from billsdk.models.subscription import Subscription, SubscriptionStatus
from billsdk.repositories.customer_repository import CustomerRepository
from billsdk.repositories.payment_repository import PaymentRepository
from billsdk.repositories.subscription_repository import SubscriptionRepository
from billsdk.schemas.billing import WebhookAck
from billsdk.services.subscription_dates import add_interval
from billsdk.services.subscription_service import activate_subscription

logger = logging.getLogger(__name__)


class WebhookReconciler:
    """Turns a verified ``ConfirmResult`` into subscription and ledger updates.

    Every confirmation is applied inside one storage transaction. A repeated
    delivery is detected either by its provider payment id already being on
    the ledger or by the subscription having left the state the event would
    move it out of, and is acknowledged without changes.
    """

    def __init__(self, ctx: BillingContext):
        self.ctx = ctx

    async def handle_webhook(self, request: WebhookRequest) -> WebhookAck:
        """Verify a raw webhook through the payment adapter and reconcile it.

        Raises:
            WebhookVerificationError: The adapter rejected the signature.
            ReconciliationError: The event is valid but cannot be applied.
        """
        result = await self.ctx.payment.confirm_payment(request)
        if result is None:
            logger.debug("Webhook event acknowledged but not actionable")
            return WebhookAck()
        return await self.reconcile(result)

    async def reconcile(self, result: ConfirmResult) -> WebhookAck:
        now = await self.ctx.now()

        async def apply(tx: StorageAdapter) -> WebhookAck:
            subscription = await SubscriptionRepository(tx).get_by_id(result.subscription_id)
            if subscription is None:
                raise ReconciliationError(
                    f"Subscription {result.subscription_id} not found for confirmation"
                )

            if result.provider_payment_id:
                existing = await PaymentRepository(tx).get_by_provider_payment_id(
                    result.provider_payment_id, subscription.id
                )
                if existing is not None and existing.status != PaymentStatus.PENDING:
                    return self._duplicate(subscription, result)

            if result.status == ConfirmStatus.ACTIVE:
                return await self._confirm_active(tx, subscription, result, now)
            return await self._confirm_failed(tx, subscription, result, now)

        return await self.ctx.storage.transaction(apply)

    def _duplicate(self, subscription: Subscription, result: ConfirmResult) -> WebhookAck:
        logger.info(
            "Ignoring duplicate %s confirmation for subscription %s",
            result.status.value,
            subscription.id,
        )
        return WebhookAck(duplicate=True)

    async def _confirm_active(
        self, tx: StorageAdapter, subscription: Subscription, result: ConfirmResult, now: datetime
    ) -> WebhookAck:
        payments = PaymentRepository(tx)
        pending = await payments.get_pending_for_subscription(subscription.id)

        if subscription.status == SubscriptionStatus.CANCELED:
            # Money was taken for a subscription that is no longer wanted; keep it on the ledger
            await payments.create(
                customer_id=subscription.customer_id,
                subscription_id=subscription.id,
                payment_type=PaymentType.SUBSCRIPTION,
                status=PaymentStatus.SUCCEEDED,
                amount=result.amount or 0,
                currency=result.currency or self.ctx.settings.DEFAULT_CURRENCY,
                provider_payment_id=result.provider_payment_id,
                now=now,
                metadata={"orphaned": True},
            )
            logger.error(
                "Payment confirmed for canceled subscription %s; recorded as orphaned",
                subscription.id,
            )
            return WebhookAck(applied=True, details={"orphaned": True})

        if subscription.status == SubscriptionStatus.PAST_DUE:
            return await self._recover_past_due(tx, subscription, result, now)

        if subscription.status != SubscriptionStatus.PENDING and pending is None:
            return self._duplicate(subscription, result)

        customer = await CustomerRepository(tx).get_by_id(subscription.customer_id)
        if customer is None:
            raise ReconciliationError(f"Customer {subscription.customer_id} not found")
        await CustomerRepository(tx).set_provider_customer_id(
            customer, result.provider_customer_id, now
        )

        if subscription.status == SubscriptionStatus.PENDING:
            subscription = await activate_subscription(
                tx, subscription, now, result.provider_subscription_id, restart_period=True
            )

        if pending is not None:
            await payments.mark_succeeded(pending, now, result.provider_payment_id)
        elif result.amount:
            await payments.create(
                customer_id=subscription.customer_id,
                subscription_id=subscription.id,
                payment_type=PaymentType.SUBSCRIPTION,
                status=PaymentStatus.SUCCEEDED,
                amount=result.amount,
                currency=result.currency or self.ctx.settings.DEFAULT_CURRENCY,
                provider_payment_id=result.provider_payment_id,
                now=now,
            )

        logger.info(
            "Subscription %s confirmed via webhook (%s)", subscription.id, subscription.status.value
        )
        return WebhookAck(applied=True)

    async def _recover_past_due(
        self, tx: StorageAdapter, subscription: Subscription, result: ConfirmResult, now: datetime
    ) -> WebhookAck:
        """A confirmed payment for a past_due subscription settles the unpaid period."""
        price = self.ctx.catalog.get_plan(subscription.plan_code).price_for(subscription.interval)
        await PaymentRepository(tx).create(
            customer_id=subscription.customer_id,
            subscription_id=subscription.id,
            payment_type=PaymentType.RENEWAL,
            status=PaymentStatus.SUCCEEDED,
            amount=result.amount if result.amount is not None else price.amount,
            currency=result.currency or price.currency,
            provider_payment_id=result.provider_payment_id,
            now=now,
            metadata={"period_end": subscription.current_period_end.isoformat()},
        )
        await SubscriptionRepository(tx).update(
            subscription.id,
            {
                "status": SubscriptionStatus.ACTIVE.value,
                "current_period_start": subscription.current_period_end,
                "current_period_end": add_interval(subscription.current_period_end, price.interval),
            },
            now,
        )
        logger.info("Past due subscription %s recovered via webhook", subscription.id)
        return WebhookAck(applied=True)

    async def _confirm_failed(
        self, tx: StorageAdapter, subscription: Subscription, result: ConfirmResult, now: datetime
    ) -> WebhookAck:
        if subscription.status in (SubscriptionStatus.PAST_DUE, SubscriptionStatus.CANCELED):
            return self._duplicate(subscription, result)

        payments = PaymentRepository(tx)
        pending = await payments.get_pending_for_subscription(subscription.id)
        if pending is not None:
            await payments.mark_failed(pending, now, "payment_failed")
        else:
            await payments.create(
                customer_id=subscription.customer_id,
                subscription_id=subscription.id,
                payment_type=(
                    PaymentType.SUBSCRIPTION
                    if subscription.status == SubscriptionStatus.PENDING
                    else PaymentType.RENEWAL
                ),
                status=PaymentStatus.FAILED,
                amount=result.amount or 0,
                currency=result.currency or self.ctx.settings.DEFAULT_CURRENCY,
                provider_payment_id=result.provider_payment_id,
                now=now,
                metadata={"failure_reason": "payment_failed"},
            )

        repo = SubscriptionRepository(tx)
        if subscription.status == SubscriptionStatus.PENDING:
            # A checkout that never went live is abandoned rather than left past_due
            await repo.cancel(subscription.id, now, now)
            logger.warning("Checkout payment failed; canceled subscription %s", subscription.id)
        else:
            await repo.update(subscription.id, {"status": SubscriptionStatus.PAST_DUE.value}, now)
            logger.warning("Payment failed; subscription %s is past due", subscription.id)
        return WebhookAck(applied=True)
