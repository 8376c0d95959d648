"""Service for subscription creation, plan changes and cancellation."""

import logging
from dataclasses import dataclass
from datetime import datetime, timedelta

from billsdk.adapters.payment import (
    ProcessPaymentParams,
    ProcessPaymentResult,
    ProcessPaymentStatus,
)
from billsdk.adapters.storage import StorageAdapter
from billsdk.core.context import BillingContext
from billsdk.core.errors import (
    CustomerNotFoundError,
    InvalidRequestError,
    PaymentFailedError,
    SubscriptionNotFoundError,
)
from billsdk.models.catalog import BillingInterval, Plan, Price
from billsdk.models.customer import Customer
from billsdk.models.payment import Payment, PaymentStatus, PaymentType
from billsdk.models.subscription import (
    LIVE_STATUSES,
    CancelMode,
    Subscription,
    SubscriptionStatus,
)
from billsdk.repositories.customer_repository import CustomerRepository
from billsdk.repositories.payment_repository import PaymentRepository
from billsdk.repositories.subscription_repository import SubscriptionRepository
from billsdk.schemas.billing import (
    ChangeSubscriptionResult,
    CreateSubscriptionResult,
    ProrationDetail,
)
from billsdk.services.behaviors import CancelEvent
from billsdk.services.payment_service import charge_customer, customer_info
from billsdk.services.plan_change import ChangeAction
from billsdk.services.proration import calculate_proration
from billsdk.services.subscription_dates import add_interval

logger = logging.getLogger(__name__)


@dataclass
class _Outcome:
    """Result of a transactional step; failures are raised after commit."""

    subscription: Subscription
    payment: Payment | None = None
    redirect_url: str | None = None
    error: str | None = None
    action: ChangeAction | None = None
    proration: ProrationDetail | None = None


async def require_customer(storage: StorageAdapter, external_id: str) -> Customer:
    customer = await CustomerRepository(storage).get_by_external_id(external_id)
    if not customer:
        raise CustomerNotFoundError(f"Customer '{external_id}' not found")
    return customer


async def activate_subscription(
    tx: StorageAdapter,
    subscription: Subscription,
    now: datetime,
    provider_subscription_id: str | None = None,
    restart_period: bool = False,
) -> Subscription:
    """Make ``subscription`` the customer's live subscription.

    Any other live subscription of the same customer is canceled first, and
    the subscription becomes trialing while its trial is still running. With
    ``restart_period`` a non-trial subscription's first period starts at
    ``now`` (used when a checkout is confirmed some time after it began).
    """
    repo = SubscriptionRepository(tx)
    for other in await repo.get_all_for_customer(subscription.customer_id, LIVE_STATUSES):
        if other.id != subscription.id:
            await repo.cancel(other.id, now, now)
            logger.info(
                "Canceled previous subscription %s (%s) for customer %s",
                other.id,
                other.plan_code,
                other.customer_id,
            )

    in_trial = subscription.trial_end is not None and subscription.trial_end > now
    status = SubscriptionStatus.TRIALING if in_trial else SubscriptionStatus.ACTIVE
    update: dict = {
        "status": status.value,
        "provider_subscription_id": provider_subscription_id
        or subscription.provider_subscription_id,
    }
    if restart_period and subscription.trial_end is None and now > subscription.current_period_start:
        update["current_period_start"] = now
        update["current_period_end"] = add_interval(now, subscription.interval)
    return await repo.update(subscription.id, update, now)


async def cancel_subscription_now(
    tx: StorageAdapter, subscription: Subscription, now: datetime, reason: str = "canceled"
) -> Subscription:
    """Cancel immediately and fail any payment still pending for the subscription."""
    payments = PaymentRepository(tx)
    pending = await payments.get_pending_for_subscription(subscription.id)
    if pending:
        await payments.mark_failed(pending, now, reason)
    return await SubscriptionRepository(tx).cancel(subscription.id, now, now)


class SubscriptionService:
    """Service orchestrating the subscription lifecycle against catalog, storage and gateway."""

    def __init__(self, ctx: BillingContext):
        self.ctx = ctx
        self.subscription_repo = SubscriptionRepository(ctx.storage)

    async def get_subscription(self, customer_id: str) -> Subscription | None:
        """Get the customer's live subscription, or a pending checkout if there is none."""
        customer = await require_customer(self.ctx.storage, customer_id)
        subscription = await self.subscription_repo.get_live_for_customer(customer.id)
        if subscription is None:
            subscription = await self.subscription_repo.get_pending_for_customer(customer.id)
        return subscription

    # ── Create ──

    async def create_subscription(
        self,
        customer_id: str,
        plan_code: str,
        interval: BillingInterval | str = BillingInterval.MONTHLY,
        success_url: str | None = None,
        cancel_url: str | None = None,
    ) -> CreateSubscriptionResult:
        """Subscribe a customer to a plan.

        Free prices activate immediately. Paid prices go through the payment
        adapter: an ``active`` result activates now, a ``pending`` result
        leaves the subscription pending until the webhook confirms it.

        Raises:
            CustomerNotFoundError: Unknown customer.
            PlanNotFoundError: Unknown plan.
            InvalidRequestError: The plan has no price for ``interval``.
            PaymentFailedError: The adapter declined the payment.
        """
        plan = self.ctx.catalog.get_plan(plan_code)
        price = plan.price_for(interval)
        now = await self.ctx.now(customer_id)

        async def create(tx: StorageAdapter) -> _Outcome:
            customer = await require_customer(tx, customer_id)
            await self._supersede_pending(tx, customer, now)
            subscription = await self._insert(tx, customer, plan, price, now)

            if price.is_free:
                subscription = await activate_subscription(tx, subscription, now)
                logger.info("Activated free subscription %s (%s)", subscription.id, plan.code)
                return _Outcome(subscription)

            result = await self.ctx.payment.process_payment(
                ProcessPaymentParams(
                    customer=customer_info(customer),
                    subscription_id=subscription.id,
                    plan_code=plan.code,
                    interval=price.interval.value,
                    amount=price.amount,
                    currency=price.currency,
                    success_url=success_url,
                    cancel_url=cancel_url,
                )
            )
            await CustomerRepository(tx).set_provider_customer_id(
                customer, result.provider_customer_id, now
            )
            return await self._apply_process_result(tx, subscription, price, result, now)

        outcome = await self.ctx.storage.transaction(create)
        if outcome.error is not None:
            raise PaymentFailedError(
                outcome.error, payment_id=outcome.payment.id if outcome.payment else None
            )
        return CreateSubscriptionResult(
            subscription=outcome.subscription,
            payment=outcome.payment,
            redirect_url=outcome.redirect_url,
        )

    async def _supersede_pending(self, tx: StorageAdapter, customer: Customer, now: datetime) -> None:
        repo = SubscriptionRepository(tx)
        for pending in await repo.get_all_for_customer(customer.id, (SubscriptionStatus.PENDING,)):
            await cancel_subscription_now(tx, pending, now, reason="superseded")
            logger.info("Superseded pending checkout %s", pending.id)

    async def _insert(
        self, tx: StorageAdapter, customer: Customer, plan: Plan, price: Price, now: datetime
    ) -> Subscription:
        trial_end = None
        if price.trial_days and not price.is_free:
            trial_end = now + timedelta(days=price.trial_days)
        return await SubscriptionRepository(tx).create(
            {
                "customer_id": customer.id,
                "plan_code": plan.code,
                "interval": price.interval.value,
                "status": SubscriptionStatus.PENDING.value,
                "current_period_start": now,
                "current_period_end": trial_end or add_interval(now, price.interval),
                "trial_start": now if trial_end else None,
                "trial_end": trial_end,
            },
            now,
        )

    async def _apply_process_result(
        self,
        tx: StorageAdapter,
        subscription: Subscription,
        price: Price,
        result: ProcessPaymentResult,
        now: datetime,
    ) -> _Outcome:
        payments = PaymentRepository(tx)
        charged = subscription.trial_end is None

        if result.status == ProcessPaymentStatus.ACTIVE:
            subscription = await activate_subscription(
                tx, subscription, now, result.provider_subscription_id
            )
            payment = None
            if charged:
                payment = await payments.create(
                    customer_id=subscription.customer_id,
                    subscription_id=subscription.id,
                    payment_type=PaymentType.SUBSCRIPTION,
                    status=PaymentStatus.SUCCEEDED,
                    amount=price.amount,
                    currency=price.currency,
                    provider_payment_id=result.provider_payment_id,
                    now=now,
                )
            logger.info("Activated subscription %s (%s)", subscription.id, subscription.plan_code)
            return _Outcome(subscription, payment)

        if result.status == ProcessPaymentStatus.PENDING:
            subscription = await SubscriptionRepository(tx).update(
                subscription.id,
                {
                    "provider_checkout_session_id": result.session_id,
                    "provider_subscription_id": result.provider_subscription_id,
                },
                now,
            )
            payment = None
            if charged:
                payment = await payments.create(
                    customer_id=subscription.customer_id,
                    subscription_id=subscription.id,
                    payment_type=PaymentType.SUBSCRIPTION,
                    status=PaymentStatus.PENDING,
                    amount=price.amount,
                    currency=price.currency,
                    now=now,
                    metadata={"checkout_session_id": result.session_id},
                )
            logger.info("Subscription %s awaiting checkout confirmation", subscription.id)
            return _Outcome(subscription, payment, redirect_url=result.redirect_url)

        error = result.error or "Payment failed"
        payment = await payments.create(
            customer_id=subscription.customer_id,
            subscription_id=subscription.id,
            payment_type=PaymentType.SUBSCRIPTION,
            status=PaymentStatus.FAILED,
            amount=price.amount,
            currency=price.currency,
            now=now,
            metadata={"failure_reason": error},
        )
        subscription = await SubscriptionRepository(tx).cancel(subscription.id, now, now)
        logger.warning("Payment failed for subscription %s: %s", subscription.id, error)
        return _Outcome(subscription, payment, error=error)

    # ── Change ──

    async def change_subscription(
        self,
        customer_id: str,
        new_plan_code: str,
        new_interval: BillingInterval | str | None = None,
        prorate: bool = True,
    ) -> ChangeSubscriptionResult:
        """Move a customer's live subscription to another plan or interval.

        The configured plan change policy decides whether the switch happens
        now (with a prorated charge for any positive net) or is scheduled for
        the next renewal.

        Raises:
            SubscriptionNotFoundError: The customer has no live subscription.
            InvalidRequestError: Same plan and interval, currency mismatch, or
                a past_due subscription.
            PaymentFailedError: The proration charge failed; the subscription
                is left on its current plan.
        """
        new_plan = self.ctx.catalog.get_plan(new_plan_code)
        now = await self.ctx.now(customer_id)
        policy = self.ctx.plan_change_policy
        previous_plan_code = ""

        async def change(tx: StorageAdapter) -> _Outcome:
            nonlocal previous_plan_code
            customer = await require_customer(tx, customer_id)
            repo = SubscriptionRepository(tx)
            subscription = await repo.get_live_for_customer(customer.id)
            if subscription is None:
                raise SubscriptionNotFoundError(f"No active subscription for '{customer_id}'")
            if subscription.status == SubscriptionStatus.PAST_DUE:
                raise InvalidRequestError("Cannot change plan while payment is past due")
            previous_plan_code = subscription.plan_code

            old_price = self.ctx.catalog.get_plan(subscription.plan_code).price_for(
                subscription.interval
            )
            new_price = new_plan.price_for(new_interval or subscription.interval)
            if new_plan.code == subscription.plan_code and new_price.interval == old_price.interval:
                raise InvalidRequestError("Already on this plan")
            if new_price.currency != old_price.currency:
                raise InvalidRequestError(
                    f"Cannot change from {old_price.currency} to {new_price.currency} pricing"
                )

            action = policy.decide(old_price, new_price)
            if action == ChangeAction.SCHEDULED:
                subscription = await repo.update(
                    subscription.id,
                    {
                        "scheduled_plan_code": new_plan.code,
                        "scheduled_interval": new_price.interval.value,
                    },
                    now,
                )
                logger.info(
                    "Scheduled change of subscription %s to %s at %s",
                    subscription.id,
                    new_plan.code,
                    subscription.current_period_end.isoformat(),
                )
                return _Outcome(subscription, action=action)

            return await self._switch_now(
                tx, customer, subscription, old_price, new_plan, new_price, prorate, now
            )

        outcome = await self.ctx.storage.transaction(change)
        if outcome.error is not None:
            raise PaymentFailedError(
                outcome.error, payment_id=outcome.payment.id if outcome.payment else None
            )
        return ChangeSubscriptionResult(
            subscription=outcome.subscription,
            policy=policy.name,
            action=outcome.action,
            previous_plan_code=previous_plan_code,
            proration=outcome.proration,
            payment=outcome.payment,
        )

    async def _switch_now(
        self,
        tx: StorageAdapter,
        customer: Customer,
        subscription: Subscription,
        old_price: Price,
        new_plan: Plan,
        new_price: Price,
        prorate: bool,
        now: datetime,
    ) -> _Outcome:
        update: dict = {
            "plan_code": new_plan.code,
            "interval": new_price.interval.value,
            "scheduled_plan_code": None,
            "scheduled_interval": None,
        }

        # Trials switch plan without billing; the first charge happens at trial end
        if subscription.status == SubscriptionStatus.TRIALING:
            subscription = await SubscriptionRepository(tx).update(subscription.id, update, now)
            return _Outcome(subscription, action=ChangeAction.IMMEDIATE)

        proration = calculate_proration(
            old_price,
            new_price,
            subscription.current_period_start,
            subscription.current_period_end,
            now,
        )
        if new_price.interval != old_price.interval:
            # A new interval starts a fresh period billed in full, less the unused credit
            update["current_period_start"] = now
            update["current_period_end"] = add_interval(now, new_price.interval)
            amount_due = new_price.amount - proration.credit
        else:
            amount_due = proration.net

        payment = None
        amount_charged = 0
        if prorate and amount_due > 0:
            result = await charge_customer(
                self.ctx,
                customer,
                amount_due,
                new_price.currency,
                description=f"Upgrade from {subscription.plan_code} to {new_plan.code}",
                metadata={"subscription_id": subscription.id},
            )
            payment = await PaymentRepository(tx).create(
                customer_id=customer.id,
                subscription_id=subscription.id,
                payment_type=PaymentType.UPGRADE,
                status=PaymentStatus.SUCCEEDED if result.succeeded else PaymentStatus.FAILED,
                amount=amount_due,
                currency=new_price.currency,
                provider_payment_id=result.provider_payment_id,
                now=now,
                metadata={
                    "from_plan": subscription.plan_code,
                    "to_plan": new_plan.code,
                    "proration": proration.as_metadata(),
                    **({"failure_reason": result.error} if not result.succeeded else {}),
                },
            )
            if not result.succeeded:
                logger.warning(
                    "Upgrade charge failed for subscription %s: %s", subscription.id, result.error
                )
                return _Outcome(subscription, payment, error=result.error or "Charge failed")
            amount_charged = amount_due

        subscription = await SubscriptionRepository(tx).update(subscription.id, update, now)
        logger.info(
            "Changed subscription %s to %s (charged %d)", subscription.id, new_plan.code, amount_charged
        )
        return _Outcome(
            subscription,
            payment,
            action=ChangeAction.IMMEDIATE,
            proration=ProrationDetail.from_proration(proration, amount_charged),
        )

    # ── Cancel ──

    async def cancel_subscription(
        self, customer_id: str, mode: CancelMode | str = CancelMode.PERIOD_END
    ) -> Subscription:
        """Cancel now, or at the end of the current period (the default)."""
        mode = CancelMode(mode)
        now = await self.ctx.now(customer_id)

        async def cancel(tx: StorageAdapter) -> Subscription:
            customer = await require_customer(tx, customer_id)
            repo = SubscriptionRepository(tx)
            subscription = await repo.get_live_for_customer(customer.id)
            if subscription is None:
                subscription = await repo.get_pending_for_customer(customer.id)
            if subscription is None:
                raise SubscriptionNotFoundError(f"No subscription to cancel for '{customer_id}'")

            event = CancelEvent(subscription=subscription, customer=customer, mode=mode, now=now)
            return await self.ctx.behaviors.run(
                "on_subscription_cancel",
                self.ctx.bound_to(tx),
                event,
                lambda: self.apply_cancel(tx, event),
            )

        return await self.ctx.storage.transaction(cancel)

    async def apply_cancel(self, tx: StorageAdapter, event: CancelEvent) -> Subscription:
        subscription = event.subscription
        if event.mode == CancelMode.IMMEDIATE or subscription.status == SubscriptionStatus.PENDING:
            canceled = await cancel_subscription_now(tx, subscription, event.now)
            logger.info("Canceled subscription %s immediately", subscription.id)
            return canceled

        if subscription.cancel_at is not None:
            return subscription
        scheduled = await SubscriptionRepository(tx).update(
            subscription.id, {"cancel_at": subscription.current_period_end}, event.now
        )
        logger.info(
            "Subscription %s will cancel at %s",
            subscription.id,
            subscription.current_period_end.isoformat(),
        )
        return scheduled
