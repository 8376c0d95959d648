"""Service for the renewal sweep: period rolls, scheduled changes, trial ends and dunning."""

import logging
from datetime import datetime

from billsdk.adapters.storage import StorageAdapter
from billsdk.core.context import BillingContext
from billsdk.models.catalog import Price
from billsdk.models.customer import Customer
from billsdk.models.payment import PaymentStatus, PaymentType
from billsdk.models.subscription import Subscription, SubscriptionStatus
from billsdk.repositories.customer_repository import CustomerRepository
from billsdk.repositories.payment_repository import PaymentRepository
from billsdk.repositories.subscription_repository import SubscriptionRepository
from billsdk.schemas.billing import PlanChangeSummary, RenewalDetail, RenewalResult
from billsdk.services.behaviors import TrialEndAction, TrialEndEvent
from billsdk.services.failure_policy import FailureAction, FailureDecision, PaymentFailedEvent
from billsdk.services.payment_service import charge_customer
from billsdk.services.subscription_dates import add_interval
from billsdk.services.subscription_service import require_customer

logger = logging.getLogger(__name__)

DUE_STATUSES = (
    SubscriptionStatus.ACTIVE,
    SubscriptionStatus.TRIALING,
    SubscriptionStatus.PAST_DUE,
)


class RenewalService:
    """Idempotent sweep over subscriptions whose current period has ended.

    Each subscription is handled in its own storage transaction and re-read
    inside it, so a second run with the same ``now`` finds nothing left to do.
    """

    def __init__(self, ctx: BillingContext):
        self.ctx = ctx
        self.subscription_repo = SubscriptionRepository(ctx.storage)

    async def process_renewals(
        self,
        now: datetime | None = None,
        customer_id: str | None = None,
        limit: int | None = None,
        dry_run: bool = False,
    ) -> RenewalResult:
        """Renew, cancel or convert every due subscription.

        Args:
            now: Sweep time. Defaults to the time provider's current time.
            customer_id: Only process this customer's subscriptions.
            limit: Maximum number of subscriptions to process.
            dry_run: Report what would happen without charging or writing.

        Returns:
            Counts and a per-subscription breakdown.
        """
        if now is None:
            now = await self.ctx.now(customer_id)

        internal_customer_id = None
        if customer_id is not None:
            internal_customer_id = (await require_customer(self.ctx.storage, customer_id)).id

        due = await self.subscription_repo.get_due(
            now, DUE_STATUSES, customer_id=internal_customer_id, limit=limit
        )
        result = RenewalResult()

        for subscription in due:
            try:
                if dry_run:
                    detail = self._preview(subscription, now)
                else:
                    detail = await self.ctx.storage.transaction(
                        lambda tx, sub_id=subscription.id: self._renew_one(tx, sub_id, now)
                    )
            except Exception as e:
                logger.exception("Renewal failed for subscription %s", subscription.id)
                detail = RenewalDetail(
                    subscription_id=subscription.id,
                    customer_id=subscription.customer_id,
                    status="failed",
                    error=str(e),
                )
            result.record(detail)

        logger.info(
            "Processed %d due subscriptions: %d renewed, %d failed, %d canceled, %d skipped",
            result.processed,
            result.succeeded,
            result.failed,
            result.canceled,
            result.skipped,
        )
        return result

    def _preview(self, subscription: Subscription, now: datetime) -> RenewalDetail:
        detail = RenewalDetail(
            subscription_id=subscription.id,
            customer_id=subscription.customer_id,
            status="dry_run",
        )
        if subscription.cancel_at is not None and now >= subscription.cancel_at:
            detail.status = "canceled"
            return detail
        plan_code = subscription.scheduled_plan_code or subscription.plan_code
        interval = subscription.scheduled_interval or subscription.interval
        detail.amount = self.ctx.catalog.get_plan(plan_code).price_for(interval).amount
        if subscription.scheduled_plan_code:
            detail.plan_changed = PlanChangeSummary(
                from_plan=subscription.plan_code, to_plan=subscription.scheduled_plan_code
            )
        return detail

    async def _renew_one(self, tx: StorageAdapter, subscription_id: str, now: datetime) -> RenewalDetail:
        """Bring one subscription up to date, one period at a time, until it ends after ``now``.

        Each elapsed period gets its own renewal payment. The first failure
        leaves the subscription to its failure policy and stops the catch-up.
        """
        repo = SubscriptionRepository(tx)
        outcome = await self._renew_period(tx, subscription_id, now)
        if outcome.status not in ("succeeded", "failed"):
            return outcome

        charged = outcome.amount or 0
        while True:
            subscription = await repo.get_by_id(subscription_id)
            if (
                subscription is None
                or subscription.status != SubscriptionStatus.ACTIVE
                or subscription.current_period_end > now
            ):
                break
            step = await self._renew_period(tx, subscription_id, now)
            if outcome.status != "succeeded":
                # Already failed; only the policy's free-plan periods are rolled forward
                continue
            if step.status == "succeeded":
                charged += step.amount or 0
            else:
                outcome = step.model_copy(update={"plan_changed": outcome.plan_changed})

        if outcome.status == "succeeded":
            outcome.amount = charged
        return outcome

    async def _renew_period(
        self, tx: StorageAdapter, subscription_id: str, now: datetime
    ) -> RenewalDetail:
        repo = SubscriptionRepository(tx)
        subscription = await repo.get_by_id(subscription_id)
        if (
            subscription is None
            or subscription.status not in DUE_STATUSES
            or subscription.current_period_end > now
        ):
            return RenewalDetail(
                subscription_id=subscription_id,
                customer_id=subscription.customer_id if subscription else "",
                status="skipped",
            )

        customer = await CustomerRepository(tx).get_by_id(subscription.customer_id)
        if customer is None:
            raise ValueError(f"Customer {subscription.customer_id} not found")

        if subscription.cancel_at is not None and now >= subscription.cancel_at:
            await repo.cancel(subscription.id, subscription.cancel_at, now)
            logger.info("Subscription %s reached its cancellation date", subscription.id)
            return self._detail(subscription, "canceled")

        if subscription.status == SubscriptionStatus.PAST_DUE:
            return await self._revisit_past_due(tx, subscription, customer, now)

        if subscription.status == SubscriptionStatus.TRIALING:
            event = TrialEndEvent(subscription=subscription, customer=customer, now=now)

            async def default_trial_end() -> TrialEndAction:
                if customer.provider_customer_id:
                    return TrialEndAction.CONVERT
                return TrialEndAction.CANCEL

            action = await self.ctx.behaviors.run(
                "on_trial_end", self.ctx.bound_to(tx), event, default_trial_end
            )
            if action == TrialEndAction.CANCEL:
                await repo.cancel(
                    subscription.id, subscription.trial_end or subscription.current_period_end, now
                )
                logger.info("Trial ended without payment method; canceled %s", subscription.id)
                return self._detail(subscription, "canceled")

        plan_code = subscription.plan_code
        interval = subscription.interval
        plan_changed = None
        if subscription.scheduled_plan_code:
            plan_code = subscription.scheduled_plan_code
            interval = subscription.scheduled_interval or interval
            plan_changed = PlanChangeSummary(from_plan=subscription.plan_code, to_plan=plan_code)

        price = self.ctx.catalog.get_plan(plan_code).price_for(interval)
        return await self._charge_period(
            tx, subscription, customer, plan_code, price, now, plan_changed, allow_retry=True
        )

    async def _charge_period(
        self,
        tx: StorageAdapter,
        subscription: Subscription,
        customer: Customer,
        plan_code: str,
        price: Price,
        now: datetime,
        plan_changed: PlanChangeSummary | None,
        allow_retry: bool,
    ) -> RenewalDetail:
        """Charge for the period starting at the old boundary and roll the period on success."""
        repo = SubscriptionRepository(tx)
        new_start = subscription.current_period_end
        new_end = add_interval(new_start, price.interval)
        plan_update = {
            "plan_code": plan_code,
            "interval": price.interval.value,
            "scheduled_plan_code": None,
            "scheduled_interval": None,
        }
        rolled = {
            **plan_update,
            "status": SubscriptionStatus.ACTIVE.value,
            "current_period_start": new_start,
            "current_period_end": new_end,
        }

        if price.is_free:
            await repo.update(subscription.id, rolled, now)
            return self._detail(subscription, "succeeded", amount=0, plan_changed=plan_changed)

        metadata = {"period_end": new_start.isoformat(), "attempted_at": now.isoformat()}
        result = await charge_customer(
            self.ctx,
            customer,
            price.amount,
            price.currency,
            description=f"Renewal of {plan_code}",
            metadata={"subscription_id": subscription.id},
        )
        payments = PaymentRepository(tx)

        if result.succeeded:
            await payments.create(
                customer_id=customer.id,
                subscription_id=subscription.id,
                payment_type=PaymentType.RENEWAL,
                status=PaymentStatus.SUCCEEDED,
                amount=price.amount,
                currency=price.currency,
                provider_payment_id=result.provider_payment_id,
                now=now,
                metadata=metadata,
            )
            await repo.update(subscription.id, rolled, now)
            logger.info("Renewed subscription %s until %s", subscription.id, new_end.isoformat())
            return self._detail(subscription, "succeeded", amount=price.amount, plan_changed=plan_changed)

        payment = await payments.create(
            customer_id=customer.id,
            subscription_id=subscription.id,
            payment_type=PaymentType.RENEWAL,
            status=PaymentStatus.FAILED,
            amount=price.amount,
            currency=price.currency,
            now=now,
            metadata={**metadata, "failure_reason": result.error},
        )
        past_due = await repo.update(
            subscription.id, {**plan_update, "status": SubscriptionStatus.PAST_DUE.value}, now
        )
        logger.warning("Renewal charge failed for subscription %s: %s", subscription.id, result.error)

        attempts, last_attempt_at = await self._failed_attempts(tx, past_due)
        event = PaymentFailedEvent(
            subscription=past_due,
            customer=customer,
            now=now,
            failed_attempts=attempts,
            last_attempt_at=last_attempt_at,
            payment=payment,
            error=result.error,
        )
        decision = await self._decide(tx, event)
        if decision.action == FailureAction.RETRY and not allow_retry:
            decision = FailureDecision(FailureAction.KEEP_PAST_DUE)
        await self._apply_decision(tx, past_due, decision, now)
        return self._detail(
            subscription, "failed", amount=price.amount, error=result.error, plan_changed=plan_changed
        )

    async def _revisit_past_due(
        self, tx: StorageAdapter, subscription: Subscription, customer: Customer, now: datetime
    ) -> RenewalDetail:
        attempts, last_attempt_at = await self._failed_attempts(tx, subscription)
        event = PaymentFailedEvent(
            subscription=subscription,
            customer=customer,
            now=now,
            failed_attempts=attempts,
            last_attempt_at=last_attempt_at,
        )
        decision = await self._decide(tx, event)

        if decision.action == FailureAction.RETRY:
            price = self.ctx.catalog.get_plan(subscription.plan_code).price_for(subscription.interval)
            logger.info("Retrying renewal charge for subscription %s", subscription.id)
            return await self._charge_period(
                tx, subscription, customer, subscription.plan_code, price, now, None, allow_retry=False
            )

        status = await self._apply_decision(tx, subscription, decision, now)
        return self._detail(subscription, status)

    async def _decide(self, tx: StorageAdapter, event: PaymentFailedEvent) -> FailureDecision:
        async def default_decision() -> FailureDecision:
            return self.ctx.failure_policy.decide(event)

        return await self.ctx.behaviors.run(
            "on_payment_failed", self.ctx.bound_to(tx), event, default_decision
        )

    async def _apply_decision(
        self, tx: StorageAdapter, subscription: Subscription, decision: FailureDecision, now: datetime
    ) -> str:
        repo = SubscriptionRepository(tx)
        if decision.action == FailureAction.CANCEL:
            await repo.cancel(subscription.id, now, now)
            logger.info(
                "Canceled past_due subscription %s (%s)", subscription.id, decision.reason or "policy"
            )
            return "canceled"

        if decision.action == FailureAction.DOWNGRADE and decision.plan_code:
            plan = self.ctx.catalog.get_plan(decision.plan_code)
            price = next((p for p in plan.prices if p.is_free), None)
            if price is None:
                raise ValueError(f"Downgrade plan '{plan.code}' has no free price")
            await repo.update(
                subscription.id,
                {
                    "plan_code": plan.code,
                    "interval": price.interval.value,
                    "status": SubscriptionStatus.ACTIVE.value,
                    "scheduled_plan_code": None,
                    "scheduled_interval": None,
                    "current_period_start": subscription.current_period_end,
                    "current_period_end": add_interval(subscription.current_period_end, price.interval),
                },
                now,
            )
            logger.info("Downgraded past_due subscription %s to %s", subscription.id, plan.code)
            return "succeeded"

        return "skipped"

    async def _failed_attempts(
        self, tx: StorageAdapter, subscription: Subscription
    ) -> tuple[int, datetime | None]:
        """Failed renewal charges for the period that starts at the current period end."""
        failed = await PaymentRepository(tx).get_all(
            subscription_id=subscription.id,
            status=PaymentStatus.FAILED,
            payment_type=PaymentType.RENEWAL,
        )
        boundary = subscription.current_period_end.isoformat()
        attempts = [
            p for p in failed if p.metadata and p.metadata.get("period_end") == boundary
        ]
        if not attempts:
            return 0, None
        last = max(datetime.fromisoformat(p.metadata["attempted_at"]) for p in attempts)
        return len(attempts), last

    def _detail(
        self,
        subscription: Subscription,
        status: str,
        amount: int | None = None,
        error: str | None = None,
        plan_changed: PlanChangeSummary | None = None,
    ) -> RenewalDetail:
        return RenewalDetail(
            subscription_id=subscription.id,
            customer_id=subscription.customer_id,
            status=status,
            amount=amount,
            error=error,
            plan_changed=plan_changed,
        )
