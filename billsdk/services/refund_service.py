"""Refund service for executing refunds through the payment adapter."""

import logging
from dataclasses import dataclass

from billsdk.adapters.payment import RefundParams, RefundStatus
from billsdk.adapters.storage import StorageAdapter
from billsdk.core.context import BillingContext
from billsdk.core.errors import PaymentNotFoundError, RefundError
from billsdk.models.payment import Payment, PaymentStatus, PaymentType
from billsdk.repositories.customer_repository import CustomerRepository
from billsdk.repositories.payment_repository import PaymentRepository
from billsdk.repositories.subscription_repository import SubscriptionRepository
from billsdk.schemas.billing import RefundOutcome
from billsdk.services.behaviors import RefundEvent
from billsdk.services.subscription_service import cancel_subscription_now

logger = logging.getLogger(__name__)


@dataclass
class _RefundStep:
    refund: Payment
    original: Payment
    error: str | None = None


class RefundService:
    """Service for refunding settled payments."""

    def __init__(self, ctx: BillingContext):
        self.ctx = ctx

    async def create_refund(
        self, payment_id: str, amount: int | None = None, reason: str | None = None
    ) -> RefundOutcome:
        """Refund all or part of a succeeded payment.

        The refund is recorded as its own ``refund`` ledger row and the
        original payment's ``refunded_amount`` grows by the refunded amount.
        Afterwards the ``on_refund`` behavior runs; by default it cancels the
        subscription once the payment is fully refunded.

        Args:
            payment_id: Id of the payment to refund.
            amount: Minor units to refund. Defaults to the remaining amount.
            reason: Free-form reason passed to the gateway.

        Raises:
            PaymentNotFoundError: Unknown payment.
            RefundError: The payment is not refundable or the gateway refused.
        """
        now = await self.ctx.now()

        async def refund(tx: StorageAdapter) -> _RefundStep:
            payments = PaymentRepository(tx)
            payment = await payments.get_by_id(payment_id)
            if payment is None:
                raise PaymentNotFoundError(f"Payment '{payment_id}' not found")
            if payment.type == PaymentType.REFUND:
                raise RefundError("Refund rows cannot be refunded")
            if payment.status != PaymentStatus.SUCCEEDED:
                raise RefundError(f'Cannot refund payment with status "{payment.status.value}"')

            remaining = payment.refundable_amount
            if remaining <= 0:
                raise RefundError("Payment has already been fully refunded")
            refund_amount = remaining if amount is None else amount
            if refund_amount <= 0:
                raise RefundError("Refund amount must be positive")
            if refund_amount > remaining:
                raise RefundError(
                    f"Cannot refund {refund_amount}. Only {remaining} is available for refund."
                )
            if not payment.provider_payment_id:
                raise RefundError("Payment has no provider payment id; cannot process refund")

            result = await self.ctx.payment.refund(
                RefundParams(
                    provider_payment_id=payment.provider_payment_id,
                    amount=refund_amount,
                    currency=payment.currency,
                    reason=reason,
                )
            )
            metadata = {"original_payment_id": payment.id, "reason": reason}

            if result.status == RefundStatus.FAILED:
                failed = await payments.create(
                    customer_id=payment.customer_id,
                    subscription_id=payment.subscription_id,
                    payment_type=PaymentType.REFUND,
                    status=PaymentStatus.FAILED,
                    amount=refund_amount,
                    currency=payment.currency,
                    now=now,
                    metadata={**metadata, "failure_reason": result.error},
                )
                logger.warning("Refund of payment %s failed: %s", payment.id, result.error)
                return _RefundStep(failed, payment, error=result.error or "Refund failed")

            original = await payments.add_refunded_amount(payment, refund_amount, now)
            refund_row = await payments.create(
                customer_id=payment.customer_id,
                subscription_id=payment.subscription_id,
                payment_type=PaymentType.REFUND,
                status=PaymentStatus.REFUNDED,
                amount=refund_amount,
                currency=payment.currency,
                provider_payment_id=result.provider_refund_id,
                now=now,
                metadata=metadata,
            )
            logger.info(
                "Refunded %d %s of payment %s", refund_amount, payment.currency, payment.id
            )
            await self._run_on_refund(tx, original, refund_row, now)
            return _RefundStep(refund_row, original)

        step = await self.ctx.storage.transaction(refund)
        if step.error is not None:
            raise RefundError(step.error)
        return RefundOutcome(refund=step.refund, original_payment=step.original)

    async def _run_on_refund(self, tx: StorageAdapter, original: Payment, refund: Payment, now) -> None:
        customer = await CustomerRepository(tx).get_by_id(original.customer_id)
        if customer is None:
            raise RefundError(f"Customer {original.customer_id} not found for payment")
        subscription = None
        if original.subscription_id:
            subscription = await SubscriptionRepository(tx).get_by_id(original.subscription_id)

        event = RefundEvent(
            payment=original,
            refund=refund,
            customer=customer,
            subscription=subscription,
            now=now,
        )

        async def default_on_refund() -> None:
            if event.fully_refunded and subscription is not None and subscription.is_live:
                await cancel_subscription_now(tx, subscription, now, reason="refunded")
                logger.info("Canceled subscription %s after full refund", subscription.id)

        await self.ctx.behaviors.run("on_refund", self.ctx.bound_to(tx), event, default_on_refund)
