"""Always-succeeds payment adapter for local development and tests."""

import logging
import uuid

from billsdk.adapters.payment import (
    ChargeParams,
    ChargeResult,
    ChargeStatus,
    ConfirmResult,
    PaymentAdapter,
    ProcessPaymentParams,
    ProcessPaymentResult,
    ProcessPaymentStatus,
    RefundParams,
    RefundResult,
    RefundStatus,
    WebhookRequest,
)

logger = logging.getLogger(__name__)


def _mock_id(prefix: str) -> str:
    return f"{prefix}_mock_{uuid.uuid4().hex}"


class MockPaymentAdapter(PaymentAdapter):
    """Payment adapter that approves everything synchronously.

    ``process_payment`` activates immediately and issues a mock provider
    customer id, so no webhook is ever expected and ``confirm_payment``
    always returns None.
    """

    id = "mock"

    async def process_payment(self, params: ProcessPaymentParams) -> ProcessPaymentResult:
        logger.debug(
            "Mock payment for subscription %s: %d %s",
            params.subscription_id,
            params.amount,
            params.currency,
        )
        return ProcessPaymentResult(
            status=ProcessPaymentStatus.ACTIVE,
            provider_customer_id=params.customer.provider_customer_id or _mock_id("cus"),
            provider_payment_id=_mock_id("pay") if params.amount > 0 else None,
        )

    async def confirm_payment(self, request: WebhookRequest) -> ConfirmResult | None:
        return None

    async def charge(self, params: ChargeParams) -> ChargeResult:
        return ChargeResult(status=ChargeStatus.SUCCESS, provider_payment_id=_mock_id("pay"))

    async def refund(self, params: RefundParams) -> RefundResult:
        return RefundResult(status=RefundStatus.REFUNDED, provider_refund_id=_mock_id("ref"))
