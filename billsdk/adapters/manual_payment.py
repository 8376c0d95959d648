"""Manual payment adapter with HMAC-signed webhook confirmation."""

import hashlib
import hmac
import json
import uuid
from typing import Any

from billsdk.adapters.payment import (
    ChargeParams,
    ChargeResult,
    ChargeStatus,
    ConfirmResult,
    ConfirmStatus,
    PaymentAdapter,
    ProcessPaymentParams,
    ProcessPaymentResult,
    ProcessPaymentStatus,
    RefundParams,
    RefundResult,
    RefundStatus,
    WebhookRequest,
)
from billsdk.core.config import settings
from billsdk.core.errors import InvalidRequestError, WebhookVerificationError

SIGNATURE_HEADER = "x-billsdk-signature"

_EVENT_STATUS = {
    "payment.succeeded": ConfirmStatus.ACTIVE,
    "checkout.completed": ConfirmStatus.ACTIVE,
    "payment.failed": ConfirmStatus.FAILED,
}


def sign_payload(payload: bytes, secret: str) -> str:
    """Return the hex HMAC-SHA256 signature for a webhook body."""
    return hmac.new(secret.encode(), payload, hashlib.sha256).hexdigest()


class ManualPaymentAdapter(PaymentAdapter):
    """Payment adapter for offline payments confirmed by a signed callback.

    New paid subscriptions get a checkout session and stay pending until the
    operator posts a ``payment.succeeded`` (or ``payment.failed``) event,
    signed with HMAC-SHA256 in the ``x-billsdk-signature`` header. Charges and
    refunds are recorded as settled offline.
    """

    id = "manual"

    def __init__(self, webhook_secret: str | None = None, checkout_url: str | None = None):
        self.webhook_secret = webhook_secret or settings.manual_webhook_secret
        self.checkout_url = (checkout_url or settings.manual_checkout_url).rstrip("/")

    async def process_payment(self, params: ProcessPaymentParams) -> ProcessPaymentResult:
        session_id = f"cs_manual_{uuid.uuid4().hex}"
        return ProcessPaymentResult(
            status=ProcessPaymentStatus.PENDING,
            session_id=session_id,
            redirect_url=f"{self.checkout_url}/{session_id}",
            provider_customer_id=params.customer.provider_customer_id
            or f"cus_manual_{params.customer.id}",
        )

    def verify_signature(self, payload: bytes, signature: str | None) -> bool:
        if not self.webhook_secret or not signature:
            return False
        return hmac.compare_digest(sign_payload(payload, self.webhook_secret), signature)

    async def confirm_payment(self, request: WebhookRequest) -> ConfirmResult | None:
        if not self.verify_signature(request.body, request.header(SIGNATURE_HEADER)):
            raise WebhookVerificationError("Invalid webhook signature")

        try:
            payload: dict[str, Any] = json.loads(request.body)
        except ValueError:
            raise InvalidRequestError("Invalid JSON payload") from None
        if not isinstance(payload, dict):
            raise InvalidRequestError("Invalid JSON payload")

        status = _EVENT_STATUS.get(payload.get("event_type", ""))
        subscription_id = payload.get("subscription_id")
        if status is None or not subscription_id:
            return None

        return ConfirmResult(
            subscription_id=subscription_id,
            status=status,
            provider_subscription_id=payload.get("provider_subscription_id"),
            provider_customer_id=payload.get("provider_customer_id"),
            provider_payment_id=payload.get("payment_id"),
            amount=payload.get("amount"),
            currency=payload.get("currency"),
        )

    async def charge(self, params: ChargeParams) -> ChargeResult:
        return ChargeResult(
            status=ChargeStatus.SUCCESS, provider_payment_id=f"pay_manual_{uuid.uuid4().hex}"
        )

    async def refund(self, params: RefundParams) -> RefundResult:
        return RefundResult(
            status=RefundStatus.REFUNDED, provider_refund_id=f"ref_manual_{uuid.uuid4().hex}"
        )
