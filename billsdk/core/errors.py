"""Typed errors raised by the billing engine."""

from enum import Enum


class ErrorCode(str, Enum):
    """Stable machine-readable error codes."""

    CUSTOMER_NOT_FOUND = "CUSTOMER_NOT_FOUND"
    PLAN_NOT_FOUND = "PLAN_NOT_FOUND"
    FEATURE_NOT_FOUND = "FEATURE_NOT_FOUND"
    SUBSCRIPTION_NOT_FOUND = "SUBSCRIPTION_NOT_FOUND"
    PAYMENT_NOT_FOUND = "PAYMENT_NOT_FOUND"
    VALIDATION_ERROR = "VALIDATION_ERROR"
    PAYMENT_FAILED = "PAYMENT_FAILED"
    REFUND_FAILED = "REFUND_FAILED"
    INVALID_SIGNATURE = "INVALID_SIGNATURE"
    RECONCILIATION_FAILED = "RECONCILIATION_FAILED"
    CONFIGURATION_ERROR = "CONFIGURATION_ERROR"
    CSRF_TOKEN_INVALID = "CSRF_TOKEN_INVALID"
    ORIGIN_NOT_TRUSTED = "ORIGIN_NOT_TRUSTED"
    INTERNAL_ERROR = "INTERNAL_ERROR"


class BillingError(Exception):
    """Base class for every error the engine raises on purpose."""

    code: ErrorCode = ErrorCode.INTERNAL_ERROR
    status_code: int = 500

    def __init__(self, message: str, code: ErrorCode | None = None):
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code

    def to_dict(self) -> dict[str, str]:
        return {"code": self.code.value, "message": self.message}


class NotFoundError(BillingError):
    status_code = 404


class CustomerNotFoundError(NotFoundError):
    code = ErrorCode.CUSTOMER_NOT_FOUND


class PlanNotFoundError(NotFoundError):
    code = ErrorCode.PLAN_NOT_FOUND


class FeatureNotFoundError(NotFoundError):
    code = ErrorCode.FEATURE_NOT_FOUND


class SubscriptionNotFoundError(NotFoundError):
    code = ErrorCode.SUBSCRIPTION_NOT_FOUND


class PaymentNotFoundError(NotFoundError):
    code = ErrorCode.PAYMENT_NOT_FOUND


class InvalidRequestError(BillingError):
    code = ErrorCode.VALIDATION_ERROR
    status_code = 400


class PaymentFailedError(BillingError):
    """A charge or checkout was declined; the failed Payment row is already persisted."""

    code = ErrorCode.PAYMENT_FAILED
    status_code = 402

    def __init__(self, message: str, payment_id: str | None = None):
        super().__init__(message)
        self.payment_id = payment_id


class RefundError(BillingError):
    code = ErrorCode.REFUND_FAILED
    status_code = 400


class WebhookVerificationError(BillingError):
    code = ErrorCode.INVALID_SIGNATURE
    status_code = 401


class ReconciliationError(BillingError):
    code = ErrorCode.RECONCILIATION_FAILED
    status_code = 500


class ConfigurationError(BillingError):
    code = ErrorCode.CONFIGURATION_ERROR


class CSRFError(BillingError):
    code = ErrorCode.CSRF_TOKEN_INVALID
    status_code = 403
