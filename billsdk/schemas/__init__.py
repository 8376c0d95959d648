from billsdk.schemas.billing import (
    ChangeSubscriptionResult,
    CreateSubscriptionResult,
    FeatureAccess,
    PlanChangeSummary,
    ProrationDetail,
    RefundOutcome,
    RenewalDetail,
    RenewalResult,
    WebhookAck,
)

__all__ = [
    "ChangeSubscriptionResult",
    "CreateSubscriptionResult",
    "FeatureAccess",
    "PlanChangeSummary",
    "ProrationDetail",
    "RefundOutcome",
    "RenewalDetail",
    "RenewalResult",
    "WebhookAck",
]
