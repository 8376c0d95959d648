from billsdk.repositories.customer_repository import CustomerRepository
from billsdk.repositories.payment_repository import PaymentRepository
from billsdk.repositories.subscription_repository import SubscriptionRepository

__all__ = [
    "CustomerRepository",
    "PaymentRepository",
    "SubscriptionRepository",
]
