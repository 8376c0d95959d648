from billsdk.adapters.manual_payment import ManualPaymentAdapter
from billsdk.adapters.memory import MemoryStorageAdapter
from billsdk.adapters.mock_payment import MockPaymentAdapter
from billsdk.adapters.payment import PaymentAdapter
from billsdk.adapters.sql import SQLStorageAdapter
from billsdk.adapters.storage import SortBy, StorageAdapter, Where, WhereOperator

__all__ = [
    "ManualPaymentAdapter",
    "MemoryStorageAdapter",
    "MockPaymentAdapter",
    "PaymentAdapter",
    "SQLStorageAdapter",
    "SortBy",
    "StorageAdapter",
    "Where",
    "WhereOperator",
]
