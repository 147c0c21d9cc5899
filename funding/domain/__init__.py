from funding.domain.collective import Collective, CollectiveType
from funding.domain.order import Order, OrderStatus
from funding.domain.payment_method import PaymentMethod
from funding.domain.transaction import Transaction, TransactionKind, TransactionType

__all__ = [
    "Collective",
    "CollectiveType",
    "Order",
    "OrderStatus",
    "PaymentMethod",
    "Transaction",
    "TransactionKind",
    "TransactionType",
]
