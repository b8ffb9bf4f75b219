from app.models.mpesa_transaction import MpesaTransaction, MpesaTransactionStatus
from app.models.order import Order, OrderStatus, PaymentMethod
from app.models.product import Product, ProductCondition

__all__ = [
    "MpesaTransaction",
    "MpesaTransactionStatus",
    "Order",
    "OrderStatus",
    "PaymentMethod",
    "Product",
    "ProductCondition",
]
