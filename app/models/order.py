import enum
from sqlalchemy import Column, Integer, String, Enum, Index, Text, Date
from app.core.database import Base
from app.models.base import TimestampMixin


class OrderStatus(str, enum.Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    PAID = "paid"


class PaymentMethod(str, enum.Enum):
    MPESA = "M-Pesa"
    PAY_ON_DELIVERY = "Pay on Delivery"


class Order(Base, TimestampMixin):
    __tablename__ = "orders"

    id = Column(Integer, primary_key=True, index=True)
    order_number = Column(String(32), unique=True, nullable=False, index=True)
    full_name = Column(String(255), nullable=False)
    phone_number = Column(String(20), nullable=False)
    email = Column(String(255), nullable=True)
    delivery_address = Column(String(500), nullable=True)
    product_name = Column(String(255), nullable=False)
    amount = Column(Integer, nullable=False)
    payment_method = Column(
        Enum(
            PaymentMethod,
            native_enum=False,
            values_callable=lambda members: [m.value for m in members],
            name="order_payment_method",
        ),
        nullable=False,
    )
    status = Column(
        Enum(
            OrderStatus,
            native_enum=False,
            values_callable=lambda members: [m.value for m in members],
            name="order_status",
        ),
        nullable=False,
        default=OrderStatus.PENDING,
    )
    # At most one order per M-Pesa payment.
    mpesa_receipt_number = Column(String(32), unique=True, nullable=True)
    checkout_request_id = Column(String(64), unique=True, nullable=True)
    notes = Column(Text, nullable=True)
    delivery_date = Column(Date, nullable=True)


Index("ix_orders_status_created", Order.status, Order.created_at)
