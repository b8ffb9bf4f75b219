import enum
from sqlalchemy import Column, Integer, String, Enum, Index
from app.core.database import Base
from app.models.base import TimestampMixin


class MpesaTransactionStatus(str, enum.Enum):
    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self is not MpesaTransactionStatus.PENDING


class MpesaTransaction(Base, TimestampMixin):
    """
    One row per STK push the provider accepted.

    Rows are written once by the initiator (pending) and once by the callback
    receiver (terminal). They are never deleted.
    """

    __tablename__ = "mpesa_transactions"

    id = Column(Integer, primary_key=True, index=True)
    checkout_request_id = Column(String(64), unique=True, nullable=False, index=True)
    merchant_request_id = Column(String(64), nullable=False)
    phone_number = Column(String(12), nullable=False, index=True)
    amount = Column(Integer, nullable=False)
    account_reference = Column(String(64), unique=True, nullable=False)
    transaction_desc = Column(String(255), nullable=False)
    product_name = Column(String(255), nullable=False)

    customer_name = Column(String(255), nullable=True)
    customer_email = Column(String(255), nullable=True)
    delivery_address = Column(String(500), nullable=True)

    status = Column(
        Enum(
            MpesaTransactionStatus,
            native_enum=False,
            values_callable=lambda members: [m.value for m in members],
            name="mpesa_transaction_status",
        ),
        nullable=False,
        default=MpesaTransactionStatus.PENDING,
    )
    result_code = Column(Integer, nullable=True)
    result_desc = Column(String(255), nullable=True)
    mpesa_receipt_number = Column(String(32), unique=True, nullable=True)
    transaction_date = Column(String(14), nullable=True)  # YYYYMMDDHHMMSS as sent by Safaricom


Index("ix_mpesa_transactions_status_created", MpesaTransaction.status, MpesaTransaction.created_at)
