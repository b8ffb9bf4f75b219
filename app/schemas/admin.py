from pydantic import BaseModel

from app.schemas.mpesa import MpesaTransactionOut
from app.schemas.order import OrderOut


class AdminLoginRequest(BaseModel):
    username: str
    password: str


class TokenOut(BaseModel):
    access_token: str
    token_type: str = "bearer"
    expires_in: int


class AdminOrdersResponse(BaseModel):
    items: list[OrderOut]
    total: int
    page: int
    page_size: int


class AdminTransactionsResponse(BaseModel):
    items: list[MpesaTransactionOut]
    total: int
    page: int
    page_size: int


class TransactionStats(BaseModel):
    total: int
    completed: int
    pending: int
    unsuccessful: int
    completed_amount: int


class OrderStats(BaseModel):
    total_orders: int
    by_status: dict[str, int]
    paid_revenue: int
    pending_revenue: int


class AdminAnalyticsOut(BaseModel):
    orders: OrderStats
    transactions: TransactionStats
