from datetime import date, datetime
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.order import OrderStatus, PaymentMethod


class OrderCreate(BaseModel):
    full_name: str = Field(..., min_length=2, max_length=255)
    phone_number: str = Field(..., min_length=9, max_length=20)
    email: Optional[str] = Field(default=None, max_length=255)
    delivery_address: str = Field(..., min_length=3, max_length=500)
    product_name: str = Field(..., min_length=1, max_length=255)
    amount: int = Field(..., gt=0)
    notes: Optional[str] = Field(default=None, max_length=2000)
    delivery_date: Optional[date] = None


class OrderOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    order_number: str
    full_name: str
    phone_number: str
    email: Optional[str] = None
    delivery_address: Optional[str] = None
    product_name: str
    amount: int
    payment_method: PaymentMethod
    status: OrderStatus
    mpesa_receipt_number: Optional[str] = None
    checkout_request_id: Optional[str] = None
    notes: Optional[str] = None
    delivery_date: Optional[date] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None


class OrderStatusUpdate(BaseModel):
    status: OrderStatus
    notes: Optional[str] = Field(default=None, max_length=2000)
