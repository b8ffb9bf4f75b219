from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from app.models.mpesa_transaction import MpesaTransactionStatus


class StkPushRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    phone_number: str = Field(..., alias="phoneNumber")
    amount: int
    product_name: str = Field(..., alias="productName")
    account_reference: Optional[str] = Field(default=None, alias="accountReference")
    transaction_desc: Optional[str] = Field(default=None, alias="transactionDesc")
    customer_name: Optional[str] = Field(default=None, alias="customerName")
    customer_email: Optional[str] = Field(default=None, alias="customerEmail")
    delivery_address: Optional[str] = Field(default=None, alias="deliveryAddress")


class StkPushResponse(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    success: bool
    message: str
    checkout_request_id: Optional[str] = Field(default=None, alias="checkoutRequestId")
    merchant_request_id: Optional[str] = Field(default=None, alias="merchantRequestId")
    account_reference: Optional[str] = Field(default=None, alias="accountReference")


class PaymentStatusOut(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    status: MpesaTransactionStatus
    checkout_request_id: str = Field(..., alias="checkoutRequestId")
    transaction_id: Optional[str] = Field(default=None, alias="transactionId")
    message: Optional[str] = None


# Safaricom callback envelope:
# {"Body": {"stkCallback": {"MerchantRequestID": ..., "CheckoutRequestID": ...,
#   "ResultCode": 0, "ResultDesc": ..., "CallbackMetadata": {"Item": [{"Name": ..., "Value": ...}]}}}}


class CallbackItem(BaseModel):
    Name: str
    Value: Optional[Any] = None


class StkCallbackMetadata(BaseModel):
    Item: list[CallbackItem] = Field(default_factory=list)


class StkCallback(BaseModel):
    MerchantRequestID: str = ""
    CheckoutRequestID: str = Field(..., min_length=1)
    ResultCode: int
    ResultDesc: str = ""
    CallbackMetadata: Optional[StkCallbackMetadata] = None

    def metadata_value(self, name: str):
        if not self.CallbackMetadata:
            return None
        for item in self.CallbackMetadata.Item:
            if item.Name == name:
                return item.Value
        return None


class StkCallbackBody(BaseModel):
    stkCallback: StkCallback


class StkCallbackEnvelope(BaseModel):
    Body: StkCallbackBody


class CallbackAck(BaseModel):
    ResultCode: int = 0
    ResultDesc: str = "Accepted"


class MpesaTransactionOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    checkout_request_id: str
    merchant_request_id: str
    phone_number: str
    amount: int
    account_reference: str
    transaction_desc: str
    product_name: str
    status: MpesaTransactionStatus
    result_code: Optional[int] = None
    result_desc: Optional[str] = None
    mpesa_receipt_number: Optional[str] = None
    transaction_date: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
