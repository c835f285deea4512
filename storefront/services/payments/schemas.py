from pydantic import BaseModel, Field, field_validator
from typing import Optional
from decimal import Decimal
from storefront.shared.security_config import sanitize_input

class GatewayOrderCreate(BaseModel):
    # Validated by to_minor_units so NaN and zero get the same message
    amount: Decimal
    currency: str = "INR"
    metadata: dict = {}

    @field_validator('currency')
    def sanitize_currency(cls, v):
        return sanitize_input(v).upper()

class GatewayOrderResponse(BaseModel):
    id: str
    amount: int
    currency: str
    receipt: Optional[str] = None
    status: Optional[str] = None

class PaymentVerify(BaseModel):
    razorpay_order_id: str
    razorpay_payment_id: str
    razorpay_signature: str

class PaymentDetails(BaseModel):
    id: str
    amount: Decimal
    status: Optional[str] = None
    method: Optional[str] = None
    email: Optional[str] = None
    contact: Optional[str] = None

class PaymentVerifyResponse(BaseModel):
    verified: bool
    payment: Optional[PaymentDetails] = None

class WebhookAck(BaseModel):
    received: bool = True
    event: str
    duplicate: bool = False
    order_id: Optional[str] = Field(None, alias="orderId")

    class Config:
        populate_by_name = True
