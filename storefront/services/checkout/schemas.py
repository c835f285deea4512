from pydantic import BaseModel, Field, field_validator
from typing import Optional
from storefront.shared.security_config import sanitize_input
from storefront.services.orders.models import ShippingDetails, PaymentError
from storefront.services.orders.schemas import OrderResponse

class ShippingForm(BaseModel):
    # Blank values are reported per field by the orchestrator, not by pydantic
    full_name: str = Field("", alias="fullName")
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    postal_code: str = Field("", alias="postalCode")
    country: str = "India"

    class Config:
        populate_by_name = True

    @field_validator('full_name', 'email', 'phone', 'address', 'city', 'state', 'postal_code', 'country')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

    def to_details(self) -> ShippingDetails:
        return ShippingDetails(**self.dict())

class CheckoutRequest(BaseModel):
    shipping_details: ShippingForm = Field(..., alias="shippingDetails")

    class Config:
        populate_by_name = True

class PaymentSuccess(BaseModel):
    razorpay_payment_id: str
    razorpay_order_id: str
    razorpay_signature: str

class PaymentFailure(BaseModel):
    code: Optional[str] = None
    description: Optional[str] = None
    source: Optional[str] = None
    step: Optional[str] = None
    reason: Optional[str] = None

    @field_validator('code', 'description', 'source', 'step', 'reason')
    def sanitize_fields(cls, v):
        return sanitize_input(v)

    def to_error(self) -> PaymentError:
        return PaymentError(**self.dict())

class CheckoutSessionResponse(BaseModel):
    order: OrderResponse
    checkout_options: dict
    reused_session: bool = False

class ConfirmationResponse(BaseModel):
    order: OrderResponse
    confirmation_path: str
    replayed: bool = False

class DismissResponse(BaseModel):
    order: OrderResponse
    can_retry: bool
    attempts_remaining: int
    retry_after_seconds: float
