from datetime import datetime
from enum import Enum
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field
from storefront.services.cart.models import CartItemDB

class OrderStatus(str, Enum):
    PENDING = "pending"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    PAYMENT_FAILED = "payment_failed"

class PaymentStatus(str, Enum):
    PENDING = "pending"
    SUCCESSFUL = "successful"
    FAILED = "failed"

class CheckoutState(str, Enum):
    DRAFT = "draft"
    ORDER_CREATED = "order_created"
    GATEWAY_OPENED = "gateway_opened"
    PAYMENT_SUCCESS = "payment_success"
    PAYMENT_FAILED = "payment_failed"
    PAYMENT_CANCELLED = "payment_cancelled"
    FINALIZED = "finalized"
    RETRY = "retry"

class ShippingDetails(BaseModel):
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

class ShippingInfo(BaseModel):
    carrier: Optional[str] = None
    tracking_number: Optional[str] = Field(None, alias="trackingNumber")
    tracking_url: Optional[str] = Field(None, alias="trackingUrl")
    shipped_at: Optional[datetime] = Field(None, alias="shippedAt")
    notes: Optional[str] = None

    class Config:
        populate_by_name = True

class StatusHistoryEntry(BaseModel):
    status: str
    timestamp: datetime = Field(default_factory=datetime.utcnow)
    updated_by: str = Field("system", alias="updatedBy")
    note: Optional[str] = None

    class Config:
        populate_by_name = True

class PaymentError(BaseModel):
    code: Optional[str] = None
    description: Optional[str] = None
    source: Optional[str] = None
    step: Optional[str] = None
    reason: Optional[str] = None

class OrderDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str = Field(..., alias="userId")
    shipping_details: ShippingDetails = Field(default_factory=ShippingDetails, alias="shippingDetails")
    items: List[CartItemDB] = []
    amount: float = 0
    currency: str = "INR"
    # Plain label; legacy documents may carry values outside OrderStatus
    status: str = OrderStatus.PENDING.value
    payment_status: str = Field(PaymentStatus.PENDING.value, alias="paymentStatus")
    status_history: List[StatusHistoryEntry] = Field(default_factory=list, alias="statusHistory")
    razorpay_order_id: Optional[str] = Field(None, alias="razorpayOrderId")
    razorpay_payment_id: Optional[str] = Field(None, alias="razorpayPaymentId")
    razorpay_signature: Optional[str] = Field(None, alias="razorpaySignature")
    gateway_session_created_at: Optional[datetime] = Field(None, alias="gatewaySessionCreatedAt")
    gateway_session_expires_at: Optional[datetime] = Field(None, alias="gatewaySessionExpiresAt")
    checkout_state: str = Field(CheckoutState.DRAFT.value, alias="checkoutState")
    checkout_attempts: int = Field(0, alias="checkoutAttempts")
    payment_error: Optional[PaymentError] = Field(None, alias="paymentError")
    shipping: Optional[ShippingInfo] = None
    paid_at: Optional[datetime] = Field(None, alias="paidAt")
    created_at: datetime = Field(default_factory=datetime.utcnow, alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    class Config:
        populate_by_name = True

    @classmethod
    def from_mongo(cls, doc: Dict[str, Any]) -> "OrderDB":
        """Validate a raw ``orders`` document into an OrderDB."""
        doc = dict(doc)
        if doc.get("_id") is not None:
            doc["_id"] = str(doc["_id"])
        return cls(**doc)

    def to_mongo(self) -> dict:
        doc = self.dict(by_alias=True, exclude={"id"})
        doc["items"] = [item.to_mongo() for item in self.items]
        return doc

    @property
    def customer_name(self) -> str:
        return self.shipping_details.full_name

    @property
    def customer_email(self) -> str:
        return self.shipping_details.email
