from pydantic import BaseModel, Field
from typing import Optional, List
from datetime import datetime
from storefront.services.cart.schemas import CartItemResponse
from storefront.services.orders.models import (
    OrderDB, ShippingDetails, ShippingInfo, StatusHistoryEntry, PaymentError
)

class OrderResponse(BaseModel):
    id: str
    user_id: str = Field(..., alias="userId")
    shipping_details: ShippingDetails = Field(..., alias="shippingDetails")
    items: List[CartItemResponse]
    amount: float
    currency: str
    status: str
    payment_status: str = Field(..., alias="paymentStatus")
    status_history: List[StatusHistoryEntry] = Field([], alias="statusHistory")
    razorpay_order_id: Optional[str] = Field(None, alias="razorpayOrderId")
    razorpay_payment_id: Optional[str] = Field(None, alias="razorpayPaymentId")
    checkout_state: str = Field(..., alias="checkoutState")
    checkout_attempts: int = Field(0, alias="checkoutAttempts")
    payment_error: Optional[PaymentError] = Field(None, alias="paymentError")
    shipping: Optional[ShippingInfo] = None
    paid_at: Optional[datetime] = Field(None, alias="paidAt")
    created_at: datetime = Field(..., alias="createdAt")
    updated_at: Optional[datetime] = Field(None, alias="updatedAt")

    class Config:
        populate_by_name = True

    @classmethod
    def from_order(cls, order: OrderDB) -> "OrderResponse":
        return cls(
            id=order.id,
            user_id=order.user_id,
            shipping_details=order.shipping_details,
            items=[CartItemResponse.from_item(item) for item in order.items],
            amount=order.amount,
            currency=order.currency,
            status=order.status,
            payment_status=order.payment_status,
            status_history=order.status_history,
            razorpay_order_id=order.razorpay_order_id,
            razorpay_payment_id=order.razorpay_payment_id,
            checkout_state=order.checkout_state,
            checkout_attempts=order.checkout_attempts,
            payment_error=order.payment_error,
            shipping=order.shipping,
            paid_at=order.paid_at,
            created_at=order.created_at,
            updated_at=order.updated_at,
        )
