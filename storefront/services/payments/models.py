from datetime import datetime
from typing import Optional
from pydantic import BaseModel, Field

class PaymentEventDB(BaseModel):
    """A processed Razorpay webhook delivery, kept so redeliveries are ignored."""
    id: Optional[str] = Field(None, alias="_id")
    event_id: str
    event: str
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    order_id: Optional[str] = None
    received_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
