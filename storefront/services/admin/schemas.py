from pydantic import BaseModel, Field
from typing import Optional, List, Dict
from datetime import datetime
from storefront.services.orders.models import OrderStatus
from storefront.services.orders.schemas import OrderResponse

class StatusUpdate(BaseModel):
    status: OrderStatus
    note: Optional[str] = None

class ShippingUpdate(BaseModel):
    carrier: Optional[str] = None
    tracking_number: Optional[str] = Field(None, alias="trackingNumber")
    tracking_url: Optional[str] = Field(None, alias="trackingUrl")
    shipped_at: Optional[datetime] = Field(None, alias="shippedAt")
    notes: Optional[str] = None

    class Config:
        populate_by_name = True

class CancelRequest(BaseModel):
    reason: Optional[str] = None

class OrderPage(BaseModel):
    orders: List[OrderResponse]
    total: int
    page: int
    limit: int
    pages: int

class OrderStats(BaseModel):
    total: int
    by_status: Dict[str, int] = Field(..., alias="byStatus")
    revenue: float
    paid: int

    class Config:
        populate_by_name = True
