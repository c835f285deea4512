from pydantic import BaseModel, Field, field_validator
from typing import Optional, List, Dict, Any
from decimal import Decimal
from storefront.shared.security_config import sanitize_input
from storefront.services.cart.models import BOOK_ITEM_TYPE, ImageRef, CartItemDB

class CartItemAdd(BaseModel):
    id: Optional[str] = None
    type: str = BOOK_ITEM_TYPE
    price: Decimal = Field(..., gt=0)
    images: List[ImageRef] = []
    title: Optional[str] = None
    child_name: Optional[str] = Field(None, alias="childName")
    theme: Optional[str] = None
    cover_image: Optional[str] = Field(None, alias="coverImage")
    storage_path: Optional[str] = Field(None, alias="storagePath")
    storage_url: Optional[str] = Field(None, alias="storageUrl")
    date_added: Optional[str] = Field(None, alias="dateAdded")
    details: Dict[str, Any] = {}

    class Config:
        populate_by_name = True

    @field_validator('title', 'child_name', 'theme')
    def sanitize_text(cls, v):
        return sanitize_input(v)

    def to_item(self) -> dict:
        payload = self.dict(by_alias=True, exclude_none=True, exclude={"details"})
        payload["price"] = float(self.price)
        payload.update(self.details)
        return payload

class CartItemUpdate(BaseModel):
    # Clamped to 1 by the store rather than rejected
    quantity: int

class CartItemResponse(BaseModel):
    id: str
    type: str
    price: Decimal
    quantity: int
    images: List[ImageRef] = []
    title: Optional[str] = None
    child_name: Optional[str] = Field(None, alias="childName")
    cover_image: Optional[str] = Field(None, alias="coverImage")
    date_added: Optional[str] = Field(None, alias="dateAdded")

    class Config:
        populate_by_name = True

    @classmethod
    def from_item(cls, item: CartItemDB) -> "CartItemResponse":
        return cls(
            id=item.id,
            type=item.type,
            price=Decimal(str(item.price)),
            quantity=item.quantity,
            images=item.images,
            title=item.title,
            child_name=item.child_name,
            cover_image=item.cover_image,
            date_added=item.date_added,
        )

class CartResponse(BaseModel):
    user_id: str
    items: List[CartItemResponse]
    total: Decimal
    item_count: int
