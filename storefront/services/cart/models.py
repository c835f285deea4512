from datetime import datetime
from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

BOOK_ITEM_TYPE = "custom-book"

class ImageRef(BaseModel):
    """An artwork reference carried on a line item."""
    url: Optional[str] = None
    path: Optional[str] = None
    name: Optional[str] = None
    original_name: Optional[str] = Field(None, alias="originalName")
    metadata: Dict[str, Any] = {}

    class Config:
        populate_by_name = True
        extra = "allow"

class CartItemDB(BaseModel):
    id: str
    type: str = BOOK_ITEM_TYPE
    price: float = Field(..., gt=0)
    quantity: int = Field(1, ge=1)
    images: List[ImageRef] = []
    date_added: Optional[str] = Field(None, alias="dateAdded")
    title: Optional[str] = None
    child_name: Optional[str] = Field(None, alias="childName")
    theme: Optional[str] = None
    cover_image: Optional[str] = Field(None, alias="coverImage")
    storage_path: Optional[str] = Field(None, alias="storagePath")
    storage_url: Optional[str] = Field(None, alias="storageUrl")

    class Config:
        populate_by_name = True
        extra = "allow"

    @property
    def is_book(self) -> bool:
        return self.type == BOOK_ITEM_TYPE

    def to_mongo(self) -> dict:
        return self.dict(by_alias=True, exclude_none=True)

class CartDB(BaseModel):
    id: Optional[str] = Field(None, alias="_id")
    user_id: str
    items: List[CartItemDB] = []
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    class Config:
        populate_by_name = True
