from typing import Optional, List, Dict, Any
from pydantic import BaseModel, Field

class ImageDescriptor(BaseModel):
    url: str
    path: Optional[str] = None
    name: Optional[str] = None
    metadata: Dict[str, Any] = {}
    item_id: Optional[str] = Field(None, alias="itemId")

    class Config:
        populate_by_name = True

class ImageLookupResult(BaseModel):
    order_id: Optional[str] = Field(None, alias="orderId")
    images: List[ImageDescriptor] = []
    strategy: Optional[str] = None
    reasons: List[str] = []

    class Config:
        populate_by_name = True

    @property
    def found(self) -> bool:
        return bool(self.images)

class OrderArchive(BaseModel):
    filename: str
    folder: str
    content: bytes
    file_count: int
    failed: List[str] = []
