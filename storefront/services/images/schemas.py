from pydantic import BaseModel, Field
from typing import Optional, List
from storefront.services.images.models import ImageDescriptor, ImageLookupResult

class ImageLookupResponse(BaseModel):
    order_id: Optional[str] = Field(None, alias="orderId")
    found: bool
    strategy: Optional[str] = None
    images: List[ImageDescriptor] = []
    reasons: List[str] = []

    class Config:
        populate_by_name = True

    @classmethod
    def from_result(cls, result: ImageLookupResult) -> "ImageLookupResponse":
        return cls(
            order_id=result.order_id,
            found=result.found,
            strategy=result.strategy,
            images=result.images,
            reasons=result.reasons
        )

class UploadResponse(BaseModel):
    url: str
    path: str
    name: str
    size: int
    content_type: str = Field(..., alias="contentType")

    class Config:
        populate_by_name = True

class ArchiveRequest(BaseModel):
    order_id: Optional[str] = Field(None, alias="orderId")
    paths: List[str] = []

    class Config:
        populate_by_name = True
