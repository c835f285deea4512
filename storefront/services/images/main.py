import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, File, Form, Request, UploadFile
from fastapi.responses import Response

from storefront.shared.utils import (
    Clients, get_clients, require_auth, settings, SuccessResponse,
    ValidationException, NotFoundException, AppException
)
from storefront.shared.security_config import limiter, safe_filename
from storefront.services.images.resolver import OrderImageResolver
from storefront.services.images.schemas import UploadResponse
from storefront.services.images.storage import ArtworkStorage, StorageError, ObjectNotFoundError

logger = logging.getLogger("storefront.images")

router = APIRouter(prefix="/images", tags=["images"])

# --- Dependencies ---
def get_artwork_storage(clients: Clients = Depends(get_clients)) -> ArtworkStorage:
    return ArtworkStorage(clients.artwork_bucket, clients.mongodb[f"{settings.ARTWORK_BUCKET}.files"])

def get_resolver(storage: ArtworkStorage = Depends(get_artwork_storage)) -> OrderImageResolver:
    return OrderImageResolver(storage)

def storage_unavailable(e: StorageError) -> AppException:
    return AppException(status_code=503, detail=str(e))

# --- Endpoints ---
@router.post("/upload", response_model=SuccessResponse[UploadResponse])
@limiter.limit("30/minute")
async def upload_artwork(
    request: Request,
    file: UploadFile = File(...),
    order_id: Optional[str] = Form(None, alias="orderId"),
    order_temp: Optional[str] = Form(None, alias="orderTemp"),
    user: dict = Depends(require_auth),
    storage: ArtworkStorage = Depends(get_artwork_storage)
):
    content_type = file.content_type or ""
    if not content_type.startswith("image/"):
        raise ValidationException("Only image uploads are allowed")

    data = await file.read()
    if not data:
        raise ValidationException("Uploaded file is empty")
    if len(data) > settings.MAX_UPLOAD_BYTES:
        raise ValidationException(f"File exceeds the {settings.MAX_UPLOAD_BYTES} byte limit")

    original_name = file.filename or "upload"
    timestamp = int(datetime.utcnow().timestamp() * 1000)
    path = f"{settings.ARTWORK_ROOT}/{user['sub']}/{timestamp}_{safe_filename(original_name) or 'image'}"

    metadata = {"userId": user["sub"], "originalName": original_name}
    if order_id:
        metadata["orderId"] = order_id
    if order_temp:
        metadata["orderTemp"] = order_temp

    try:
        image = await storage.upload(path, data, content_type=content_type, metadata=metadata)
    except StorageError as e:
        raise storage_unavailable(e)

    logger.info(f"Artwork uploaded: {path} ({len(data)} bytes)")
    return SuccessResponse(
        data=UploadResponse(url=image.url, path=path, name=original_name, size=len(data), content_type=content_type),
        message="Image uploaded"
    )

@router.get("/files/{path:path}")
async def download_artwork(path: str, storage: ArtworkStorage = Depends(get_artwork_storage)):
    try:
        metadata = await storage.get_metadata(path)
        content = await storage.read(path)
    except ObjectNotFoundError:
        raise NotFoundException("Image not found")
    except StorageError as e:
        raise storage_unavailable(e)
    return Response(content=content, media_type=metadata.get("contentType") or "application/octet-stream")
