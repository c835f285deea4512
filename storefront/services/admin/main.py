import logging
from datetime import datetime
from typing import Optional
from fastapi import APIRouter, Depends, Query
from fastapi.responses import Response
from pydantic import ValidationError

from storefront.shared.utils import (
    require_admin, SuccessResponse, AppException,
    ValidationException, NotFoundException, ConflictException
)
from storefront.services.orders.main import get_order_repository
from storefront.services.orders.models import OrderDB, OrderStatus, StatusHistoryEntry
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.schemas import OrderResponse
from storefront.services.images.archive import ArchiveBuilder, ArchiveError, NoImagesError
from storefront.services.images.main import get_resolver
from storefront.services.images.models import OrderArchive
from storefront.services.images.resolver import OrderImageResolver, ImageLookupError
from storefront.services.images.schemas import ImageLookupResponse, ArchiveRequest
from storefront.services.admin.queries import (
    OrderFilter, SortKey, SortDirection, filter_orders, sort_orders, paginate,
    order_stats, orders_to_csv
)
from storefront.services.admin.schemas import (
    StatusUpdate, ShippingUpdate, CancelRequest, OrderPage, OrderStats
)

logger = logging.getLogger("storefront.admin")

router = APIRouter(prefix="/admin", tags=["admin"])

# --- Dependencies ---
def order_filter(
    status: Optional[str] = Query(None),
    search: Optional[str] = Query(None),
    date_from: Optional[str] = Query(None),
    date_to: Optional[str] = Query(None)
) -> OrderFilter:
    try:
        return OrderFilter(status=status, search=search, date_from=date_from, date_to=date_to)
    except ValidationError as e:
        raise ValidationException(f"Invalid date range: {e.errors()[0]['msg']}")

def get_archive_builder(resolver: OrderImageResolver = Depends(get_resolver)) -> ArchiveBuilder:
    return ArchiveBuilder(resolver)

async def load_order(order_id: str, orders: OrderRepository) -> OrderDB:
    order = await orders.get(order_id)
    if not order:
        raise NotFoundException("Order not found")
    return order

async def find_order(order_id: str, orders: OrderRepository) -> Optional[OrderDB]:
    try:
        return await orders.get(order_id)
    except NotFoundException:
        # Not an ObjectId; the images can still be found by metadata
        return None

def zip_response(archive: OrderArchive) -> Response:
    headers = {"Content-Disposition": f'attachment; filename="{archive.filename}"'}
    if archive.failed:
        headers["X-Missing-Images"] = str(len(archive.failed))
    return Response(content=archive.content, media_type="application/zip", headers=headers)

def archive_failed(e: Exception) -> AppException:
    return AppException(status_code=502, detail=str(e))

# --- Order Endpoints ---
@router.get("/orders", response_model=SuccessResponse[OrderPage])
async def list_orders(
    criteria: OrderFilter = Depends(order_filter),
    sort_by: SortKey = Query(SortKey.DATE),
    sort_direction: SortDirection = Query(SortDirection.DESC),
    page: int = Query(1, ge=1),
    limit: int = Query(20, ge=1, le=100),
    admin: dict = Depends(require_admin),
    orders: OrderRepository = Depends(get_order_repository)
):
    matched = sort_orders(filter_orders(await orders.list(), criteria), sort_by, sort_direction)
    result = paginate(matched, page, limit)
    return SuccessResponse(data=OrderPage(
        orders=[OrderResponse.from_order(o) for o in result.items],
        total=result.total,
        page=result.page,
        limit=result.limit,
        pages=result.pages
    ))

@router.get("/orders/export.csv")
async def export_orders(
    criteria: OrderFilter = Depends(order_filter),
    sort_by: SortKey = Query(SortKey.DATE),
    sort_direction: SortDirection = Query(SortDirection.DESC),
    admin: dict = Depends(require_admin),
    orders: OrderRepository = Depends(get_order_repository)
):
    matched = sort_orders(filter_orders(await orders.list(), criteria), sort_by, sort_direction)
    filename = f"orders_{datetime.utcnow().strftime('%Y%m%d')}.csv"
    logger.info(f"Exporting {len(matched)} orders to CSV")
    return Response(
        content=orders_to_csv(matched),
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="{filename}"'}
    )

@router.get("/orders/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(
    order_id: str,
    admin: dict = Depends(require_admin),
    orders: OrderRepository = Depends(get_order_repository)
):
    order = await load_order(order_id, orders)
    return SuccessResponse(data=OrderResponse.from_order(order))

@router.put("/orders/{order_id}/status", response_model=SuccessResponse[OrderResponse])
async def update_order_status(
    order_id: str,
    update: StatusUpdate,
    admin: dict = Depends(require_admin),
    orders: OrderRepository = Depends(get_order_repository)
):
    status = update.status.value
    entry = StatusHistoryEntry(status=status, updated_by=admin["sub"], note=update.note)
    order = await orders.update(order_id, {"status": status}, history=entry)
    if not order:
        raise NotFoundException("Order not found")
    note = f" ({update.note})" if update.note else ""
    logger.info(f"Order {order_id} status set to {status} by {admin['sub']}{note}")
    return SuccessResponse(data=OrderResponse.from_order(order), message=f"Order status updated to {status}")

@router.put("/orders/{order_id}/shipping", response_model=SuccessResponse[OrderResponse])
async def update_shipping(
    order_id: str,
    update: ShippingUpdate,
    admin: dict = Depends(require_admin),
    orders: OrderRepository = Depends(get_order_repository)
):
    current = await load_order(order_id, orders)
    shipping = current.shipping.dict(by_alias=True) if current.shipping else {}
    shipping.update(update.dict(by_alias=True, exclude_unset=True))
    order = await orders.update(order_id, {"shipping": shipping})
    if not order:
        raise NotFoundException("Order not found")
    return SuccessResponse(data=OrderResponse.from_order(order), message="Shipping details updated")

@router.post("/orders/{order_id}/cancel", response_model=SuccessResponse[OrderResponse])
async def cancel_order(
    order_id: str,
    cancel: Optional[CancelRequest] = None,
    admin: dict = Depends(require_admin),
    orders: OrderRepository = Depends(get_order_repository)
):
    current = await load_order(order_id, orders)
    if current.status in (OrderStatus.CANCELLED.value, OrderStatus.REFUNDED.value):
        raise ConflictException(f"Order is already {current.status}")

    reason = cancel.reason if cancel else None
    entry = StatusHistoryEntry(status=OrderStatus.CANCELLED.value, updated_by=admin["sub"], note=reason)
    order = await orders.update(order_id, {"status": OrderStatus.CANCELLED.value}, history=entry)
    if not order:
        raise NotFoundException("Order not found")
    logger.info(f"Order {order_id} cancelled by {admin['sub']}: {reason or 'no reason given'}")
    return SuccessResponse(data=OrderResponse.from_order(order), message="Order cancelled")

@router.get("/stats", response_model=SuccessResponse[OrderStats])
async def get_stats(
    admin: dict = Depends(require_admin),
    orders: OrderRepository = Depends(get_order_repository)
):
    return SuccessResponse(data=OrderStats(**order_stats(await orders.list())))

# --- Image Endpoints ---
@router.get("/orders/{order_id}/images", response_model=SuccessResponse[ImageLookupResponse])
async def get_order_images(
    order_id: str,
    admin: dict = Depends(require_admin),
    orders: OrderRepository = Depends(get_order_repository),
    resolver: OrderImageResolver = Depends(get_resolver)
):
    order = await find_order(order_id, orders)
    try:
        result = await resolver.resolve(order=order, order_id=order_id)
    except ImageLookupError as e:
        raise AppException(status_code=503, detail=str(e))
    message = None if result.found else "No images found for this order"
    return SuccessResponse(data=ImageLookupResponse.from_result(result), message=message)

@router.get("/orders/{order_id}/images.zip")
async def download_order_images(
    order_id: str,
    admin: dict = Depends(require_admin),
    orders: OrderRepository = Depends(get_order_repository),
    builder: ArchiveBuilder = Depends(get_archive_builder)
):
    order = await find_order(order_id, orders)
    try:
        archive = await builder.save_order_images_as_zip(order=order, order_id=order_id)
    except ImageLookupError as e:
        raise AppException(status_code=503, detail=str(e))
    except NoImagesError as e:
        raise NotFoundException(str(e))
    except ArchiveError as e:
        raise archive_failed(e)
    logger.info(f"Built {archive.filename} with {archive.file_count} images")
    return zip_response(archive)

@router.post("/images/archive")
async def archive_images(
    body: ArchiveRequest,
    admin: dict = Depends(require_admin),
    builder: ArchiveBuilder = Depends(get_archive_builder)
):
    if not body.paths:
        raise ValidationException("No image paths given")
    try:
        archive = await builder.save_order_images_as_zip(order_id=body.order_id, paths=body.paths)
    except ArchiveError as e:
        raise archive_failed(e)
    return zip_response(archive)
