from typing import List
from fastapi import APIRouter, Depends, Query

from storefront.shared.utils import (
    Clients, get_clients, require_auth, SuccessResponse,
    NotFoundException, ForbiddenException
)
from storefront.services.orders.models import OrderDB
from storefront.services.orders.repository import OrderRepository
from storefront.services.orders.schemas import OrderResponse

router = APIRouter(prefix="/orders", tags=["orders"])

# --- Dependencies ---
def get_order_repository(clients: Clients = Depends(get_clients)) -> OrderRepository:
    return OrderRepository(clients.mongodb.orders)

def ensure_owner(order: OrderDB, user: dict):
    if order.user_id != user["sub"] and user.get("role") != "admin":
        raise ForbiddenException("Not authorized to view this order")

async def load_owned_order(order_id: str, user: dict, orders: OrderRepository) -> OrderDB:
    order = await orders.get(order_id)
    if not order:
        raise NotFoundException("Order not found")
    ensure_owner(order, user)
    return order

# --- Endpoints ---
@router.get("", response_model=SuccessResponse[List[OrderResponse]])
async def list_orders(
    user: dict = Depends(require_auth),
    orders: OrderRepository = Depends(get_order_repository),
    page: int = Query(1, ge=1),
    limit: int = Query(10, ge=1, le=100)
):
    user_orders = await orders.list({"userId": user["sub"]})
    skip = (page - 1) * limit
    return SuccessResponse(data=[OrderResponse.from_order(o) for o in user_orders[skip:skip + limit]])

@router.get("/{order_id}", response_model=SuccessResponse[OrderResponse])
async def get_order(
    order_id: str,
    user: dict = Depends(require_auth),
    orders: OrderRepository = Depends(get_order_repository)
):
    order = await load_owned_order(order_id, user, orders)
    return SuccessResponse(data=OrderResponse.from_order(order))
