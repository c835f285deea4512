from fastapi import APIRouter, Depends, Request

from storefront.shared.utils import (
    Clients, get_clients, require_auth, SuccessResponse,
    NotFoundException, ValidationException
)
from storefront.shared.security_config import limiter
from storefront.services.cart.repository import CartRepository
from storefront.services.cart.schemas import (
    CartItemAdd, CartItemUpdate, CartResponse, CartItemResponse
)
from storefront.services.cart.store import CartStore, InvalidCartItemError

router = APIRouter(prefix="/cart", tags=["cart"])

# --- Dependencies ---
def get_cart_repository(clients: Clients = Depends(get_clients)) -> CartRepository:
    return CartRepository(clients.mongodb.carts)

async def get_cart_store(
    user: dict = Depends(require_auth),
    repository: CartRepository = Depends(get_cart_repository)
) -> CartStore:
    return await CartStore.load(user["sub"], repository)

def cart_response(store: CartStore) -> CartResponse:
    return CartResponse(
        user_id=store.user_id,
        items=[CartItemResponse.from_item(item) for item in store.items],
        total=store.get_total(),
        item_count=store.get_item_count()
    )

# --- Endpoints ---
@router.get("", response_model=SuccessResponse[CartResponse])
@limiter.limit("60/minute")
async def get_cart(request: Request, store: CartStore = Depends(get_cart_store)):
    return SuccessResponse(data=cart_response(store))

@router.post("/items", response_model=SuccessResponse[CartResponse])
async def add_to_cart(item: CartItemAdd, store: CartStore = Depends(get_cart_store)):
    try:
        await store.add_item(item.to_item())
    except InvalidCartItemError as e:
        raise ValidationException(str(e))
    return SuccessResponse(data=cart_response(store), message="Item added to cart")

@router.put("/items/{item_id}", response_model=SuccessResponse[CartResponse])
async def update_cart_item(item_id: str, update: CartItemUpdate, store: CartStore = Depends(get_cart_store)):
    if await store.update_item_quantity(item_id, update.quantity) is None:
        raise NotFoundException("Item not found in cart")
    return SuccessResponse(data=cart_response(store))

@router.delete("/items/{item_id}", response_model=SuccessResponse[CartResponse])
async def remove_cart_item(item_id: str, store: CartStore = Depends(get_cart_store)):
    await store.remove_item(item_id)
    return SuccessResponse(data=cart_response(store))

@router.delete("", response_model=SuccessResponse[CartResponse])
async def clear_cart(store: CartStore = Depends(get_cart_store)):
    await store.clear_cart()
    return SuccessResponse(data=cart_response(store), message="Cart cleared")
