from datetime import datetime
from typing import List

from storefront.services.cart.models import CartDB, CartItemDB


class CartRepository:
    """One cart document per user in the ``carts`` collection."""

    def __init__(self, collection):
        self.collection = collection

    async def ensure_indexes(self):
        await self.collection.create_index("user_id", unique=True)

    async def load(self, user_id: str) -> List[CartItemDB]:
        cart = await self.collection.find_one({"user_id": user_id})
        if not cart:
            return []
        return [CartItemDB(**item) for item in cart.get("items", [])]

    async def save(self, user_id: str, items: List[CartItemDB]):
        cart_db = CartDB(user_id=user_id, items=items, updated_at=datetime.utcnow())
        doc = cart_db.dict(by_alias=True, exclude={"id"})
        doc["items"] = [item.to_mongo() for item in items]
        await self.collection.update_one(
            {"user_id": user_id},
            {"$set": doc},
            upsert=True
        )
