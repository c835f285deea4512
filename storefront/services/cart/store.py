"""
Cart store: the single mutation surface for a user's cart.

Every mutation updates the in-memory item list first and then persists the
whole snapshot through the repository. A failed write is logged and
swallowed, so the in-memory state stays authoritative for the request.
"""
import logging
import uuid
from datetime import datetime
from decimal import Decimal
from typing import List, Optional, Union

from pydantic import ValidationError
from pymongo.errors import PyMongoError

from storefront.services.cart.models import CartItemDB

logger = logging.getLogger("storefront.cart")


class InvalidCartItemError(ValueError):
    pass


class CartStore:
    def __init__(self, user_id: str, repository, items: Optional[List[CartItemDB]] = None):
        self.user_id = user_id
        self.repository = repository
        self.items: List[CartItemDB] = list(items or [])

    @classmethod
    async def load(cls, user_id: str, repository) -> "CartStore":
        try:
            items = await repository.load(user_id)
        except PyMongoError:
            logger.exception("Failed to load cart, starting empty", extra={"user_id": user_id})
            items = []
        return cls(user_id, repository, items)

    def get_item(self, item_id: str) -> Optional[CartItemDB]:
        for item in self.items:
            if item.id == item_id:
                return item
        return None

    def _index_of(self, item_id: str) -> int:
        for i, item in enumerate(self.items):
            if item.id == item_id:
                return i
        return -1

    async def add_item(self, item: Union[dict, CartItemDB, None]) -> CartItemDB:
        if item is None:
            raise InvalidCartItemError("Cart item is required")

        payload = item.dict(by_alias=True, exclude_none=True) if isinstance(item, CartItemDB) else dict(item)
        if not payload.get("id"):
            payload["id"] = str(uuid.uuid4())
        try:
            new_item = CartItemDB(**payload)
        except ValidationError as e:
            raise InvalidCartItemError(str(e))

        now = datetime.utcnow().isoformat()
        index = self._index_of(new_item.id)
        if index >= 0:
            if new_item.is_book:
                # Books carry their customization, so the new payload wins outright
                new_item.quantity = 1
                new_item.date_added = now
                self.items[index] = new_item
            else:
                existing = self.items[index]
                existing.quantity = (existing.quantity or 1) + 1
                new_item = existing
        else:
            new_item.quantity = 1
            new_item.date_added = new_item.date_added or now
            self.items.append(new_item)

        await self._persist()
        logger.info("Cart updated", extra={"user_id": self.user_id, "count": self.get_item_count()})
        return new_item

    async def remove_item(self, item_id: str):
        remaining = [item for item in self.items if item.id != item_id]
        if len(remaining) == len(self.items):
            return
        self.items = remaining
        await self._persist()

    async def update_item_quantity(self, item_id: str, quantity: int) -> Optional[CartItemDB]:
        item = self.get_item(item_id)
        if item is None:
            return None
        item.quantity = max(1, int(quantity))
        await self._persist()
        return item

    async def clear_cart(self):
        self.items = []
        await self._persist()

    def get_total(self) -> float:
        total = Decimal(0)
        for item in self.items:
            total += Decimal(str(item.price)) * (item.quantity or 1)
        return float(total)

    def get_item_count(self) -> int:
        return sum(item.quantity or 1 for item in self.items)

    def is_empty(self) -> bool:
        return not self.items

    def snapshot(self) -> List[dict]:
        return [item.to_mongo() for item in self.items]

    async def _persist(self):
        try:
            await self.repository.save(self.user_id, self.items)
        except PyMongoError:
            logger.exception("Failed to persist cart", extra={"user_id": self.user_id})
