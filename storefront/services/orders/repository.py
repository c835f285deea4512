from datetime import datetime
from typing import Optional, List

from pymongo import ReturnDocument

from storefront.shared.utils import str_to_oid
from storefront.services.orders.models import OrderDB, PaymentStatus, StatusHistoryEntry


class OrderRepository:
    """Reads and writes the ``orders`` collection.

    Documents are validated into ``OrderDB`` on the way out so callers never
    deal with raw Mongo shapes.
    """

    def __init__(self, collection):
        self.collection = collection

    async def insert(self, order: OrderDB) -> OrderDB:
        doc = order.to_mongo()
        result = await self.collection.insert_one(doc)
        doc["_id"] = result.inserted_id
        return OrderDB.from_mongo(doc)

    async def get(self, order_id: str) -> Optional[OrderDB]:
        doc = await self.collection.find_one({"_id": str_to_oid(order_id)})
        return OrderDB.from_mongo(doc) if doc else None

    async def find_by_gateway_order_id(self, razorpay_order_id: str) -> Optional[OrderDB]:
        doc = await self.collection.find_one({"razorpayOrderId": razorpay_order_id})
        return OrderDB.from_mongo(doc) if doc else None

    async def list(self, query: Optional[dict] = None) -> List[OrderDB]:
        cursor = self.collection.find(query or {}).sort("createdAt", -1)
        orders = []
        async for doc in cursor:
            orders.append(OrderDB.from_mongo(doc))
        return orders

    async def update(
        self,
        order_id: str,
        fields: dict,
        history: Optional[StatusHistoryEntry] = None,
        guard: Optional[dict] = None
    ) -> Optional[OrderDB]:
        """
        Apply ``fields`` with ``$set``. A history entry is prepended (newest
        first) in the same write. ``guard`` adds conditions to the filter;
        returns None when nothing matched.
        """
        update = {"$set": dict(fields, updatedAt=datetime.utcnow())}
        if history is not None:
            update["$push"] = {
                "statusHistory": {"$each": [history.dict(by_alias=True, exclude_none=True)], "$position": 0}
            }
        query = {"_id": str_to_oid(order_id)}
        if guard:
            query.update(guard)
        doc = await self.collection.find_one_and_update(
            query, update, return_document=ReturnDocument.AFTER
        )
        return OrderDB.from_mongo(doc) if doc else None

    async def finalize_payment(
        self,
        order_id: str,
        fields: dict,
        history: StatusHistoryEntry
    ) -> Optional[OrderDB]:
        """Write a successful payment unless the order is already paid."""
        return await self.update(
            order_id, fields, history,
            guard={"paymentStatus": {"$ne": PaymentStatus.SUCCESSFUL.value}}
        )
