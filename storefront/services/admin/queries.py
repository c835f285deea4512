"""
Admin order console queries: filtering, sorting, pagination, summary
statistics and CSV export over already-loaded orders.
"""
import csv
import io
import math
from datetime import datetime, date, time, timezone
from enum import Enum
from typing import Optional, List, Tuple, Union

from pydantic import BaseModel, field_validator

from storefront.services.orders.models import OrderDB, OrderStatus, PaymentStatus

ALL_STATUSES = "all"

CSV_HEADER = ["Order ID", "Date", "Customer", "Email", "Status", "Amount", "Items"]


def as_naive_utc(value: datetime) -> datetime:
    """Stored timestamps are naive UTC; bring aware values onto the same clock."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value


class SortKey(str, Enum):
    DATE = "date"
    AMOUNT = "amount"
    CUSTOMER = "customer"
    STATUS = "status"


class SortDirection(str, Enum):
    ASC = "asc"
    DESC = "desc"


class OrderFilter(BaseModel):
    status: Optional[str] = None
    search: Optional[str] = None
    date_from: Optional[Union[datetime, date]] = None
    date_to: Optional[Union[datetime, date]] = None

    @field_validator("date_from", "date_to", mode="before")
    @classmethod
    def parse_bound(cls, value):
        if isinstance(value, str):
            value = value.strip()
            if not value:
                return None
            if len(value) == 10:
                return date.fromisoformat(value)
            return datetime.fromisoformat(value.replace("Z", "+00:00"))
        return value

    def _bounds(self) -> Tuple[Optional[datetime], Optional[datetime]]:
        start = self.date_from
        if isinstance(start, date) and not isinstance(start, datetime):
            start = datetime.combine(start, time.min)
        end = self.date_to
        # A bare date includes the whole day
        if isinstance(end, date) and not isinstance(end, datetime):
            end = datetime.combine(end, time.max)
        return start, end

    def matches(self, order: OrderDB) -> bool:
        if self.status and self.status != ALL_STATUSES and order.status != self.status:
            return False

        if self.search:
            term = self.search.strip().lower()
            haystack = (order.id or "", order.customer_name or "", order.customer_email or "")
            if term and not any(term in value.lower() for value in haystack):
                return False

        start, end = self._bounds()
        created = as_naive_utc(order.created_at)
        if start and created < as_naive_utc(start):
            return False
        if end and created > as_naive_utc(end):
            return False
        return True


class Page(BaseModel):
    items: List[OrderDB]
    total: int
    page: int
    limit: int
    pages: int


def filter_orders(orders: List[OrderDB], criteria: OrderFilter) -> List[OrderDB]:
    return [order for order in orders if criteria.matches(order)]


def _sort_value(order: OrderDB, key: SortKey):
    if key == SortKey.AMOUNT:
        return order.amount or 0
    if key == SortKey.CUSTOMER:
        return (order.customer_name or "").lower()
    if key == SortKey.STATUS:
        return order.status or ""
    return order.created_at.replace(tzinfo=None)


def sort_orders(
    orders: List[OrderDB],
    key: SortKey = SortKey.DATE,
    direction: SortDirection = SortDirection.DESC
) -> List[OrderDB]:
    return sorted(
        orders,
        key=lambda order: _sort_value(order, SortKey(key)),
        reverse=SortDirection(direction) == SortDirection.DESC
    )


def paginate(orders: List[OrderDB], page: int = 1, limit: int = 20) -> Page:
    if page < 1 or limit < 1:
        raise ValueError("page and limit must be positive")
    skip = (page - 1) * limit
    return Page(
        items=orders[skip:skip + limit],
        total=len(orders),
        page=page,
        limit=limit,
        pages=math.ceil(len(orders) / limit) if orders else 0
    )


def order_stats(orders: List[OrderDB]) -> dict:
    by_status = {status.value: 0 for status in OrderStatus}
    revenue = 0.0
    for order in orders:
        by_status[order.status] = by_status.get(order.status, 0) + 1
        if order.payment_status == PaymentStatus.SUCCESSFUL.value and order.status != OrderStatus.REFUNDED.value:
            revenue += order.amount or 0
    return {
        "total": len(orders),
        "by_status": by_status,
        "revenue": round(revenue, 2),
        "paid": sum(1 for o in orders if o.payment_status == PaymentStatus.SUCCESSFUL.value),
    }


def csv_row(order: OrderDB) -> List[str]:
    return [
        order.id or "",
        order.created_at.strftime("%Y-%m-%d %H:%M:%S"),
        order.customer_name or "",
        order.customer_email or "",
        order.status,
        f"{order.amount:.2f}",
        str(len(order.items)),
    ]


def orders_to_csv(orders: List[OrderDB]) -> str:
    """One header line plus one line per order, every field quoted."""
    buffer = io.StringIO()
    writer = csv.writer(buffer, quoting=csv.QUOTE_ALL, lineterminator="\n")
    writer.writerow(CSV_HEADER)
    for order in orders:
        # Embedded newlines would break the one-line-per-order contract
        writer.writerow([value.replace("\r", " ").replace("\n", " ") for value in csv_row(order)])
    return buffer.getvalue()
