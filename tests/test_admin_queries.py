import csv
import io
from datetime import datetime

import pytest

from storefront.services.orders.models import OrderDB
from storefront.services.admin.queries import (
    OrderFilter, SortKey, SortDirection, filter_orders, sort_orders, paginate,
    order_stats, orders_to_csv, CSV_HEADER
)


def make_order(oid, name, email, status, amount, created, payment_status="pending", items=1):
    return OrderDB(
        _id=oid,
        userId="user-1",
        shippingDetails={"fullName": name, "email": email},
        items=[{"id": f"{oid}-{i}", "price": amount / items} for i in range(items)],
        amount=amount,
        status=status,
        paymentStatus=payment_status,
        createdAt=created,
    )


@pytest.fixture
def orders():
    return [
        make_order("a1", "Asha Rao", "asha@example.com", "processing", 499, datetime(2024, 3, 1, 9, 0), "successful"),
        make_order("b2", "Vikram Sen", "vik@example.com", "pending", 1200, datetime(2024, 3, 2, 23, 59), items=2),
        make_order("c3", "zoya Khan", "Zoya@Example.com", "shipped", 250, datetime(2024, 3, 3, 12, 0), "successful"),
        make_order("d4", "Ravi, \"The\" Dev", "ravi@example.com", "refunded", 800, datetime(2024, 3, 4, 8, 0), "successful"),
    ]


def ids(orders):
    return [o.id for o in orders]


def test_status_filter(orders):
    assert ids(filter_orders(orders, OrderFilter(status="pending"))) == ["b2"]
    assert len(filter_orders(orders, OrderFilter(status="all"))) == 4


def test_search_is_case_insensitive_over_id_name_and_email(orders):
    assert ids(filter_orders(orders, OrderFilter(search="ZOYA"))) == ["c3"]
    assert ids(filter_orders(orders, OrderFilter(search="vik@"))) == ["b2"]
    assert ids(filter_orders(orders, OrderFilter(search="A1"))) == ["a1"]


def test_bare_end_date_covers_the_whole_day(orders):
    criteria = OrderFilter(date_from="2024-03-02", date_to="2024-03-02")
    assert ids(filter_orders(orders, criteria)) == ["b2"]


def test_datetime_bounds_are_inclusive(orders):
    criteria = OrderFilter(date_from="2024-03-01T09:00:00", date_to="2024-03-03T12:00:00")
    assert ids(filter_orders(orders, criteria)) == ["a1", "b2", "c3"]


def test_offset_bounds_are_compared_in_utc(orders):
    # 14:30 at +05:30 is 09:00 UTC, the moment a1 was placed
    criteria = OrderFilter(date_from="2024-03-01T14:30:00+05:30", date_to="2024-03-01T14:30:00+05:30")
    assert ids(filter_orders(orders, criteria)) == ["a1"]

    later = OrderFilter(date_from="2024-03-01T09:00:01Z", date_to="2024-03-02T23:59:00+00:00")
    assert ids(filter_orders(orders, later)) == ["b2"]


def test_sorting(orders):
    assert ids(sort_orders(orders, SortKey.DATE, SortDirection.DESC)) == ["d4", "c3", "b2", "a1"]
    assert ids(sort_orders(orders, SortKey.AMOUNT, SortDirection.ASC)) == ["c3", "a1", "d4", "b2"]
    assert ids(sort_orders(orders, SortKey.CUSTOMER, SortDirection.ASC)) == ["a1", "d4", "b2", "c3"]
    assert ids(sort_orders(orders, "status", "asc")) == ["b2", "a1", "d4", "c3"]


def test_pagination(orders):
    page = paginate(orders, page=2, limit=3)
    assert ids(page.items) == ["d4"]
    assert page.total == 4
    assert page.pages == 2
    assert paginate([], 1, 10).pages == 0
    with pytest.raises(ValueError):
        paginate(orders, page=0)


def test_stats(orders):
    stats = order_stats(orders)
    assert stats["total"] == 4
    assert stats["by_status"]["pending"] == 1
    assert stats["by_status"]["delivered"] == 0
    # Refunded orders do not count as revenue
    assert stats["revenue"] == 749
    assert stats["paid"] == 3


def test_csv_has_one_line_per_order(orders):
    text = orders_to_csv(orders)
    lines = text.split("\n")

    assert text.endswith("\n")
    assert len(lines) - 1 == len(orders) + 1
    assert lines[0] == ",".join(f'"{h}"' for h in CSV_HEADER)

    rows = list(csv.reader(io.StringIO(text)))
    assert all(len(row) == 7 for row in rows)
    assert rows[2] == ["b2", "2024-03-02 23:59:00", "Vikram Sen", "vik@example.com", "pending", "1200.00", "2"]
    assert rows[4][2] == 'Ravi, "The" Dev'


def test_csv_of_no_orders_is_just_the_header():
    assert orders_to_csv([]) == ",".join(f'"{h}"' for h in CSV_HEADER) + "\n"
