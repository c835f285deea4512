import json
from datetime import datetime, timedelta

import httpx
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient
from jose import jwt
from pymongo.errors import DuplicateKeyError

from storefront.shared.utils import settings, str_to_oid
from storefront.shared.security_config import limiter
from storefront.services.orders.models import OrderDB, PaymentStatus
from storefront.services.payments.gateway import RazorpayClient, sign
from storefront.services.images.models import ImageDescriptor
from storefront.services.images.storage import StorageError, ObjectNotFoundError

TEST_KEY_SECRET = "test_key_secret"

SHIPPING = {
    "fullName": "Asha Rao",
    "email": "asha@example.com",
    "phone": "98765 43210",
    "address": "12 MG Road",
    "city": "Bengaluru",
    "state": "Karnataka",
    "postalCode": "560001",
}


# --- Fakes ---

def _matches(doc: dict, query: dict) -> bool:
    for key, expected in query.items():
        value = doc.get(key)
        if isinstance(expected, dict) and "$ne" in expected:
            if value == expected["$ne"]:
                return False
        elif value != expected:
            return False
    return True


class FakeOrderRepository:
    """In-memory stand-in for OrderRepository with the same write semantics."""

    def __init__(self):
        self.docs = {}

    async def insert(self, order: OrderDB) -> OrderDB:
        doc = order.to_mongo()
        doc["_id"] = str(ObjectId())
        self.docs[doc["_id"]] = doc
        return OrderDB.from_mongo(doc)

    async def get(self, order_id):
        doc = self.docs.get(str(str_to_oid(order_id)))
        return OrderDB.from_mongo(doc) if doc else None

    async def find_by_gateway_order_id(self, razorpay_order_id):
        for doc in self.docs.values():
            if doc.get("razorpayOrderId") == razorpay_order_id:
                return OrderDB.from_mongo(doc)
        return None

    async def list(self, query=None):
        found = [OrderDB.from_mongo(d) for d in self.docs.values() if _matches(d, query or {})]
        return sorted(found, key=lambda o: o.created_at, reverse=True)

    async def update(self, order_id, fields, history=None, guard=None):
        doc = self.docs.get(str(str_to_oid(order_id)))
        if doc is None or not _matches(doc, guard or {}):
            return None
        doc.update(fields)
        doc["updatedAt"] = datetime.utcnow()
        if history is not None:
            doc["statusHistory"] = [history.dict(by_alias=True, exclude_none=True)] + doc.get("statusHistory", [])
        return OrderDB.from_mongo(doc)

    async def finalize_payment(self, order_id, fields, history):
        return await self.update(
            order_id, fields, history,
            guard={"paymentStatus": {"$ne": PaymentStatus.SUCCESSFUL.value}}
        )


class FakeCartRepository:
    def __init__(self):
        self.carts = {}
        self.saves = 0

    async def load(self, user_id):
        return list(self.carts.get(user_id, []))

    async def save(self, user_id, items):
        self.saves += 1
        self.carts[user_id] = [item.copy(deep=True) for item in items]


class FakeEventsCollection:
    """Unique on ``event_id``; ``stale_reads`` makes ``find_one`` miss, as when
    a concurrent delivery inserts between the lookup and the insert."""

    def __init__(self):
        self.docs = []
        self.stale_reads = False

    async def find_one(self, query):
        if self.stale_reads:
            return None
        for doc in self.docs:
            if _matches(doc, query):
                return doc
        return None

    async def insert_one(self, doc):
        if any(d["event_id"] == doc["event_id"] for d in self.docs):
            raise DuplicateKeyError(f"duplicate event_id {doc['event_id']}")
        self.docs.append(doc)


class FakeArtworkStorage:
    """Object map with the ArtworkStorage interface; ``down`` simulates an outage."""

    def __init__(self, base_url="http://files.test"):
        self.base_url = base_url
        self.objects = {}
        self.down = False

    def put(self, path, data=b"img", **metadata):
        self.objects[path] = (data, dict(metadata))

    def _check(self):
        if self.down:
            raise StorageError("Storage unavailable")

    def download_url(self, path):
        return f"{self.base_url}/images/files/{path}"

    async def get_metadata(self, path):
        self._check()
        if path not in self.objects:
            raise ObjectNotFoundError(f"No object at {path}")
        data, metadata = self.objects[path]
        return dict(metadata, size=len(data))

    async def get_download_url(self, path):
        await self.get_metadata(path)
        return self.download_url(path)

    async def list_folders(self, root):
        self._check()
        prefix = root.rstrip("/") + "/"
        return sorted({
            prefix + name[len(prefix):].split("/", 1)[0]
            for name in self.objects
            if name.startswith(prefix) and "/" in name[len(prefix):]
        })

    async def list_objects(self, folder):
        self._check()
        prefix = folder.rstrip("/") + "/"
        return sorted(n for n in self.objects if n.startswith(prefix) and "/" not in n[len(prefix):])

    async def upload(self, path, data, content_type=None, metadata=None):
        self._check()
        meta = dict(metadata or {})
        if content_type:
            meta["contentType"] = content_type
        self.objects[path] = (data, meta)
        return ImageDescriptor(url=self.download_url(path), path=path, name=path.rsplit("/", 1)[-1], metadata=meta)

    async def read(self, path):
        self._check()
        if path not in self.objects:
            raise ObjectNotFoundError(f"No object at {path}")
        return self.objects[path][0]


class FakeRazorpay:
    """Request handler for httpx.MockTransport mimicking the Razorpay REST API."""

    def __init__(self):
        self.orders = []
        self.payments = {}
        self.fail_with = None

    def __call__(self, request: httpx.Request) -> httpx.Response:
        if self.fail_with is not None:
            return httpx.Response(self.fail_with, json={"error": {"description": "Gateway rejected the request"}})
        if request.method == "POST" and request.url.path.endswith("/orders"):
            body = json.loads(request.content)
            order = {
                "id": f"order_test{len(self.orders) + 1}",
                "amount": body["amount"],
                "currency": body["currency"],
                "receipt": body["receipt"],
                "status": "created",
                "notes": body["notes"],
            }
            self.orders.append(order)
            return httpx.Response(200, json=order)
        if request.method == "GET" and "/payments/" in request.url.path:
            payment_id = request.url.path.rsplit("/", 1)[-1]
            payment = self.payments.get(payment_id)
            if payment is None:
                return httpx.Response(400, json={"error": {"description": "The id provided does not exist"}})
            return httpx.Response(200, json=payment)
        return httpx.Response(404, json={"error": {"description": "Not found"}})


def payment_signature(razorpay_order_id: str, razorpay_payment_id: str, secret: str = TEST_KEY_SECRET) -> str:
    return sign(secret, f"{razorpay_order_id}|{razorpay_payment_id}".encode())


def make_token(sub: str = "user-1", role: str = "customer") -> str:
    payload = {"sub": sub, "role": role, "exp": datetime.utcnow() + timedelta(hours=1)}
    return jwt.encode(payload, settings.SECRET_KEY, algorithm=settings.ALGORITHM)


def auth_headers(sub: str = "user-1", role: str = "customer") -> dict:
    return {"Authorization": f"Bearer {make_token(sub, role)}"}


def book_item(item_id: str = "book-1", price: float = 499.0, **extra) -> dict:
    item = {"id": item_id, "type": "custom-book", "price": price, "title": "Dino Adventures"}
    item.update(extra)
    return item


# --- Fixtures ---

@pytest.fixture
def order_repo():
    return FakeOrderRepository()


@pytest.fixture
def cart_repo():
    return FakeCartRepository()


@pytest.fixture
def razorpay():
    return FakeRazorpay()


@pytest.fixture
def gateway(razorpay):
    return RazorpayClient(
        key_id="rzp_test_public",
        key_secret=TEST_KEY_SECRET,
        base_url="https://razorpay.test/v1",
        transport=httpx.MockTransport(razorpay)
    )


@pytest.fixture
def storage():
    return FakeArtworkStorage()


@pytest.fixture
def events():
    return FakeEventsCollection()


@pytest.fixture
def client(order_repo, cart_repo, gateway, storage, events):
    from storefront.main import app
    from storefront.services.cart.main import get_cart_repository
    from storefront.services.orders.main import get_order_repository
    from storefront.services.payments.main import get_payment_events
    from storefront.services.images.main import get_artwork_storage

    limiter.enabled = False
    app.state.gateway = gateway
    app.dependency_overrides[get_order_repository] = lambda: order_repo
    app.dependency_overrides[get_cart_repository] = lambda: cart_repo
    app.dependency_overrides[get_payment_events] = lambda: events
    app.dependency_overrides[get_artwork_storage] = lambda: storage

    # Not used as a context manager so startup never connects to Mongo
    yield TestClient(app)

    app.dependency_overrides.clear()
    limiter.enabled = True
