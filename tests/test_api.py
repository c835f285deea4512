import json

import pytest

from conftest import SHIPPING, auth_headers, book_item, payment_signature
from storefront.shared.utils import settings
from storefront.services.payments.gateway import sign

USER = auth_headers("user-1")
OTHER = auth_headers("user-2")
ADMIN = auth_headers("admin-1", role="admin")


def checkout(client):
    client.post("/cart/items", json=book_item(), headers=USER)
    response = client.post("/checkout", json={"shippingDetails": SHIPPING}, headers=USER)
    assert response.status_code == 200, response.text
    return response.json()["data"]


def pay(client, session, payment_id="pay_1"):
    order = session["order"]
    return client.post(f"/checkout/{order['id']}/verify", json={
        "razorpay_payment_id": payment_id,
        "razorpay_order_id": order["razorpayOrderId"],
        "razorpay_signature": payment_signature(order["razorpayOrderId"], payment_id),
    }, headers=USER)


def webhook(client, event, headers=None):
    body = json.dumps(event).encode()
    signed = {"X-Razorpay-Signature": sign(settings.RAZORPAY_WEBHOOK_SECRET, body)}
    signed.update(headers or {})
    return client.post("/payments/webhook", content=body, headers=signed)


# --- Cart ---

def test_cart_requires_auth(client):
    assert client.get("/cart").status_code == 422
    assert client.get("/cart", headers={"Authorization": "Bearer nope"}).status_code == 401


def test_cart_flow(client):
    response = client.post("/cart/items", json=book_item(), headers=USER)
    assert response.status_code == 200
    cart = response.json()["data"]
    assert cart["item_count"] == 1
    assert float(cart["total"]) == 499.0

    client.post("/cart/items", json=book_item(title="Changed"), headers=USER)
    cart = client.get("/cart", headers=USER).json()["data"]
    assert len(cart["items"]) == 1
    assert cart["items"][0]["quantity"] == 1

    assert client.put("/cart/items/missing", json={"quantity": 2}, headers=USER).status_code == 404
    cart = client.delete("/cart", headers=USER).json()["data"]
    assert cart["items"] == []


def test_cart_rejects_non_positive_price(client):
    response = client.post("/cart/items", json=book_item(price=0), headers=USER)
    assert response.status_code == 422


# --- Checkout ---

def test_checkout_and_confirmation(client, cart_repo):
    session = checkout(client)
    order = session["order"]
    assert order["status"] == "pending"
    assert session["checkout_options"]["amount"] == 49900
    assert "key_secret" not in json.dumps(session)

    response = pay(client, session)
    assert response.status_code == 200, response.text
    data = response.json()["data"]
    assert data["order"]["paymentStatus"] == "successful"
    assert data["confirmation_path"] == f"/order-confirmation/{order['id']}"
    assert cart_repo.carts["user-1"] == []

    replay = pay(client, session)
    assert replay.status_code == 200
    assert replay.json()["data"]["replayed"]

    looked_up = client.get(f"/orders/{order['id']}", headers=USER).json()["data"]
    assert looked_up["status"] == "processing"
    assert len(client.get("/orders", headers=USER).json()["data"]) == 1


def test_checkout_validation_errors(client):
    client.post("/cart/items", json=book_item(), headers=USER)
    response = client.post("/checkout", json={"shippingDetails": dict(SHIPPING, email="bad")}, headers=USER)
    assert response.status_code == 400
    assert response.json()["detail"]["errors"] == {"email": "Email is invalid"}


def test_checkout_with_empty_cart(client):
    response = client.post("/checkout", json={"shippingDetails": SHIPPING}, headers=USER)
    assert response.status_code == 400


def test_gateway_outage_returns_pending_order_id(client, razorpay, order_repo):
    client.post("/cart/items", json=book_item(), headers=USER)
    razorpay.fail_with = 503
    response = client.post("/checkout", json={"shippingDetails": SHIPPING}, headers=USER)

    assert response.status_code == 502
    order_id = response.json()["detail"]["orderId"]
    assert order_id in order_repo.docs


def test_forged_signature_is_rejected(client):
    session = checkout(client)
    order = session["order"]
    response = client.post(f"/checkout/{order['id']}/verify", json={
        "razorpay_payment_id": "pay_1",
        "razorpay_order_id": order["razorpayOrderId"],
        "razorpay_signature": "forged",
    }, headers=USER)
    assert response.status_code == 400
    assert client.get("/cart", headers=USER).json()["data"]["item_count"] == 1


def test_other_users_cannot_touch_an_order(client):
    order = checkout(client)["order"]
    assert client.get(f"/orders/{order['id']}", headers=OTHER).status_code == 403
    assert client.post(f"/checkout/{order['id']}/retry", headers=OTHER).status_code == 403
    assert client.get(f"/orders/{order['id']}", headers=ADMIN).status_code == 200


def test_dismiss_then_retry(client):
    order = checkout(client)["order"]
    dismissed = client.post(f"/checkout/{order['id']}/dismiss", headers=USER).json()["data"]
    assert dismissed["can_retry"]
    assert dismissed["attempts_remaining"] == settings.CHECKOUT_MAX_ATTEMPTS - 1

    retried = client.post(f"/checkout/{order['id']}/retry", headers=USER)
    assert retried.status_code == 200
    assert retried.json()["data"]["reused_session"]


def test_failure_callback(client):
    order = checkout(client)["order"]
    response = client.post(f"/checkout/{order['id']}/failure", json={
        "code": "BAD_REQUEST_ERROR", "description": "Card declined"
    }, headers=USER)
    assert response.status_code == 200
    assert response.json()["message"] == "Card declined"
    assert response.json()["data"]["status"] == "payment_failed"


# --- Payments ---

def test_verify_payment_endpoint(client, razorpay):
    razorpay.payments["pay_9"] = {"id": "pay_9", "amount": 49900, "status": "captured", "method": "upi"}
    response = client.post("/payments/verify-payment", json={
        "razorpay_order_id": "order_x",
        "razorpay_payment_id": "pay_9",
        "razorpay_signature": payment_signature("order_x", "pay_9"),
    }, headers=USER)
    assert response.status_code == 200
    assert float(response.json()["data"]["payment"]["amount"]) == 499.0


def test_create_order_rejects_bad_amount(client):
    response = client.post("/payments/create-order", json={"amount": "0"}, headers=USER)
    assert response.status_code == 400


def test_webhook_capture_is_idempotent(client, events):
    session = checkout(client)
    order = session["order"]
    event = {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_w", "order_id": order["razorpayOrderId"]}}},
    }

    first = webhook(client, event, {"X-Razorpay-Event-Id": "evt_1"})
    assert first.status_code == 200
    assert first.json()["orderId"] == order["id"]

    second = webhook(client, event, {"X-Razorpay-Event-Id": "evt_1"})
    assert second.json()["duplicate"]
    assert len(events.docs) == 1

    paid = client.get(f"/orders/{order['id']}", headers=USER).json()["data"]
    assert paid["paymentStatus"] == "successful"
    assert paid["razorpayPaymentId"] == "pay_w"


def test_concurrent_redelivery_is_reported_as_duplicate(client, events):
    session = checkout(client)
    order = session["order"]
    event = {
        "event": "payment.captured",
        "payload": {"payment": {"entity": {"id": "pay_w", "order_id": order["razorpayOrderId"]}}},
    }
    assert webhook(client, event, {"X-Razorpay-Event-Id": "evt_2"}).status_code == 200

    # The second delivery's lookup ran before the first one was recorded
    events.stale_reads = True
    second = webhook(client, event, {"X-Razorpay-Event-Id": "evt_2"})

    assert second.status_code == 200
    assert second.json()["duplicate"]
    assert len(events.docs) == 1


@pytest.mark.parametrize("event", [
    [],
    "payment.captured",
    {"event": "payment.captured", "payload": []},
    {"event": "payment.captured", "payload": {"payment": {"entity": "pay_1"}}},
    {"event": "refund.created", "payload": {"refund": ["rfnd_1"]}},
])
def test_malformed_webhook_payload_is_rejected(client, event):
    response = webhook(client, event)
    assert response.status_code == 400


def test_webhook_without_payment_ids_touches_no_order(client):
    session = checkout(client)
    event = {"event": "payment.captured", "payload": {"payment": None}}

    response = webhook(client, event, {"X-Razorpay-Event-Id": "evt_3"})

    assert response.status_code == 200
    assert response.json()["orderId"] is None
    stored = client.get(f"/orders/{session['order']['id']}", headers=USER).json()["data"]
    assert stored["paymentStatus"] == "pending"


def test_webhook_requires_valid_signature(client):
    body = b'{"event": "payment.captured"}'
    assert client.post("/payments/webhook", content=body).status_code == 400
    bad = client.post("/payments/webhook", content=body, headers={"X-Razorpay-Signature": "00"})
    assert bad.status_code == 400


# --- Admin ---

def test_admin_requires_admin_role(client):
    assert client.get("/admin/orders", headers=USER).status_code == 403


def test_admin_status_update_and_export(client):
    order = checkout(client)["order"]
    pay(client, {"order": order})

    for _ in range(2):
        response = client.put(f"/admin/orders/{order['id']}/status", json={"status": "shipped"}, headers=ADMIN)
        assert response.status_code == 200
    history = response.json()["data"]["statusHistory"]
    assert [h["status"] for h in history[:3]] == ["shipped", "shipped", "processing"]
    assert history[0]["updatedBy"] == "admin-1"

    shipped = client.put(f"/admin/orders/{order['id']}/shipping", json={"trackingNumber": "TRK1"}, headers=ADMIN)
    assert shipped.json()["data"]["shipping"]["trackingNumber"] == "TRK1"
    assert shipped.json()["data"]["status"] == "shipped"

    listing = client.get("/admin/orders", params={"status": "shipped", "search": "asha"}, headers=ADMIN)
    assert listing.json()["data"]["total"] == 1

    export = client.get("/admin/orders/export.csv", headers=ADMIN)
    assert export.status_code == 200
    assert export.headers["content-type"].startswith("text/csv")
    assert len(export.text.splitlines()) == 2

    stats = client.get("/admin/stats", headers=ADMIN).json()["data"]
    assert stats["byStatus"]["shipped"] == 1
    assert stats["revenue"] == 499.0


def test_admin_cancels_stuck_pending_order(client, razorpay):
    client.post("/cart/items", json=book_item(), headers=USER)
    razorpay.fail_with = 500
    order_id = client.post("/checkout", json={"shippingDetails": SHIPPING}, headers=USER).json()["detail"]["orderId"]

    cancelled = client.post(f"/admin/orders/{order_id}/cancel", headers=ADMIN)
    assert cancelled.status_code == 200
    assert cancelled.json()["data"]["status"] == "cancelled"
    assert client.post(f"/admin/orders/{order_id}/cancel", headers=ADMIN).status_code == 409


def test_status_note_and_cancel_reason_are_kept_in_history(client):
    order = checkout(client)["order"]

    noted = client.put(
        f"/admin/orders/{order['id']}/status",
        json={"status": "processing", "note": "Paid by bank transfer"},
        headers=ADMIN,
    ).json()["data"]["statusHistory"]
    assert noted[0]["note"] == "Paid by bank transfer"
    assert noted[1].get("note") is None

    cancelled = client.post(
        f"/admin/orders/{order['id']}/cancel", json={"reason": "Customer request"}, headers=ADMIN
    ).json()["data"]["statusHistory"]
    assert cancelled[0]["status"] == "cancelled"
    assert cancelled[0]["note"] == "Customer request"


def test_admin_bad_date_filter(client):
    response = client.get("/admin/orders", params={"date_from": "yesterday-ish"}, headers=ADMIN)
    assert response.status_code == 400


# --- Images ---

def test_upload_and_download_artwork(client, storage):
    response = client.post(
        "/images/upload",
        files={"file": ("my drawing.png", b"\x89PNG...", "image/png")},
        data={"orderTemp": "temp-123"},
        headers=USER,
    )
    assert response.status_code == 200, response.text
    path = response.json()["data"]["path"]
    assert path.startswith("artwork/user-1/")
    assert path.endswith("_my_drawing.png")
    assert storage.objects[path][1]["orderTemp"] == "temp-123"
    assert storage.objects[path][1]["userId"] == "user-1"

    download = client.get(f"/images/files/{path}")
    assert download.status_code == 200
    assert download.content == b"\x89PNG..."
    assert download.headers["content-type"] == "image/png"


def test_upload_rejects_non_images(client):
    response = client.post("/images/upload", files={"file": ("notes.txt", b"hi", "text/plain")}, headers=USER)
    assert response.status_code == 400


def test_admin_order_images(client, storage):
    order = checkout(client)["order"]
    storage.put("artwork/user-1/1_page.png", data=b"page", orderId=order["id"], originalName="page.png")

    found = client.get(f"/admin/orders/{order['id']}/images", headers=ADMIN).json()["data"]
    assert found["found"]
    assert found["strategy"] == "metadata_lookup"

    archive = client.get(f"/admin/orders/{order['id']}/images.zip", headers=ADMIN)
    assert archive.status_code == 200
    assert archive.headers["content-type"] == "application/zip"
    assert f'order_{order["id"]}_images.zip' in archive.headers["content-disposition"]


def test_admin_order_images_not_found(client):
    order = checkout(client)["order"]
    found = client.get(f"/admin/orders/{order['id']}/images", headers=ADMIN).json()
    assert not found["data"]["found"]
    assert found["data"]["reasons"]
    assert client.get(f"/admin/orders/{order['id']}/images.zip", headers=ADMIN).status_code == 404
