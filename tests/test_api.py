import pytest
from fastapi.testclient import TestClient

from storefront.main import app

ADDRESS = {
    "address": "12 Nguyen Hue, District 1",
    "recipient_name": "Nguyen Van A",
    "recipient_phone": "0912345678",
}


@pytest.fixture(scope="module")
def client():
    with TestClient(app) as client:
        yield client


def line(product_id: str = "P1", quantity: int = 1, unit_price: int = 100000) -> dict:
    return {
        "product_id": product_id,
        "name": f"Perfume {product_id}",
        "unit_price": unit_price,
        "quantity": quantity,
    }


def place_order(client, session: str, user_id: str = "api-user") -> dict:
    client.post("/api/cart/lines", json=line(quantity=2), headers={"X-Cart-Session": session})
    resp = client.post(
        "/api/checkout",
        json=ADDRESS,
        headers={"X-Cart-Session": session, "X-User-Id": user_id},
    )
    assert resp.status_code == 200
    return resp.json()


def test_health(client):
    assert client.get("/health").json()["status"] == "ok"


def test_cart_lines(client):
    headers = {"X-Cart-Session": "cart-lines"}
    client.post("/api/cart/lines", json=line("P1", quantity=2), headers=headers)
    client.post("/api/cart/lines", json=line("P1", quantity=1), headers=headers)
    client.post("/api/cart/lines", json=line("P2", unit_price=50000), headers=headers)

    body = client.get("/api/cart", headers=headers).json()

    assert [(l["product_id"], l["quantity"]) for l in body["lines"]] == [("P1", 3), ("P2", 1)]
    assert body["cart_total"] == 350000
    assert body["item_count"] == 4


def test_decrease_stops_at_one(client):
    headers = {"X-Cart-Session": "cart-decrease"}
    client.post("/api/cart/lines", json=line(), headers=headers)

    body = client.post("/api/cart/lines/P1/decrease", headers=headers).json()

    assert body["lines"][0]["quantity"] == 1


def test_checkout_requires_user(client):
    headers = {"X-Cart-Session": "cart-anon"}
    client.post("/api/cart/lines", json=line(), headers=headers)

    resp = client.post("/api/checkout", json=ADDRESS, headers=headers)

    assert resp.status_code == 401
    assert resp.json()["code"] == "NOT_AUTHENTICATED"
    assert client.get("/api/cart", headers=headers).json()["item_count"] == 1


def test_checkout_rejects_blank_address(client):
    headers = {"X-Cart-Session": "cart-blank", "X-User-Id": "api-user"}
    client.post("/api/cart/lines", json=line(), headers=headers)

    resp = client.post("/api/checkout", json={**ADDRESS, "address": "  "}, headers=headers)

    assert resp.status_code == 422
    assert resp.json()["code"] == "VALIDATION"


def test_checkout_places_order(client):
    result = place_order(client, "cart-checkout", user_id="buyer-checkout")

    assert result["total"] == 200000
    assert result["source"] == "cart"
    cart = client.get("/api/cart", headers={"X-Cart-Session": "cart-checkout"}).json()
    assert cart["lines"] == []

    listed = client.get("/api/orders", headers={"X-User-Id": "buyer-checkout"}).json()
    assert [o["order_id"] for o in listed] == [result["order_id"]]

    order = client.get(f"/api/orders/{result['order_id']}").json()
    assert order["status"] == "pending"
    assert [(i["product_id"], i["quantity"]) for i in order["items"]] == [("P1", 2)]


def test_buy_now_checkout(client):
    headers = {"X-Cart-Session": "cart-buy-now", "X-User-Id": "api-user"}
    client.post("/api/cart/lines", json=line("P1"), headers=headers)
    client.put("/api/buy-now", json=line("P9", unit_price=70000), headers=headers)

    result = client.post("/api/checkout", json=ADDRESS, headers=headers).json()

    assert result["source"] == "buy_now"
    assert result["total"] == 70000
    cart = client.get("/api/cart", headers=headers).json()
    assert cart["item_count"] == 1
    assert cart["buy_now"]["active"] is False


def test_order_status_transitions(client):
    order_id = place_order(client, "cart-status")["order_id"]

    shipped = client.post(f"/api/orders/{order_id}/status", json={"status": "shipped"})
    assert shipped.status_code == 200
    assert shipped.json()["shipped_date"] is not None

    invalid = client.post(f"/api/orders/{order_id}/status", json={"status": "teleported"})
    assert invalid.status_code == 400

    cancel_via_status = client.post(f"/api/orders/{order_id}/status", json={"status": "cancelled"})
    assert cancel_via_status.status_code == 400
    assert cancel_via_status.json()["code"] == "INVALID_STATUS"


def test_cancel_order(client):
    order_id = place_order(client, "cart-cancel")["order_id"]

    resp = client.post(f"/api/orders/{order_id}/cancel")

    assert resp.json()["status"] == "cancelled"
    assert client.post(f"/api/orders/{order_id}/status", json={"status": "shipped"}).status_code == 400


def test_unknown_order(client):
    assert client.get("/api/orders/missing").status_code == 404
    assert client.post("/api/orders/missing/cancel").json()["code"] == "ORDER_NOT_FOUND"


def test_stock_of_unknown_product(client):
    body = client.get("/api/products/nothing/stock").json()

    assert body["quantity"] == 0
    assert body["status"] == "out-of-stock"


def test_seller_inbox(client):
    body = client.get("/api/sellers/nobody/notifications").json()

    assert body == {"unread": 0, "notifications": []}
    assert client.post("/api/notifications/missing/read").status_code == 404
