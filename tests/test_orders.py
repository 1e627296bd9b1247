import re

import pytest


def stock_of(client, product_id):
    return client.get(f"/api/v1/products/{product_id}").get_json()["data"]["product"]["stockQuantity"]


def test_place_order_from_cart(customer, place_order, order_events):
    order = place_order(customer, items=((1, 2),))

    assert re.fullmatch(r"RG-\d{4}-\d{6}", order["orderNumber"])
    assert order["status"] == "pending"
    assert order["paymentMethod"] == "cod"
    assert order["summary"]["subtotal"] == 500
    assert order["summary"]["total"] == pytest.approx(590.0)
    assert order["items"][0]["quantity"] == 2
    assert order["shippingAddress"]["country"] == "India"
    assert order["billingAddress"] == order["shippingAddress"]
    assert [t["status"] for t in order["timeline"]] == ["pending"]

    assert stock_of(customer, 1) == 118
    assert customer.get("/api/v1/cart").get_json()["data"]["cart"]["items"] == []

    assert order_events[-1]["event"] == "order.placed"
    assert order_events[-1]["items"][0]["product_id"] == 1


def test_razorpay_order_returns_payment_details(customer):
    customer.post("/api/v1/cart/items", json={"productId": 2, "quantity": 1})
    resp = customer.post("/api/v1/orders", json={
        "paymentMethod": "razorpay",
        "shippingAddress": {
            "firstName": "Asha", "lastName": "Rao", "email": "asha@example.com",
            "phone": "9876543210", "addressLine1": "1 Park Street", "city": "Kolkata",
            "state": "West Bengal", "postalCode": "700016",
        },
    })
    details = resp.get_json()["data"]["paymentDetails"]
    assert details["amount"] == 26240
    assert details["currency"] == "INR"


def test_order_with_saved_address(customer):
    address = customer.post("/api/v1/users/addresses", json={
        "firstName": "Asha", "lastName": "Rao", "phone": "9876543210",
        "addressLine1": "4 Lake Road", "city": "Pune", "state": "Maharashtra", "postalCode": "411001",
    }).get_json()["data"]["address"]
    customer.post("/api/v1/cart/items", json={"productId": 3, "quantity": 1})

    resp = customer.post("/api/v1/orders", json={"paymentMethod": "cod", "addressId": address["id"]})
    assert resp.status_code == 201
    assert resp.get_json()["data"]["order"]["shippingAddress"]["city"] == "Pune"

    resp = customer.post("/api/v1/orders", json={"paymentMethod": "cod", "addressId": 999})
    assert resp.status_code == 404


def test_order_validation(customer):
    resp = customer.post("/api/v1/orders", json={"paymentMethod": "cod", "shippingAddress": {}})
    assert resp.status_code == 422

    customer.post("/api/v1/cart/items", json={"productId": 1, "quantity": 1})
    assert customer.post("/api/v1/orders", json={"paymentMethod": "cheque"}).status_code == 422
    resp = customer.post("/api/v1/orders", json={"paymentMethod": "cod", "shippingAddress": {"city": "Pune"}})
    assert resp.status_code == 422
    assert any(d["field"] == "shippingAddress.firstName" for d in resp.get_json()["details"])


def test_empty_cart_cannot_be_ordered(customer, place_order):
    place_order(customer)
    resp = customer.post("/api/v1/orders", json={
        "paymentMethod": "cod",
        "shippingAddress": {
            "firstName": "A", "lastName": "R", "email": "a@example.com", "phone": "9876543210",
            "addressLine1": "x", "city": "y", "state": "z", "postalCode": "560001",
        },
    })
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "EMPTY_CART"


def test_order_uses_current_catalog_price(customer, admin, place_order):
    customer.post("/api/v1/cart/items", json={"productId": 5, "quantity": 1})
    admin.put("/api/v1/admin/products/5", json={"price": 230})

    order = place_order(customer, items=())
    assert order["items"][0]["unitPrice"] == 230


def test_checkout_fails_when_stock_ran_out(customer, admin):
    customer.post("/api/v1/cart/items", json={"productId": 4, "quantity": 10})
    admin.put("/api/v1/admin/products/4", json={"stockQuantity": 5})

    resp = customer.post("/api/v1/orders", json={"paymentMethod": "cod", "shippingAddress": {
        "firstName": "A", "lastName": "R", "email": "a@example.com", "phone": "9876543210",
        "addressLine1": "x", "city": "y", "state": "z", "postalCode": "560001",
    }})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "INSUFFICIENT_STOCK"
    assert stock_of(customer, 4) == 5


def test_coupon_is_recorded_against_order(customer, place_order):
    customer.post("/api/v1/cart/items", json={"productId": 1, "quantity": 1})
    customer.post("/api/v1/cart/coupon", json={"code": "WELCOME50"})
    order = place_order(customer, items=())

    assert order["couponCode"] == "WELCOME50"
    assert order["summary"]["discount"] == 50

    # new-customer coupon cannot be reused once an order exists
    customer.post("/api/v1/cart/items", json={"productId": 1, "quantity": 1})
    resp = customer.post("/api/v1/cart/coupon", json={"code": "WELCOME50"})
    assert resp.status_code == 400


def test_list_and_view_orders(customer, make_customer, place_order):
    first = place_order(customer, items=((2, 1),))
    place_order(customer, items=((3, 1),))

    data = customer.get("/api/v1/orders").get_json()["data"]
    assert data["pagination"]["totalItems"] == 2
    assert {o["id"] for o in data["orders"]} >= {first["id"]}

    detail = customer.get(f"/api/v1/orders/{first['id']}").get_json()["data"]["order"]
    assert detail["orderNumber"] == first["orderNumber"]

    other = make_customer(email="other@example.com")
    assert other.get(f"/api/v1/orders/{first['id']}").status_code == 404


def test_cancel_restores_stock(customer, place_order, order_events):
    order = place_order(customer, items=((3, 5),))
    assert stock_of(customer, 3) == 55

    resp = customer.post(f"/api/v1/orders/{order['id']}/cancel", json={"reason": "Ordered by mistake"})
    cancelled = resp.get_json()["data"]["order"]
    assert resp.status_code == 200
    assert cancelled["status"] == "cancelled"
    assert cancelled["timeline"][-1]["description"] == "Cancelled by customer: Ordered by mistake"
    assert stock_of(customer, 3) == 60
    assert order_events[-1]["event"] == "order.cancelled"

    again = customer.post(f"/api/v1/orders/{order['id']}/cancel")
    assert again.status_code == 400
    assert again.get_json()["error"] == "ORDER_NOT_CANCELLABLE"


def test_shipped_order_cannot_be_cancelled(customer, admin, place_order):
    order = place_order(customer)
    for status in ("confirmed", "processing", "shipped"):
        admin.put(f"/api/v1/admin/orders/{order['id']}/status", json={"status": status})

    resp = customer.post(f"/api/v1/orders/{order['id']}/cancel")
    assert resp.status_code == 400


def test_aws_failures_do_not_block_orders(customer, place_order, monkeypatch):
    def broken(*args, **kwargs):
        raise RuntimeError("SQS_QUEUE_URL environment variable is not set.")

    monkeypatch.setattr("rgstore_lib.orders.send_order_event_to_sqs", broken)
    monkeypatch.setattr("rgstore_lib.orders.notify_order_via_sns", broken)
    assert place_order(customer)["status"] == "pending"
