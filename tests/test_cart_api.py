import pytest

from conftest import PASSWORD


def add(c, product_id, quantity=1):
    return c.post("/api/v1/cart/items", json={"productId": product_id, "quantity": quantity})


def test_anonymous_cart_lives_in_session(client):
    resp = add(client, 1, 2)
    body = resp.get_json()["data"]
    assert resp.status_code == 201
    assert body["cartItem"]["quantity"] == 2
    assert body["cartSummary"]["subtotal"] == 500
    assert body["cartSummary"]["shipping"] == 0

    cart = client.get("/api/v1/cart").get_json()["data"]["cart"]
    assert cart["userId"] is None
    assert [item["productId"] for item in cart["items"]] == [1]
    assert cart["summary"]["total"] == pytest.approx(590.0)


def test_adding_same_product_accumulates(client):
    add(client, 2, 1)
    add(client, 2, 3)
    cart = client.get("/api/v1/cart").get_json()["data"]["cart"]
    assert cart["items"][0]["quantity"] == 4


def test_add_rejects_bad_requests(client):
    assert add(client, 7).status_code == 400
    assert add(client, 7).get_json()["error"] == "INSUFFICIENT_STOCK"
    assert add(client, 999).status_code == 404
    assert add(client, 1, 11).status_code == 422
    assert client.post("/api/v1/cart/items", json={"quantity": 1}).status_code == 422


def test_cannot_exceed_stock_across_adds(client):
    add(client, 6, 10)
    add(client, 6, 10)
    add(client, 6, 10)
    resp = add(client, 6, 10)
    assert resp.status_code == 400


def test_update_and_remove_items(customer):
    add(customer, 2, 1)

    resp = customer.put("/api/v1/cart/items/2", json={"quantity": 3})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["cartSummary"]["itemCount"] == 3

    assert customer.put("/api/v1/cart/items/2", json={"quantity": 0}).status_code == 400
    assert customer.put("/api/v1/cart/items/5", json={"quantity": 1}).status_code == 404
    assert customer.put("/api/v1/cart/items/2", json={"quantity": 500}).status_code == 400

    assert customer.delete("/api/v1/cart/items/2").status_code == 200
    assert customer.delete("/api/v1/cart/items/2").status_code == 404


def test_clear_cart(customer):
    add(customer, 1)
    add(customer, 3)
    resp = customer.delete("/api/v1/cart/clear")
    assert resp.get_json()["data"]["cartSummary"]["itemCount"] == 0
    assert customer.get("/api/v1/cart").get_json()["data"]["cart"]["items"] == []


def test_session_cart_merges_on_login(make_customer):
    c = make_customer()
    add(c, 3, 1)
    add(c, 4, 2)
    c.post("/api/v1/auth/logout")

    add(c, 3, 2)
    add(c, 5, 1)
    resp = c.post("/api/v1/auth/login", json={"email": "asha@example.com", "password": PASSWORD})
    merge = resp.get_json()["data"]["cartMerge"]
    assert merge == {"merged": 2, "skipped": []}

    cart = c.get("/api/v1/cart").get_json()["data"]["cart"]
    quantities = {item["productId"]: item["quantity"] for item in cart["items"]}
    assert quantities == {3: 2, 4: 2, 5: 1}


def test_session_cart_merges_on_register(client):
    add(client, 1, 1)
    resp = client.post("/api/v1/auth/register", json={
        "firstName": "New", "lastName": "Shopper", "email": "new@example.com", "password": PASSWORD,
    })
    assert resp.get_json()["data"]["cartMerge"]["merged"] == 1

    cart = client.get("/api/v1/cart").get_json()["data"]["cart"]
    assert cart["userId"] is not None
    assert cart["items"][0]["productId"] == 1


def test_merge_endpoint_reports_skipped_items(customer):
    resp = customer.post("/api/v1/cart/merge", json={"localCartItems": [
        {"id": 1, "quantity": 2},
        {"id": 7, "quantity": 1},
        {"id": 999, "quantity": 1},
    ]})
    data = resp.get_json()["data"]
    assert resp.status_code == 200
    assert [item["productId"] for item in data["cart"]["items"]] == [1]
    assert {s["reason"] for s in data["skipped"]} == {"out_of_stock", "product_not_found"}


def test_merge_requires_login(client):
    resp = client.post("/api/v1/cart/merge", json={"localCartItems": []})
    assert resp.status_code == 401


def test_sync_replaces_cart(customer):
    add(customer, 1, 1)
    resp = customer.post("/api/v1/cart/sync", json={"items": [
        {"productId": 2, "quantity": 2},
        {"productId": 7, "quantity": 1},
    ]})
    data = resp.get_json()["data"]
    assert resp.status_code == 200
    assert [item["productId"] for item in data["cart"]["items"]] == [2]
    assert data["skipped"] == [{"id": 7, "reason": "insufficient_stock"}]


def test_sync_rejects_unknown_products(customer):
    resp = customer.post("/api/v1/cart/sync", json={"items": [{"productId": 999, "quantity": 1}]})
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "INVALID_PRODUCTS"
    assert customer.post("/api/v1/cart/sync", json={"items": "x"}).status_code == 400


def test_coupon_applied_then_dropped_when_cart_shrinks(customer):
    add(customer, 1, 2)
    resp = customer.post("/api/v1/cart/coupon", json={"code": "save10"})
    data = resp.get_json()["data"]
    assert resp.status_code == 200
    assert data["coupon"]["code"] == "SAVE10"
    assert data["cartSummary"]["discount"] == 50
    assert data["cartSummary"]["total"] == pytest.approx(531.0)

    resp = customer.put("/api/v1/cart/items/1", json={"quantity": 1})
    assert resp.get_json()["data"]["cartSummary"]["discount"] == 0
    cart = customer.get("/api/v1/cart").get_json()["data"]["cart"]
    assert cart["appliedCoupon"] is None


def test_coupon_errors(customer):
    assert customer.post("/api/v1/cart/coupon", json={"code": "SAVE10"}).get_json()["error"] == "EMPTY_CART"
    add(customer, 2, 1)
    assert customer.post("/api/v1/cart/coupon", json={"code": ""}).status_code == 400
    assert customer.post("/api/v1/cart/coupon", json={"code": "BOGUS"}).status_code == 404
    resp = customer.post("/api/v1/cart/coupon", json={"code": "SAVE10"})
    assert resp.get_json()["error"] == "COUPON_VALIDATION_FAILED"
    assert customer.delete("/api/v1/cart/coupon").get_json()["error"] == "NO_COUPON_APPLIED"


def test_remove_coupon(customer):
    add(customer, 1, 1)
    customer.post("/api/v1/cart/coupon", json={"code": "WELCOME50"})
    resp = customer.delete("/api/v1/cart/coupon")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["cartSummary"]["discount"] == 0


def test_deleted_product_drops_out_of_session_cart(client, admin):
    add(client, 1, 1)
    add(client, 4, 1)
    assert admin.delete("/api/v1/admin/products/4").status_code == 200

    cart = client.get("/api/v1/cart").get_json()["data"]["cart"]
    assert [item["productId"] for item in cart["items"]] == [1]
    assert cart["summary"]["itemCount"] == 1
    assert cart["summary"]["subtotal"] == 250
    assert cart["summary"]["shipping"] == 50
    with client.session_transaction() as sess:
        assert list(sess["cart"]) == ["1"]


HUGE_ID = 10 ** 20


def test_out_of_range_ids_are_rejected_cleanly(customer):
    merged = customer.post("/api/v1/cart/merge", json={"localCartItems": [
        {"id": 1, "quantity": 1},
        {"id": HUGE_ID, "quantity": 1},
    ]})
    assert merged.status_code == 200
    assert [item["productId"] for item in merged.get_json()["data"]["cart"]["items"]] == [1]
    assert merged.get_json()["data"]["skipped"] == [{"id": HUGE_ID, "reason": "invalid_item"}]

    synced = customer.post("/api/v1/cart/sync", json={"items": [{"productId": HUGE_ID, "quantity": 1}]})
    assert synced.status_code == 400
    assert synced.get_json()["error"] == "INVALID_PRODUCTS"

    assert add(customer, HUGE_ID).status_code == 422
    assert customer.get(f"/api/v1/products/{HUGE_ID}").status_code == 404
    assert customer.put(f"/api/v1/cart/items/{HUGE_ID}", json={"quantity": 1}).status_code == 404
    assert customer.get(f"/api/v1/products?page={HUGE_ID}").status_code == 422


def test_merge_accepts_whole_float_ids(customer):
    resp = customer.post("/api/v1/cart/merge", json={"localCartItems": [{"id": 2.0, "quantity": 1}]})
    data = resp.get_json()["data"]
    assert data["skipped"] == []
    assert [item["productId"] for item in data["cart"]["items"]] == [2]
