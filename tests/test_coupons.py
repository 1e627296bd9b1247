from datetime import datetime, timedelta

import pytest

from rgstore_lib.coupons import CouponError, calculate_discount, coupon_status, validate_coupon

NOW = datetime(2025, 6, 1, 12, 0, 0)


def make_coupon(**overrides):
    coupon = {
        "id": 1,
        "code": "SAVE10",
        "type": "percentage",
        "value": 10,
        "max_discount": 100,
        "min_order_value": 500,
        "max_order_value": None,
        "usage_limit_total": None,
        "usage_limit_per_user": 1,
        "usage_count": 0,
        "applicable_products": "[]",
        "new_users_only": 0,
        "user_roles": "[]",
        "valid_from": (NOW - timedelta(days=1)).isoformat(),
        "valid_until": (NOW + timedelta(days=30)).isoformat(),
        "is_active": 1,
    }
    coupon.update(overrides)
    return coupon


STUDENT = {"id": 7, "role": "student"}


def test_valid_coupon_passes():
    validate_coupon(make_coupon(), STUDENT, 600, now=NOW)


@pytest.mark.parametrize("overrides, user_uses, orders, total, message", [
    ({"is_active": 0}, 0, 0, 600, "not active"),
    ({"valid_from": (NOW + timedelta(days=1)).isoformat()}, 0, 0, 600, "not yet valid"),
    ({"valid_until": (NOW - timedelta(days=1)).isoformat()}, 0, 0, 600, "expired"),
    ({"usage_limit_total": 5, "usage_count": 5}, 0, 0, 600, "usage limit"),
    ({}, 1, 0, 600, "maximum number of times"),
    ({"new_users_only": 1}, 0, 2, 600, "new customers"),
    ({"user_roles": '["teacher"]'}, 0, 0, 600, "account type"),
    ({}, 0, 0, 499, "Minimum order value of ₹500.00"),
    ({"max_order_value": 550}, 0, 0, 600, "Maximum order value"),
])
def test_coupon_rules(overrides, user_uses, orders, total, message):
    with pytest.raises(CouponError, match=message):
        validate_coupon(make_coupon(**overrides), STUDENT, total, user_uses, orders, now=NOW)


def test_anonymous_preview_skips_per_user_rules():
    validate_coupon(make_coupon(new_users_only=1, user_roles='["teacher"]'), None, 600, 3, 3, now=NOW)


def test_percentage_discount_is_capped():
    assert calculate_discount(make_coupon(), 500) == 50
    assert calculate_discount(make_coupon(), 2000) == 100


def test_fixed_discount_never_exceeds_amount():
    coupon = make_coupon(type="fixed", value=50)
    assert calculate_discount(coupon, 500) == 50
    assert calculate_discount(coupon, 30) == 30


def test_discount_limited_to_applicable_products():
    cart = {
        "1": {"id": 1, "price": 250.0, "quantity": 2},
        "3": {"id": 3, "price": 320.0, "quantity": 1},
    }
    coupon = make_coupon(applicable_products="[3]", max_discount=None)
    assert calculate_discount(coupon, 820, cart) == 32


def test_coupon_status():
    assert coupon_status(make_coupon(), NOW) == "active"
    assert coupon_status(make_coupon(is_active=0), NOW) == "inactive"
    assert coupon_status(make_coupon(usage_limit_total=1, usage_count=1), NOW) == "exhausted"
    assert coupon_status(make_coupon(), NOW + timedelta(days=60)) == "expired"


# ----- HTTP -----

def test_validate_endpoint_with_cart_total(client):
    resp = client.get("/api/v1/coupons/validate/save10?cartTotal=600")
    body = resp.get_json()
    assert resp.status_code == 200
    assert body["data"]["valid"] is True
    assert body["data"]["discount"] == 60
    assert body["data"]["coupon"]["discountDisplay"] == "10% OFF"


def test_validate_endpoint_below_minimum(client):
    resp = client.get("/api/v1/coupons/validate/SAVE10?cartTotal=100")
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "COUPON_VALIDATION_FAILED"


def test_validate_unknown_coupon(client):
    resp = client.get("/api/v1/coupons/validate/NOPE")
    assert resp.status_code == 404
    assert resp.get_json()["error"] == "COUPON_NOT_FOUND"


def test_available_coupons_for_new_customer(customer):
    customer.post("/api/v1/cart/items", json={"productId": 2, "quantity": 2})
    resp = customer.get("/api/v1/coupons/available")
    coupons = {c["code"]: c for c in resp.get_json()["data"]["coupons"]}

    assert set(coupons) == {"SAVE10", "WELCOME50"}
    assert coupons["WELCOME50"]["eligible"] is True
    assert coupons["SAVE10"]["eligible"] is False
