import json
from datetime import datetime

from .currency import format_inr, round_money


class CouponError(ValueError):
    """A coupon cannot be used for this user or cart."""


def parse_timestamp(value) -> datetime:
    if isinstance(value, datetime):
        return value.replace(tzinfo=None)
    text = str(value).replace("Z", "")
    return datetime.fromisoformat(text).replace(tzinfo=None)


def json_list(value):
    if not value:
        return []
    if isinstance(value, list):
        return value
    return json.loads(value)


def coupon_status(coupon, now=None) -> str:
    now = now or datetime.utcnow()
    if not coupon["is_active"]:
        return "inactive"
    if now < parse_timestamp(coupon["valid_from"]):
        return "not_started"
    if now > parse_timestamp(coupon["valid_until"]):
        return "expired"
    limit = coupon["usage_limit_total"]
    if limit and coupon["usage_count"] >= limit:
        return "exhausted"
    return "active"


def discount_display(coupon) -> str:
    value = coupon["value"]
    if coupon["type"] == "percentage":
        return f"{value:g}% OFF"
    return f"₹{value:g} OFF"


def validate_coupon(coupon, user, cart_total: float, user_uses: int = 0,
                    previous_orders: int = 0, now=None):
    """
    Raise CouponError describing the first rule the coupon breaks.

    user may be None for an anonymous preview; the per-user rules are then
    skipped.
    """
    now = now or datetime.utcnow()

    if not coupon["is_active"]:
        raise CouponError("Coupon is not active")
    if now < parse_timestamp(coupon["valid_from"]):
        raise CouponError("Coupon is not yet valid")
    if now > parse_timestamp(coupon["valid_until"]):
        raise CouponError("Coupon has expired")

    limit = coupon["usage_limit_total"]
    if limit and coupon["usage_count"] >= limit:
        raise CouponError("Coupon usage limit exceeded")

    if user is not None:
        if user_uses >= coupon["usage_limit_per_user"]:
            raise CouponError("You have already used this coupon the maximum number of times")
        if coupon["new_users_only"] and previous_orders > 0:
            raise CouponError("This coupon is only valid for new customers")
        roles = json_list(coupon["user_roles"])
        if roles and user["role"] not in roles:
            raise CouponError("This coupon is not available for your account type")

    if cart_total < coupon["min_order_value"]:
        raise CouponError(f"Minimum order value of {format_inr(coupon['min_order_value'])} required")
    if coupon["max_order_value"] and cart_total > coupon["max_order_value"]:
        raise CouponError(f"Maximum order value of {format_inr(coupon['max_order_value'])} exceeded")


def calculate_discount(coupon, cart_total: float, cart: dict = None) -> float:
    applicable_amount = cart_total

    products = [int(pid) for pid in json_list(coupon["applicable_products"])]
    if products:
        applicable_amount = sum(
            float(item["price"]) * int(item["quantity"])
            for item in (cart or {}).values()
            if int(item["id"]) in products
        )

    if coupon["type"] == "percentage":
        discount = applicable_amount * coupon["value"] / 100
        if coupon["max_discount"] and discount > coupon["max_discount"]:
            discount = coupon["max_discount"]
    else:
        discount = min(coupon["value"], applicable_amount)

    return round_money(discount)


# Storage helpers. Every function takes an open connection and leaves the
# commit to the caller.

def find_coupon(conn, code):
    cur = conn.execute("SELECT * FROM coupons WHERE code = ?", ((code or "").strip().upper(),))
    return cur.fetchone()


def user_usage(conn, coupon_id, user_id) -> int:
    row = conn.execute(
        "SELECT count FROM coupon_usages WHERE coupon_id = ? AND user_id = ?",
        (coupon_id, user_id)
    ).fetchone()
    return row["count"] if row else 0


def placed_orders(conn, user_id) -> int:
    row = conn.execute(
        "SELECT COUNT(*) AS n FROM orders WHERE user_id = ? AND status != 'cancelled'",
        (user_id,)
    ).fetchone()
    return row["n"]


def check_coupon(conn, coupon, user, cart_total):
    """Validate a coupon with the user's usage history looked up."""
    uses = orders = 0
    if user is not None:
        uses = user_usage(conn, coupon["id"], user["id"])
        orders = placed_orders(conn, user["id"])
    validate_coupon(coupon, user, cart_total, uses, orders)


def record_usage(conn, coupon_id, user_id):
    now = datetime.utcnow().isoformat(timespec="seconds")
    conn.execute("UPDATE coupons SET usage_count = usage_count + 1 WHERE id = ?", (coupon_id,))
    conn.execute(
        """
        INSERT INTO coupon_usages (coupon_id, user_id, count, last_used)
        VALUES (?, ?, 1, ?)
        ON CONFLICT (coupon_id, user_id)
        DO UPDATE SET count = count + 1, last_used = excluded.last_used
        """,
        (coupon_id, user_id, now)
    )


def serialize_coupon(coupon, admin=False) -> dict:
    data = {
        "id": coupon["id"],
        "code": coupon["code"],
        "name": coupon["name"],
        "description": coupon["description"],
        "type": coupon["type"],
        "value": coupon["value"],
        "maxDiscount": coupon["max_discount"],
        "minOrderValue": coupon["min_order_value"],
        "maxOrderValue": coupon["max_order_value"],
        "validFrom": coupon["valid_from"],
        "validUntil": coupon["valid_until"],
        "discountDisplay": discount_display(coupon),
        "status": coupon_status(coupon),
    }
    if admin:
        data.update({
            "usageLimit": {
                "total": coupon["usage_limit_total"],
                "perUser": coupon["usage_limit_per_user"],
            },
            "usageCount": coupon["usage_count"],
            "applicableProducts": json_list(coupon["applicable_products"]),
            "newUsersOnly": bool(coupon["new_users_only"]),
            "userRoles": json_list(coupon["user_roles"]),
            "isActive": bool(coupon["is_active"]),
            "createdAt": coupon["created_at"],
        })
    return data
