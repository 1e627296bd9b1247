"""
Where carts live.

Anonymous shoppers keep their cart in the signed session cookie; signed-in
shoppers keep it in the cart_items table. Routes go through load_cart and
save_cart so they never need to know which one they are talking to.
"""

import logging
from datetime import datetime

from flask import session

from .cart_utils import cart_summary, merge_carts, positive_int
from .coupons import CouponError, calculate_discount, check_coupon

log = logging.getLogger(__name__)

PRODUCT_CARD_COLUMNS = (
    "id, title, slug, author, subject, class_level, type, price, original_price, "
    "image_url, in_stock, stock_quantity"
)


def _now():
    return datetime.utcnow().isoformat(timespec="seconds")


def products_by_id(conn, product_ids) -> dict:
    ids = sorted({pid for pid in map(positive_int, product_ids) if pid is not None})
    if not ids:
        return {}
    placeholders = ",".join("?" for _ in ids)
    cur = conn.execute(
        f"SELECT {PRODUCT_CARD_COLUMNS} FROM products WHERE id IN ({placeholders})",
        ids
    )
    return {row["id"]: row for row in cur.fetchall()}


def load_cart(conn, user) -> dict:
    if user is None:
        return dict(session.get("cart", {}))

    cur = conn.execute(
        """
        SELECT ci.product_id, ci.quantity, ci.unit_price, ci.added_at, p.title
        FROM cart_items ci
        JOIN products p ON p.id = ci.product_id
        WHERE ci.user_id = ?
        ORDER BY ci.id
        """,
        (user["id"],)
    )
    cart = {}
    for row in cur.fetchall():
        cart[str(row["product_id"])] = {
            "id": row["product_id"],
            "title": row["title"],
            "price": row["unit_price"],
            "quantity": row["quantity"],
            "added_at": row["added_at"],
        }
    return cart


def _ensure_cart_row(conn, user_id):
    now = _now()
    conn.execute(
        "INSERT OR IGNORE INTO carts (user_id, created_at, updated_at) VALUES (?, ?, ?)",
        (user_id, now, now)
    )
    conn.execute("UPDATE carts SET updated_at = ? WHERE user_id = ?", (now, user_id))


def save_cart(conn, user, cart: dict):
    """Persist a whole cart. The caller commits."""
    if user is None:
        session["cart"] = {
            key: {k: v for k, v in item.items() if k != "added_at"}
            for key, item in cart.items()
        }
        return

    _ensure_cart_row(conn, user["id"])
    conn.execute("DELETE FROM cart_items WHERE user_id = ?", (user["id"],))
    now = _now()
    for item in cart.values():
        conn.execute(
            """
            INSERT INTO cart_items (user_id, product_id, quantity, unit_price, added_at)
            VALUES (?, ?, ?, ?, ?)
            """,
            (user["id"], int(item["id"]), int(item["quantity"]),
             float(item["price"]), item.get("added_at") or now)
        )


def clear_cart(conn, user):
    if user is None:
        session["cart"] = {}
        return
    conn.execute("DELETE FROM cart_items WHERE user_id = ?", (user["id"],))
    conn.execute(
        "UPDATE carts SET coupon_code = NULL, updated_at = ? WHERE user_id = ?",
        (_now(), user["id"])
    )


def applied_coupon(conn, user):
    if user is None:
        return None
    row = conn.execute(
        """
        SELECT c.* FROM carts ca
        JOIN coupons c ON c.code = ca.coupon_code
        WHERE ca.user_id = ?
        """,
        (user["id"],)
    ).fetchone()
    return row


def set_coupon(conn, user_id, code):
    _ensure_cart_row(conn, user_id)
    conn.execute("UPDATE carts SET coupon_code = ? WHERE user_id = ?", (code, user_id))


def summarize(conn, user, cart: dict):
    """
    Summary for a cart with its coupon re-checked against the current total.

    A coupon that stopped applying (cart shrank below the minimum, coupon
    expired) is removed from the cart. Returns (summary, coupon dict or None).
    """
    coupon = applied_coupon(conn, user)
    discount = 0.0
    coupon_info = None

    if coupon is not None:
        subtotal = cart_summary(cart)["subtotal"]
        try:
            check_coupon(conn, coupon, user, subtotal)
        except CouponError as e:
            log.info("Dropping coupon %s from cart of user %s: %s", coupon["code"], user["id"], e)
            set_coupon(conn, user["id"], None)
            conn.commit()
        else:
            discount = calculate_discount(coupon, subtotal, cart)
            coupon_info = {
                "code": coupon["code"],
                "name": coupon["name"],
                "description": coupon["description"],
                "discount": discount,
            }

    return cart_summary(cart, discount), coupon_info


def serialize_line(item, product) -> dict:
    price = float(item["price"])
    quantity = int(item["quantity"])
    return {
        "productId": int(item["id"]),
        "product": {
            "id": product["id"],
            "title": product["title"],
            "slug": product["slug"],
            "author": product["author"],
            "price": product["price"],
            "originalPrice": product["original_price"],
            "image": product["image_url"] or "",
            "subject": product["subject"],
            "class": product["class_level"],
            "type": product["type"],
            "inStock": bool(product["in_stock"]),
            "stockQuantity": product["stock_quantity"],
        },
        "quantity": quantity,
        "unitPrice": price,
        "totalPrice": round(price * quantity, 2),
        "addedAt": item.get("added_at"),
    }


def cart_view(conn, user) -> dict:
    cart = load_cart(conn, user)
    products = products_by_id(conn, cart.keys())

    missing = [key for key in cart if int(key) not in products]
    for key in missing:
        log.warning("Product %s in cart no longer exists, dropping line", key)
        del cart[key]
    if missing and user is None:
        save_cart(conn, None, cart)

    summary, coupon = summarize(conn, user, cart)
    return {
        "userId": user["id"] if user else None,
        "items": [serialize_line(item, products[int(key)]) for key, item in cart.items()],
        "appliedCoupon": coupon,
        "summary": summary,
    }


def merge_into_account(conn, user, local_items):
    """
    Merge a client-held cart into the signed-in user's cart and persist it.

    Returns the list of local lines that could not be merged.
    """
    account_cart = load_cart(conn, user)
    wanted = set(account_cart)
    for local in local_items:
        if isinstance(local, dict):
            pid = positive_int(local.get("id", local.get("productId")))
            if pid is not None:
                wanted.add(pid)
    products = products_by_id(conn, wanted)

    merged, skipped = merge_carts(account_cart, local_items, products)
    save_cart(conn, user, merged)
    conn.commit()
    log.info(
        "Merged %d local cart lines into cart of user %s (%d skipped)",
        len(local_items), user["id"], len(skipped)
    )
    return skipped


def session_cart_lines() -> list:
    """The anonymous session cart as a list of merge inputs."""
    return [
        {"id": item["id"], "quantity": item["quantity"]}
        for item in session.get("cart", {}).values()
    ]
