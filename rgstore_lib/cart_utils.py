"""
Pure cart arithmetic and merge rules.

A cart is a dict keyed by the product id as a string, the same shape whether
it came from the session (anonymous shopper) or from the cart_items table:

    {"3": {"id": 3, "title": "...", "price": 250.0, "quantity": 2}}
"""

from .currency import round_money

FREE_SHIPPING_THRESHOLD = 500
SHIPPING_CHARGE = 50
GST_RATE = 0.18
MAX_QUANTITY_PER_ADD = 10
# largest value an SQLite INTEGER column holds
MAX_ROW_ID = 2 ** 63 - 1


def calculate_cart_total(cart: dict) -> float:
    """
    Calculate the total value of a cart.
    """
    total = 0.0
    for item in cart.values():
        total += float(item["price"]) * int(item["quantity"])
    return round_money(total)


def cart_item_count(cart: dict) -> int:
    """
    Count total number of items in a cart.
    """
    return sum(int(item["quantity"]) for item in cart.values())


def shipping_for(subtotal: float) -> float:
    if subtotal <= 0:
        return 0.0
    return 0.0 if subtotal >= FREE_SHIPPING_THRESHOLD else float(SHIPPING_CHARGE)


def cart_summary(cart: dict, discount: float = 0.0) -> dict:
    """
    Price breakdown shown next to the cart and used for orders.

    Shipping is free from FREE_SHIPPING_THRESHOLD upwards and GST is charged
    on the subtotal after the coupon discount.
    """
    subtotal = calculate_cart_total(cart)
    discount = min(float(discount or 0), subtotal)
    shipping = shipping_for(subtotal)
    tax = round_money((subtotal - discount) * GST_RATE)
    total = subtotal - discount + shipping + tax

    return {
        "itemCount": cart_item_count(cart),
        "subtotal": round_money(subtotal),
        "shipping": round_money(shipping),
        "tax": tax,
        "discount": round_money(discount),
        "total": round_money(total),
        "currency": "INR",
        "freeShippingEligible": subtotal >= FREE_SHIPPING_THRESHOLD,
        "freeShippingThreshold": FREE_SHIPPING_THRESHOLD,
    }


def make_line(product, quantity: int) -> dict:
    return {
        "id": product["id"],
        "title": product["title"],
        "price": float(product["price"]),
        "quantity": int(quantity),
    }


def positive_int(value):
    """value as a usable row id or quantity, or None."""
    if isinstance(value, bool):
        return None
    try:
        number = int(value)
    except (TypeError, ValueError, OverflowError):
        return None
    return number if 0 < number <= MAX_ROW_ID else None


def merge_carts(account_cart: dict, local_items: list, products: dict):
    """
    Fold a client-held cart into an account cart without losing anything.

    products maps product id (int) to a product row. Returns the merged cart
    and a list of skipped local lines with the reason each was skipped.
    Existing account lines are never removed: when both sides hold a product
    the larger quantity wins, and every line gets the current catalog price.
    """
    merged = {key: dict(item) for key, item in account_cart.items()}
    skipped = []

    for local in local_items:
        if not isinstance(local, dict):
            skipped.append({"id": None, "reason": "invalid_item"})
            continue

        product_id = positive_int(local.get("id", local.get("productId")))
        quantity = positive_int(local.get("quantity"))
        if product_id is None or quantity is None:
            skipped.append({"id": local.get("id"), "reason": "invalid_item"})
            continue

        product = products.get(product_id)
        if product is None:
            skipped.append({"id": product_id, "reason": "product_not_found"})
            continue
        if not product["in_stock"] or product["stock_quantity"] <= 0:
            skipped.append({"id": product_id, "reason": "out_of_stock"})
            continue

        key = str(product_id)
        if key in merged:
            quantity = max(int(merged[key]["quantity"]), quantity)
        merged[key] = make_line(product, min(quantity, product["stock_quantity"]))

    # account lines keep their quantity but pick up price changes
    for key, item in merged.items():
        product = products.get(int(key))
        if product is not None:
            item["price"] = float(product["price"])
            item["title"] = product["title"]

    return merged, skipped


def replace_cart(items: list, products: dict):
    """
    Build a cart from a full list of lines, dropping those that cannot be
    fulfilled from stock.
    """
    cart = {}
    skipped = []
    for line in items:
        product_id = positive_int(line.get("productId")) if isinstance(line, dict) else None
        quantity = positive_int(line.get("quantity")) if isinstance(line, dict) else None
        product = products.get(product_id)
        if product is None or quantity is None:
            skipped.append({"id": product_id, "reason": "invalid_item"})
            continue
        if not product["in_stock"] or product["stock_quantity"] < quantity:
            skipped.append({"id": product_id, "reason": "insufficient_stock"})
            continue
        cart[str(product_id)] = make_line(product, quantity)
    return cart, skipped
