import json
import logging
import os
from datetime import datetime, timedelta

from dotenv import load_dotenv
from flask import Flask, request, session
from flask_cors import CORS
from werkzeug.exceptions import HTTPException
from werkzeug.security import generate_password_hash, check_password_hash

load_dotenv()

from db import get_connection, init_db, seed_sample_data, utc_now  # noqa: E402
from rgstore_lib import (  # noqa: E402
    APIError, api_response, error_response, login_required, to_paise,
)
from rgstore_lib.auth import (  # noqa: E402
    get_current_user, login_user, logout_user, require_user, serialize_user,
)
from rgstore_lib.cart_store import (  # noqa: E402
    applied_coupon, cart_view, clear_cart, load_cart, merge_into_account,
    products_by_id, save_cart, serialize_line, session_cart_lines, set_coupon, summarize,
)
from rgstore_lib.cart_utils import calculate_cart_total, make_line, positive_int, replace_cart  # noqa: E402
from rgstore_lib.catalog import get_product, rating_distribution, serialize_product  # noqa: E402
from rgstore_lib.coupons import (  # noqa: E402
    CouponError, calculate_discount, check_coupon, coupon_status, find_coupon,
    placed_orders, record_usage, serialize_coupon, user_usage, json_list,
)
from rgstore_lib.notifications import create_notification  # noqa: E402
from rgstore_lib.orders import (  # noqa: E402
    CANCELLABLE, DELIVERY_DAYS, InvalidTransition, add_timeline, change_status,
    generate_order_number, publish_order_event, serialize_order,
)
from rgstore_lib.responses import pagination  # noqa: E402
from rgstore_lib.validation import (  # noqa: E402
    PAYMENT_METHODS, SORT_FIELDS, RowIdConverter, get_json_body, parse_catalog_query,
    parse_pagination, validate_cart_line, validate_login, validate_order_address,
    validate_registration,
)

LOG_LEVEL = os.environ.get("LOG_LEVEL", "INFO")
FRONTEND_URL = os.environ.get("FRONTEND_URL", "http://localhost:3001")
API_VERSION = "1.0.0"

logging.basicConfig(
    level=LOG_LEVEL,
    format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
)

app = Flask(__name__)
# ids past the SQLite INTEGER range never match a route
app.url_map.converters["int"] = RowIdConverter
app.secret_key = os.environ.get("SECRET_KEY", "change_this_secret_key")  # change for production
app.config.update(
    SESSION_COOKIE_HTTPONLY=True,
    SESSION_COOKIE_SAMESITE=os.environ.get("SESSION_COOKIE_SAMESITE", "Lax"),
    MAX_CONTENT_LENGTH=10 * 1024 * 1024,
)

CORS(
    app,
    resources={r"/api/*": {"origins": FRONTEND_URL}},
    supports_credentials=True,
    methods=["GET", "POST", "PUT", "DELETE", "OPTIONS"],
    allow_headers=["Content-Type", "Authorization"],
)

# DB INIT
with app.app_context():
    init_db()
    seed_sample_data()


# ERROR HANDLERS

@app.errorhandler(APIError)
def handle_api_error(e):
    return error_response(e.status, e.code, e.message, e.details)


@app.errorhandler(404)
def not_found(e):
    return error_response(404, "NOT_FOUND", f"Cannot {request.method} {request.path}")


@app.errorhandler(405)
def method_not_allowed(e):
    return error_response(405, "METHOD_NOT_ALLOWED", f"Cannot {request.method} {request.path}")


@app.errorhandler(Exception)
def handle_exception(e):
    if isinstance(e, HTTPException):
        return error_response(e.code, e.name.upper().replace(" ", "_"), e.description)
    app.logger.exception("Unhandled error on %s %s", request.method, request.path)
    return error_response(500, "INTERNAL_SERVER_ERROR", "Something went wrong")


# HELPERS

def product_filters(filters):
    """Translate validated catalog filters into a WHERE clause."""
    clauses, params = [], []

    for key, column in (("subject", "subject"), ("class_level", "class_level"),
                        ("type", "type"), ("featured", "featured")):
        if filters.get(key) is not None:
            clauses.append(f"{column} = ?")
            params.append(filters[key])

    if filters.get("price_min") is not None:
        clauses.append("price >= ?")
        params.append(filters["price_min"])
    if filters.get("price_max") is not None:
        clauses.append("price <= ?")
        params.append(filters["price_max"])
    if filters.get("in_stock") is not None:
        clauses.append("in_stock = ?")
        params.append(1 if filters["in_stock"] else 0)

    if filters.get("search"):
        term = f"%{filters['search'].lower()}%"
        clauses.append(
            "(LOWER(title) LIKE ? OR LOWER(description) LIKE ? "
            "OR LOWER(author) LIKE ? OR LOWER(tags) LIKE ?)"
        )
        params.extend([term] * 4)

    where = f" WHERE {' AND '.join(clauses)}" if clauses else ""
    return where, params


def find_products(conn, filters):
    where, params = product_filters(filters)

    if filters.get("search"):
        order_by = "CASE WHEN LOWER(title) LIKE ? THEN 0 ELSE 1 END, rating_average DESC, id"
        order_params = [f"%{filters['search'].lower()}%"]
    else:
        direction = "ASC" if filters["sort_order"] == "asc" else "DESC"
        order_by = f"{SORT_FIELDS[filters['sort_by']]} {direction}, id {direction}"
        order_params = []

    page, limit = filters["page"], filters["limit"]
    cur = conn.cursor()
    cur.execute(f"SELECT COUNT(*) FROM products{where}", params)
    total = cur.fetchone()[0]

    cur.execute(
        f"SELECT * FROM products{where} ORDER BY {order_by} LIMIT ? OFFSET ?",
        params + order_params + [limit, (page - 1) * limit]
    )
    products = [serialize_product(row) for row in cur.fetchall()]
    return products, pagination(page, limit, total)


def catalog_facets(conn):
    cur = conn.cursor()
    facets = {}
    for name, column in (("subjects", "subject"), ("classes", "class_level"), ("types", "type")):
        cur.execute(f"SELECT DISTINCT {column} FROM products ORDER BY {column}")
        facets[name] = [row[0] for row in cur.fetchall()]
    cur.execute("SELECT DISTINCT featured FROM products WHERE featured IS NOT NULL ORDER BY featured")
    facets["featured"] = [row[0] for row in cur.fetchall()]
    cur.execute("SELECT MIN(price), MAX(price) FROM products")
    low, high = cur.fetchone()
    facets["priceRange"] = {"min": low or 0, "max": high or 0}
    return facets


def merge_session_cart(conn, user):
    """Fold the anonymous session cart into the user's account cart."""
    lines = session_cart_lines()
    if not lines:
        return {"merged": 0, "skipped": []}
    skipped = merge_into_account(conn, user, lines)
    session["cart"] = {}
    return {"merged": len(lines) - len(skipped), "skipped": skipped}


# PUBLIC ROUTES

@app.route("/health")
def health():
    return api_response(
        {"service": "RG Publication API", "version": API_VERSION},
        message="RG Publication API is running",
    )


@app.route("/api/v1/products")
def list_products():
    filters = parse_catalog_query(request.args)

    conn = get_connection()
    products, page_info = find_products(conn, filters)
    facets = catalog_facets(conn)
    conn.close()

    return api_response({"products": products, "pagination": page_info, "filters": facets})


@app.route("/api/v1/products/featured")
def featured_products():
    _, limit = parse_pagination(request.args, default_limit=8, max_limit=50)

    conn = get_connection()
    cur = conn.cursor()
    groups = {}
    for tag in ("bestseller", "trending", "new-arrival"):
        cur.execute(
            """
            SELECT * FROM products WHERE featured = ?
            ORDER BY rating_average DESC, created_at DESC LIMIT ?
            """,
            (tag, limit)
        )
        groups[tag] = [serialize_product(row) for row in cur.fetchall()]
    conn.close()

    return api_response({"featured": groups})


@app.route("/api/v1/products/<int:product_id>")
def product_detail(product_id):
    conn = get_connection()
    product = get_product(conn, product_id)
    if product is None:
        conn.close()
        raise APIError(404, "PRODUCT_NOT_FOUND", "Product not found")

    data = serialize_product(product, rating_distribution(conn, product_id))
    cur = conn.cursor()
    cur.execute(
        """
        SELECT * FROM products WHERE subject = ? AND id != ?
        ORDER BY ABS(class_level - ?), rating_average DESC LIMIT 4
        """,
        (product["subject"], product_id, product["class_level"])
    )
    related = [serialize_product(row) for row in cur.fetchall()]
    conn.close()

    return api_response({"product": data, "relatedProducts": related})


@app.route("/api/v1/search/products")
def search_products():
    filters = parse_catalog_query(request.args)
    if not filters.get("search"):
        raise APIError(400, "MISSING_QUERY", "Search query is required")

    conn = get_connection()
    products, page_info = find_products(conn, filters)
    conn.close()

    return api_response({
        "query": filters["search"],
        "products": products,
        "pagination": page_info,
    })


@app.route("/api/v1/search/suggestions")
def search_suggestions():
    query = (request.args.get("q") or "").strip().lower()
    _, limit = parse_pagination(request.args, default_limit=8, max_limit=20)
    if len(query) < 2:
        return api_response({"suggestions": []})

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT title, author, tags FROM products
        WHERE LOWER(title) LIKE ? OR LOWER(author) LIKE ? OR LOWER(tags) LIKE ?
        ORDER BY rating_average DESC
        """,
        (f"%{query}%",) * 3
    )
    rows = cur.fetchall()
    conn.close()

    suggestions = []
    seen = set()

    def offer(text, kind):
        if text and query in text.lower() and text.lower() not in seen:
            seen.add(text.lower())
            suggestions.append({"text": text, "type": kind})

    for row in rows:
        offer(row["title"], "product")
    for row in rows:
        offer(row["author"], "author")
    for row in rows:
        for tag in json.loads(row["tags"] or "[]"):
            offer(tag, "tag")

    return api_response({"suggestions": suggestions[:limit]})


# ----- AUTH -----

@app.route("/api/v1/auth/register", methods=["POST"])
def register():
    data = validate_registration(get_json_body())

    conn = get_connection()
    try:
        cur = conn.cursor()
        cur.execute("SELECT 1 FROM users WHERE email = ?", (data["email"],))
        if cur.fetchone():
            app.logger.info("Registration failed: email already exists for %s", data["email"])
            raise APIError(400, "VALIDATION_ERROR", "Invalid input data",
                           [{"field": "email", "message": "Email already exists"}])

        cur.execute(
            """
            INSERT INTO users (email, password_hash, first_name, last_name, phone,
                               date_of_birth, role, created_at, last_login_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (data["email"], generate_password_hash(data["password"]), data["first_name"],
             data["last_name"], data.get("phone"), data.get("date_of_birth"),
             data["role"], utc_now(), utc_now())
        )
        user_id = cur.lastrowid
        create_notification(conn, user_id, "system", "Welcome to RG Publication",
                            "Your account has been created.", category="success")
        conn.commit()

        login_user(user_id)
        user = get_current_user()
        cart_merge = merge_session_cart(conn, user)
    finally:
        conn.close()

    app.logger.info("Registered user %s", user_id)
    return api_response(
        {"user": serialize_user(user), "cartMerge": cart_merge},
        message="User registered successfully",
        status=201,
    )


@app.route("/api/v1/auth/login", methods=["POST"])
def login():
    data = validate_login(get_json_body())

    conn = get_connection()
    try:
        cur = conn.cursor()
        cur.execute("SELECT id, password_hash, is_active FROM users WHERE email = ?", (data["email"],))
        row = cur.fetchone()

        if not row or not check_password_hash(row["password_hash"], data["password"]):
            raise APIError(401, "INVALID_CREDENTIALS", "Invalid email or password")
        if not row["is_active"]:
            raise APIError(403, "ACCOUNT_DISABLED", "This account has been deactivated")

        cur.execute("UPDATE users SET last_login_at = ? WHERE id = ?", (utc_now(), row["id"]))
        conn.commit()

        login_user(row["id"])
        user = get_current_user()
        cart_merge = merge_session_cart(conn, user)
    finally:
        conn.close()

    return api_response(
        {"user": serialize_user(user), "cartMerge": cart_merge},
        message="Login successful",
    )


@app.route("/api/v1/auth/logout", methods=["POST"])
def logout():
    logout_user()
    session.pop("cart", None)
    return api_response(message="Logged out successfully")


@app.route("/api/v1/auth/me")
@login_required
def me():
    return api_response({"user": serialize_user(get_current_user())})


# ----- CART -----

@app.route("/api/v1/cart")
def get_cart():
    user = get_current_user()
    conn = get_connection()
    try:
        cart = cart_view(conn, user)
    finally:
        conn.close()
    return api_response({"cart": cart})


@app.route("/api/v1/cart/items", methods=["POST"])
def add_to_cart():
    data = validate_cart_line(get_json_body())
    user = get_current_user()
    quantity = data["quantity"]

    conn = get_connection()
    try:
        product = get_product(conn, data["product_id"])
        if product is None:
            raise APIError(404, "PRODUCT_NOT_FOUND", "Product not found")
        if not product["in_stock"] or product["stock_quantity"] < quantity:
            raise APIError(400, "INSUFFICIENT_STOCK",
                           "Product is out of stock or insufficient quantity available")

        cart = load_cart(conn, user)
        key = str(product["id"])
        existing = cart.get(key)

        if existing:
            quantity += int(existing["quantity"])
            if quantity > product["stock_quantity"]:
                raise APIError(400, "INSUFFICIENT_STOCK",
                               "Cannot add more items than available in stock")

        line = make_line(product, quantity)
        if existing and existing.get("added_at"):
            line["added_at"] = existing["added_at"]
        cart[key] = line
        save_cart(conn, user, cart)
        conn.commit()

        summary, _ = summarize(conn, user, cart)
    finally:
        conn.close()

    return api_response(
        {"cartItem": serialize_line(line, product), "cartSummary": summary},
        message=f"Added {product['title']} to cart.",
        status=201,
    )


@app.route("/api/v1/cart/items/<int:product_id>", methods=["PUT"])
def update_cart_item(product_id):
    data = get_json_body()
    try:
        quantity = int(data.get("quantity"))
    except (TypeError, ValueError):
        quantity = 0
    if quantity < 1:
        raise APIError(400, "INVALID_QUANTITY", "Quantity must be at least 1")

    user = get_current_user()
    conn = get_connection()
    try:
        cart = load_cart(conn, user)
        key = str(product_id)
        if key not in cart:
            raise APIError(404, "CART_ITEM_NOT_FOUND", "Cart item not found")

        product = get_product(conn, product_id)
        if not product or not product["in_stock"] or product["stock_quantity"] < quantity:
            raise APIError(400, "INSUFFICIENT_STOCK", "Insufficient stock available")

        cart[key]["quantity"] = quantity
        save_cart(conn, user, cart)
        conn.commit()
        summary, _ = summarize(conn, user, cart)
    finally:
        conn.close()

    return api_response(
        {"cartItem": serialize_line(cart[key], product), "cartSummary": summary},
        message="Cart item updated successfully",
    )


@app.route("/api/v1/cart/items/<int:product_id>", methods=["DELETE"])
def remove_cart_item(product_id):
    user = get_current_user()
    conn = get_connection()
    try:
        cart = load_cart(conn, user)
        if cart.pop(str(product_id), None) is None:
            raise APIError(404, "CART_ITEM_NOT_FOUND", "Cart item not found")
        save_cart(conn, user, cart)
        conn.commit()
        summary, _ = summarize(conn, user, cart)
    finally:
        conn.close()

    return api_response({"cartSummary": summary}, message="Item removed from cart successfully")


@app.route("/api/v1/cart/clear", methods=["DELETE"])
def clear_cart_route():
    user = get_current_user()
    conn = get_connection()
    try:
        clear_cart(conn, user)
        conn.commit()
        summary, _ = summarize(conn, user, {})
    finally:
        conn.close()

    return api_response({"cartSummary": summary}, message="Cart cleared successfully")


@app.route("/api/v1/cart/sync", methods=["POST"])
@login_required
def sync_cart():
    items = get_json_body().get("items")
    if not isinstance(items, list):
        raise APIError(400, "INVALID_INPUT", "Items must be an array")

    user = get_current_user()
    conn = get_connection()
    try:
        ids = []
        for line in items:
            product_id = positive_int(line.get("productId")) if isinstance(line, dict) else None
            if product_id is None:
                raise APIError(400, "INVALID_PRODUCTS", "One or more products not found")
            ids.append(product_id)

        products = products_by_id(conn, ids)
        if any(pid not in products for pid in ids):
            raise APIError(400, "INVALID_PRODUCTS", "One or more products not found")

        cart, skipped = replace_cart(items, products)
        save_cart(conn, user, cart)
        conn.commit()
        data = cart_view(conn, user)
    finally:
        conn.close()

    return api_response({"cart": data, "skipped": skipped}, message="Cart synchronized successfully")


@app.route("/api/v1/cart/merge", methods=["POST"])
@login_required
def merge_cart():
    local_items = get_json_body().get("localCartItems")
    if not isinstance(local_items, list):
        raise APIError(400, "INVALID_INPUT", "localCartItems must be an array")

    user = get_current_user()
    conn = get_connection()
    try:
        skipped = merge_into_account(conn, user, local_items)
        data = cart_view(conn, user)
    finally:
        conn.close()

    return api_response({"cart": data, "skipped": skipped}, message="Cart merged successfully")


@app.route("/api/v1/cart/coupon", methods=["POST"])
@login_required
def apply_cart_coupon():
    code = (get_json_body().get("code") or "").strip()
    if not code:
        raise APIError(400, "MISSING_COUPON_CODE", "Coupon code is required")

    user = get_current_user()
    conn = get_connection()
    try:
        cart = load_cart(conn, user)
        if not cart:
            raise APIError(400, "EMPTY_CART", "Cart is empty")

        coupon = find_coupon(conn, code)
        if coupon is None or not coupon["is_active"]:
            raise APIError(404, "COUPON_NOT_FOUND", "Coupon code not found")

        subtotal = calculate_cart_total(cart)
        try:
            check_coupon(conn, coupon, user, subtotal)
        except CouponError as e:
            raise APIError(400, "COUPON_VALIDATION_FAILED", str(e))

        set_coupon(conn, user["id"], coupon["code"])
        conn.commit()
        summary, coupon_info = summarize(conn, user, cart)
    finally:
        conn.close()

    return api_response(
        {"coupon": coupon_info, "cartSummary": summary},
        message="Coupon applied successfully",
    )


@app.route("/api/v1/cart/coupon", methods=["DELETE"])
@login_required
def remove_cart_coupon():
    user = get_current_user()
    conn = get_connection()
    try:
        if applied_coupon(conn, user) is None:
            raise APIError(400, "NO_COUPON_APPLIED", "No coupon is currently applied to the cart")
        set_coupon(conn, user["id"], None)
        conn.commit()
        summary, _ = summarize(conn, user, load_cart(conn, user))
    finally:
        conn.close()

    return api_response({"cartSummary": summary}, message="Coupon removed successfully")


# ----- COUPONS -----

@app.route("/api/v1/coupons/validate/<code>")
def validate_coupon_route(code):
    user = get_current_user()
    conn = get_connection()
    try:
        coupon = find_coupon(conn, code)
        if coupon is None or not coupon["is_active"]:
            raise APIError(404, "COUPON_NOT_FOUND", "Coupon code not found")

        cart = load_cart(conn, user)
        cart_total = request.args.get("cartTotal")
        try:
            cart_total = float(cart_total) if cart_total is not None else calculate_cart_total(cart)
        except ValueError:
            raise APIError(422, "VALIDATION_ERROR", "Invalid input data",
                           [{"field": "cartTotal", "message": "Cart total must be a number"}])

        try:
            check_coupon(conn, coupon, user, cart_total)
        except CouponError as e:
            raise APIError(400, "COUPON_VALIDATION_FAILED", str(e))

        discount = calculate_discount(coupon, cart_total, cart)
    finally:
        conn.close()

    return api_response({
        "valid": True,
        "coupon": serialize_coupon(coupon),
        "discount": discount,
        "cartTotal": cart_total,
    }, message="Coupon is valid")


@app.route("/api/v1/coupons/available")
@login_required
def available_coupons():
    user = get_current_user()
    conn = get_connection()
    try:
        cart_total = calculate_cart_total(load_cart(conn, user))
        previous_orders = placed_orders(conn, user["id"])
        coupons = []
        for coupon in conn.execute("SELECT * FROM coupons ORDER BY valid_until").fetchall():
            if coupon_status(coupon) != "active":
                continue
            if user_usage(conn, coupon["id"], user["id"]) >= coupon["usage_limit_per_user"]:
                continue
            if coupon["new_users_only"] and previous_orders:
                continue
            roles = json_list(coupon["user_roles"])
            if roles and user["role"] not in roles:
                continue
            data = serialize_coupon(coupon)
            data["eligible"] = cart_total >= coupon["min_order_value"] and not (
                coupon["max_order_value"] and cart_total > coupon["max_order_value"]
            )
            coupons.append(data)
    finally:
        conn.close()

    return api_response({"coupons": coupons})


# CHECKOUT AND ORDERS

def order_address(conn, user, data):
    address_id = data.get("addressId")
    if address_id is None:
        return validate_order_address(data.get("shippingAddress"))
    if positive_int(address_id) is None:
        raise APIError(404, "ADDRESS_NOT_FOUND", "Address not found")

    row = conn.execute(
        "SELECT * FROM addresses WHERE id = ? AND user_id = ?", (address_id, user["id"])
    ).fetchone()
    if row is None:
        raise APIError(404, "ADDRESS_NOT_FOUND", "Address not found")
    return {
        "firstName": row["first_name"],
        "lastName": row["last_name"],
        "email": row["email"],
        "phone": row["phone"],
        "addressLine1": row["address_line1"],
        "addressLine2": row["address_line2"],
        "city": row["city"],
        "state": row["state"],
        "postalCode": row["postal_code"],
        "country": row["country"],
    }


@app.route("/api/v1/orders", methods=["POST"])
@login_required
def create_order():
    data = get_json_body()
    user = get_current_user()

    payment_method = data.get("paymentMethod")
    if payment_method not in PAYMENT_METHODS:
        raise APIError(422, "VALIDATION_ERROR", "Invalid order data",
                       [{"field": "paymentMethod", "message": "Invalid payment method"}])

    conn = get_connection()
    try:
        shipping_address = order_address(conn, user, data)
        billing_address = shipping_address
        if data.get("billingAddress"):
            billing_address = validate_order_address(data["billingAddress"], "billingAddress")

        cart = load_cart(conn, user)
        if not cart:
            raise APIError(400, "EMPTY_CART", "Your cart is empty")

        products = products_by_id(conn, cart.keys())
        for key, item in cart.items():
            product = products.get(int(key))
            if product is None or not product["in_stock"] or product["stock_quantity"] < item["quantity"]:
                raise APIError(400, "INSUFFICIENT_STOCK",
                               f"Insufficient stock for product: {item['title']}")
            item["price"] = float(product["price"])

        summary, coupon_info = summarize(conn, user, cart)
        coupon = applied_coupon(conn, user) if coupon_info else None

        now = utc_now()
        estimated_delivery = (datetime.utcnow() + timedelta(days=DELIVERY_DAYS)).date().isoformat()
        cur = conn.cursor()

        # 1) Create order
        cur.execute(
            """
            INSERT INTO orders (order_number, user_id, status, subtotal, shipping, tax, discount,
                                total, currency, coupon_code, shipping_address, billing_address,
                                payment_method, notes, estimated_delivery, created_at, updated_at)
            VALUES (?, ?, 'pending', ?, ?, ?, ?, ?, 'INR', ?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (generate_order_number(conn), user["id"], summary["subtotal"], summary["shipping"],
             summary["tax"], summary["discount"], summary["total"],
             coupon["code"] if coupon else None, json.dumps(shipping_address),
             json.dumps(billing_address), payment_method, data.get("notes"),
             estimated_delivery, now, now)
        )
        order_id = cur.lastrowid
        add_timeline(conn, order_id, "pending")

        # 2) Create order items and take them out of stock
        for key, item in cart.items():
            product = products[int(key)]
            cur.execute(
                """
                INSERT INTO order_items (order_id, product_id, title, image_url, quantity,
                                         unit_price, total_price)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (order_id, product["id"], product["title"], product["image_url"],
                 item["quantity"], item["price"], round(item["price"] * item["quantity"], 2))
            )
            cur.execute(
                """
                UPDATE products
                SET stock_quantity = stock_quantity - ?,
                    in_stock = CASE WHEN stock_quantity - ? > 0 THEN 1 ELSE 0 END
                WHERE id = ? AND stock_quantity >= ?
                """,
                (item["quantity"], item["quantity"], product["id"], item["quantity"])
            )
            if cur.rowcount != 1:
                conn.rollback()
                raise APIError(400, "INSUFFICIENT_STOCK",
                               f"Insufficient stock for product: {product['title']}")

        if coupon is not None:
            record_usage(conn, coupon["id"], user["id"])

        # 3) Clear cart
        clear_cart(conn, user)

        order = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        create_notification(conn, user["id"], "order", f"Order {order['order_number']} placed",
                            "We have received your order and will confirm it shortly.",
                            category="success")
        conn.commit()

        # 4) Send SQS message and SNS notification (non-critical)
        publish_order_event(conn, order, "order.placed", user_email=user["email"])
        result = serialize_order(conn, order)
    finally:
        conn.close()

    payment_details = {}
    if payment_method == "razorpay":
        payment_details = {
            "razorpayOrderId": f"order_rzp_{result['orderNumber']}",
            "amount": to_paise(result["summary"]["total"]),
            "currency": "INR",
        }

    app.logger.info("Order %s placed by user %s", result["orderNumber"], user["id"])
    return api_response(
        {"order": result, "paymentDetails": payment_details},
        message=f"Order {result['orderNumber']} placed successfully.",
        status=201,
    )


@app.route("/api/v1/orders")
@login_required
def my_orders():
    user = get_current_user()
    page, limit = parse_pagination(request.args, default_limit=10, max_limit=50)
    status = request.args.get("status")

    where = "WHERE user_id = ?"
    params = [user["id"]]
    if status:
        where += " AND status = ?"
        params.append(status)

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(f"SELECT COUNT(*) FROM orders {where}", params)
    total = cur.fetchone()[0]
    cur.execute(
        f"SELECT * FROM orders {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        params + [limit, (page - 1) * limit]
    )
    orders = [serialize_order(conn, row, with_details=False) for row in cur.fetchall()]
    conn.close()

    return api_response({"orders": orders, "pagination": pagination(page, limit, total)})


def load_own_order(conn, order_id, user):
    order = conn.execute(
        "SELECT * FROM orders WHERE id = ? AND user_id = ?", (order_id, user["id"])
    ).fetchone()
    if order is None:
        raise APIError(404, "ORDER_NOT_FOUND", "Order not found")
    return order


@app.route("/api/v1/orders/<int:order_id>")
@login_required
def order_detail(order_id):
    user = get_current_user()
    conn = get_connection()
    try:
        order = load_own_order(conn, order_id, user)
        data = serialize_order(conn, order)
    finally:
        conn.close()
    return api_response({"order": data})


@app.route("/api/v1/orders/<int:order_id>/cancel", methods=["POST"])
@login_required
def cancel_order(order_id):
    user = require_user()
    reason = (request.get_json(silent=True) or {}).get("reason")

    conn = get_connection()
    try:
        order = load_own_order(conn, order_id, user)
        if order["status"] not in CANCELLABLE:
            raise APIError(400, "ORDER_NOT_CANCELLABLE",
                           f"Orders that are {order['status']} can no longer be cancelled")
        try:
            change_status(conn, order, "cancelled",
                          f"Cancelled by customer: {reason}" if reason else "Cancelled by customer")
        except InvalidTransition as e:
            raise APIError(400, "ORDER_NOT_CANCELLABLE", str(e))
        conn.commit()

        order = load_own_order(conn, order_id, user)
        publish_order_event(conn, order, "order.cancelled")
        data = serialize_order(conn, order)
    finally:
        conn.close()

    return api_response({"order": data}, message="Order cancelled successfully")


# BLUEPRINTS

from account import account_bp  # noqa: E402
from admin import admin_bp  # noqa: E402

app.register_blueprint(account_bp)
app.register_blueprint(admin_bp)


if __name__ == "__main__":
    app.run(debug=True, port=int(os.environ.get("PORT", 5000)))
