"""
Admin dashboard API: users, catalogue, orders, coupons, review moderation,
contact inbox, broadcast notifications and sales analytics.
"""

import json
from datetime import timedelta

from flask import Blueprint, current_app, request

from db import get_connection, slugify, utc_now
from rgstore_lib import APIError, ValidationFailed, admin_required, api_response
from rgstore_lib.auth import USER_COLUMNS, get_current_user, serialize_user
from rgstore_lib.cart_utils import positive_int
from rgstore_lib.catalog import get_product, refresh_product_rating, serialize_product
from rgstore_lib.coupons import find_coupon, serialize_coupon
from rgstore_lib.notifications import CATEGORIES, NOTIFICATION_TYPES, create_notification
from rgstore_lib.orders import (
    InvalidTransition, TRANSITIONS, change_status, publish_order_event, serialize_order,
)
from rgstore_lib.responses import pagination
from rgstore_lib.storage_s3 import allowed_image, delete_image, object_key, upload_image
from rgstore_lib.validation import (
    ALL_ROLES, CONTACT_STATUSES, CONTACT_TYPES, PRIORITIES, get_json_body,
    parse_date_range, parse_pagination, validate_coupon_payload, validate_product,
)

admin_bp = Blueprint("admin", __name__, url_prefix="/api/v1")

LOW_STOCK_LEVEL = 10
REVIEW_STATUSES = ("pending", "approved", "rejected", "hidden")


def _update(conn, table, row_id, changes):
    assignments = ", ".join(f"{column} = ?" for column in changes)
    conn.execute(f"UPDATE {table} SET {assignments} WHERE id = ?", (*changes.values(), row_id))


# ----- USERS -----

@admin_bp.route("/admin/users")
@admin_required
def list_users():
    page, limit = parse_pagination(request.args)
    search = (request.args.get("search") or "").strip()
    role = request.args.get("role")

    clauses, params = [], []
    if search:
        clauses.append("(first_name LIKE ? OR last_name LIKE ? OR email LIKE ?)")
        params += [f"%{search}%"] * 3
    if role:
        if role not in ALL_ROLES:
            raise ValidationFailed([{"field": "role", "message": "Invalid role"}])
        clauses.append("role = ?")
        params.append(role)
    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(f"SELECT COUNT(*) FROM users {where}", params)
    total = cur.fetchone()[0]
    cur.execute(
        f"SELECT {USER_COLUMNS} FROM users {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        params + [limit, (page - 1) * limit]
    )
    users = [serialize_user(row) for row in cur.fetchall()]
    conn.close()

    return api_response({"users": users, "pagination": pagination(page, limit, total)})


def load_user(conn, user_id):
    row = conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,)).fetchone()
    if row is None:
        raise APIError(404, "USER_NOT_FOUND", "User not found")
    return row


@admin_bp.route("/admin/users/<int:user_id>")
@admin_required
def user_detail(user_id):
    conn = get_connection()
    try:
        user = load_user(conn, user_id)
        stats = conn.execute(
            """
            SELECT COUNT(*) AS orders, COALESCE(SUM(total), 0) AS spent
            FROM orders WHERE user_id = ? AND status != 'cancelled'
            """,
            (user_id,)
        ).fetchone()
        recent = conn.execute(
            "SELECT * FROM orders WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT 5",
            (user_id,)
        ).fetchall()
        recent_orders = [serialize_order(conn, row, with_details=False) for row in recent]
    finally:
        conn.close()

    return api_response({
        "user": serialize_user(user),
        "stats": {"totalOrders": stats["orders"], "totalSpent": round(stats["spent"], 2)},
        "recentOrders": recent_orders,
    })


@admin_bp.route("/admin/users/<int:user_id>", methods=["PUT"])
@admin_required
def update_user(user_id):
    data = get_json_body()
    changes, errors = {}, []
    if "role" in data:
        if data["role"] not in ALL_ROLES:
            errors.append({"field": "role", "message": "Invalid role"})
        else:
            changes["role"] = data["role"]
    if "isActive" in data:
        changes["is_active"] = 1 if data["isActive"] else 0
    if errors:
        raise ValidationFailed(errors)

    me = get_current_user()
    if user_id == me["id"] and (changes.get("is_active") == 0 or changes.get("role", "admin") != "admin"):
        raise APIError(400, "CANNOT_MODIFY_SELF", "You cannot deactivate or demote your own account")

    conn = get_connection()
    try:
        load_user(conn, user_id)
        if changes:
            _update(conn, "users", user_id, changes)
            conn.commit()
        user = load_user(conn, user_id)
    finally:
        conn.close()

    current_app.logger.info("Admin %s updated user %s: %s", me["id"], user_id, changes)
    return api_response({"user": serialize_user(user)}, message="User updated successfully")


@admin_bp.route("/admin/users/<int:user_id>", methods=["DELETE"])
@admin_required
def delete_user(user_id):
    me = get_current_user()
    if user_id == me["id"]:
        raise APIError(400, "CANNOT_DELETE_SELF", "You cannot delete your own account")

    conn = get_connection()
    try:
        load_user(conn, user_id)
        has_orders = conn.execute("SELECT 1 FROM orders WHERE user_id = ? LIMIT 1", (user_id,)).fetchone()
        if has_orders:
            # order history must survive; deactivate instead
            _update(conn, "users", user_id, {"is_active": 0})
            message = "User has orders and was deactivated instead of deleted"
        else:
            conn.execute("DELETE FROM users WHERE id = ?", (user_id,))
            message = "User deleted successfully"
        conn.commit()
    finally:
        conn.close()

    current_app.logger.info("Admin %s removed user %s", me["id"], user_id)
    return api_response(message=message)


# ----- PRODUCTS -----

def product_payload() -> dict:
    """Read a product from a multipart form or a JSON body."""
    if request.form:
        data = request.form.to_dict()
        for field in ("features", "tags"):
            if isinstance(data.get(field), str) and data[field]:
                try:
                    data[field] = json.loads(data[field])
                except ValueError:
                    data[field] = [part.strip() for part in data[field].split(",")]
        return data
    return get_json_body()


def store_product_image(product_id):
    """Upload the optional "image" file, returning its URL or None."""
    image_file = request.files.get("image")
    if not image_file or not image_file.filename:
        return None
    if not allowed_image(image_file.filename):
        raise APIError(400, "INVALID_FILE_TYPE", "Invalid image type. Allowed: png, jpg, jpeg, gif, webp.")
    try:
        return upload_image(image_file, object_key("product-images", product_id, image_file.filename))
    except RuntimeError as e:
        current_app.logger.error("Product image upload failed: %s", e)
        raise APIError(502, "UPLOAD_FAILED", "Image upload failed")


def product_columns(data: dict) -> dict:
    columns = dict(data)
    for field in ("features", "tags"):
        if field in columns:
            columns[field] = json.dumps(columns[field])
    if "title" in columns:
        columns["slug"] = slugify(columns["title"])
    if "stock_quantity" in columns:
        columns["in_stock"] = 1 if columns["stock_quantity"] > 0 else 0
    return columns


def load_product(conn, product_id):
    product = get_product(conn, product_id)
    if product is None:
        raise APIError(404, "PRODUCT_NOT_FOUND", "Product not found")
    return product


def check_unique(conn, columns, product_id=None):
    for column, code, message in (("isbn", "DUPLICATE_ISBN", "A product with this ISBN already exists"),
                                  ("slug", "DUPLICATE_TITLE", "A product with this title already exists")):
        if not columns.get(column):
            continue
        row = conn.execute(
            f"SELECT id FROM products WHERE {column} = ? AND id != ?", (columns[column], product_id or 0)
        ).fetchone()
        if row:
            raise APIError(409, code, message)


@admin_bp.route("/admin/products", methods=["POST"])
@admin_required
def create_product():
    columns = product_columns(validate_product(product_payload()))
    columns.setdefault("in_stock", 0)
    now = utc_now()
    columns["created_at"] = columns["updated_at"] = now

    conn = get_connection()
    try:
        check_unique(conn, columns)
        # a failed upload must not leave a product row behind
        image_url = store_product_image("new")
        if image_url:
            columns["image_url"] = image_url
        names = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)
        cur = conn.execute(f"INSERT INTO products ({names}) VALUES ({placeholders})",
                           tuple(columns.values()))
        product_id = cur.lastrowid
        conn.commit()
        product = serialize_product(load_product(conn, product_id))
    finally:
        conn.close()

    current_app.logger.info("Product %s created: %s", product_id, product["title"])
    return api_response({"product": product}, message="Product created successfully", status=201)


@admin_bp.route("/admin/products/<int:product_id>", methods=["PUT"])
@admin_required
def update_product(product_id):
    columns = product_columns(validate_product(product_payload(), partial=True))

    conn = get_connection()
    try:
        existing = load_product(conn, product_id)
        check_unique(conn, columns, product_id)

        image_url = store_product_image(product_id)
        if image_url:
            columns["image_url"] = image_url

        columns["updated_at"] = utc_now()
        _update(conn, "products", product_id, columns)
        conn.commit()
        product = serialize_product(load_product(conn, product_id))
    finally:
        conn.close()

    if image_url:
        try:
            delete_image(existing["image_url"])
        except RuntimeError as e:
            current_app.logger.warning("Could not delete old product image: %s", e)

    return api_response({"product": product}, message="Product updated successfully")


@admin_bp.route("/admin/products/<int:product_id>", methods=["DELETE"])
@admin_required
def delete_product(product_id):
    conn = get_connection()
    try:
        product = load_product(conn, product_id)
        conn.execute("DELETE FROM products WHERE id = ?", (product_id,))
        conn.commit()
    finally:
        conn.close()

    try:
        delete_image(product["image_url"])
    except RuntimeError as e:
        current_app.logger.warning("Could not delete product image: %s", e)

    current_app.logger.info("Product %s deleted", product_id)
    return api_response(message="Product deleted successfully")


@admin_bp.route("/upload/products/<int:product_id>/image", methods=["POST"])
@admin_required
def upload_product_image(product_id):
    if "image" not in request.files or not request.files["image"].filename:
        raise APIError(400, "NO_FILE", "No file uploaded")

    conn = get_connection()
    try:
        existing = load_product(conn, product_id)
        image_url = store_product_image(product_id)
        _update(conn, "products", product_id, {"image_url": image_url, "updated_at": utc_now()})
        conn.commit()
    finally:
        conn.close()

    try:
        delete_image(existing["image_url"])
    except RuntimeError as e:
        current_app.logger.warning("Could not delete old product image: %s", e)

    return api_response({"image": image_url}, message="Product image uploaded successfully")


# ----- ORDERS -----

@admin_bp.route("/admin/orders")
@admin_required
def list_orders():
    page, limit = parse_pagination(request.args)
    status = request.args.get("status")

    clauses, params = [], []
    if status:
        if status not in TRANSITIONS:
            raise ValidationFailed([{"field": "status", "message": "Invalid order status"}])
        clauses.append("o.status = ?")
        params.append(status)
    search = (request.args.get("search") or "").strip()
    if search:
        clauses.append("(o.order_number LIKE ? OR u.email LIKE ?)")
        params += [f"%{search}%"] * 2
    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(f"SELECT COUNT(*) FROM orders o JOIN users u ON u.id = o.user_id {where}", params)
    total = cur.fetchone()[0]
    cur.execute(
        f"""
        SELECT o.*, u.email, u.first_name, u.last_name
        FROM orders o JOIN users u ON u.id = o.user_id {where}
        ORDER BY o.created_at DESC, o.id DESC LIMIT ? OFFSET ?
        """,
        params + [limit, (page - 1) * limit]
    )
    orders = []
    for row in cur.fetchall():
        order = serialize_order(conn, row, with_details=False)
        order["customer"] = {
            "email": row["email"],
            "name": f"{row['first_name']} {row['last_name']}",
        }
        orders.append(order)
    conn.close()

    return api_response({"orders": orders, "pagination": pagination(page, limit, total)})


@admin_bp.route("/admin/orders/<int:order_id>")
@admin_required
def admin_order_detail(order_id):
    conn = get_connection()
    try:
        order = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        if order is None:
            raise APIError(404, "ORDER_NOT_FOUND", "Order not found")
        data = serialize_order(conn, order)
    finally:
        conn.close()
    return api_response({"order": data})


@admin_bp.route("/admin/orders/<int:order_id>/status", methods=["PUT"])
@admin_required
def update_order_status(order_id):
    data = get_json_body()
    new_status = data.get("status")
    if new_status not in TRANSITIONS:
        raise ValidationFailed([{"field": "status", "message": "Invalid order status"}])

    conn = get_connection()
    try:
        order = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        if order is None:
            raise APIError(404, "ORDER_NOT_FOUND", "Order not found")
        try:
            change_status(conn, order, new_status, data.get("description"),
                          data.get("trackingNumber"), data.get("carrier"))
        except InvalidTransition as e:
            raise APIError(400, "INVALID_STATUS_TRANSITION", str(e))
        conn.commit()

        order = conn.execute("SELECT * FROM orders WHERE id = ?", (order_id,)).fetchone()
        event = "order.cancelled" if new_status == "cancelled" else "order.status_changed"
        publish_order_event(conn, order, event)
        result = serialize_order(conn, order)
    finally:
        conn.close()

    current_app.logger.info("Order %s moved to %s", result["orderNumber"], new_status)
    return api_response({"order": result}, message=f"Order status updated to {new_status}")


# ----- COUPONS -----

def coupon_columns(data: dict) -> dict:
    columns = dict(data)
    for field in ("applicable_products", "user_roles"):
        if field in columns:
            columns[field] = json.dumps(columns[field])
    for flag in ("new_users_only", "is_active"):
        if flag in columns:
            columns[flag] = 1 if columns[flag] else 0
    return columns


def load_coupon(conn, coupon_id):
    row = conn.execute("SELECT * FROM coupons WHERE id = ?", (coupon_id,)).fetchone()
    if row is None:
        raise APIError(404, "COUPON_NOT_FOUND", "Coupon not found")
    return row


@admin_bp.route("/admin/coupons")
@admin_required
def list_coupons():
    page, limit = parse_pagination(request.args)
    conn = get_connection()
    rows = conn.execute("SELECT * FROM coupons ORDER BY created_at DESC, id DESC").fetchall()
    conn.close()

    # status depends on the clock, so it is filtered here rather than in SQL
    coupons = [serialize_coupon(row, admin=True) for row in rows]
    status = request.args.get("status")
    if status:
        coupons = [coupon for coupon in coupons if coupon["status"] == status]

    start = (page - 1) * limit
    return api_response({
        "coupons": coupons[start:start + limit],
        "pagination": pagination(page, limit, len(coupons)),
    })


@admin_bp.route("/admin/coupons", methods=["POST"])
@admin_required
def create_coupon():
    columns = coupon_columns(validate_coupon_payload(get_json_body()))
    columns["created_by"] = get_current_user()["id"]
    columns["created_at"] = utc_now()

    conn = get_connection()
    try:
        if find_coupon(conn, columns["code"]):
            raise APIError(409, "DUPLICATE_COUPON", "A coupon with this code already exists")
        names = ", ".join(columns)
        placeholders = ", ".join("?" for _ in columns)
        cur = conn.execute(f"INSERT INTO coupons ({names}) VALUES ({placeholders})",
                           tuple(columns.values()))
        conn.commit()
        coupon = serialize_coupon(load_coupon(conn, cur.lastrowid), admin=True)
    finally:
        conn.close()

    return api_response({"coupon": coupon}, message="Coupon created successfully", status=201)


@admin_bp.route("/admin/coupons/<int:coupon_id>", methods=["PUT"])
@admin_required
def update_coupon(coupon_id):
    columns = coupon_columns(validate_coupon_payload(get_json_body(), partial=True))

    conn = get_connection()
    try:
        existing = load_coupon(conn, coupon_id)
        if "code" in columns:
            other = find_coupon(conn, columns["code"])
            if other and other["id"] != coupon_id:
                raise APIError(409, "DUPLICATE_COUPON", "A coupon with this code already exists")
        starts = columns.get("valid_from", existing["valid_from"])
        ends = columns.get("valid_until", existing["valid_until"])
        if ends <= starts:
            raise ValidationFailed([{"field": "validUntil", "message": "Valid until must be after valid from"}])
        if columns:
            _update(conn, "coupons", coupon_id, columns)
            conn.commit()
        coupon = serialize_coupon(load_coupon(conn, coupon_id), admin=True)
    finally:
        conn.close()

    return api_response({"coupon": coupon}, message="Coupon updated successfully")


@admin_bp.route("/admin/coupons/<int:coupon_id>", methods=["DELETE"])
@admin_required
def delete_coupon(coupon_id):
    conn = get_connection()
    try:
        coupon = load_coupon(conn, coupon_id)
        conn.execute("DELETE FROM coupons WHERE id = ?", (coupon_id,))
        conn.execute("UPDATE carts SET coupon_code = NULL WHERE coupon_code = ?", (coupon["code"],))
        conn.commit()
    finally:
        conn.close()
    return api_response(message="Coupon deleted successfully")


# ----- REVIEWS -----

@admin_bp.route("/admin/reviews")
@admin_required
def list_reviews():
    page, limit = parse_pagination(request.args)
    status = request.args.get("status")

    where, params = "", []
    if status:
        if status not in REVIEW_STATUSES:
            raise ValidationFailed([{"field": "status", "message": "Invalid review status"}])
        where, params = "WHERE r.status = ?", [status]

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(f"SELECT COUNT(*) FROM reviews r {where}", params)
    total = cur.fetchone()[0]
    cur.execute(
        f"""
        SELECT r.*, u.email, p.title AS product_title
        FROM reviews r
        JOIN users u ON u.id = r.user_id
        JOIN products p ON p.id = r.product_id
        {where}
        ORDER BY r.report_count DESC, r.created_at DESC LIMIT ? OFFSET ?
        """,
        params + [limit, (page - 1) * limit]
    )
    reviews = [
        {
            "id": row["id"],
            "product": {"id": row["product_id"], "title": row["product_title"]},
            "userEmail": row["email"],
            "rating": row["rating"],
            "title": row["title"],
            "comment": row["comment"],
            "status": row["status"],
            "verified": bool(row["verified"]),
            "helpfulCount": row["helpful_count"],
            "reportCount": row["report_count"],
            "moderatorNotes": row["moderator_notes"],
            "createdAt": row["created_at"],
        }
        for row in cur.fetchall()
    ]
    conn.close()

    return api_response({"reviews": reviews, "pagination": pagination(page, limit, total)})


@admin_bp.route("/admin/reviews/<int:review_id>/moderate", methods=["PUT"])
@admin_required
def moderate_review(review_id):
    data = get_json_body()
    status = data.get("status")
    if status not in ("approved", "rejected", "hidden"):
        raise ValidationFailed([{"field": "status", "message": "Status must be approved, rejected, or hidden"}])

    conn = get_connection()
    try:
        review = conn.execute("SELECT * FROM reviews WHERE id = ?", (review_id,)).fetchone()
        if review is None:
            raise APIError(404, "REVIEW_NOT_FOUND", "Review not found")
        _update(conn, "reviews", review_id, {
            "status": status,
            "moderator_notes": data.get("moderatorNotes", review["moderator_notes"]),
            "updated_at": utc_now(),
        })
        refresh_product_rating(conn, review["product_id"])
        create_notification(
            conn, review["user_id"], "review", "Your review was moderated",
            f"Your review \"{review['title']}\" is now {status}.",
            category="success" if status == "approved" else "warning",
        )
        conn.commit()
    finally:
        conn.close()

    return api_response({"id": review_id, "status": status}, message="Review moderated successfully")


# ----- CONTACTS -----

def serialize_contact(row) -> dict:
    return {
        "id": row["id"],
        "name": row["name"],
        "email": row["email"],
        "phone": row["phone"],
        "subject": row["subject"],
        "message": row["message"],
        "type": row["type"],
        "status": row["status"],
        "priority": row["priority"],
        "adminNotes": row["admin_notes"],
        "resolvedAt": row["resolved_at"],
        "createdAt": row["created_at"],
    }


@admin_bp.route("/admin/contacts")
@admin_required
def list_contacts():
    page, limit = parse_pagination(request.args)

    clauses, params, errors = [], [], []
    for field, options in (("status", CONTACT_STATUSES), ("type", CONTACT_TYPES)):
        value = request.args.get(field)
        if not value:
            continue
        if value not in options:
            errors.append({"field": field, "message": f"Invalid {field}"})
        clauses.append(f"{field} = ?")
        params.append(value)
    if errors:
        raise ValidationFailed(errors)
    where = ("WHERE " + " AND ".join(clauses)) if clauses else ""

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(f"SELECT COUNT(*) FROM contacts {where}", params)
    total = cur.fetchone()[0]
    cur.execute(
        f"""
        SELECT * FROM contacts {where}
        ORDER BY CASE priority WHEN 'urgent' THEN 0 WHEN 'high' THEN 1
                               WHEN 'medium' THEN 2 ELSE 3 END,
                 created_at DESC
        LIMIT ? OFFSET ?
        """,
        params + [limit, (page - 1) * limit]
    )
    contacts = [serialize_contact(row) for row in cur.fetchall()]
    conn.close()

    return api_response({"contacts": contacts, "pagination": pagination(page, limit, total)})


@admin_bp.route("/admin/contacts/<int:contact_id>", methods=["PUT"])
@admin_required
def update_contact(contact_id):
    data = get_json_body()
    changes, errors = {}, []
    if "status" in data:
        if data["status"] not in CONTACT_STATUSES:
            errors.append({"field": "status", "message": "Invalid status"})
        else:
            changes["status"] = data["status"]
            if data["status"] in ("resolved", "closed"):
                changes["resolved_at"] = utc_now()
    if "priority" in data:
        if data["priority"] not in PRIORITIES:
            errors.append({"field": "priority", "message": "Invalid priority"})
        else:
            changes["priority"] = data["priority"]
    if "adminNotes" in data:
        changes["admin_notes"] = data["adminNotes"]
    if errors:
        raise ValidationFailed(errors)

    conn = get_connection()
    try:
        if conn.execute("SELECT 1 FROM contacts WHERE id = ?", (contact_id,)).fetchone() is None:
            raise APIError(404, "CONTACT_NOT_FOUND", "Contact not found")
        if changes:
            _update(conn, "contacts", contact_id, changes)
            conn.commit()
        contact = conn.execute("SELECT * FROM contacts WHERE id = ?", (contact_id,)).fetchone()
    finally:
        conn.close()

    return api_response({"contact": serialize_contact(contact)}, message="Contact updated successfully")


# ----- NOTIFICATIONS -----

@admin_bp.route("/admin/notifications/broadcast", methods=["POST"])
@admin_required
def broadcast_notification():
    data = get_json_body()
    errors = []
    title = (data.get("title") or "").strip()
    message = (data.get("message") or "").strip()
    type_ = data.get("type", "system")
    category = data.get("category", "info")
    user_ids = data.get("userIds")

    if not 1 <= len(title) <= 200:
        errors.append({"field": "title", "message": "Title must be between 1 and 200 characters"})
    if not 1 <= len(message) <= 1000:
        errors.append({"field": "message", "message": "Message must be between 1 and 1000 characters"})
    if type_ not in NOTIFICATION_TYPES:
        errors.append({"field": "type", "message": "Invalid notification type"})
    if category not in CATEGORIES:
        errors.append({"field": "category", "message": "Invalid category"})
    if user_ids is not None and (
        not isinstance(user_ids, list) or any(positive_int(uid) is None for uid in user_ids)
    ):
        errors.append({"field": "userIds", "message": "userIds must be a list of user ids"})
    if errors:
        raise ValidationFailed(errors)

    conn = get_connection()
    if user_ids is None:
        rows = conn.execute("SELECT id FROM users WHERE is_active = 1").fetchall()
    else:
        ids = sorted({positive_int(uid) for uid in user_ids})
        placeholders = ",".join("?" for _ in ids) or "NULL"
        rows = conn.execute(
            f"SELECT id FROM users WHERE is_active = 1 AND id IN ({placeholders})", ids
        ).fetchall()
    for row in rows:
        create_notification(conn, row["id"], type_, title, message, category)
    conn.commit()
    conn.close()

    current_app.logger.info("Broadcast notification sent to %d users", len(rows))
    return api_response({"recipients": len(rows)}, message="Notification sent successfully", status=201)


# ----- ANALYTICS -----

@admin_bp.route("/analytics/dashboard")
@admin_required
def dashboard():
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT COUNT(*) AS orders, COALESCE(SUM(total), 0) AS revenue
        FROM orders WHERE status != 'cancelled'
        """
    )
    totals = cur.fetchone()
    cur.execute("SELECT COUNT(*) FROM users WHERE role != 'admin'")
    customers = cur.fetchone()[0]
    cur.execute("SELECT COUNT(*) FROM products")
    products = cur.fetchone()[0]
    cur.execute("SELECT status, COUNT(*) AS n FROM orders GROUP BY status")
    by_status = {status: 0 for status in TRANSITIONS}
    by_status.update({row["status"]: row["n"] for row in cur.fetchall()})
    cur.execute(
        "SELECT id, title, stock_quantity FROM products WHERE stock_quantity <= ? "
        "ORDER BY stock_quantity, title",
        (LOW_STOCK_LEVEL,)
    )
    low_stock = [
        {"id": row["id"], "title": row["title"], "stockQuantity": row["stock_quantity"]}
        for row in cur.fetchall()
    ]
    cur.execute("SELECT * FROM orders ORDER BY created_at DESC, id DESC LIMIT 5")
    recent = [serialize_order(conn, row, with_details=False) for row in cur.fetchall()]
    conn.close()

    return api_response({
        "overview": {
            "totalRevenue": round(totals["revenue"], 2),
            "totalOrders": totals["orders"],
            "totalUsers": customers,
            "totalProducts": products,
        },
        "ordersByStatus": by_status,
        "lowStockProducts": low_stock,
        "recentOrders": recent,
    })


@admin_bp.route("/analytics/sales")
@admin_required
def sales_report():
    start, end = parse_date_range(request.args)

    conn = get_connection()
    rows = conn.execute(
        """
        SELECT substr(created_at, 1, 10) AS day, COUNT(*) AS orders, SUM(total) AS revenue
        FROM orders
        WHERE status != 'cancelled' AND substr(created_at, 1, 10) BETWEEN ? AND ?
        GROUP BY day
        """,
        (start.isoformat(), end.isoformat())
    ).fetchall()
    conn.close()

    by_day = {row["day"]: row for row in rows}
    daily = []
    day = start
    while day <= end:
        row = by_day.get(day.isoformat())
        daily.append({
            "date": day.isoformat(),
            "orders": row["orders"] if row else 0,
            "revenue": round(row["revenue"], 2) if row else 0,
        })
        day += timedelta(days=1)

    return api_response({
        "period": {"startDate": start.isoformat(), "endDate": end.isoformat()},
        "totalRevenue": round(sum(d["revenue"] for d in daily), 2),
        "totalOrders": sum(d["orders"] for d in daily),
        "daily": daily,
    })


@admin_bp.route("/analytics/products")
@admin_required
def product_report():
    limit = request.args.get("limit", "10")
    limit = int(limit) if limit.isdigit() and 0 < int(limit) <= 50 else 10

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT oi.product_id, oi.title, SUM(oi.quantity) AS quantity, SUM(oi.total_price) AS revenue
        FROM order_items oi JOIN orders o ON o.id = oi.order_id
        WHERE o.status != 'cancelled'
        GROUP BY oi.product_id, oi.title
        ORDER BY quantity DESC, revenue DESC
        LIMIT ?
        """,
        (limit,)
    )
    top = [
        {"productId": row["product_id"], "title": row["title"],
         "quantitySold": row["quantity"], "revenue": round(row["revenue"], 2)}
        for row in cur.fetchall()
    ]
    cur.execute(
        """
        SELECT p.subject, SUM(oi.quantity) AS quantity, SUM(oi.total_price) AS revenue
        FROM order_items oi
        JOIN orders o ON o.id = oi.order_id
        JOIN products p ON p.id = oi.product_id
        WHERE o.status != 'cancelled'
        GROUP BY p.subject
        ORDER BY revenue DESC
        """
    )
    by_subject = [
        {"subject": row["subject"], "quantitySold": row["quantity"], "revenue": round(row["revenue"], 2)}
        for row in cur.fetchall()
    ]
    conn.close()

    return api_response({"topProducts": top, "salesBySubject": by_subject})


@admin_bp.route("/analytics/users")
@admin_required
def user_report():
    start, end = parse_date_range(request.args)

    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT substr(created_at, 1, 10) AS day, COUNT(*) AS n FROM users
        WHERE substr(created_at, 1, 10) BETWEEN ? AND ?
        GROUP BY day ORDER BY day
        """,
        (start.isoformat(), end.isoformat())
    )
    signups = [{"date": row["day"], "count": row["n"]} for row in cur.fetchall()]
    cur.execute("SELECT role, COUNT(*) AS n FROM users GROUP BY role")
    roles = {role: 0 for role in ALL_ROLES}
    roles.update({row["role"]: row["n"] for row in cur.fetchall()})
    conn.close()

    return api_response({
        "period": {"startDate": start.isoformat(), "endDate": end.isoformat()},
        "signups": signups,
        "roleBreakdown": roles,
    })
