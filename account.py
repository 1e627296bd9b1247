"""
Signed-in shopper features: profile, address book, wishlist, notifications,
product reviews, the contact form and avatar uploads.
"""

import json

from flask import Blueprint, current_app, request
from werkzeug.security import check_password_hash, generate_password_hash

from db import get_connection, utc_now
from rgstore_lib import APIError, api_response, login_required
from rgstore_lib.auth import USER_COLUMNS, get_current_user, require_user, serialize_user
from rgstore_lib.cart_store import load_cart, save_cart, summarize
from rgstore_lib.cart_utils import make_line, positive_int
from rgstore_lib.catalog import get_product, rating_distribution, refresh_product_rating
from rgstore_lib.notifications import serialize_notification
from rgstore_lib.responses import pagination
from rgstore_lib.storage_s3 import allowed_image, delete_image, object_key, upload_image
from rgstore_lib.validation import (
    get_json_body, parse_pagination, validate_address, validate_contact,
    validate_password_change, validate_profile, validate_review,
)

account_bp = Blueprint("account", __name__, url_prefix="/api/v1")

REPORTS_TO_HIDE = 5

ADDRESS_FIELDS = {
    "type": "type",
    "first_name": "firstName",
    "last_name": "lastName",
    "email": "email",
    "phone": "phone",
    "address_line1": "addressLine1",
    "address_line2": "addressLine2",
    "landmark": "landmark",
    "city": "city",
    "state": "state",
    "postal_code": "postalCode",
    "country": "country",
}

REVIEW_SORTS = {
    "newest": "r.created_at DESC",
    "oldest": "r.created_at ASC",
    "highest": "r.rating DESC, r.created_at DESC",
    "lowest": "r.rating ASC, r.created_at DESC",
    "helpful": "r.helpful_count DESC, r.created_at DESC",
}


# ----- PROFILE -----

@account_bp.route("/users/profile")
@login_required
def get_profile():
    user = get_current_user()
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(
        """
        SELECT COUNT(*) AS orders, COALESCE(SUM(total), 0) AS spent
        FROM orders WHERE user_id = ? AND status != 'cancelled'
        """,
        (user["id"],)
    )
    stats = cur.fetchone()
    cur.execute("SELECT COUNT(*) FROM wishlist_items WHERE user_id = ?", (user["id"],))
    wishlist_count = cur.fetchone()[0]
    conn.close()

    return api_response({
        "user": serialize_user(user),
        "stats": {
            "totalOrders": stats["orders"],
            "totalSpent": round(stats["spent"], 2),
            "wishlistItems": wishlist_count,
        },
    })


@account_bp.route("/users/profile", methods=["PUT"])
@login_required
def update_profile():
    changes = validate_profile(get_json_body())
    user = get_current_user()

    if changes:
        assignments = ", ".join(f"{column} = ?" for column in changes)
        conn = get_connection()
        conn.execute(
            f"UPDATE users SET {assignments} WHERE id = ?",
            (*changes.values(), user["id"])
        )
        conn.commit()
        user = conn.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user["id"],)).fetchone()
        conn.close()

    return api_response({"user": serialize_user(user)}, message="Profile updated successfully")


@account_bp.route("/users/password", methods=["PUT"])
@login_required
def change_password():
    data = validate_password_change(get_json_body())
    user = get_current_user()

    conn = get_connection()
    try:
        row = conn.execute("SELECT password_hash FROM users WHERE id = ?", (user["id"],)).fetchone()
        if not check_password_hash(row["password_hash"], data["currentPassword"]):
            raise APIError(400, "INVALID_PASSWORD", "Current password is incorrect")
        conn.execute(
            "UPDATE users SET password_hash = ? WHERE id = ?",
            (generate_password_hash(data["newPassword"]), user["id"])
        )
        conn.commit()
    finally:
        conn.close()

    current_app.logger.info("User %s changed their password", user["id"])
    return api_response(message="Password changed successfully")


# ----- ADDRESSES -----

def serialize_address(row) -> dict:
    data = {camel: row[column] for column, camel in ADDRESS_FIELDS.items()}
    data["id"] = row["id"]
    data["isDefault"] = bool(row["is_default"])
    data["createdAt"] = row["created_at"]
    return data


def own_address(conn, address_id, user_id):
    row = conn.execute(
        "SELECT * FROM addresses WHERE id = ? AND user_id = ?", (address_id, user_id)
    ).fetchone()
    if row is None:
        raise APIError(404, "ADDRESS_NOT_FOUND", "Address not found")
    return row


@account_bp.route("/users/addresses")
@login_required
def list_addresses():
    user = get_current_user()
    conn = get_connection()
    rows = conn.execute(
        "SELECT * FROM addresses WHERE user_id = ? ORDER BY is_default DESC, id DESC",
        (user["id"],)
    ).fetchall()
    conn.close()
    return api_response({"addresses": [serialize_address(row) for row in rows]})


@account_bp.route("/users/addresses", methods=["POST"])
@login_required
def create_address():
    data = validate_address(get_json_body())
    user = get_current_user()

    conn = get_connection()
    cur = conn.cursor()
    cur.execute("SELECT COUNT(*) FROM addresses WHERE user_id = ?", (user["id"],))
    # the first address is always the default
    is_default = data.pop("is_default", False) or cur.fetchone()[0] == 0
    if is_default:
        cur.execute("UPDATE addresses SET is_default = 0 WHERE user_id = ?", (user["id"],))

    data.setdefault("country", "India")
    columns = ", ".join(data)
    placeholders = ", ".join("?" for _ in data)
    cur.execute(
        f"INSERT INTO addresses (user_id, is_default, created_at, {columns}) "
        f"VALUES (?, ?, ?, {placeholders})",
        (user["id"], 1 if is_default else 0, utc_now(), *data.values())
    )
    conn.commit()
    row = own_address(conn, cur.lastrowid, user["id"])
    conn.close()

    return api_response({"address": serialize_address(row)}, message="Address added successfully",
                        status=201)


@account_bp.route("/users/addresses/<int:address_id>", methods=["PUT"])
@login_required
def update_address(address_id):
    data = validate_address(get_json_body(), partial=True)
    user = get_current_user()

    conn = get_connection()
    try:
        own_address(conn, address_id, user["id"])
        make_default = data.pop("is_default", None)
        if make_default:
            conn.execute("UPDATE addresses SET is_default = 0 WHERE user_id = ?", (user["id"],))
            data["is_default"] = 1

        if data:
            assignments = ", ".join(f"{column} = ?" for column in data)
            conn.execute(
                f"UPDATE addresses SET {assignments} WHERE id = ?",
                (*data.values(), address_id)
            )
        conn.commit()
        row = own_address(conn, address_id, user["id"])
    finally:
        conn.close()

    return api_response({"address": serialize_address(row)}, message="Address updated successfully")


@account_bp.route("/users/addresses/<int:address_id>", methods=["DELETE"])
@login_required
def delete_address(address_id):
    user = get_current_user()

    conn = get_connection()
    try:
        row = own_address(conn, address_id, user["id"])
        conn.execute("DELETE FROM addresses WHERE id = ?", (address_id,))
        if row["is_default"]:
            # promote the most recent remaining address
            conn.execute(
                """
                UPDATE addresses SET is_default = 1
                WHERE id = (SELECT id FROM addresses WHERE user_id = ? ORDER BY id DESC LIMIT 1)
                """,
                (user["id"],)
            )
        conn.commit()
    finally:
        conn.close()

    return api_response(message="Address deleted successfully")


# ----- WISHLIST -----

@account_bp.route("/wishlist")
@login_required
def get_wishlist():
    user = get_current_user()
    conn = get_connection()
    rows = conn.execute(
        """
        SELECT w.product_id, w.added_at, p.title, p.author, p.price, p.original_price,
               p.image_url, p.subject, p.class_level, p.type, p.in_stock, p.rating_average
        FROM wishlist_items w
        JOIN products p ON p.id = w.product_id
        WHERE w.user_id = ?
        ORDER BY w.added_at DESC, w.id DESC
        """,
        (user["id"],)
    ).fetchall()
    conn.close()

    items = [
        {
            "productId": row["product_id"],
            "addedAt": row["added_at"],
            "product": {
                "id": row["product_id"],
                "title": row["title"],
                "author": row["author"],
                "price": row["price"],
                "originalPrice": row["original_price"],
                "image": row["image_url"] or "",
                "subject": row["subject"],
                "class": row["class_level"],
                "type": row["type"],
                "inStock": bool(row["in_stock"]),
                "rating": row["rating_average"],
            },
        }
        for row in rows
    ]
    return api_response({"wishlist": {"items": items, "itemCount": len(items)}})


@account_bp.route("/wishlist", methods=["POST"])
@login_required
def add_to_wishlist():
    product_id = positive_int(get_json_body().get("productId"))
    if product_id is None:
        raise APIError(422, "VALIDATION_ERROR", "Invalid input data",
                       [{"field": "productId", "message": "Invalid product ID"}])
    user = get_current_user()

    conn = get_connection()
    try:
        if get_product(conn, product_id) is None:
            raise APIError(404, "PRODUCT_NOT_FOUND", "Product not found")
        cur = conn.execute(
            "INSERT OR IGNORE INTO wishlist_items (user_id, product_id, added_at) VALUES (?, ?, ?)",
            (user["id"], product_id, utc_now())
        )
        if cur.rowcount == 0:
            raise APIError(409, "ALREADY_IN_WISHLIST", "Product already in wishlist")
        conn.commit()
        count = conn.execute(
            "SELECT COUNT(*) FROM wishlist_items WHERE user_id = ?", (user["id"],)
        ).fetchone()[0]
    finally:
        conn.close()

    return api_response({"productId": product_id, "itemCount": count},
                        message="Item added to wishlist", status=201)


@account_bp.route("/wishlist/<int:product_id>", methods=["DELETE"])
@login_required
def remove_from_wishlist(product_id):
    user = get_current_user()
    conn = get_connection()
    cur = conn.execute(
        "DELETE FROM wishlist_items WHERE user_id = ? AND product_id = ?", (user["id"], product_id)
    )
    conn.commit()
    conn.close()

    if cur.rowcount == 0:
        raise APIError(404, "WISHLIST_ITEM_NOT_FOUND", "Wishlist item not found")
    return api_response(message="Item removed from wishlist")


@account_bp.route("/wishlist/check/<int:product_id>")
@login_required
def check_wishlist(product_id):
    user = get_current_user()
    conn = get_connection()
    row = conn.execute(
        "SELECT 1 FROM wishlist_items WHERE user_id = ? AND product_id = ?", (user["id"], product_id)
    ).fetchone()
    conn.close()
    return api_response({"productId": product_id, "inWishlist": row is not None})


@account_bp.route("/wishlist", methods=["DELETE"])
@login_required
def clear_wishlist():
    user = get_current_user()
    conn = get_connection()
    conn.execute("DELETE FROM wishlist_items WHERE user_id = ?", (user["id"],))
    conn.commit()
    conn.close()
    return api_response(message="Wishlist cleared successfully")


@account_bp.route("/wishlist/<int:product_id>/move-to-cart", methods=["POST"])
@login_required
def move_to_cart(product_id):
    user = get_current_user()

    conn = get_connection()
    try:
        listed = conn.execute(
            "SELECT 1 FROM wishlist_items WHERE user_id = ? AND product_id = ?", (user["id"], product_id)
        ).fetchone()
        if listed is None:
            raise APIError(404, "WISHLIST_ITEM_NOT_FOUND", "Wishlist item not found")

        product = get_product(conn, product_id)
        cart = load_cart(conn, user)
        key = str(product_id)
        quantity = int(cart[key]["quantity"]) + 1 if key in cart else 1
        if not product["in_stock"] or product["stock_quantity"] < quantity:
            raise APIError(400, "INSUFFICIENT_STOCK", "Product is out of stock")

        cart[key] = make_line(product, quantity)
        save_cart(conn, user, cart)
        conn.execute(
            "DELETE FROM wishlist_items WHERE user_id = ? AND product_id = ?", (user["id"], product_id)
        )
        conn.commit()
        summary, _ = summarize(conn, user, cart)
    finally:
        conn.close()

    return api_response({"cartSummary": summary}, message="Item moved to cart")


# ----- NOTIFICATIONS -----

@account_bp.route("/notifications")
@login_required
def list_notifications():
    user = get_current_user()
    page, limit = parse_pagination(request.args)
    unread_only = request.args.get("unreadOnly") == "true"

    where = "WHERE user_id = ?" + (" AND is_read = 0" if unread_only else "")
    conn = get_connection()
    cur = conn.cursor()
    cur.execute(f"SELECT COUNT(*) FROM notifications {where}", (user["id"],))
    total = cur.fetchone()[0]
    cur.execute("SELECT COUNT(*) FROM notifications WHERE user_id = ? AND is_read = 0", (user["id"],))
    unread = cur.fetchone()[0]
    cur.execute(
        f"SELECT * FROM notifications {where} ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?",
        (user["id"], limit, (page - 1) * limit)
    )
    rows = cur.fetchall()
    conn.close()

    return api_response({
        "notifications": [serialize_notification(row) for row in rows],
        "unreadCount": unread,
        "pagination": pagination(page, limit, total),
    })


@account_bp.route("/notifications/<int:notification_id>/read", methods=["PUT"])
@login_required
def mark_notification_read(notification_id):
    user = get_current_user()
    conn = get_connection()
    cur = conn.execute(
        """
        UPDATE notifications SET is_read = 1, read_at = COALESCE(read_at, ?)
        WHERE id = ? AND user_id = ?
        """,
        (utc_now(), notification_id, user["id"])
    )
    conn.commit()
    conn.close()

    if cur.rowcount == 0:
        raise APIError(404, "NOTIFICATION_NOT_FOUND", "Notification not found")
    return api_response(message="Notification marked as read")


@account_bp.route("/notifications/read-all", methods=["PUT"])
@login_required
def mark_all_notifications_read():
    user = get_current_user()
    conn = get_connection()
    cur = conn.execute(
        "UPDATE notifications SET is_read = 1, read_at = ? WHERE user_id = ? AND is_read = 0",
        (utc_now(), user["id"])
    )
    conn.commit()
    conn.close()
    return api_response({"updated": cur.rowcount}, message="All notifications marked as read")


@account_bp.route("/notifications/<int:notification_id>", methods=["DELETE"])
@login_required
def delete_notification(notification_id):
    user = get_current_user()
    conn = get_connection()
    cur = conn.execute(
        "DELETE FROM notifications WHERE id = ? AND user_id = ?", (notification_id, user["id"])
    )
    conn.commit()
    conn.close()

    if cur.rowcount == 0:
        raise APIError(404, "NOTIFICATION_NOT_FOUND", "Notification not found")
    return api_response(message="Notification deleted")


# ----- REVIEWS -----

def serialize_review(row) -> dict:
    return {
        "id": row["id"],
        "productId": row["product_id"],
        "userId": row["user_id"],
        "userName": f"{row['first_name']} {row['last_name'][:1]}.".strip(),
        "rating": row["rating"],
        "title": row["title"],
        "comment": row["comment"],
        "pros": json.loads(row["pros"]),
        "cons": json.loads(row["cons"]),
        "verified": bool(row["verified"]),
        "status": row["status"],
        "helpfulCount": row["helpful_count"],
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }


def load_review(conn, review_id):
    row = conn.execute(
        """
        SELECT r.*, u.first_name, u.last_name FROM reviews r
        JOIN users u ON u.id = r.user_id WHERE r.id = ?
        """,
        (review_id,)
    ).fetchone()
    if row is None:
        raise APIError(404, "REVIEW_NOT_FOUND", "Review not found")
    return row


@account_bp.route("/reviews/product/<int:product_id>")
def product_reviews(product_id):
    page, limit = parse_pagination(request.args, default_limit=10, max_limit=50)
    sort = request.args.get("sortBy", "newest")
    if sort not in REVIEW_SORTS:
        raise APIError(422, "VALIDATION_ERROR", "Invalid input data",
                       [{"field": "sortBy", "message": "Invalid sort option"}])

    conn = get_connection()
    try:
        product = get_product(conn, product_id)
        if product is None:
            raise APIError(404, "PRODUCT_NOT_FOUND", "Product not found")

        cur = conn.cursor()
        cur.execute(
            "SELECT COUNT(*) FROM reviews WHERE product_id = ? AND status = 'approved'", (product_id,)
        )
        total = cur.fetchone()[0]
        cur.execute(
            f"""
            SELECT r.*, u.first_name, u.last_name FROM reviews r
            JOIN users u ON u.id = r.user_id
            WHERE r.product_id = ? AND r.status = 'approved'
            ORDER BY {REVIEW_SORTS[sort]} LIMIT ? OFFSET ?
            """,
            (product_id, limit, (page - 1) * limit)
        )
        reviews = [serialize_review(row) for row in cur.fetchall()]
        summary = {
            "average": product["rating_average"],
            "count": product["rating_count"],
            "distribution": rating_distribution(conn, product_id),
        }
    finally:
        conn.close()

    return api_response({
        "reviews": reviews,
        "summary": summary,
        "pagination": pagination(page, limit, total),
    })


@account_bp.route("/reviews", methods=["POST"])
@login_required
def create_review():
    data = validate_review(get_json_body())
    user = get_current_user()
    product_id = data["product_id"]

    conn = get_connection()
    try:
        if get_product(conn, product_id) is None:
            raise APIError(404, "PRODUCT_NOT_FOUND", "Product not found")

        cur = conn.cursor()
        cur.execute("SELECT 1 FROM reviews WHERE product_id = ? AND user_id = ?", (product_id, user["id"]))
        if cur.fetchone():
            raise APIError(400, "REVIEW_EXISTS", "You have already reviewed this product")

        cur.execute(
            """
            SELECT 1 FROM orders o JOIN order_items oi ON oi.order_id = o.id
            WHERE o.user_id = ? AND o.status = 'delivered' AND oi.product_id = ?
            LIMIT 1
            """,
            (user["id"], product_id)
        )
        verified = cur.fetchone() is not None

        now = utc_now()
        cur.execute(
            """
            INSERT INTO reviews (product_id, user_id, rating, title, comment, pros, cons,
                                 verified, status, created_at, updated_at)
            VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'approved', ?, ?)
            """,
            (product_id, user["id"], data["rating"], data["title"], data["comment"],
             json.dumps(data.get("pros", [])), json.dumps(data.get("cons", [])),
             1 if verified else 0, now, now)
        )
        review_id = cur.lastrowid
        refresh_product_rating(conn, product_id)
        conn.commit()
        review = serialize_review(load_review(conn, review_id))
    finally:
        conn.close()

    return api_response({"review": review}, message="Review submitted successfully", status=201)


@account_bp.route("/reviews/<int:review_id>", methods=["PUT"])
@login_required
def update_review(review_id):
    data = validate_review(get_json_body(), partial=True)
    user = get_current_user()

    conn = get_connection()
    try:
        review = load_review(conn, review_id)
        if review["user_id"] != user["id"]:
            raise APIError(403, "INSUFFICIENT_PERMISSIONS", "You can only edit your own reviews")

        for key in ("pros", "cons"):
            if key in data:
                data[key] = json.dumps(data[key])
        data["updated_at"] = utc_now()
        assignments = ", ".join(f"{column} = ?" for column in data)
        conn.execute(f"UPDATE reviews SET {assignments} WHERE id = ?", (*data.values(), review_id))
        refresh_product_rating(conn, review["product_id"])
        conn.commit()
        result = serialize_review(load_review(conn, review_id))
    finally:
        conn.close()

    return api_response({"review": result}, message="Review updated successfully")


@account_bp.route("/reviews/<int:review_id>", methods=["DELETE"])
@login_required
def delete_review(review_id):
    user = get_current_user()

    conn = get_connection()
    try:
        review = load_review(conn, review_id)
        if review["user_id"] != user["id"] and user["role"] != "admin":
            raise APIError(403, "INSUFFICIENT_PERMISSIONS", "You can only delete your own reviews")
        conn.execute("DELETE FROM reviews WHERE id = ?", (review_id,))
        refresh_product_rating(conn, review["product_id"])
        conn.commit()
    finally:
        conn.close()

    return api_response(message="Review deleted successfully")


def _vote_count(conn, review_id, kind):
    return conn.execute(
        "SELECT COUNT(*) FROM review_votes WHERE review_id = ? AND kind = ?", (review_id, kind)
    ).fetchone()[0]


@account_bp.route("/reviews/<int:review_id>/helpful", methods=["POST", "DELETE"])
@login_required
def review_helpful(review_id):
    user = get_current_user()

    conn = get_connection()
    try:
        load_review(conn, review_id)
        if request.method == "POST":
            cur = conn.execute(
                "INSERT OR IGNORE INTO review_votes (review_id, user_id, kind) VALUES (?, ?, 'helpful')",
                (review_id, user["id"])
            )
            if cur.rowcount == 0:
                raise APIError(400, "ALREADY_MARKED",
                               "User has already marked this review as helpful")
        else:
            cur = conn.execute(
                "DELETE FROM review_votes WHERE review_id = ? AND user_id = ? AND kind = 'helpful'",
                (review_id, user["id"])
            )
            if cur.rowcount == 0:
                raise APIError(400, "NOT_MARKED", "User has not marked this review as helpful")

        count = _vote_count(conn, review_id, "helpful")
        conn.execute("UPDATE reviews SET helpful_count = ? WHERE id = ?", (count, review_id))
        conn.commit()
    finally:
        conn.close()

    return api_response({"helpfulCount": count})


@account_bp.route("/reviews/<int:review_id>/report", methods=["POST"])
@login_required
def report_review(review_id):
    user = require_user()

    conn = get_connection()
    try:
        review = load_review(conn, review_id)
        cur = conn.execute(
            "INSERT OR IGNORE INTO review_votes (review_id, user_id, kind) VALUES (?, ?, 'report')",
            (review_id, user["id"])
        )
        if cur.rowcount == 0:
            raise APIError(400, "ALREADY_REPORTED", "User has already reported this review")

        count = _vote_count(conn, review_id, "report")
        status = "hidden" if count >= REPORTS_TO_HIDE else review["status"]
        conn.execute(
            "UPDATE reviews SET report_count = ?, status = ? WHERE id = ?", (count, status, review_id)
        )
        if status != review["status"]:
            current_app.logger.info("Review %s hidden after %d reports", review_id, count)
            refresh_product_rating(conn, review["product_id"])
        conn.commit()
    finally:
        conn.close()

    return api_response({"reportCount": count, "status": status}, message="Review reported")


# ----- CONTACT -----

@account_bp.route("/contact/submit", methods=["POST"])
def submit_contact():
    data = validate_contact(get_json_body())
    priority = "high" if data["type"] == "complaint" else "medium"

    conn = get_connection()
    cur = conn.execute(
        """
        INSERT INTO contacts (name, email, phone, subject, message, type, priority, created_at)
        VALUES (?, ?, ?, ?, ?, ?, ?, ?)
        """,
        (data["name"], data["email"], data.get("phone"), data["subject"], data["message"],
         data["type"], priority, utc_now())
    )
    conn.commit()
    conn.close()

    return api_response(
        {"contactId": cur.lastrowid, "status": "pending"},
        message="Thank you for contacting us. We will get back to you soon.",
        status=201,
    )


# ----- UPLOADS -----

@account_bp.route("/upload/avatar", methods=["POST"])
@login_required
def upload_avatar():
    user = get_current_user()
    image_file = request.files.get("avatar")

    if not image_file or not image_file.filename:
        raise APIError(400, "NO_FILE", "No file uploaded")
    if not allowed_image(image_file.filename):
        raise APIError(400, "INVALID_FILE_TYPE", "Invalid image type. Allowed: png, jpg, jpeg, gif, webp.")

    try:
        avatar_url = upload_image(image_file, object_key("avatars", user["id"], image_file.filename))
    except RuntimeError as e:
        current_app.logger.error("Avatar upload failed for user %s: %s", user["id"], e)
        raise APIError(502, "UPLOAD_FAILED", "Image upload failed")

    try:
        delete_image(user["avatar_url"])
    except RuntimeError as e:
        current_app.logger.warning("Could not delete old avatar: %s", e)

    conn = get_connection()
    conn.execute("UPDATE users SET avatar_url = ? WHERE id = ?", (avatar_url, user["id"]))
    conn.commit()
    conn.close()

    return api_response({"avatar": avatar_url}, message="Avatar uploaded successfully")
