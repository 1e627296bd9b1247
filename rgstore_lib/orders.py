import json
import logging
import random
from datetime import datetime

from .aws_events import notify_order_via_sns, send_order_event_to_sqs
from .notifications import create_notification

log = logging.getLogger(__name__)

STATUS_DESCRIPTIONS = {
    "pending": "Order placed",
    "confirmed": "Payment confirmed",
    "processing": "Order being prepared",
    "shipped": "Order shipped",
    "delivered": "Order delivered",
    "cancelled": "Order cancelled",
}

# delivered and cancelled are terminal
TRANSITIONS = {
    "pending": {"confirmed", "cancelled"},
    "confirmed": {"processing", "cancelled"},
    "processing": {"shipped", "cancelled"},
    "shipped": {"delivered"},
    "delivered": set(),
    "cancelled": set(),
}

CANCELLABLE = {"pending", "confirmed"}
DELIVERY_DAYS = 5


class InvalidTransition(ValueError):
    pass


def can_transition(current: str, new: str) -> bool:
    return new in TRANSITIONS.get(current, set())


def generate_order_number(conn) -> str:
    """RG-<year>-<6 digits>, retried until unused."""
    year = datetime.utcnow().year
    while True:
        number = f"RG-{year}-{random.randint(0, 999999):06d}"
        exists = conn.execute(
            "SELECT 1 FROM orders WHERE order_number = ?", (number,)
        ).fetchone()
        if not exists:
            return number


def add_timeline(conn, order_id, status, description=None):
    conn.execute(
        "INSERT INTO order_timeline (order_id, status, description, created_at) VALUES (?, ?, ?, ?)",
        (order_id, status, description or STATUS_DESCRIPTIONS.get(status, f"Status changed to {status}"),
         datetime.utcnow().isoformat(timespec="seconds"))
    )


def restock(conn, order_id):
    items = conn.execute(
        "SELECT product_id, quantity FROM order_items WHERE order_id = ?", (order_id,)
    ).fetchall()
    for item in items:
        conn.execute(
            """
            UPDATE products
            SET stock_quantity = stock_quantity + ?, in_stock = 1
            WHERE id = ?
            """,
            (item["quantity"], item["product_id"])
        )


def change_status(conn, order, new_status, description=None, tracking_number=None, carrier=None):
    """
    Move an order along the status table, keeping stock, payment state and the
    customer's notifications in step. The caller commits.
    """
    if not can_transition(order["status"], new_status):
        raise InvalidTransition(
            f"Cannot change order status from {order['status']} to {new_status}"
        )

    now = datetime.utcnow().isoformat(timespec="seconds")
    fields = {"status": new_status, "updated_at": now}

    if new_status == "delivered":
        fields["delivered_at"] = now
        if order["payment_method"] == "cod":
            fields["payment_status"] = "completed"
    if new_status == "cancelled":
        restock(conn, order["id"])
        if order["payment_status"] == "completed":
            fields["payment_status"] = "refunded"
    if tracking_number:
        fields["tracking_number"] = tracking_number
    if carrier:
        fields["carrier"] = carrier

    assignments = ", ".join(f"{column} = ?" for column in fields)
    conn.execute(
        f"UPDATE orders SET {assignments} WHERE id = ?",
        (*fields.values(), order["id"])
    )
    add_timeline(conn, order["id"], new_status, description)

    create_notification(
        conn, order["user_id"], "order",
        f"Order {order['order_number']} {new_status}",
        description or STATUS_DESCRIPTIONS[new_status],
        category="warning" if new_status == "cancelled" else "info",
    )


def order_items(conn, order_id):
    return conn.execute(
        "SELECT * FROM order_items WHERE order_id = ? ORDER BY id", (order_id,)
    ).fetchall()


def serialize_order(conn, order, with_details=True) -> dict:
    data = {
        "id": order["id"],
        "orderNumber": order["order_number"],
        "userId": order["user_id"],
        "status": order["status"],
        "summary": {
            "subtotal": order["subtotal"],
            "shipping": order["shipping"],
            "tax": order["tax"],
            "discount": order["discount"],
            "total": order["total"],
            "currency": order["currency"],
        },
        "couponCode": order["coupon_code"],
        "paymentMethod": order["payment_method"],
        "paymentStatus": order["payment_status"],
        "tracking": {
            "trackingNumber": order["tracking_number"],
            "carrier": order["carrier"],
        },
        "estimatedDelivery": order["estimated_delivery"],
        "deliveredAt": order["delivered_at"],
        "createdAt": order["created_at"],
        "updatedAt": order["updated_at"],
    }

    items = order_items(conn, order["id"])
    data["itemCount"] = sum(item["quantity"] for item in items)
    if not with_details:
        return data

    data["items"] = [
        {
            "productId": item["product_id"],
            "title": item["title"],
            "image": item["image_url"] or "",
            "quantity": item["quantity"],
            "unitPrice": item["unit_price"],
            "totalPrice": item["total_price"],
        }
        for item in items
    ]
    data["shippingAddress"] = json.loads(order["shipping_address"])
    data["billingAddress"] = json.loads(order["billing_address"])
    data["notes"] = order["notes"]
    data["timeline"] = [
        {"status": row["status"], "description": row["description"], "timestamp": row["created_at"]}
        for row in conn.execute(
            "SELECT * FROM order_timeline WHERE order_id = ? ORDER BY id", (order["id"],)
        ).fetchall()
    ]
    return data


def publish_order_event(conn, order, event, user_email=None):
    """
    Send the order to SQS (and SNS for new orders). Failures are logged and
    never reach the customer.
    """
    items = [
        {
            "product_id": item["product_id"],
            "title": item["title"],
            "quantity": int(item["quantity"]),
            "price": float(item["unit_price"]),
        }
        for item in order_items(conn, order["id"])
    ]

    try:
        send_order_event_to_sqs(event, dict(order), items)
    except RuntimeError as e:
        log.warning("SQS send error: %s", e)

    if user_email:
        try:
            notify_order_via_sns(dict(order), user_email)
        except RuntimeError as e:
            log.warning("SNS publish error: %s", e)
