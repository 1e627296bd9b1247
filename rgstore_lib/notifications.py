from datetime import datetime

NOTIFICATION_TYPES = ("order", "product", "promotion", "system", "review", "wishlist")
CATEGORIES = ("info", "success", "warning", "error")


def create_notification(conn, user_id, type_, title, message, category="info"):
    cur = conn.execute(
        """
        INSERT INTO notifications (user_id, type, category, title, message, created_at)
        VALUES (?, ?, ?, ?, ?, ?)
        """,
        (user_id, type_, category, title, message, datetime.utcnow().isoformat(timespec="seconds"))
    )
    return cur.lastrowid


def serialize_notification(row) -> dict:
    return {
        "id": row["id"],
        "type": row["type"],
        "category": row["category"],
        "title": row["title"],
        "message": row["message"],
        "isRead": bool(row["is_read"]),
        "readAt": row["read_at"],
        "createdAt": row["created_at"],
    }
