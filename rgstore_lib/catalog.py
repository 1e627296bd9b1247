import json

from .cart_utils import positive_int
from .currency import round_money


def discount_percent(price, original_price) -> float:
    if original_price and original_price > price:
        return round_money((original_price - price) / original_price * 100)
    return 0


def serialize_product(row, distribution=None) -> dict:
    data = {
        "id": row["id"],
        "title": row["title"],
        "slug": row["slug"],
        "description": row["description"],
        "longDescription": row["long_description"],
        "subject": row["subject"],
        "class": row["class_level"],
        "type": row["type"],
        "price": row["price"],
        "originalPrice": row["original_price"],
        "discount": discount_percent(row["price"], row["original_price"]),
        "currency": row["currency"],
        "isbn": row["isbn"],
        "author": row["author"],
        "publisher": row["publisher"],
        "edition": row["edition"],
        "pages": row["pages"],
        "language": row["language"],
        "featured": row["featured"],
        "inStock": bool(row["in_stock"]),
        "stockQuantity": row["stock_quantity"],
        "image": row["image_url"] or "",
        "features": json.loads(row["features"] or "[]"),
        "tags": json.loads(row["tags"] or "[]"),
        "rating": {
            "average": row["rating_average"],
            "count": row["rating_count"],
        },
        "createdAt": row["created_at"],
        "updatedAt": row["updated_at"],
    }
    if distribution is not None:
        data["rating"]["distribution"] = distribution
    return data


def rating_distribution(conn, product_id) -> dict:
    distribution = {str(star): 0 for star in range(5, 0, -1)}
    rows = conn.execute(
        """
        SELECT rating, COUNT(*) AS n FROM reviews
        WHERE product_id = ? AND status = 'approved'
        GROUP BY rating
        """,
        (product_id,)
    ).fetchall()
    for row in rows:
        distribution[str(row["rating"])] = row["n"]
    return distribution


def refresh_product_rating(conn, product_id):
    """Recompute a product's rating from its approved reviews."""
    row = conn.execute(
        """
        SELECT COUNT(*) AS n, COALESCE(AVG(rating), 0) AS average
        FROM reviews WHERE product_id = ? AND status = 'approved'
        """,
        (product_id,)
    ).fetchone()
    conn.execute(
        "UPDATE products SET rating_average = ?, rating_count = ? WHERE id = ?",
        (round(row["average"], 1), row["n"], product_id)
    )


def get_product(conn, product_id):
    if positive_int(product_id) is None:
        return None
    return conn.execute("SELECT * FROM products WHERE id = ?", (product_id,)).fetchone()
