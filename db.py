import json
import os
import re
import sqlite3
from datetime import datetime, timedelta

from werkzeug.security import generate_password_hash

DB_NAME = os.environ.get("RG_STORE_DB", "rg_store.db")

ADMIN_EMAIL = os.environ.get("ADMIN_EMAIL", "admin@rgpublication.com")
ADMIN_PASSWORD = os.environ.get("ADMIN_PASSWORD", "Admin123")


def get_connection():
    """Return a connection to the SQLite database."""
    conn = sqlite3.connect(DB_NAME)
    conn.row_factory = sqlite3.Row
    conn.execute("PRAGMA foreign_keys = ON")
    return conn


def utc_now() -> str:
    return datetime.utcnow().isoformat(timespec="seconds")


def slugify(title: str) -> str:
    slug = re.sub(r"[^a-z0-9]+", "-", title.lower())
    return slug.strip("-")


def init_db():
    """Create tables if they do not exist."""
    conn = get_connection()
    cur = conn.cursor()

    # role: 'student', 'teacher', 'parent' or 'admin'
    cur.execute("""
        CREATE TABLE IF NOT EXISTS users (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            email TEXT NOT NULL UNIQUE,
            password_hash TEXT NOT NULL,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            phone TEXT,
            date_of_birth TEXT,
            role TEXT NOT NULL DEFAULT 'student'
                CHECK (role IN ('student', 'teacher', 'parent', 'admin')),
            avatar_url TEXT,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_at TEXT NOT NULL,
            last_login_at TEXT
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS products (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            title TEXT NOT NULL,
            slug TEXT UNIQUE,
            description TEXT NOT NULL,
            long_description TEXT,
            subject TEXT NOT NULL,
            class_level INTEGER NOT NULL CHECK (class_level BETWEEN 5 AND 12),
            type TEXT NOT NULL,
            price REAL NOT NULL CHECK (price >= 0),
            original_price REAL,
            currency TEXT NOT NULL DEFAULT 'INR',
            isbn TEXT UNIQUE,
            author TEXT NOT NULL,
            publisher TEXT NOT NULL DEFAULT 'RG Publication',
            edition TEXT,
            pages INTEGER,
            language TEXT NOT NULL DEFAULT 'English',
            featured TEXT,
            in_stock INTEGER NOT NULL DEFAULT 1,
            stock_quantity INTEGER NOT NULL DEFAULT 0 CHECK (stock_quantity >= 0),
            image_url TEXT,
            features TEXT NOT NULL DEFAULT '[]',
            tags TEXT NOT NULL DEFAULT '[]',
            rating_average REAL NOT NULL DEFAULT 0,
            rating_count INTEGER NOT NULL DEFAULT 0,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL
        )
    """)

    # Account carts. Anonymous carts live in the session only.
    cur.execute("""
        CREATE TABLE IF NOT EXISTS carts (
            user_id INTEGER PRIMARY KEY,
            coupon_code TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS cart_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            product_id INTEGER NOT NULL,
            quantity INTEGER NOT NULL CHECK (quantity >= 1),
            unit_price REAL NOT NULL,
            added_at TEXT NOT NULL,
            UNIQUE (user_id, product_id),
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS wishlist_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            product_id INTEGER NOT NULL,
            added_at TEXT NOT NULL,
            UNIQUE (user_id, product_id),
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE,
            FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS addresses (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            type TEXT NOT NULL DEFAULT 'home',
            is_default INTEGER NOT NULL DEFAULT 0,
            first_name TEXT NOT NULL,
            last_name TEXT NOT NULL,
            email TEXT,
            phone TEXT NOT NULL,
            address_line1 TEXT NOT NULL,
            address_line2 TEXT,
            landmark TEXT,
            city TEXT NOT NULL,
            state TEXT NOT NULL,
            postal_code TEXT NOT NULL,
            country TEXT NOT NULL DEFAULT 'India',
            created_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        )
    """)

    # Orders keep a JSON snapshot of the addresses they were shipped to
    cur.execute("""
        CREATE TABLE IF NOT EXISTS orders (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_number TEXT NOT NULL UNIQUE,
            user_id INTEGER NOT NULL,
            status TEXT NOT NULL DEFAULT 'pending',
            subtotal REAL NOT NULL,
            shipping REAL NOT NULL DEFAULT 0,
            tax REAL NOT NULL DEFAULT 0,
            discount REAL NOT NULL DEFAULT 0,
            total REAL NOT NULL,
            currency TEXT NOT NULL DEFAULT 'INR',
            coupon_code TEXT,
            shipping_address TEXT NOT NULL,
            billing_address TEXT NOT NULL,
            payment_method TEXT NOT NULL,
            payment_status TEXT NOT NULL DEFAULT 'pending',
            tracking_number TEXT,
            carrier TEXT,
            notes TEXT,
            estimated_delivery TEXT,
            delivered_at TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id)
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS order_items (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_id INTEGER NOT NULL,
            product_id INTEGER NOT NULL,
            title TEXT NOT NULL,
            image_url TEXT,
            quantity INTEGER NOT NULL,
            unit_price REAL NOT NULL,
            total_price REAL NOT NULL,
            FOREIGN KEY (order_id) REFERENCES orders(id) ON DELETE CASCADE
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS order_timeline (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            order_id INTEGER NOT NULL,
            status TEXT NOT NULL,
            description TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (order_id) REFERENCES orders(id) ON DELETE CASCADE
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS coupons (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            code TEXT NOT NULL UNIQUE,
            name TEXT NOT NULL,
            description TEXT NOT NULL,
            type TEXT NOT NULL CHECK (type IN ('percentage', 'fixed')),
            value REAL NOT NULL,
            max_discount REAL,
            min_order_value REAL NOT NULL DEFAULT 0,
            max_order_value REAL,
            usage_limit_total INTEGER,
            usage_limit_per_user INTEGER NOT NULL DEFAULT 1,
            usage_count INTEGER NOT NULL DEFAULT 0,
            applicable_products TEXT NOT NULL DEFAULT '[]',
            new_users_only INTEGER NOT NULL DEFAULT 0,
            user_roles TEXT NOT NULL DEFAULT '[]',
            valid_from TEXT NOT NULL,
            valid_until TEXT NOT NULL,
            is_active INTEGER NOT NULL DEFAULT 1,
            created_by INTEGER,
            created_at TEXT NOT NULL
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS coupon_usages (
            coupon_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            count INTEGER NOT NULL DEFAULT 0,
            last_used TEXT NOT NULL,
            PRIMARY KEY (coupon_id, user_id),
            FOREIGN KEY (coupon_id) REFERENCES coupons(id) ON DELETE CASCADE
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS reviews (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            product_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            rating INTEGER NOT NULL CHECK (rating BETWEEN 1 AND 5),
            title TEXT NOT NULL,
            comment TEXT NOT NULL,
            pros TEXT NOT NULL DEFAULT '[]',
            cons TEXT NOT NULL DEFAULT '[]',
            verified INTEGER NOT NULL DEFAULT 0,
            status TEXT NOT NULL DEFAULT 'pending',
            helpful_count INTEGER NOT NULL DEFAULT 0,
            report_count INTEGER NOT NULL DEFAULT 0,
            moderator_notes TEXT,
            created_at TEXT NOT NULL,
            updated_at TEXT NOT NULL,
            UNIQUE (product_id, user_id),
            FOREIGN KEY (product_id) REFERENCES products(id) ON DELETE CASCADE,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        )
    """)

    # kind: 'helpful' or 'report'
    cur.execute("""
        CREATE TABLE IF NOT EXISTS review_votes (
            review_id INTEGER NOT NULL,
            user_id INTEGER NOT NULL,
            kind TEXT NOT NULL,
            PRIMARY KEY (review_id, user_id, kind),
            FOREIGN KEY (review_id) REFERENCES reviews(id) ON DELETE CASCADE
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS contacts (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            name TEXT NOT NULL,
            email TEXT NOT NULL,
            phone TEXT,
            subject TEXT NOT NULL,
            message TEXT NOT NULL,
            type TEXT NOT NULL DEFAULT 'general',
            status TEXT NOT NULL DEFAULT 'pending',
            priority TEXT NOT NULL DEFAULT 'medium',
            admin_notes TEXT,
            resolved_at TEXT,
            created_at TEXT NOT NULL
        )
    """)

    cur.execute("""
        CREATE TABLE IF NOT EXISTS notifications (
            id INTEGER PRIMARY KEY AUTOINCREMENT,
            user_id INTEGER NOT NULL,
            type TEXT NOT NULL DEFAULT 'system',
            category TEXT NOT NULL DEFAULT 'info',
            title TEXT NOT NULL,
            message TEXT NOT NULL,
            is_read INTEGER NOT NULL DEFAULT 0,
            read_at TEXT,
            created_at TEXT NOT NULL,
            FOREIGN KEY (user_id) REFERENCES users(id) ON DELETE CASCADE
        )
    """)

    conn.commit()
    conn.close()


SAMPLE_BOOKS = [
    {
        "title": "Complete Mathematics for Class 5",
        "description": "A comprehensive mathematics textbook for Class 5 students.",
        "subject": "Mathematics", "class_level": 5, "type": "Textbook",
        "price": 250, "original_price": 300, "isbn": "978-81-123-4567-8",
        "author": "Dr. R. K. Gupta", "edition": "2024 Edition", "pages": 280,
        "featured": "bestseller", "stock_quantity": 120,
        "features": ["Aligned with latest NCERT curriculum", "Chapter-wise assessment tests"],
        "tags": ["mathematics", "class-5", "textbook", "ncert"],
    },
    {
        "title": "Math Practice Book Class 5",
        "description": "Essential practice for mathematical excellence.",
        "subject": "Mathematics", "class_level": 5, "type": "Practice Book",
        "price": 180, "original_price": 220, "isbn": "978-81-123-4568-5",
        "author": "Dr. R. K. Gupta", "edition": "2024 Edition", "pages": 200,
        "featured": "trending", "stock_quantity": 80,
        "features": ["1000+ practice problems", "Answer key included"],
        "tags": ["mathematics", "class-5", "practice"],
    },
    {
        "title": "Science Explorer Class 8",
        "description": "Physics, chemistry and biology fundamentals for Class 8.",
        "subject": "Science", "class_level": 8, "type": "Textbook",
        "price": 320, "original_price": 380, "isbn": "978-81-123-4580-7",
        "author": "Prof. S. Sharma", "edition": "2024 Edition", "pages": 340,
        "featured": "new-arrival", "stock_quantity": 60,
        "features": ["Activity based learning", "Experiments with every chapter"],
        "tags": ["science", "class-8", "textbook"],
    },
    {
        "title": "Science Lab Manual Class 10",
        "description": "Step-by-step laboratory experiments for board preparation.",
        "subject": "Science", "class_level": 10, "type": "Lab Manual",
        "price": 150, "original_price": None, "isbn": "978-81-123-4590-6",
        "author": "Prof. S. Sharma", "edition": "2023 Edition", "pages": 160,
        "featured": None, "stock_quantity": 40,
        "features": ["Viva questions", "Observation tables"],
        "tags": ["science", "class-10", "lab"],
    },
    {
        "title": "English Grammar and Composition Class 7",
        "description": "Grammar rules, writing skills and comprehension practice.",
        "subject": "English", "class_level": 7, "type": "Textbook",
        "price": 210, "original_price": 250, "isbn": "978-81-123-4600-2",
        "author": "Anita Verma", "edition": "2024 Edition", "pages": 240,
        "featured": "bestseller", "stock_quantity": 90,
        "features": ["Letter and essay writing", "Unseen passages"],
        "tags": ["english", "class-7", "grammar"],
    },
    {
        "title": "Advanced Mathematics Guide Class 12",
        "description": "Calculus, vectors and probability for competitive exams.",
        "subject": "Mathematics", "class_level": 12, "type": "Advanced Guide",
        "price": 550, "original_price": 650, "isbn": "978-81-123-4620-0",
        "author": "Dr. R. K. Gupta", "edition": "2024 Edition", "pages": 520,
        "featured": "trending", "stock_quantity": 35,
        "features": ["JEE level problems", "Solved board papers"],
        "tags": ["mathematics", "class-12", "jee", "guide"],
    },
    {
        "title": "Social Science Atlas and Workbook Class 9",
        "description": "History, geography and civics with map work.",
        "subject": "Social Science", "class_level": 9, "type": "Practice Book",
        "price": 275, "original_price": 300, "isbn": "978-81-123-4630-9",
        "author": "K. L. Mehta", "edition": "2024 Edition", "pages": 260,
        "featured": "new-arrival", "stock_quantity": 0,
        "features": ["Map practice", "Source based questions"],
        "tags": ["social-science", "class-9", "atlas"],
    },
]


def seed_sample_data():
    """
    Insert demo books, starter coupons and the admin account.

    Each group is only seeded when its table is empty, so this is safe to
    call on every start.
    """
    conn = get_connection()
    cur = conn.cursor()
    now = utc_now()

    cur.execute("SELECT COUNT(*) FROM products")
    if cur.fetchone()[0] == 0:
        for book in SAMPLE_BOOKS:
            cur.execute(
                """
                INSERT INTO products (title, slug, description, subject, class_level, type,
                                      price, original_price, isbn, author, edition, pages,
                                      featured, in_stock, stock_quantity, features, tags,
                                      created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    book["title"], slugify(book["title"]), book["description"],
                    book["subject"], book["class_level"], book["type"],
                    book["price"], book["original_price"], book["isbn"],
                    book["author"], book["edition"], book["pages"],
                    book["featured"], 1 if book["stock_quantity"] > 0 else 0,
                    book["stock_quantity"], json.dumps(book["features"]),
                    json.dumps(book["tags"]), now, now,
                )
            )

    cur.execute("SELECT COUNT(*) FROM coupons")
    if cur.fetchone()[0] == 0:
        valid_until = (datetime.utcnow() + timedelta(days=365)).isoformat(timespec="seconds")
        cur.execute(
            """
            INSERT INTO coupons (code, name, description, type, value, max_discount,
                                 min_order_value, usage_limit_per_user, valid_from,
                                 valid_until, created_at)
            VALUES ('SAVE10', 'Save 10%', '10% off orders above ₹500, up to ₹100',
                    'percentage', 10, 100, 500, 5, ?, ?, ?)
            """,
            (now, valid_until, now)
        )
        cur.execute(
            """
            INSERT INTO coupons (code, name, description, type, value, min_order_value,
                                 new_users_only, valid_from, valid_until, created_at)
            VALUES ('WELCOME50', 'Welcome offer', '₹50 off your first order',
                    'fixed', 50, 200, 1, ?, ?, ?)
            """,
            (now, valid_until, now)
        )

    cur.execute("SELECT COUNT(*) FROM users WHERE role = 'admin'")
    if cur.fetchone()[0] == 0:
        cur.execute(
            """
            INSERT OR IGNORE INTO users (email, password_hash, first_name, last_name, role, created_at)
            VALUES (?, ?, 'Store', 'Admin', 'admin', ?)
            """,
            (ADMIN_EMAIL.lower(), generate_password_hash(ADMIN_PASSWORD), now)
        )

    conn.commit()
    conn.close()


if __name__ == "__main__":
    print("Initializing database...")
    init_db()
    seed_sample_data()
    print("Database setup complete.")
