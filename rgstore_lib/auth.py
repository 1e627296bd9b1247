from functools import wraps

from flask import g, session

from db import get_connection

from .responses import APIError

USER_COLUMNS = (
    "id, email, first_name, last_name, phone, date_of_birth, role, "
    "avatar_url, is_active, created_at, last_login_at"
)


def get_current_user():
    """Return the signed-in user row, cached for the request."""
    if "current_user" in g:
        return g.current_user

    user = None
    user_id = session.get("user_id")
    if user_id:
        conn = get_connection()
        cur = conn.cursor()
        cur.execute(f"SELECT {USER_COLUMNS} FROM users WHERE id = ?", (user_id,))
        user = cur.fetchone()
        conn.close()
        if user is None or not user["is_active"]:
            session.pop("user_id", None)
            user = None

    g.current_user = user
    return user


def login_user(user_id: int):
    session["user_id"] = user_id
    g.pop("current_user", None)


def logout_user():
    session.pop("user_id", None)
    g.pop("current_user", None)


def require_user():
    user = get_current_user()
    if not user:
        raise APIError(401, "AUTHENTICATION_REQUIRED", "Authentication required")
    return user


def login_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        require_user()
        return view(*args, **kwargs)
    return wrapped


def admin_required(view):
    @wraps(view)
    def wrapped(*args, **kwargs):
        user = require_user()
        if user["role"] != "admin":
            raise APIError(403, "INSUFFICIENT_PERMISSIONS",
                           "Insufficient permissions for this action")
        return view(*args, **kwargs)
    return wrapped


def serialize_user(user) -> dict:
    return {
        "id": user["id"],
        "email": user["email"],
        "firstName": user["first_name"],
        "lastName": user["last_name"],
        "phone": user["phone"],
        "dateOfBirth": user["date_of_birth"],
        "role": user["role"],
        "avatar": user["avatar_url"],
        "isActive": bool(user["is_active"]),
        "createdAt": user["created_at"],
        "lastLoginAt": user["last_login_at"],
    }
