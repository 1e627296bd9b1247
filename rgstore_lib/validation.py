"""
Request validation.

Each validate_* function collects every problem with the payload before
raising ValidationFailed, so the client gets one detail per bad field, and
returns a cleaned copy of the data on success.
"""

import re
from datetime import date, datetime, timedelta

from flask import request
from werkzeug.routing import IntegerConverter

from .cart_utils import MAX_ROW_ID
from .responses import APIError, ValidationFailed

SUBJECTS = ("Mathematics", "Science", "English", "Social Science")
PRODUCT_TYPES = ("Textbook", "Practice Book", "Lab Manual", "Advanced Guide")
FEATURED_TYPES = ("bestseller", "trending", "new-arrival")
CUSTOMER_ROLES = ("student", "teacher", "parent")
ALL_ROLES = CUSTOMER_ROLES + ("admin",)
PAYMENT_METHODS = ("razorpay", "cod", "bank_transfer")
ADDRESS_TYPES = ("home", "work", "other")
CONTACT_TYPES = ("general", "support", "sales", "feedback", "complaint")
CONTACT_STATUSES = ("pending", "in_progress", "resolved", "closed")
PRIORITIES = ("low", "medium", "high", "urgent")
SORT_FIELDS = {
    "createdAt": "created_at",
    "price": "price",
    "title": "title",
    "rating": "rating_average",
}

EMAIL_RE = re.compile(r"^[^@\s]+@[^@\s]+\.[A-Za-z]{2,}$")
PHONE_RE = re.compile(r"^\+?[\d\s\-()]+$")
PASSWORD_RE = re.compile(r"^(?=.*[a-z])(?=.*[A-Z])(?=.*\d)")
POSTAL_CODE_RE = re.compile(r"^\d{6}$")
COUPON_CODE_RE = re.compile(r"^[A-Z0-9]{3,20}$")
MAX_PAGE = 10000
MAX_REPORT_DAYS = 366


class RowIdConverter(IntegerConverter):
    """<int:...> URL segments that fit in an SQLite INTEGER column."""

    def __init__(self, map, fixed_digits=0, min=None, max=MAX_ROW_ID, signed=False):
        super().__init__(map, fixed_digits=fixed_digits, min=min, max=max, signed=signed)


def get_json_body() -> dict:
    data = request.get_json(silent=True)
    if data is None and request.form:
        data = request.form.to_dict()
    if not isinstance(data, dict):
        raise APIError(400, "INVALID_INPUT", "Request body must be a JSON object")
    return data


class _Checker:
    def __init__(self, data):
        self.data = data
        self.errors = []
        self.clean = {}

    def fail(self, field, message):
        self.errors.append({"field": field, "message": message})

    def text(self, field, low, high, message, required=True, key=None):
        value = self.data.get(field)
        if value is None or (isinstance(value, str) and not value.strip()):
            if required:
                self.fail(field, message)
            return
        value = str(value).strip()
        if not low <= len(value) <= high:
            self.fail(field, message)
            return
        self.clean[key or field] = value

    def choice(self, field, options, message, required=False, default=None, key=None):
        value = self.data.get(field)
        if value in (None, ""):
            if required:
                self.fail(field, message)
            elif default is not None:
                self.clean[key or field] = default
            return
        if value not in options:
            self.fail(field, message)
            return
        self.clean[key or field] = value

    def pattern(self, field, regex, message, required=False, key=None):
        value = self.data.get(field)
        if value in (None, ""):
            if required:
                self.fail(field, message)
            return
        value = str(value).strip()
        if not regex.match(value):
            self.fail(field, message)
            return
        self.clean[key or field] = value

    def number(self, field, message, minimum=0, maximum=None, integer=False,
               required=False, key=None):
        value = self.data.get(field)
        if value in (None, ""):
            if required:
                self.fail(field, message)
            return
        try:
            number = int(value) if integer else float(value)
        except (TypeError, ValueError, OverflowError):
            self.fail(field, message)
            return
        if integer and maximum is None:
            maximum = MAX_ROW_ID
        if isinstance(value, bool) or number < minimum or (maximum is not None and number > maximum):
            self.fail(field, message)
            return
        self.clean[key or field] = number

    def iso_date(self, field, message, key=None):
        value = self.data.get(field)
        if value in (None, ""):
            return
        try:
            parsed = datetime.fromisoformat(str(value).replace("Z", ""))
        except ValueError:
            self.fail(field, message)
            return
        self.clean[key or field] = parsed.isoformat(timespec="seconds")

    def string_list(self, field, max_item, message, key=None):
        value = self.data.get(field)
        if value in (None, ""):
            return
        if not isinstance(value, list) or any(
            not isinstance(v, str) or len(v.strip()) > max_item for v in value
        ):
            self.fail(field, message)
            return
        self.clean[key or field] = [v.strip() for v in value if v.strip()]

    def done(self):
        if self.errors:
            raise ValidationFailed(self.errors)
        return self.clean


def check_password(checker, field="password"):
    password = checker.data.get(field) or ""
    if len(password) < 6:
        checker.fail(field, "Password must be at least 6 characters long")
    elif not PASSWORD_RE.match(password):
        checker.fail(
            field,
            "Password must contain at least one lowercase letter, one uppercase letter, and one number"
        )
    else:
        checker.clean[field] = password


def validate_registration(data: dict) -> dict:
    c = _Checker(data)
    c.text("firstName", 1, 50, "First name must be between 1 and 50 characters", key="first_name")
    c.text("lastName", 1, 50, "Last name must be between 1 and 50 characters", key="last_name")
    c.pattern("email", EMAIL_RE, "Please provide a valid email address", required=True)
    check_password(c)
    c.pattern("phone", PHONE_RE, "Please provide a valid phone number")
    c.iso_date("dateOfBirth", "Please provide a valid date of birth", key="date_of_birth")
    c.choice("role", CUSTOMER_ROLES, "Role must be student, teacher, or parent", default="student")
    clean = c.done()
    clean["email"] = clean["email"].lower()
    return clean


def validate_login(data: dict) -> dict:
    c = _Checker(data)
    c.pattern("email", EMAIL_RE, "Please provide a valid email address", required=True)
    if not data.get("password"):
        c.fail("password", "Password is required")
    clean = c.done()
    clean["email"] = clean["email"].lower()
    clean["password"] = data["password"]
    return clean


def validate_profile(data: dict) -> dict:
    c = _Checker(data)
    c.text("firstName", 1, 50, "First name must be between 1 and 50 characters",
           required=False, key="first_name")
    c.text("lastName", 1, 50, "Last name must be between 1 and 50 characters",
           required=False, key="last_name")
    c.pattern("phone", PHONE_RE, "Please provide a valid phone number")
    c.iso_date("dateOfBirth", "Please provide a valid date of birth", key="date_of_birth")
    return c.done()


def validate_password_change(data: dict) -> dict:
    c = _Checker(data)
    if not data.get("currentPassword"):
        c.fail("currentPassword", "Current password is required")
    else:
        c.clean["currentPassword"] = data["currentPassword"]
    check_password(c, "newPassword")
    return c.done()


def validate_address(data: dict, partial=False) -> dict:
    required = not partial
    c = _Checker(data)
    c.choice("type", ADDRESS_TYPES, "Address type must be home, work, or other",
             default=None if partial else "home")
    c.text("firstName", 1, 50, "First name is required", required, key="first_name")
    c.text("lastName", 1, 50, "Last name is required", required, key="last_name")
    c.pattern("email", EMAIL_RE, "Please provide a valid email address")
    c.pattern("phone", PHONE_RE, "Please provide a valid phone number", required=required)
    c.text("addressLine1", 1, 255, "Address line 1 is required", required, key="address_line1")
    c.text("addressLine2", 0, 255, "Address line 2 cannot exceed 255 characters",
           required=False, key="address_line2")
    c.text("landmark", 0, 100, "Landmark cannot exceed 100 characters", required=False)
    c.text("city", 1, 100, "City is required", required)
    c.text("state", 1, 100, "State is required", required)
    c.pattern("postalCode", POSTAL_CODE_RE, "Please enter a valid 6-digit postal code",
              required=required, key="postal_code")
    c.text("country", 1, 100, "Country is invalid", required=False)
    if "isDefault" in data:
        c.clean["is_default"] = bool(data.get("isDefault"))
    return c.done()


def validate_order_address(data, field="shippingAddress") -> dict:
    """Validate an inline address snapshot given with an order."""
    if not isinstance(data, dict):
        raise ValidationFailed([{"field": field, "message": "Address is required"}])
    c = _Checker(data)
    c.text("firstName", 1, 50, "First name is required")
    c.text("lastName", 1, 50, "Last name is required")
    c.pattern("email", EMAIL_RE, "Please provide a valid email address")
    c.pattern("phone", PHONE_RE, "Please provide a valid phone number")
    c.text("addressLine1", 1, 255, "Address line 1 is required")
    c.text("addressLine2", 0, 255, "Address line 2 cannot exceed 255 characters", required=False)
    c.text("city", 1, 100, "City is required")
    c.text("state", 1, 100, "State is required")
    c.text("postalCode", 1, 20, "Postal code is required")
    c.text("country", 1, 100, "Country is invalid", required=False)
    for error in c.errors:
        error["field"] = f"{field}.{error['field']}"
    clean = c.done()
    clean.setdefault("country", "India")
    return clean


def validate_contact(data: dict) -> dict:
    c = _Checker(data)
    c.text("name", 1, 100, "Name must be between 1 and 100 characters")
    c.pattern("email", EMAIL_RE, "Please provide a valid email address", required=True)
    c.pattern("phone", PHONE_RE, "Please provide a valid phone number")
    c.text("subject", 1, 200, "Subject must be between 1 and 200 characters")
    c.text("message", 1, 2000, "Message must be between 1 and 2000 characters")
    c.choice("type", CONTACT_TYPES, "Invalid contact type", default="general")
    clean = c.done()
    clean["email"] = clean["email"].lower()
    return clean


def validate_review(data: dict, partial=False) -> dict:
    required = not partial
    c = _Checker(data)
    if not partial:
        c.number("productId", "Product ID is required", minimum=1, integer=True,
                 required=True, key="product_id")
    c.number("rating", "Rating must be between 1 and 5", minimum=1, maximum=5,
             integer=True, required=required)
    c.text("title", 1, 200, "Review title must be between 1 and 200 characters", required)
    c.text("comment", 1, 2000, "Review comment must be between 1 and 2000 characters", required)
    c.string_list("pros", 100, "Each pro must be at most 100 characters")
    c.string_list("cons", 100, "Each con must be at most 100 characters")
    return c.done()


def validate_product(data: dict, partial=False) -> dict:
    required = not partial
    c = _Checker(data)
    c.text("title", 1, 255, "Title must be between 1 and 255 characters", required)
    c.text("description", 1, 5000, "Description is required", required)
    c.text("longDescription", 0, 20000, "Long description is too long",
           required=False, key="long_description")
    c.choice("subject", SUBJECTS, "Invalid subject", required=required)
    c.number("class", "Class must be between 5 and 12", minimum=5, maximum=12,
             integer=True, required=required, key="class_level")
    c.choice("type", PRODUCT_TYPES, "Invalid product type", required=required)
    c.number("price", "Price cannot be negative", required=required)
    c.number("originalPrice", "Original price cannot be negative", key="original_price")
    c.text("isbn", 1, 20, "ISBN is invalid", required=False)
    c.text("author", 1, 100, "Author name must be between 1 and 100 characters", required)
    c.text("publisher", 1, 100, "Publisher is invalid", required=False)
    c.text("edition", 1, 50, "Edition is invalid", required=False)
    c.number("pages", "Pages must be at least 1", minimum=1, integer=True)
    c.text("language", 1, 50, "Language is invalid", required=False)
    c.number("stockQuantity", "Stock quantity cannot be negative", integer=True,
             key="stock_quantity")
    c.string_list("features", 200, "Features must be a list of short strings")
    c.string_list("tags", 50, "Tags must be a list of short strings")
    if "featured" in data:
        if data["featured"] in (None, ""):
            c.clean["featured"] = None
        else:
            c.choice("featured", FEATURED_TYPES, "Invalid featured type")
    return c.done()


def validate_coupon_payload(data: dict, partial=False) -> dict:
    required = not partial
    data = dict(data)
    if isinstance(data.get("code"), str):
        data["code"] = data["code"].strip().upper()
    c = _Checker(data)
    c.pattern("code", COUPON_CODE_RE,
              "Coupon code must be 3-20 characters, letters and numbers only",
              required=required)
    c.text("name", 1, 100, "Coupon name must be between 1 and 100 characters", required)
    c.text("description", 1, 500, "Coupon description must be between 1 and 500 characters", required)
    c.choice("type", ("percentage", "fixed"), "Coupon type must be percentage or fixed",
             required=required)
    c.number("value", "Coupon value cannot be negative", required=required)
    c.number("maxDiscount", "Maximum discount cannot be negative", key="max_discount")
    c.number("minOrderValue", "Minimum order value cannot be negative", key="min_order_value")
    c.number("maxOrderValue", "Maximum order value cannot be negative", key="max_order_value")
    c.number("usageLimitTotal", "Total usage limit must be at least 1", minimum=1,
             integer=True, key="usage_limit_total")
    c.number("usageLimitPerUser", "Per user usage limit must be at least 1", minimum=1,
             integer=True, key="usage_limit_per_user")
    c.iso_date("validFrom", "Valid from must be an ISO date", key="valid_from")
    c.iso_date("validUntil", "Valid until must be an ISO date", key="valid_until")
    if required:
        for field, key in (("validFrom", "valid_from"), ("validUntil", "valid_until")):
            if key not in c.clean and not any(e["field"] == field for e in c.errors):
                c.fail(field, f"{field} is required")

    products = data.get("applicableProducts")
    if products is not None:
        if not isinstance(products, list) or not all(str(p).isdigit() for p in products):
            c.fail("applicableProducts", "Applicable products must be a list of product ids")
        else:
            c.clean["applicable_products"] = [int(p) for p in products]
    roles = data.get("userRoles")
    if roles is not None:
        if not isinstance(roles, list) or any(r not in CUSTOMER_ROLES for r in roles):
            c.fail("userRoles", "User roles must be student, teacher, or parent")
        else:
            c.clean["user_roles"] = roles
    for flag, key in (("newUsersOnly", "new_users_only"), ("isActive", "is_active")):
        if flag in data:
            c.clean[key] = bool(data[flag])

    clean = c.done()
    if clean.get("type") == "percentage" and clean.get("value", 0) > 100:
        raise ValidationFailed([{"field": "value", "message": "Percentage cannot exceed 100"}])
    if "valid_from" in clean and "valid_until" in clean and clean["valid_until"] <= clean["valid_from"]:
        raise ValidationFailed([{"field": "validUntil", "message": "Valid until must be after valid from"}])
    return clean


def parse_pagination(args, default_limit=20, max_limit=100):
    c = _Checker(args)
    c.number("page", f"Page must be between 1 and {MAX_PAGE}", minimum=1,
             maximum=MAX_PAGE, integer=True)
    c.number("limit", f"Limit must be between 1 and {max_limit}", minimum=1,
             maximum=max_limit, integer=True)
    clean = c.done()
    return clean.get("page", 1), clean.get("limit", default_limit)


def parse_catalog_query(args) -> dict:
    """Validate the product listing and search query string."""
    c = _Checker(args)
    c.text("q", 1, 100, "Search query must be between 1 and 100 characters", required=False)
    c.text("search", 1, 100, "Search query must be between 1 and 100 characters", required=False)
    c.choice("subject", SUBJECTS, "Invalid subject")
    c.number("class", "Class must be between 5 and 12", minimum=5, maximum=12,
             integer=True, key="class_level")
    c.choice("type", PRODUCT_TYPES, "Invalid product type")
    c.choice("featured", FEATURED_TYPES, "Invalid featured type")
    c.number("priceMin", "Minimum price must be a positive number", key="price_min")
    c.number("priceMax", "Maximum price must be a positive number", key="price_max")
    c.choice("inStock", ("true", "false"), "inStock must be true or false", key="in_stock")
    c.choice("sortBy", tuple(SORT_FIELDS), "Invalid sort field", default="createdAt", key="sort_by")
    c.choice("sortOrder", ("asc", "desc"), "Sort order must be asc or desc",
             default="desc", key="sort_order")
    clean = c.done()
    clean["page"], clean["limit"] = parse_pagination(args)
    if "in_stock" in clean:
        clean["in_stock"] = clean["in_stock"] == "true"
    clean["search"] = clean.pop("q", None) or clean.get("search")
    return clean


def parse_date_range(args, default_days=30):
    """Return (start, end) dates, defaulting to the last default_days days."""
    errors = []
    today = datetime.utcnow().date()
    bounds = {}
    for field, fallback in (("startDate", today - timedelta(days=default_days)),
                            ("endDate", today)):
        value = args.get(field)
        if not value:
            bounds[field] = fallback
            continue
        try:
            bounds[field] = date.fromisoformat(value[:10])
        except ValueError:
            errors.append({"field": field, "message": f"{field} must be an ISO date"})
    if errors:
        raise ValidationFailed(errors)
    if bounds["endDate"] < bounds["startDate"]:
        raise ValidationFailed([{"field": "endDate", "message": "End date must be after start date"}])
    if (bounds["endDate"] - bounds["startDate"]).days > MAX_REPORT_DAYS:
        raise ValidationFailed([{"field": "startDate",
                                 "message": f"Date range cannot exceed {MAX_REPORT_DAYS} days"}])
    return bounds["startDate"], bounds["endDate"]


def validate_cart_line(data: dict, require_product=True) -> dict:
    c = _Checker(data)
    if require_product:
        c.number("productId", "Invalid product ID", minimum=1, integer=True,
                 required=True, key="product_id")
    c.number("quantity", "Quantity must be between 1 and 10", minimum=1, maximum=10,
             integer=True, key="quantity")
    clean = c.done()
    clean.setdefault("quantity", 1)
    return clean
