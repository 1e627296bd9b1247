import os
import tempfile

import pytest

# app.py initialises its database at import time; keep that away from the
# working directory and make sure no real AWS resources are configured.
os.environ["RG_STORE_DB"] = os.path.join(tempfile.mkdtemp(), "import.db")
for _name in ("S3_BUCKET_NAME", "SQS_QUEUE_URL", "SNS_TOPIC_ARN"):
    os.environ.pop(_name, None)

import db  # noqa: E402
from app import app as flask_app  # noqa: E402

PASSWORD = "Secret123"


@pytest.fixture
def app(tmp_path, monkeypatch):
    monkeypatch.setattr(db, "DB_NAME", str(tmp_path / "store.db"))
    db.init_db()
    db.seed_sample_data()
    flask_app.config.update(TESTING=True)
    return flask_app


@pytest.fixture(autouse=True)
def order_events(monkeypatch):
    """Capture order events instead of sending them to SQS/SNS."""
    sent = []
    monkeypatch.setattr(
        "rgstore_lib.orders.send_order_event_to_sqs",
        lambda event, order, items: sent.append({"event": event, "order": order, "items": items}),
    )
    monkeypatch.setattr("rgstore_lib.orders.notify_order_via_sns", lambda order, email: None)
    return sent


@pytest.fixture
def client(app):
    return app.test_client()


@pytest.fixture
def make_customer(app):
    """Return a factory producing a signed-in test client for a new customer."""
    def factory(email="asha@example.com", **extra):
        c = app.test_client()
        payload = {"firstName": "Asha", "lastName": "Rao", "email": email, "password": PASSWORD}
        payload.update(extra)
        resp = c.post("/api/v1/auth/register", json=payload)
        assert resp.status_code == 201, resp.get_json()
        return c
    return factory


@pytest.fixture
def customer(make_customer):
    return make_customer()


@pytest.fixture
def admin(app):
    c = app.test_client()
    resp = c.post("/api/v1/auth/login", json={"email": db.ADMIN_EMAIL, "password": db.ADMIN_PASSWORD})
    assert resp.status_code == 200, resp.get_json()
    return c


@pytest.fixture
def place_order():
    """Put items in a client's cart and check out with cash on delivery."""
    def factory(c, items=((1, 2),), payment_method="cod", **extra):
        for product_id, quantity in items:
            resp = c.post("/api/v1/cart/items", json={"productId": product_id, "quantity": quantity})
            assert resp.status_code == 201, resp.get_json()
        payload = {
            "paymentMethod": payment_method,
            "shippingAddress": {
                "firstName": "Asha",
                "lastName": "Rao",
                "email": "asha@example.com",
                "phone": "+91 98765 43210",
                "addressLine1": "12 MG Road",
                "city": "Bengaluru",
                "state": "Karnataka",
                "postalCode": "560001",
            },
        }
        payload.update(extra)
        resp = c.post("/api/v1/orders", json=payload)
        assert resp.status_code == 201, resp.get_json()
        return resp.get_json()["data"]["order"]
    return factory
