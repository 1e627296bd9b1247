import io

from conftest import PASSWORD

ADDRESS = {
    "firstName": "Asha", "lastName": "Rao", "phone": "9876543210",
    "addressLine1": "12 MG Road", "city": "Bengaluru", "state": "Karnataka", "postalCode": "560001",
}


def test_profile_update(customer):
    resp = customer.put("/api/v1/users/profile", json={"firstName": "Asha Devi", "phone": "+91 99887 76655"})
    assert resp.status_code == 200
    assert resp.get_json()["data"]["user"]["firstName"] == "Asha Devi"

    profile = customer.get("/api/v1/users/profile").get_json()["data"]
    assert profile["user"]["phone"] == "+91 99887 76655"
    assert profile["stats"] == {"totalOrders": 0, "totalSpent": 0, "wishlistItems": 0}

    assert customer.put("/api/v1/users/profile", json={"phone": "call me"}).status_code == 422


def test_change_password(customer, client):
    resp = customer.put("/api/v1/users/password", json={"currentPassword": "Wrong123", "newPassword": "Better123"})
    assert resp.get_json()["error"] == "INVALID_PASSWORD"

    resp = customer.put("/api/v1/users/password", json={"currentPassword": PASSWORD, "newPassword": "weak"})
    assert resp.status_code == 422

    resp = customer.put("/api/v1/users/password", json={"currentPassword": PASSWORD, "newPassword": "Better123"})
    assert resp.status_code == 200
    login = client.post("/api/v1/auth/login", json={"email": "asha@example.com", "password": "Better123"})
    assert login.status_code == 200


def test_first_address_is_default(customer):
    first = customer.post("/api/v1/users/addresses", json=ADDRESS).get_json()["data"]["address"]
    second = customer.post("/api/v1/users/addresses", json=dict(ADDRESS, city="Mysuru")).get_json()["data"]["address"]

    assert first["isDefault"] is True
    assert second["isDefault"] is False
    assert first["country"] == "India"


def test_setting_default_clears_others(customer):
    first = customer.post("/api/v1/users/addresses", json=ADDRESS).get_json()["data"]["address"]
    second = customer.post("/api/v1/users/addresses", json=ADDRESS).get_json()["data"]["address"]

    customer.put(f"/api/v1/users/addresses/{second['id']}", json={"isDefault": True})
    addresses = customer.get("/api/v1/users/addresses").get_json()["data"]["addresses"]
    defaults = [a["id"] for a in addresses if a["isDefault"]]
    assert defaults == [second["id"]]
    assert first["id"] in [a["id"] for a in addresses]


def test_deleting_default_promotes_another(customer):
    first = customer.post("/api/v1/users/addresses", json=ADDRESS).get_json()["data"]["address"]
    second = customer.post("/api/v1/users/addresses", json=ADDRESS).get_json()["data"]["address"]

    assert customer.delete(f"/api/v1/users/addresses/{first['id']}").status_code == 200
    addresses = customer.get("/api/v1/users/addresses").get_json()["data"]["addresses"]
    assert [(a["id"], a["isDefault"]) for a in addresses] == [(second["id"], True)]


def test_address_validation_and_ownership(customer, make_customer):
    resp = customer.post("/api/v1/users/addresses", json=dict(ADDRESS, postalCode="12AB"))
    assert resp.status_code == 422

    address = customer.post("/api/v1/users/addresses", json=ADDRESS).get_json()["data"]["address"]
    other = make_customer(email="other@example.com")
    assert other.delete(f"/api/v1/users/addresses/{address['id']}").status_code == 404


def test_wishlist_flow(customer):
    assert customer.post("/api/v1/wishlist", json={"productId": 3}).status_code == 201
    dup = customer.post("/api/v1/wishlist", json={"productId": 3})
    assert dup.status_code == 409
    assert dup.get_json()["error"] == "ALREADY_IN_WISHLIST"
    assert customer.post("/api/v1/wishlist", json={"productId": 999}).status_code == 404

    assert customer.get("/api/v1/wishlist/check/3").get_json()["data"]["inWishlist"] is True
    wishlist = customer.get("/api/v1/wishlist").get_json()["data"]["wishlist"]
    assert wishlist["itemCount"] == 1
    assert wishlist["items"][0]["product"]["title"] == "Science Explorer Class 8"

    assert customer.delete("/api/v1/wishlist/3").status_code == 200
    assert customer.delete("/api/v1/wishlist/3").status_code == 404


def test_move_to_cart(customer):
    customer.post("/api/v1/wishlist", json={"productId": 2})
    customer.post("/api/v1/wishlist", json={"productId": 7})

    resp = customer.post("/api/v1/wishlist/2/move-to-cart")
    assert resp.status_code == 200
    assert resp.get_json()["data"]["cartSummary"]["itemCount"] == 1
    assert customer.get("/api/v1/wishlist/check/2").get_json()["data"]["inWishlist"] is False

    out_of_stock = customer.post("/api/v1/wishlist/7/move-to-cart")
    assert out_of_stock.status_code == 400
    assert customer.get("/api/v1/wishlist/check/7").get_json()["data"]["inWishlist"] is True


def test_clear_wishlist(customer):
    customer.post("/api/v1/wishlist", json={"productId": 1})
    customer.post("/api/v1/wishlist", json={"productId": 2})
    customer.delete("/api/v1/wishlist")
    assert customer.get("/api/v1/wishlist").get_json()["data"]["wishlist"]["items"] == []


def test_wishlist_requires_login(client):
    assert client.get("/api/v1/wishlist").status_code == 401


def test_notifications(customer):
    data = customer.get("/api/v1/notifications").get_json()["data"]
    assert data["unreadCount"] == 1
    welcome = data["notifications"][0]
    assert welcome["title"] == "Welcome to RG Publication"

    assert customer.put(f"/api/v1/notifications/{welcome['id']}/read").status_code == 200
    unread = customer.get("/api/v1/notifications?unreadOnly=true").get_json()["data"]
    assert unread["notifications"] == []
    assert unread["unreadCount"] == 0

    assert customer.delete(f"/api/v1/notifications/{welcome['id']}").status_code == 200
    assert customer.delete(f"/api/v1/notifications/{welcome['id']}").status_code == 404


def test_mark_all_notifications_read(customer, place_order):
    place_order(customer)
    resp = customer.put("/api/v1/notifications/read-all")
    assert resp.get_json()["data"]["updated"] == 2
    assert customer.get("/api/v1/notifications").get_json()["data"]["unreadCount"] == 0


def review(product_id=3, rating=4, **extra):
    payload = {"productId": product_id, "rating": rating, "title": "Useful", "comment": "Clear chapters."}
    payload.update(extra)
    return payload


def test_review_updates_product_rating(customer, make_customer, client):
    resp = customer.post("/api/v1/reviews", json=review(rating=5, pros=["Diagrams"]))
    created = resp.get_json()["data"]["review"]
    assert resp.status_code == 201
    assert created["status"] == "approved"
    assert created["verified"] is False
    assert created["pros"] == ["Diagrams"]

    make_customer(email="b@example.com").post("/api/v1/reviews", json=review(rating=2))

    product = client.get("/api/v1/products/3").get_json()["data"]["product"]
    assert product["rating"]["average"] == 3.5
    assert product["rating"]["count"] == 2
    assert product["rating"]["distribution"]["5"] == 1

    listing = client.get("/api/v1/reviews/product/3?sortBy=highest").get_json()["data"]
    assert [r["rating"] for r in listing["reviews"]] == [5, 2]
    assert listing["summary"]["count"] == 2


def test_one_review_per_product(customer):
    customer.post("/api/v1/reviews", json=review())
    resp = customer.post("/api/v1/reviews", json=review())
    assert resp.get_json()["error"] == "REVIEW_EXISTS"


def test_review_is_verified_after_delivery(customer, admin, place_order):
    order = place_order(customer, items=((3, 1),))
    for status in ("confirmed", "processing", "shipped", "delivered"):
        admin.put(f"/api/v1/admin/orders/{order['id']}/status", json={"status": status})

    created = customer.post("/api/v1/reviews", json=review()).get_json()["data"]["review"]
    assert created["verified"] is True


def test_edit_and_delete_review(customer, make_customer, client):
    created = customer.post("/api/v1/reviews", json=review(rating=1)).get_json()["data"]["review"]
    other = make_customer(email="other@example.com")

    assert other.put(f"/api/v1/reviews/{created['id']}", json={"rating": 5}).status_code == 403
    resp = customer.put(f"/api/v1/reviews/{created['id']}", json={"rating": 4})
    assert resp.get_json()["data"]["review"]["rating"] == 4
    assert client.get("/api/v1/products/3").get_json()["data"]["product"]["rating"]["average"] == 4

    assert other.delete(f"/api/v1/reviews/{created['id']}").status_code == 403
    assert customer.delete(f"/api/v1/reviews/{created['id']}").status_code == 200
    assert client.get("/api/v1/products/3").get_json()["data"]["product"]["rating"]["count"] == 0


def test_helpful_votes(customer, make_customer):
    created = customer.post("/api/v1/reviews", json=review()).get_json()["data"]["review"]
    voter = make_customer(email="voter@example.com")

    resp = voter.post(f"/api/v1/reviews/{created['id']}/helpful")
    assert resp.get_json()["data"]["helpfulCount"] == 1
    assert voter.post(f"/api/v1/reviews/{created['id']}/helpful").status_code == 400
    assert voter.delete(f"/api/v1/reviews/{created['id']}/helpful").get_json()["data"]["helpfulCount"] == 0


def test_review_hidden_after_five_reports(customer, make_customer, client):
    created = customer.post("/api/v1/reviews", json=review()).get_json()["data"]["review"]

    for n in range(5):
        reporter = make_customer(email=f"reporter{n}@example.com")
        resp = reporter.post(f"/api/v1/reviews/{created['id']}/report")
        assert resp.status_code == 200

    assert resp.get_json()["data"]["status"] == "hidden"
    assert client.get("/api/v1/reviews/product/3").get_json()["data"]["reviews"] == []
    assert client.get("/api/v1/products/3").get_json()["data"]["product"]["rating"]["count"] == 0


def test_contact_form(client):
    resp = client.post("/api/v1/contact/submit", json={
        "name": "Meera", "email": "Meera@Example.com", "subject": "Damaged book",
        "message": "The cover was torn.", "type": "complaint",
    })
    assert resp.status_code == 201
    assert resp.get_json()["data"]["status"] == "pending"

    bad = client.post("/api/v1/contact/submit", json={"name": "", "email": "x", "subject": "", "message": ""})
    assert bad.status_code == 422
    assert len(bad.get_json()["details"]) == 4


def test_avatar_upload(customer, monkeypatch):
    uploaded = {}

    def fake_upload(file_storage, key):
        uploaded["key"] = key
        return f"https://bucket.example/{key}"

    monkeypatch.setattr("account.upload_image", fake_upload)
    resp = customer.post(
        "/api/v1/upload/avatar",
        data={"avatar": (io.BytesIO(b"\x89PNG"), "me.png")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 200
    assert uploaded["key"].startswith("avatars/")
    assert customer.get("/api/v1/auth/me").get_json()["data"]["user"]["avatar"].endswith("me.png")


def test_avatar_upload_rejects_other_files(customer):
    resp = customer.post(
        "/api/v1/upload/avatar",
        data={"avatar": (io.BytesIO(b"text"), "notes.txt")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 400
    assert resp.get_json()["error"] == "INVALID_FILE_TYPE"


def test_avatar_upload_failure_is_reported(customer):
    resp = customer.post(
        "/api/v1/upload/avatar",
        data={"avatar": (io.BytesIO(b"\x89PNG"), "me.png")},
        content_type="multipart/form-data",
    )
    assert resp.status_code == 502
