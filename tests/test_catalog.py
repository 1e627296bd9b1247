def test_list_products_with_filters(client):
    data = client.get("/api/v1/products?subject=Mathematics&class=5").get_json()["data"]
    titles = {p["title"] for p in data["products"]}
    assert titles == {"Complete Mathematics for Class 5", "Math Practice Book Class 5"}
    assert data["pagination"]["totalItems"] == 2
    assert "Science" in data["filters"]["subjects"]
    assert data["filters"]["priceRange"] == {"min": 150, "max": 550}


def test_sort_and_paginate(client):
    data = client.get("/api/v1/products?sortBy=price&sortOrder=asc&limit=3&page=2").get_json()["data"]
    assert [p["price"] for p in data["products"]] == [250, 275, 320]
    assert data["pagination"] == {
        "currentPage": 2, "totalPages": 3, "totalItems": 7, "itemsPerPage": 3,
        "hasNextPage": True, "hasPreviousPage": True,
    }


def test_price_and_stock_filters(client):
    data = client.get("/api/v1/products?priceMin=200&priceMax=300&inStock=true").get_json()["data"]
    assert sorted(p["price"] for p in data["products"]) == [210, 250]


def test_invalid_query_is_rejected(client):
    resp = client.get("/api/v1/products?class=4&subject=Art&limit=500")
    fields = {d["field"] for d in resp.get_json()["details"]}
    assert resp.status_code == 422
    assert {"class", "subject"} <= fields


def test_featured_groups(client):
    featured = client.get("/api/v1/products/featured").get_json()["data"]["featured"]
    assert len(featured["bestseller"]) == 2
    assert {p["featured"] for p in featured["trending"]} == {"trending"}


def test_product_detail_and_related(client):
    data = client.get("/api/v1/products/1").get_json()["data"]
    assert data["product"]["slug"] == "complete-mathematics-for-class-5"
    assert data["product"]["discount"] == 16.67
    assert data["product"]["rating"]["distribution"] == {"5": 0, "4": 0, "3": 0, "2": 0, "1": 0}
    assert data["relatedProducts"][0]["id"] == 2
    assert all(p["subject"] == "Mathematics" for p in data["relatedProducts"])

    missing = client.get("/api/v1/products/999")
    assert missing.status_code == 404
    assert missing.get_json()["error"] == "PRODUCT_NOT_FOUND"


def test_search(client):
    data = client.get("/api/v1/search/products?q=gupta").get_json()["data"]
    assert data["query"] == "gupta"
    assert data["pagination"]["totalItems"] == 3

    ranked = client.get("/api/v1/search/products?q=science").get_json()["data"]["products"]
    assert "science" in ranked[0]["title"].lower()

    missing = client.get("/api/v1/search/products")
    assert missing.status_code == 400
    assert missing.get_json()["error"] == "MISSING_QUERY"


def test_suggestions(client):
    suggestions = client.get("/api/v1/search/suggestions?q=math").get_json()["data"]["suggestions"]
    kinds = {s["type"] for s in suggestions}
    assert "product" in kinds and "tag" in kinds
    assert client.get("/api/v1/search/suggestions?q=m").get_json()["data"]["suggestions"] == []
