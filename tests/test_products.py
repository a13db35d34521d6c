"""Product catalog tests."""

import pytest

from catalog import discount_percentage, slugify
from conftest import create_product, product_payload, register


@pytest.mark.parametrize(
    "text, expected",
    [
        ("Ultimate UI Kit", "ultimate-ui-kit"),
        ("  Hello,   World!! ", "hello-world"),
        ("a -- b", "a-b"),
    ],
)
def test_slugify(text, expected):
    assert slugify(text) == expected


def test_discount_percentage():
    assert discount_percentage(30, 40) == 25
    assert discount_percentage(40, 30) == 0
    assert discount_percentage(10, None) == 0


def test_create_product_starts_as_draft(client, seller):
    product = create_product(client, seller, publish=False)
    assert product["status"] == "draft"
    assert product["slug"] == "ultimate-ui-kit"
    assert product["seller_id"] == seller.id
    assert product["tags"] == ["ui", "figma"]
    assert product["rating"] == 0
    assert product["review_count"] == 0
    assert "rating_version" not in product


def test_duplicate_titles_get_suffixed_slugs(client, seller):
    slugs = [create_product(client, seller, publish=False)["slug"] for _ in range(3)]
    assert slugs == ["ultimate-ui-kit", "ultimate-ui-kit-1", "ultimate-ui-kit-2"]


def test_buyers_cannot_create_products(client, buyer):
    res = client.post("/api/products", json=product_payload(), headers=buyer.headers)
    assert res.status_code == 403
    assert res.json()["error"] == "Seller or Admin access required"


def test_create_product_requires_token(client):
    assert client.post("/api/products", json=product_payload()).status_code == 401


def test_create_product_validation(client, seller):
    res = client.post("/api/products", json=product_payload(price=-1), headers=seller.headers)
    assert res.status_code == 400
    assert res.json()["details"][0]["field"] == "price"


def test_public_listing_only_shows_published(client, seller):
    create_product(client, seller, publish=False, title="Hidden Draft Pack")
    published = create_product(client, seller, title="Visible Icon Pack")

    res = client.get("/api/products")
    assert res.status_code == 200
    body = res.json()
    assert [p["id"] for p in body["products"]] == [published["id"]]
    assert body["products"][0]["seller"]["name"] == "Sam Seller"
    assert body["pagination"]["total"] == 1


def test_listing_filters_and_search(client, seller):
    create_product(client, seller, title="Cheap Font", category="fonts", price=5)
    create_product(client, seller, title="Pricey Course", category="courses", price=200)

    res = client.get("/api/products", params={"category": "fonts"})
    assert [p["title"] for p in res.json()["products"]] == ["Cheap Font"]

    res = client.get("/api/products", params={"min_price": 100})
    assert [p["title"] for p in res.json()["products"]] == ["Pricey Course"]

    res = client.get("/api/products", params={"search": "pricey"})
    assert [p["title"] for p in res.json()["products"]] == ["Pricey Course"]

    res = client.get("/api/products", params={"sort_by": "price", "sort_order": "asc"})
    assert [p["title"] for p in res.json()["products"]] == ["Cheap Font", "Pricey Course"]


def test_get_product_by_id_or_slug(client, product):
    by_id = client.get(f"/api/products/{product['id']}")
    by_slug = client.get(f"/api/products/{product['slug']}")
    assert by_id.status_code == by_slug.status_code == 200
    assert by_id.json()["product"]["id"] == by_slug.json()["product"]["id"]


def test_draft_is_hidden_from_everyone_but_owner(client, seller, buyer):
    draft = create_product(client, seller, publish=False)
    assert client.get(f"/api/products/{draft['id']}").status_code == 404
    assert client.get(f"/api/products/{draft['id']}", headers=buyer.headers).status_code == 404
    assert client.get(f"/api/products/{draft['id']}", headers=seller.headers).status_code == 200


def test_my_products(client, seller):
    create_product(client, seller, publish=False)
    other = register(client, "other@example.com", role="seller", name="Other Seller")
    create_product(client, other, title="Someone Else's Pack")

    res = client.get("/api/products/mine", headers=seller.headers)
    assert [p["title"] for p in res.json()["products"]] == ["Ultimate UI Kit"]


def test_only_owner_can_update(client, product):
    intruder = register(client, "intruder@example.com", role="seller", name="Intruder")
    res = client.patch(f"/api/products/{product['id']}", json={"price": 1}, headers=intruder.headers)
    assert res.status_code == 403


def test_update_keeps_slug_and_computes_discount(client, seller, product):
    res = client.patch(
        f"/api/products/{product['id']}",
        json={"title": "Renamed Kit", "price": 30, "original_price": 40},
        headers=seller.headers,
    )
    assert res.status_code == 200
    updated = res.json()["product"]
    assert updated["title"] == "Renamed Kit"
    assert updated["slug"] == product["slug"]
    assert updated["discount_percentage"] == 25


def test_only_admin_can_feature(client, seller, admin, product):
    res = client.patch(f"/api/products/{product['id']}", json={"featured": True}, headers=seller.headers)
    assert res.status_code == 403

    res = client.patch(f"/api/products/{product['id']}", json={"featured": True}, headers=admin.headers)
    assert res.status_code == 200
    assert res.json()["product"]["featured"] is True


def test_delete_product_without_sales(client, db, seller, product):
    res = client.delete(f"/api/products/{product['id']}", headers=seller.headers)
    assert res.status_code == 200
    assert db["product"].count_documents({}) == 0


def test_delete_product_by_any_case_id_removes_its_reviews(client, db, buyer, seller, product):
    res = client.post(f"/api/products/{product['id']}/reviews", json={"rating": 4}, headers=buyer.headers)
    assert res.status_code == 201

    res = client.delete(f"/api/products/{product['id'].upper()}", headers=seller.headers)
    assert res.status_code == 200
    assert db["product"].count_documents({}) == 0
    assert db["review"].count_documents({}) == 0


def test_delete_product_with_sales_archives(client, db, seller, product):
    db["product"].update_one({"slug": product["slug"]}, {"$set": {"total_sales": 2}})
    res = client.delete(f"/api/products/{product['id']}", headers=seller.headers)
    assert res.status_code == 200
    assert res.json()["product"]["status"] == "archived"
    assert db["product"].count_documents({}) == 1
