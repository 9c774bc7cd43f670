from decimal import Decimal

import pytest
from bson import ObjectId

from catalog import money, to_cents
from conftest import admin_token, bearer, make_product, verified_user
from errors import NotFoundError, ValidationError
from schemas import ProductIn


@pytest.fixture
def catalog(store):
    make_product(store, "Gold Ring", price_cents=50000, stock=2, category="Joyas", gender="women", rating=4.9)
    make_product(store, "Leather Belt", price_cents=4500, stock=10, category="Moda", gender="men", rating=4.1)
    make_product(store, "Linen Dress", price_cents=12000, stock=4, category="Moda", gender="women", rating=4.5,
                 description="Light summer dress")
    make_product(store, "Oak Chair", price_cents=30000, stock=1, category="Muebles", rating=3.8)
    return store


def names(result):
    return [p["name"] for p in result["products"]]


def test_money_helpers():
    assert to_cents(Decimal("10.00")) == 1000
    assert to_cents(Decimal("0.015")) == 2
    assert money(2000) == "20.00"
    assert money(5) == "0.05"


def test_default_sort_is_newest(services, catalog):
    result = services.catalog.list_products()
    assert names(result) == ["Oak Chair", "Linen Dress", "Leather Belt", "Gold Ring"]
    assert result["products"][0]["price"] == "300.00"


@pytest.mark.parametrize("sort,expected", [
    ("price_asc", ["Leather Belt", "Linen Dress", "Oak Chair", "Gold Ring"]),
    ("price_desc", ["Gold Ring", "Oak Chair", "Linen Dress", "Leather Belt"]),
    ("popular", ["Gold Ring", "Linen Dress", "Leather Belt", "Oak Chair"]),
    ("bogus", ["Oak Chair", "Linen Dress", "Leather Belt", "Gold Ring"]),
])
def test_sorting(services, catalog, sort, expected):
    assert names(services.catalog.list_products(sort=sort)) == expected


def test_filters_are_conjunctive(services, catalog):
    result = services.catalog.list_products(category="Moda", gender="women")
    assert names(result) == ["Linen Dress"]

    result = services.catalog.list_products(min_price=Decimal("45.00"), max_price=Decimal("300"), sort="price_asc")
    assert names(result) == ["Leather Belt", "Linen Dress", "Oak Chair"]


def test_pagination_counts_filtered_set(services, catalog):
    result = services.catalog.list_products(category="Moda", page=1, limit=1)
    assert len(result["products"]) == 1
    assert result["pagination"] == {"page": 1, "limit": 1, "total": 2, "totalPages": 2}

    page2 = services.catalog.list_products(category="Moda", page=2, limit=1)
    assert names(page2) != names(result)

    with pytest.raises(ValidationError):
        services.catalog.list_products(page=0)


def test_search(services, catalog):
    assert [p["name"] for p in services.catalog.search("DRESS")] == ["Linen Dress"]
    assert [p["name"] for p in services.catalog.search("summer")] == ["Linen Dress"]
    assert {p["name"] for p in services.catalog.search("moda")} == {"Leather Belt", "Linen Dress"}
    assert services.catalog.search(".*") == []
    assert services.catalog.search("   ") == []


def test_categories(services, catalog):
    assert services.catalog.categories() == [
        {"name": "Joyas", "count": 1},
        {"name": "Moda", "count": 2},
        {"name": "Muebles", "count": 1},
    ]


def test_get_and_latest(services, catalog):
    latest = services.catalog.latest_product()
    assert latest["name"] == "Oak Chair"
    assert services.catalog.get_product(latest["id"])["stock"] == 1
    with pytest.raises(NotFoundError):
        services.catalog.get_product(str(ObjectId()))
    with pytest.raises(ValidationError):
        services.catalog.get_product("not-an-id")


def test_latest_on_empty_catalog(services):
    with pytest.raises(NotFoundError):
        services.catalog.latest_product()


def test_create_and_update(services):
    product = services.catalog.create_product(ProductIn(
        name="Silk Scarf",
        price=Decimal("89.90"),
        category="Moda",
        images=[{"url": "/uploads/products/scarf.jpg", "alt": "Silk Scarf"}],
        specs={"material": "silk"},
        stock=3,
    ))
    assert product["price"] == "89.90"
    assert product["images"][0]["url"] == "/uploads/products/scarf.jpg"
    assert product["specs"] == {"material": "silk"}

    product = services.catalog.attach_model(product["id"], "/uploads/products/scarf.glb")
    assert product["model_3d"] == "/uploads/products/scarf.glb"
    assert services.catalog.update_stock(product["id"], 12)["stock"] == 12
    with pytest.raises(NotFoundError):
        services.catalog.update_stock(str(ObjectId()), 1)


# ---------- HTTP ----------


def test_list_over_http(client, catalog):
    r = client.get("/api/products", params={"category": "Moda", "minPrice": "50", "limit": 5})
    assert r.status_code == 200
    assert names(r.json()) == ["Linen Dress"]
    assert r.json()["pagination"]["total"] == 1

    assert client.get("/api/products", params={"limit": 0}).status_code == 400
    assert client.get("/api/products/search/ring").json()["products"][0]["name"] == "Gold Ring"
    assert client.get("/api/products/latest").json()["product"]["name"] == "Oak Chair"
    assert len(client.get("/api/products/categories").json()["categories"]) == 3


def test_create_requires_admin(client, services):
    _, token = verified_user(services)
    body = {"name": "Lamp", "price": "25.50", "stock": 2, "category": "Muebles"}

    assert client.post("/api/products", json=body).status_code == 401
    assert client.post("/api/products", json=body, headers=bearer(token)).status_code == 403

    r = client.post("/api/products", json=body, headers=bearer(admin_token(services)))
    assert r.status_code == 201
    assert r.json()["product"]["price"] == "25.50"

    bad = {**body, "price": "-1"}
    assert client.post("/api/products", json=bad, headers=bearer(admin_token(services))).status_code == 400
