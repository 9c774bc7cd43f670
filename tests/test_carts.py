import pytest
from bson import ObjectId

from conftest import bearer, make_product, verified_user
from errors import NotFoundError, ValidationError


def test_adding_same_product_increments(services, store):
    user_id, _ = verified_user(services)
    pid = make_product(store, price_cents=1250, stock=1)

    first = services.carts.add_item(user_id, pid, 2)
    second = services.carts.add_item(user_id, pid, 3)

    assert first["cartItemId"] == second["cartItemId"]
    assert second["quantity"] == 5
    assert store["cart"].count_documents({"user_id": ObjectId(user_id)}) == 1

    cart = services.carts.get_cart(user_id)
    # over-committing is allowed until checkout
    assert cart["items"][0]["quantity"] == 5
    assert cart["items"][0]["stock"] == 1
    assert cart["items"][0]["item_total"] == "62.50"
    assert cart["total"] == "62.50"
    assert cart["count"] == 1


def test_add_unknown_product(services):
    user_id, _ = verified_user(services)
    with pytest.raises(NotFoundError):
        services.carts.add_item(user_id, str(ObjectId()), 1)
    with pytest.raises(ValidationError):
        services.carts.add_item(user_id, str(ObjectId()), 0)


def test_cart_total_across_lines(services, store):
    user_id, _ = verified_user(services)
    a = make_product(store, "A", price_cents=1000)
    b = make_product(store, "B", price_cents=333)
    services.carts.add_item(user_id, a, 2)
    services.carts.add_item(user_id, b, 3)

    cart = services.carts.get_cart(user_id)
    assert [i["name"] for i in cart["items"]] == ["A", "B"]
    assert cart["total"] == "29.99"


def test_update_and_remove_are_owner_scoped(services, store):
    owner, _ = verified_user(services, "+58-4120000001")
    other, _ = verified_user(services, "+58-4120000002")
    pid = make_product(store)
    line_id = services.carts.add_item(owner, pid, 1)["cartItemId"]

    with pytest.raises(NotFoundError):
        services.carts.update_quantity(other, line_id, 4)
    with pytest.raises(NotFoundError):
        services.carts.remove_item(other, line_id)

    services.carts.update_quantity(owner, line_id, 4)
    assert services.carts.get_cart(owner)["items"][0]["quantity"] == 4
    with pytest.raises(ValidationError):
        services.carts.update_quantity(owner, line_id, 0)

    services.carts.remove_item(owner, line_id)
    assert services.carts.get_cart(owner)["count"] == 0
    with pytest.raises(NotFoundError):
        services.carts.remove_item(owner, line_id)


def test_clear_is_idempotent(services, store):
    user_id, _ = verified_user(services)
    services.carts.add_item(user_id, make_product(store, "A"), 1)
    services.carts.add_item(user_id, make_product(store, "B"), 1)

    assert services.carts.clear_cart(user_id) == 2
    assert services.carts.clear_cart(user_id) == 0
    assert services.carts.get_cart(user_id)["items"] == []


def test_cart_over_http(client, services, store):
    _, token = verified_user(services)
    pid = make_product(store, price_cents=999)

    r = client.post("/api/cart/add", json={"product_id": pid}, headers=bearer(token))
    assert r.status_code == 200
    item_id = r.json()["cartItemId"]

    r = client.put(f"/api/cart/update/{item_id}", json={"quantity": 3}, headers=bearer(token))
    assert r.status_code == 200
    assert client.get("/api/cart", headers=bearer(token)).json()["total"] == "29.97"

    assert client.put(f"/api/cart/update/{item_id}", json={"quantity": 0}, headers=bearer(token)).status_code == 400
    assert client.delete(f"/api/cart/remove/{ObjectId()}", headers=bearer(token)).status_code == 404
    assert client.delete(f"/api/cart/remove/{item_id}", headers=bearer(token)).status_code == 200

    for _ in range(2):
        r = client.delete("/api/cart/clear", headers=bearer(token))
        assert r.status_code == 200
    assert r.json()["removed"] == 0
