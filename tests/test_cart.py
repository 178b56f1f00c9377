from bson import ObjectId

from conftest import auth


def add(client, product, quantity=1):
    return client.post("/api/cart/items", json={"product_id": str(product["_id"]), "quantity": quantity}, headers=auth("buyer-1"))


def test_cart_requires_login(client):
    assert client.get("/api/cart").status_code == 401


def test_empty_cart(client):
    body = client.get("/api/cart", headers=auth("buyer-1")).json()

    assert body["items"] == []
    assert body["total_price"] == 0


def test_add_merges_same_product(client, make_product):
    product = make_product(price=25, stock=5)

    add(client, product, 2)
    body = add(client, product, 1).json()

    assert len(body["items"]) == 1
    assert body["items"][0]["quantity"] == 3
    assert body["total_items"] == 3
    assert body["total_price"] == 75
    assert "checkout_lock" not in body


def test_add_beyond_stock(client, make_product):
    product = make_product(stock=3)
    add(client, product, 2)

    resp = add(client, product, 2)

    assert resp.status_code == 400
    assert resp.json()["detail"] == "Cannot add 2 more. Only 1 more available"


def test_add_unavailable_product(client, make_product):
    assert add(client, make_product(status="pending")).status_code == 404
    assert add(client, make_product(archived=True)).status_code == 404
    assert add(client, {"_id": ObjectId()}).status_code == 404


def test_update_refreshes_price(client, db, make_product):
    product = make_product(price=10, stock=9)
    add(client, product)
    db["product"].update_one({"_id": product["_id"]}, {"$set": {"price": 12}})

    body = client.put(f"/api/cart/items/{product['_id']}", json={"quantity": 4}, headers=auth("buyer-1")).json()

    assert body["items"][0]["quantity"] == 4
    assert body["items"][0]["price"] == 12
    assert body["total_price"] == 48


def test_update_to_zero_removes_line(client, make_product):
    product = make_product()
    add(client, product)

    body = client.put(f"/api/cart/items/{product['_id']}", json={"quantity": 0}, headers=auth("buyer-1")).json()

    assert body["items"] == []


def test_update_drops_line_for_withdrawn_product(client, db, make_product):
    archived, unapproved = make_product(), make_product()
    add(client, archived)
    add(client, unapproved)
    db["product"].update_one({"_id": archived["_id"]}, {"$set": {"archived": True}})
    db["product"].update_one({"_id": unapproved["_id"]}, {"$set": {"status": "pending"}})

    for product in (archived, unapproved):
        resp = client.put(f"/api/cart/items/{product['_id']}", json={"quantity": 2}, headers=auth("buyer-1"))
        assert resp.status_code == 404
        assert resp.json()["detail"] == "Product no longer available"

    assert client.get("/api/cart", headers=auth("buyer-1")).json()["items"] == []


def test_update_over_stock(client, make_product):
    product = make_product(stock=2)
    add(client, product)

    resp = client.put(f"/api/cart/items/{product['_id']}", json={"quantity": 3}, headers=auth("buyer-1"))

    assert resp.status_code == 400


def test_remove_and_clear(client, make_product):
    first, second = make_product(), make_product()
    add(client, first)
    add(client, second)

    body = client.delete(f"/api/cart/items/{first['_id']}", headers=auth("buyer-1")).json()
    assert [it["product_id"] for it in body["items"]] == [str(second["_id"])]

    assert client.delete(f"/api/cart/items/{first['_id']}", headers=auth("buyer-1")).status_code == 404
    assert client.delete("/api/cart", headers=auth("buyer-1")).json()["items"] == []


def test_validate_reports_changes(client, db, make_product):
    gone = make_product(name="Gone")
    short = make_product(name="Short", stock=5)
    pricier = make_product(name="Pricier", price=10)
    for product, qty in ((gone, 1), (short, 4), (pricier, 1)):
        add(client, product, qty)
    db["product"].update_one({"_id": gone["_id"]}, {"$set": {"archived": True}})
    db["product"].update_one({"_id": short["_id"]}, {"$set": {"stock": 2}})
    db["product"].update_one({"_id": pricier["_id"]}, {"$set": {"price": 11}})

    body = client.post("/api/cart/validate", headers=auth("buyer-1")).json()

    validation = body["validation"]
    assert validation["valid"] is False
    assert validation["removed_items"] == ["Gone"]
    assert validation["updated_items"] == ["Short: quantity reduced from 4 to 2"]
    assert validation["price_changes"] == [{"product": "Pricier", "old_price": 10, "new_price": 11}]
    assert body["cart"]["total_items"] == 3
    assert body["cart"]["total_price"] == 100 * 2 + 11


def test_validate_empty_cart(client):
    assert client.post("/api/cart/validate", headers=auth("buyer-1")).status_code == 400
