from bson import ObjectId

from conftest import auth

HOME = {
    "full_name": "Asha Rao",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postal_code": "560001",
}
OFFICE = {**HOME, "address_line1": "4th Floor, Tech Park", "address_type": "work"}


def save(client, body, user_id="buyer-1"):
    resp = client.post("/api/addresses", json=body, headers=auth(user_id))
    assert resp.status_code == 201, resp.text
    return resp.json()


def listed(client, user_id="buyer-1"):
    return client.get("/api/addresses", headers=auth(user_id)).json()["items"]


def test_first_address_becomes_default(client):
    first = save(client, HOME)
    second = save(client, OFFICE)

    assert first["is_default"] is True
    assert second["is_default"] is False
    assert [a["id"] for a in listed(client)] == [first["id"], second["id"]]


def test_new_default_replaces_old_one(client):
    first = save(client, HOME)
    second = save(client, {**OFFICE, "is_default": True})

    addresses = listed(client)
    assert [a["id"] for a in addresses] == [second["id"], first["id"]]
    assert [a["is_default"] for a in addresses] == [True, False]


def test_set_default(client):
    first = save(client, HOME)
    second = save(client, OFFICE)

    body = client.put(f"/api/addresses/{second['id']}/default", headers=auth("buyer-1")).json()

    assert body["is_default"] is True
    assert client.get(f"/api/addresses/{first['id']}", headers=auth("buyer-1")).json()["is_default"] is False


def test_update_fields(client):
    address = save(client, HOME)

    body = client.put(f"/api/addresses/{address['id']}", json={"city": "Mysuru", "landmark": "Near the temple"}, headers=auth("buyer-1")).json()

    assert body["city"] == "Mysuru"
    assert body["landmark"] == "Near the temple"
    assert client.put(f"/api/addresses/{address['id']}", json={}, headers=auth("buyer-1")).status_code == 400


def test_default_cannot_be_unset_directly(client):
    address = save(client, HOME)

    body = client.put(f"/api/addresses/{address['id']}", json={"is_default": False}, headers=auth("buyer-1")).json()

    assert body["is_default"] is True


def test_deleting_default_promotes_latest(client):
    default = save(client, HOME)
    older = save(client, OFFICE)
    newer = save(client, {**OFFICE, "address_line1": "Flat 3, Lake View"})

    assert client.delete(f"/api/addresses/{default['id']}", headers=auth("buyer-1")).json() == {"ok": True}

    addresses = listed(client)
    assert [a["id"] for a in addresses] == [newer["id"], older["id"]]
    assert addresses[0]["is_default"] is True


def test_invalid_phone_and_postal_code(client):
    assert client.post("/api/addresses", json={**HOME, "phone": "12345"}, headers=auth("buyer-1")).status_code == 422
    assert client.post("/api/addresses", json={**HOME, "postal_code": "5600"}, headers=auth("buyer-1")).status_code == 422


def test_addresses_are_private(client):
    address = save(client, HOME)
    url = f"/api/addresses/{address['id']}"

    assert client.get(url, headers=auth("buyer-2")).status_code == 404
    assert client.delete(url, headers=auth("buyer-2")).status_code == 404
    assert client.put(f"{url}/default", headers=auth("buyer-2")).status_code == 404
    assert listed(client, "buyer-2") == []
    assert client.get("/api/addresses").status_code == 401


def test_unknown_address(client):
    assert client.get(f"/api/addresses/{ObjectId()}", headers=auth("buyer-1")).status_code == 404
    assert client.get("/api/addresses/not-an-id", headers=auth("buyer-1")).status_code == 404


def test_saved_address_is_accepted_at_checkout(client, make_product, fill_cart):
    address = save(client, HOME)
    fill_cart("buyer-1", (make_product(), 1))
    shipping = {k: address[k] for k in ("full_name", "phone", "address_line1", "city", "state", "postal_code")}

    resp = client.post("/api/orders", json={"shipping_address": shipping}, headers=auth("buyer-1"))

    assert resp.status_code == 201
    assert resp.json()["shipping_address"]["address_line1"] == "12 MG Road"
