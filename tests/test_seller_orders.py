import pytest
from bson import ObjectId

from conftest import auth


@pytest.fixture
def shared_order(make_seller, make_product, checkout):
    """One order holding lines from seller A (2 lines) and seller B (1 line)."""
    for seller in ("seller-a", "seller-b", "seller-c"):
        make_seller(seller)
    a1 = make_product(seller_id="seller-a", price=100)
    a2 = make_product(seller_id="seller-a", price=30)
    b1 = make_product(seller_id="seller-b", price=55)
    return checkout("buyer-1", (a1, 2), (a2, 1), (b1, 3))


def test_each_seller_sees_only_their_items(client, shared_order):
    view_a = client.get(f"/api/seller-orders/{shared_order['id']}", headers=auth("seller-a")).json()
    view_b = client.get(f"/api/seller-orders/{shared_order['id']}", headers=auth("seller-b")).json()

    assert {it["seller_id"] for it in view_a["items"]} == {"seller-a"}
    assert len(view_a["items"]) == 2
    assert view_a["seller_total"] == 230
    assert {it["seller_id"] for it in view_b["items"]} == {"seller-b"}
    assert view_b["seller_total"] == 165
    assert view_a["order_number"] == shared_order["order_number"]


def test_projection_hides_order_level_amounts(client, shared_order):
    view = client.get(f"/api/seller-orders/{shared_order['id']}", headers=auth("seller-a")).json()

    for key in ("total_amount", "items_total", "shipping_cost", "tax_amount"):
        assert key not in view
    assert set(view["payment_info"]) == {"status", "paid_at"}


def test_unrelated_seller_gets_not_found(client, shared_order):
    resp = client.get(f"/api/seller-orders/{shared_order['id']}", headers=auth("seller-c"))

    assert resp.status_code == 404
    assert resp.json()["detail"] == "Order not found or does not contain your products"


def test_invalid_or_unknown_id_is_not_found(client, shared_order):
    assert client.get("/api/seller-orders/not-an-id", headers=auth("seller-a")).status_code == 404
    assert client.get(f"/api/seller-orders/{ObjectId()}", headers=auth("seller-a")).status_code == 404


def test_list_projects_every_order(client, shared_order, make_product, checkout):
    checkout("buyer-2", (make_product(seller_id="seller-b", price=10), 1))

    data_a = client.get("/api/seller-orders", headers=auth("seller-a")).json()
    data_b = client.get("/api/seller-orders", headers=auth("seller-b")).json()

    assert data_a["pagination"]["total"] == 1
    assert data_b["pagination"]["total"] == 2
    assert sorted(o["seller_total"] for o in data_b["orders"]) == [10, 165]
    for order in data_b["orders"]:
        assert all(it["seller_id"] == "seller-b" for it in order["items"])
        assert "status_history" not in order


def test_list_limit_is_capped(client, shared_order):
    data = client.get("/api/seller-orders?limit=500", headers=auth("seller-a")).json()

    assert data["pagination"]["limit"] == 50


def test_list_status_filter(client, shared_order, set_status):
    set_status(shared_order, "paid")

    assert client.get("/api/seller-orders?status=paid", headers=auth("seller-a")).json()["pagination"]["total"] == 1
    assert client.get("/api/seller-orders?status=created", headers=auth("seller-a")).json()["pagination"]["total"] == 0


def test_seller_advances_paid_order(client, db, shared_order, set_status):
    set_status(shared_order, "paid")

    resp = client.put(f"/api/seller-orders/{shared_order['id']}/status", json={"status": "processing"}, headers=auth("seller-a"))

    assert resp.status_code == 200
    assert resp.json()["status"] == "processing"
    assert resp.json()["seller_total"] == 230
    assert resp.json()["status_history"][-1]["note"] == "Status updated to processing by seller"

    resp = client.put(f"/api/seller-orders/{shared_order['id']}/status", json={"status": "shipped"}, headers=auth("seller-b"))

    assert resp.status_code == 200
    stored = db["order"].find_one({"_id": ObjectId(shared_order["id"])})
    assert [h["status"] for h in stored["status_history"]] == ["created", "processing", "shipped"]


def test_seller_cannot_skip_processing(client, db, shared_order, set_status):
    set_status(shared_order, "paid")

    resp = client.put(f"/api/seller-orders/{shared_order['id']}/status", json={"status": "shipped"}, headers=auth("seller-a"))

    assert resp.status_code == 400
    assert resp.json()["code"] == "INVALID_TRANSITION"
    assert db["order"].find_one({"_id": ObjectId(shared_order["id"])})["status"] == "paid"


def test_seller_cannot_process_unpaid_order(client, shared_order):
    resp = client.put(f"/api/seller-orders/{shared_order['id']}/status", json={"status": "processing"}, headers=auth("seller-a"))

    assert resp.status_code == 400


def test_seller_status_outside_whitelist(client, shared_order, set_status):
    set_status(shared_order, "shipped")

    resp = client.put(f"/api/seller-orders/{shared_order['id']}/status", json={"status": "delivered"}, headers=auth("seller-a"))

    assert resp.status_code == 400
    assert resp.json()["code"] == "VALIDATION_ERROR"


def test_foreign_order_is_not_found_before_status_check(client, shared_order):
    resp = client.put(f"/api/seller-orders/{shared_order['id']}/status", json={"status": "bogus"}, headers=auth("seller-c"))

    assert resp.status_code == 404


@pytest.mark.parametrize("status", ["pending", "rejected", "suspended"])
def test_unapproved_seller_is_forbidden(client, make_seller, status):
    make_seller("seller-x", status=status)

    assert client.get("/api/seller-orders", headers=auth("seller-x")).status_code == 403


def test_user_without_profile_is_forbidden(client):
    assert client.get("/api/seller-orders", headers=auth("buyer-1")).status_code == 403
