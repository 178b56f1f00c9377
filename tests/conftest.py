"""
Shared fixtures: an in-memory MongoDB (mongomock), an HTTP client for the app,
and small factories for sellers, products, carts and orders.
"""
import hashlib
import hmac
from datetime import datetime

import mongomock
import pytest
from bson import ObjectId
from fastapi.testclient import TestClient

import analytics
import database
import order_status
import orders
from auth import create_token
from main import app

ADDRESS = {
    "full_name": "Asha Rao",
    "phone": "9876543210",
    "address_line1": "12 MG Road",
    "city": "Bengaluru",
    "state": "KA",
    "postal_code": "560001",
}


@pytest.fixture(autouse=True)
def db(monkeypatch):
    test_db = mongomock.MongoClient().marketplace_test
    monkeypatch.setattr(database, "db", test_db)
    monkeypatch.setattr(database, "client", None)
    for var in ("RAZORPAY_KEY_ID", "RAZORPAY_KEY_SECRET", "RAZORPAY_WEBHOOK_SECRET", "MONGO_TRANSACTIONS"):
        monkeypatch.delenv(var, raising=False)
    monkeypatch.setenv("JWT_SECRET", "test-secret")
    return test_db


@pytest.fixture
def client():
    return TestClient(app)


def auth(user_id, role="user"):
    return {"Authorization": f"Bearer {create_token({'id': user_id, 'role': role})}"}


def mock_signature(gateway_order_id, gateway_payment_id, secret="mock_secret"):
    return hmac.new(secret.encode(), f"{gateway_order_id}|{gateway_payment_id}".encode(), hashlib.sha256).hexdigest()


@pytest.fixture
def make_seller(db):
    def _make(user_id, status="approved", commission_rate=5, store_name=None):
        doc = {
            "user_id": user_id,
            "store_name": store_name or f"Store {user_id}",
            "business_details": {"pan": "ABCDE1234F", "address": "Somewhere"},
            "bank_details": {"account_number": "0001", "ifsc_code": "HDFC0001", "bank_name": "HDFC"},
            "commission_rate": commission_rate,
            "status": status,
        }
        doc["_id"] = db["seller"].insert_one(doc).inserted_id
        return doc
    return _make


@pytest.fixture
def make_product(db):
    def _make(seller_id="seller-a", price=100.0, stock=5, name=None, status="approved", archived=False, mrp=None):
        doc = {
            "seller_id": seller_id,
            "name": name or f"Product {ObjectId()}",
            "description": "",
            "price": price,
            "mrp": mrp if mrp is not None else price,
            "stock": stock,
            "category": "general",
            "images": ["https://img.example/p.png"],
            "status": status,
            "archived": archived,
        }
        doc["_id"] = db["product"].insert_one(doc).inserted_id
        return doc
    return _make


@pytest.fixture
def fill_cart(client):
    def _fill(user_id, *lines):
        for product, quantity in lines:
            resp = client.post(
                "/api/cart/items",
                json={"product_id": str(product["_id"]), "quantity": quantity},
                headers=auth(user_id),
            )
            assert resp.status_code == 200, resp.text
    return _fill


@pytest.fixture
def checkout(client, fill_cart):
    """Fill a buyer's cart with (product, qty) pairs and place the order."""
    def _checkout(user_id, *lines):
        fill_cart(user_id, *lines)
        resp = client.post("/api/orders", json={"shipping_address": ADDRESS}, headers=auth(user_id))
        assert resp.status_code == 201, resp.text
        return resp.json()
    return _checkout


@pytest.fixture
def set_status(db):
    def _set(order, status):
        db["order"].update_one({"_id": ObjectId(order["id"])}, {"$set": {"status": status}})
    return _set


def stock_of(db, product):
    return db["product"].find_one({"_id": product["_id"]})["stock"]


class Clock:
    def __init__(self, now):
        self.now = now

    def __call__(self):
        return self.now


@pytest.fixture
def clock(monkeypatch):
    """Freeze now_utc everywhere orders are stamped or bucketed by date."""
    fixed = Clock(datetime(2026, 3, 15, 12, 0))
    for module in (database, orders, order_status, analytics):
        monkeypatch.setattr(module, "now_utc", fixed)
    return fixed
