"""Checkout, cancellation and order queries."""
import os
import math
import random
import string
import logging
import time
from datetime import datetime
from typing import Callable, List, Optional

from bson import ObjectId
from bson.errors import InvalidId
from pymongo import ReturnDocument
from pymongo.errors import DuplicateKeyError

import order_status
from cart import clear_cart
from database import create_document, get_db, now_utc, serialize_doc, to_obj_id, transaction
from errors import (
    AuthorizationFault,
    NotFoundFault,
    StateConflictFault,
    StockFault,
    UnavailableProductFault,
    ValidationFault,
)
from schemas import GuestInfo, GuestOrderLine, Order, ShippingAddress

logger = logging.getLogger(__name__)

BASE36 = string.digits + string.ascii_uppercase
CHECKOUT_LOCK_TTL = 60
MAX_PAGE_SIZE = 50
MAX_ADMIN_PAGE_SIZE = 100


def zero_cost(items: List[dict], address: ShippingAddress) -> float:
    return 0.0


# Pluggable pricing hooks: (order items, shipping address) -> amount
shipping_calculator: Callable[[List[dict], ShippingAddress], float] = zero_cost
tax_calculator: Callable[[List[dict], ShippingAddress], float] = zero_cost


def _base36(n: int) -> str:
    out = ""
    while n:
        n, r = divmod(n, 36)
        out = BASE36[r] + out
    return out or "0"


def generate_order_number() -> str:
    stamp = _base36(int(time.time() * 1000))
    suffix = "".join(random.choices(BASE36, k=4))
    return f"ORD-{stamp}{suffix}"


def default_commission_rate() -> float:
    return float(os.getenv("DEFAULT_COMMISSION_RATE", "5"))


def commission_rate_for(seller_id: str, session=None) -> float:
    profile = get_db()["seller"].find_one({"user_id": seller_id}, session=session)
    if profile and profile.get("commission_rate") is not None:
        return float(profile["commission_rate"])
    return default_commission_rate()


def split_commission(item_total: float, rate: float):
    commission = round(item_total * rate / 100, 2)
    return commission, round(item_total - commission, 2)


def page_params(page: int, limit: int, max_limit: int = MAX_PAGE_SIZE):
    page = max(int(page or 1), 1)
    limit = min(max(int(limit or 10), 1), max_limit)
    return page, limit, (page - 1) * limit


def pagination(total: int, page: int, limit: int) -> dict:
    return {"total": total, "page": page, "limit": limit, "total_pages": math.ceil(total / limit) if limit else 0}


# -----------------------------
# Stock reservation
# -----------------------------

def _reserve(product_id: str, quantity: int, name: str, session=None) -> dict:
    """Atomically take ``quantity`` units of a purchasable product."""
    products = get_db()["product"]
    try:
        oid = ObjectId(product_id)
    except (InvalidId, TypeError):
        raise UnavailableProductFault(name)
    product = products.find_one_and_update(
        {"_id": oid, "status": "approved", "archived": False, "stock": {"$gte": quantity}},
        {"$inc": {"stock": -quantity}, "$set": {"updated_at": now_utc()}},
        return_document=ReturnDocument.AFTER,
        session=session,
    )
    if product:
        return product
    current = products.find_one({"_id": oid}, session=session)
    if not current or current.get("status") != "approved" or current.get("archived"):
        raise UnavailableProductFault(name or (current or {}).get("name", ""))
    logger.info("Insufficient stock for product %s: wanted %s, have %s", product_id, quantity, current["stock"])
    raise StockFault(current["name"], current["stock"])


def restock(items: List[dict], session=None):
    products = get_db()["product"]
    for item in items:
        products.update_one(
            {"_id": ObjectId(item["product_id"])},
            {"$inc": {"stock": item["quantity"]}, "$set": {"updated_at": now_utc()}},
            session=session,
        )


def _build_items(lines, reserved: list, session=None):
    rates = {}
    order_items = []
    items_total = 0
    for product_id, quantity, name in lines:
        product = _reserve(product_id, quantity, name, session=session)
        reserved.append({"product_id": str(product["_id"]), "quantity": quantity})

        seller_id = product["seller_id"]
        if seller_id not in rates:
            rates[seller_id] = commission_rate_for(seller_id, session=session)
        item_total = product["price"] * quantity
        commission, earnings = split_commission(item_total, rates[seller_id])
        order_items.append({
            "product_id": str(product["_id"]),
            "seller_id": seller_id,
            "name": product["name"],
            "price": product["price"],
            "image": (product.get("images") or [""])[0],
            "quantity": quantity,
            "item_total": item_total,
            "commission_amount": commission,
            "seller_earnings": earnings,
        })
        items_total += item_total
    return order_items, items_total


def _place_order(lines, shipping_address: ShippingAddress, notes=None, user_id=None,
                 guest_info: Optional[GuestInfo] = None, idempotency_key=None, on_placed=None) -> str:
    with transaction() as session:
        reserved = []
        try:
            items, items_total = _build_items(lines, reserved, session=session)
            shipping_cost = shipping_calculator(items, shipping_address)
            tax_amount = tax_calculator(items, shipping_address)
            order = Order(
                order_number=generate_order_number(),
                user_id=user_id,
                guest_info=guest_info,
                items=items,
                shipping_address=shipping_address,
                items_total=items_total,
                shipping_cost=shipping_cost,
                tax_amount=tax_amount,
                total_amount=items_total + shipping_cost + tax_amount,
                status="created",
                status_history=[order_status.history_entry("created", "Order created")],
                notes=notes,
                idempotency_key=idempotency_key,
            )
            data = order.model_dump()
            if guest_info is None:
                data.pop("guest_info")
            order_id = create_document("order", data, session=session)
        except Exception:
            if session is None and reserved:
                restock(reserved)
                logger.info("Released %d reserved line(s) after failed checkout", len(reserved))
            raise
        if on_placed:
            on_placed(session)
    logger.info("Order %s created with %d item(s), total %s", order.order_number, len(items), order.total_amount)
    return order_id


# -----------------------------
# Checkout
# -----------------------------

def _lock_cart(user_id: str) -> tuple:
    token = str(ObjectId())
    stamp = time.time()
    cart = get_db()["cart"].find_one_and_update(
        {
            "user_id": user_id,
            "$or": [{"checkout_lock": None}, {"checkout_locked_at": {"$lt": stamp - CHECKOUT_LOCK_TTL}}],
        },
        {"$set": {"checkout_lock": token, "checkout_locked_at": stamp}},
        return_document=ReturnDocument.AFTER,
    )
    if cart is None:
        if get_db()["cart"].find_one({"user_id": user_id}):
            raise StateConflictFault("Checkout already in progress for this cart")
        raise ValidationFault("Cart is empty. Add items before checkout.")
    return cart, token


def _unlock_cart(user_id: str, token: str):
    get_db()["cart"].update_one(
        {"user_id": user_id, "checkout_lock": token},
        {"$set": {"checkout_lock": None, "checkout_locked_at": None}},
    )


def _existing_for_key(user_id: str, idempotency_key: Optional[str]):
    if not idempotency_key:
        return None
    return get_db()["order"].find_one({"user_id": user_id, "idempotency_key": idempotency_key})


def create_order(user_id: str, shipping_address: ShippingAddress, notes: Optional[str] = None,
                 idempotency_key: Optional[str] = None) -> dict:
    existing = _existing_for_key(user_id, idempotency_key)
    if existing:
        logger.info("Idempotent replay of order %s", existing["order_number"])
        return serialize_doc(existing)

    cart, token = _lock_cart(user_id)
    try:
        if not cart.get("items"):
            raise ValidationFault("Cart is empty. Add items before checkout.")
        lines = [(it["product_id"], it["quantity"], it["name"]) for it in cart["items"]]
        try:
            order_id = _place_order(
                lines,
                shipping_address,
                notes=notes,
                user_id=user_id,
                idempotency_key=idempotency_key,
                on_placed=lambda session: clear_cart(user_id, session=session),
            )
        except DuplicateKeyError:
            existing = _existing_for_key(user_id, idempotency_key)
            if not existing:
                raise
            return serialize_doc(existing)
    finally:
        _unlock_cart(user_id, token)
    return get_order_doc(order_id)


def _merge_lines(items: List[GuestOrderLine]):
    merged = {}
    for line in items:
        merged[line.product_id] = merged.get(line.product_id, 0) + line.quantity
    return [(pid, qty, "") for pid, qty in merged.items()]


def create_guest_order(items: List[GuestOrderLine], shipping_address: ShippingAddress,
                       guest_info: GuestInfo, notes: Optional[str] = None) -> dict:
    if not items:
        raise ValidationFault("Order must contain at least one item")
    order_id = _place_order(_merge_lines(items), shipping_address, notes=notes, guest_info=guest_info)
    return get_order_doc(order_id)


# -----------------------------
# Cancellation
# -----------------------------

def _cancel(order: dict, note: str) -> dict:
    # stock goes back once per order, however often an admin reopens and re-cancels it
    restore = not order.get("stock_restored")
    with transaction() as session:
        updated = order_status.apply_transition(
            order, "cancelled", note, extra={"stock_restored": True}, session=session
        )
        if restore:
            restock(order["items"], session=session)
    if restore:
        logger.info("Order %s cancelled, stock restored for %d item(s)", order["order_number"], len(order["items"]))
    else:
        logger.info("Order %s cancelled again, stock already restored", order["order_number"])
    return updated


def cancel_order(order_id: str, actor: dict) -> dict:
    order = get_db()["order"].find_one({"_id": to_obj_id(order_id)})
    if not order:
        raise NotFoundFault("Order not found")
    is_admin = actor.get("role") == "admin"
    if not is_admin and order.get("user_id") != actor["id"]:
        raise AuthorizationFault("Not authorized to cancel this order")
    order_status.check_buyer_cancel(order["status"])
    return serialize_doc(_cancel(order, "Cancelled by customer"))


# -----------------------------
# Read side
# -----------------------------

def get_order_doc(order_id: str) -> dict:
    order = get_db()["order"].find_one({"_id": to_obj_id(order_id)})
    if not order:
        raise NotFoundFault("Order not found")
    return serialize_doc(order)


def get_order(order_id: str, actor: dict) -> dict:
    order = get_order_doc(order_id)
    if actor.get("role") != "admin" and order.get("user_id") != actor["id"]:
        raise AuthorizationFault("Not authorized to view this order")
    return order


def list_my_orders(user_id: str, status: Optional[str] = None, page: int = 1, limit: int = 10) -> dict:
    query = {"user_id": user_id}
    if status:
        query["status"] = status
    page, limit, skip = page_params(page, limit)
    coll = get_db()["order"]
    total = coll.count_documents(query)
    docs = coll.find(query).sort("created_at", -1).skip(skip).limit(limit)
    return {"orders": [serialize_doc(d) for d in docs], "pagination": pagination(total, page, limit)}


def track_order(order_number: str, email: Optional[str] = None) -> dict:
    order = get_db()["order"].find_one({"order_number": order_number})
    if not order:
        raise NotFoundFault("Order not found")
    guest = order.get("guest_info")
    if not order.get("user_id") and guest:
        if not email or guest.get("email", "").lower() != email.lower():
            raise AuthorizationFault("Invalid email for this order")
    return {
        "order_number": order["order_number"],
        "status": order["status"],
        "status_history": order.get("status_history", []),
        "items": [{"name": it["name"], "quantity": it["quantity"], "image": it.get("image", "")} for it in order["items"]],
        "total_amount": order["total_amount"],
        "created_at": order.get("created_at"),
    }


# -----------------------------
# Admin
# -----------------------------

def list_orders_admin(status: Optional[str] = None, seller_id: Optional[str] = None, user_id: Optional[str] = None,
                      page: int = 1, limit: int = 10) -> dict:
    query = {}
    if status:
        query["status"] = status
    if seller_id:
        query["items.seller_id"] = seller_id
    if user_id:
        query["user_id"] = user_id
    page, limit, skip = page_params(page, limit, MAX_ADMIN_PAGE_SIZE)
    coll = get_db()["order"]
    total = coll.count_documents(query)
    docs = coll.find(query).sort("created_at", -1).skip(skip).limit(limit)
    return {"orders": [serialize_doc(d) for d in docs], "pagination": pagination(total, page, limit)}


def update_order_status_admin(order_id: str, status: str, note: Optional[str] = None) -> dict:
    order = get_db()["order"].find_one({"_id": to_obj_id(order_id)})
    if not order:
        raise NotFoundFault("Order not found")
    order_status.check_admin_transition(order["status"], status)
    note = note or f'Status changed from "{order["status"]}" to "{status}" by admin'
    if status == "cancelled":
        return serialize_doc(_cancel(order, note))
    logger.warning("Admin override on order %s: %s -> %s", order["order_number"], order["status"], status)
    return serialize_doc(order_status.apply_transition(order, status, note))


def _revenue(match: dict) -> dict:
    rows = list(get_db()["order"].aggregate([
        {"$match": match},
        {"$group": {"_id": None, "revenue": {"$sum": "$total_amount"}, "count": {"$sum": 1}}},
    ]))
    if not rows:
        return {"revenue": 0, "count": 0}
    return {"revenue": rows[0]["revenue"], "count": rows[0]["count"]}


def get_order_stats(now: Optional[datetime] = None) -> dict:
    coll = get_db()["order"]
    counts = {row["_id"]: row["count"] for row in coll.aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])}
    confirmed = {"status": {"$in": list(order_status.PAYMENT_CONFIRMED)}}
    today = (now or now_utc()).replace(hour=0, minute=0, second=0, microsecond=0)
    month_start = today.replace(day=1)
    overall = _revenue(confirmed)
    monthly = _revenue({**confirmed, "created_at": {"$gte": month_start}})
    return {
        "status_counts": counts,
        "total_revenue": overall["revenue"],
        "total_paid_orders": overall["count"],
        "today_orders": coll.count_documents({"created_at": {"$gte": today}}),
        "monthly_revenue": monthly["revenue"],
        "monthly_orders": monthly["count"],
    }
