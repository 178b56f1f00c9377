"""Dashboard rollups for admins and sellers. Revenue counts payment-confirmed orders only."""
from datetime import datetime, timedelta
from typing import Optional

from database import get_db, now_utc
from errors import ValidationFault
from order_status import PAYMENT_CONFIRMED

PERIODS = ("daily", "weekly", "monthly")
MAX_DAYS = 365
MAX_TOP = 50
PENDING_ACTION = ("paid", "processing")


def _start_of_day(now: Optional[datetime]) -> datetime:
    return (now or now_utc()).replace(hour=0, minute=0, second=0, microsecond=0)


def _clamp(value: int, default: int, upper: int) -> int:
    return min(max(int(value or default), 1), upper)


def _confirmed(extra: Optional[dict] = None) -> dict:
    return {"status": {"$in": list(PAYMENT_CONFIRMED)}, **(extra or {})}


def _order_totals(match: dict) -> dict:
    rows = list(get_db()["order"].aggregate([
        {"$match": match},
        {"$group": {"_id": None, "revenue": {"$sum": "$total_amount"}, "orders": {"$sum": 1}}},
    ]))
    return rows[0] if rows else {"revenue": 0, "orders": 0}


def _seller_totals(seller_id: str, match: dict) -> dict:
    rows = list(get_db()["order"].aggregate([
        {"$match": {**match, "items.seller_id": seller_id}},
        {"$unwind": "$items"},
        {"$match": {"items.seller_id": seller_id}},
        {"$group": {"_id": None, "revenue": {"$sum": "$items.item_total"}, "orders": {"$addToSet": "$_id"}}},
    ]))
    if not rows:
        return {"revenue": 0, "orders": 0}
    return {"revenue": rows[0]["revenue"], "orders": len(rows[0]["orders"])}


def _bucket(created_at: datetime, period: str):
    if period == "monthly":
        return (created_at.year, created_at.month), f"{created_at.year}-{created_at.month:02d}"
    if period == "weekly":
        year, week, _ = created_at.isocalendar()
        return (year, week), f"{year}-W{week:02d}"
    return (created_at.year, created_at.month, created_at.day), created_at.strftime("%Y-%m-%d")


# -----------------------------
# Admin
# -----------------------------

def admin_overview(now: Optional[datetime] = None) -> dict:
    today = _start_of_day(now)
    db = get_db()
    overall = _order_totals(_confirmed())
    todays = _order_totals(_confirmed({"created_at": {"$gte": today}}))
    return {
        "revenue": {"total": overall["revenue"], "today": todays["revenue"]},
        "orders": {
            "total": db["order"].count_documents({}),
            "today": db["order"].count_documents({"created_at": {"$gte": today}}),
            "pending": db["order"].count_documents({"status": {"$in": list(PENDING_ACTION)}}),
        },
        "buyers": {"total": len([u for u in db["order"].distinct("user_id") if u])},
        "sellers": {
            "total": db["seller"].count_documents({"status": "approved"}),
            "pending": db["seller"].count_documents({"status": "pending"}),
        },
        "products": {
            "total": db["product"].count_documents({"status": "approved", "archived": False}),
            "pending": db["product"].count_documents({"status": "pending", "archived": False}),
        },
    }


def revenue_series(period: str = "daily", days: int = 30, now: Optional[datetime] = None) -> dict:
    """Confirmed revenue per day, ISO week or month over the last ``days`` days."""
    if period not in PERIODS:
        raise ValidationFault(f"Invalid period. Allowed: {', '.join(PERIODS)}")
    days = _clamp(days, 30, MAX_DAYS)
    start = _start_of_day(now) - timedelta(days=days)
    cursor = get_db()["order"].find(
        _confirmed({"created_at": {"$gte": start}}),
        {"created_at": 1, "total_amount": 1},
    )
    buckets = {}
    for order in cursor:
        key, label = _bucket(order["created_at"], period)
        row = buckets.setdefault(key, {"date": label, "revenue": 0, "orders": 0})
        row["revenue"] += order["total_amount"]
        row["orders"] += 1
    return {"period": period, "days": days, "data": [buckets[k] for k in sorted(buckets)]}


def status_distribution() -> dict:
    rows = get_db()["order"].aggregate([{"$group": {"_id": "$status", "count": {"$sum": 1}}}])
    return {row["_id"]: row["count"] for row in rows}


def top_products(limit: int = 10, seller_id: Optional[str] = None) -> list:
    match = _confirmed({"items.seller_id": seller_id} if seller_id else None)
    pipeline = [{"$match": match}, {"$unwind": "$items"}]
    if seller_id:
        pipeline.append({"$match": {"items.seller_id": seller_id}})
    pipeline += [
        {"$group": {
            "_id": "$items.product_id",
            "name": {"$first": "$items.name"},
            "image": {"$first": "$items.image"},
            "total_quantity": {"$sum": "$items.quantity"},
            "total_revenue": {"$sum": "$items.item_total"},
            "order_count": {"$sum": 1},
        }},
        {"$sort": {"total_quantity": -1}},
        {"$limit": _clamp(limit, 10, MAX_TOP)},
    ]
    return [{"product_id": row.pop("_id"), **row} for row in get_db()["order"].aggregate(pipeline)]


def top_sellers(limit: int = 10) -> list:
    groups = list(get_db()["order"].aggregate([
        {"$match": _confirmed()},
        {"$unwind": "$items"},
        {"$group": {
            "_id": "$items.seller_id",
            "total_revenue": {"$sum": "$items.item_total"},
            "orders": {"$addToSet": "$_id"},
            "products": {"$addToSet": "$items.product_id"},
        }},
    ]))
    groups.sort(key=lambda g: g["total_revenue"], reverse=True)
    groups = groups[:_clamp(limit, 10, MAX_TOP)]
    names = {
        p["user_id"]: p.get("store_name")
        for p in get_db()["seller"].find({"user_id": {"$in": [g["_id"] for g in groups]}})
    }
    return [
        {
            "seller_id": g["_id"],
            "store_name": names.get(g["_id"]),
            "total_revenue": g["total_revenue"],
            "total_orders": len(g["orders"]),
            "unique_products": len(g["products"]),
        }
        for g in groups
    ]


# -----------------------------
# Seller
# -----------------------------

def seller_overview(seller_id: str, now: Optional[datetime] = None) -> dict:
    today = _start_of_day(now)
    db = get_db()
    overall = _seller_totals(seller_id, _confirmed())
    todays = _seller_totals(seller_id, _confirmed({"created_at": {"$gte": today}}))
    products = db["product"]
    return {
        "revenue": {"total": overall["revenue"], "today": todays["revenue"]},
        "orders": {
            "total": overall["orders"],
            "today": todays["orders"],
            "pending": db["order"].count_documents(
                {"status": {"$in": list(PENDING_ACTION)}, "items.seller_id": seller_id}
            ),
        },
        "products": {
            "total": products.count_documents({"seller_id": seller_id, "archived": False}),
            "approved": products.count_documents({"seller_id": seller_id, "status": "approved", "archived": False}),
            "pending": products.count_documents({"seller_id": seller_id, "status": "pending", "archived": False}),
        },
    }


def seller_revenue_series(seller_id: str, days: int = 30, now: Optional[datetime] = None) -> dict:
    days = _clamp(days, 30, MAX_DAYS)
    start = _start_of_day(now) - timedelta(days=days)
    cursor = get_db()["order"].find(
        _confirmed({"created_at": {"$gte": start}, "items.seller_id": seller_id}),
        {"created_at": 1, "items": 1},
    )
    buckets = {}
    for order in cursor:
        key, label = _bucket(order["created_at"], "daily")
        row = buckets.setdefault(key, {"date": label, "revenue": 0, "quantity": 0})
        for item in order["items"]:
            if item["seller_id"] == seller_id:
                row["revenue"] += item["item_total"]
                row["quantity"] += item["quantity"]
    return {"days": days, "data": [buckets[k] for k in sorted(buckets)]}
